# yieldrelay/chains.py
import os
from decimal import Decimal, ROUND_DOWN
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import NoAssetMapping

# The stable asset is USDC everywhere; 6 decimals on every chain listed here.
STABLE_DECIMALS = 6


@dataclass(slots=True, frozen=True)
class ChainInfo:
    chain_id: int
    name: str
    stable_asset: Optional[str]
    rpc_env: Tuple[str, ...] = ()
    explorer: Optional[str] = None
    testnet: bool = False


CHAINS: Dict[int, ChainInfo] = {
    1: ChainInfo(1, "Ethereum", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
                 ("MAINNET_RPC_URL",), "https://etherscan.io"),
    10: ChainInfo(10, "Optimism", "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
                  ("OPTIMISM_RPC_URL",), "https://optimistic.etherscan.io"),
    137: ChainInfo(137, "Polygon", "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
                   ("POLYGON_RPC_URL",), "https://polygonscan.com"),
    8453: ChainInfo(8453, "Base", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
                    ("BASE_RPC_URL",), "https://basescan.org"),
    42161: ChainInfo(42161, "Arbitrum One", "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
                     ("ARBITRUM_RPC_URL",), "https://arbiscan.io"),
    # Testnets use the Aave faucet USDC so the lending adapter can be exercised end to end
    11155111: ChainInfo(11155111, "Sepolia", "0x94a9D9AC8a22534E3FaCa9F4e7F2E2cf85d5E4C8",
                        ("SEPOLIA_RPC_URL",), "https://sepolia.etherscan.io", testnet=True),
    84532: ChainInfo(84532, "Base Sepolia", "0xba50Cd2A20f6DA35D788639E581bca8d0B5d4D5f",
                     ("BASE_SEPOLIA_RPC_URL",), "https://sepolia.basescan.org", testnet=True),
    421614: ChainInfo(421614, "Arbitrum Sepolia", "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
                      ("ARBITRUM_SEPOLIA_RPC_URL",), "https://sepolia.arbiscan.io", testnet=True),
}


class ChainRegistry:
    """
    Static lookup of chain id -> stable asset, RPC endpoint and display name.
    Config overrides (the `chains` section) are applied once at construction;
    the registry holds no other state.
    """
    def __init__(self, overrides: Optional[Mapping] = None, environ: Optional[Mapping[str, str]] = None):
        self._environ = os.environ if environ is None else environ
        self._rpc_overrides: Dict[int, str] = {}
        self._chains: Dict[int, ChainInfo] = dict(CHAINS)

        for raw_id, entry in (overrides or {}).items():
            chain_id = int(raw_id)
            entry = entry or {}
            base = self._chains.get(chain_id, ChainInfo(chain_id, f"Chain {chain_id}", None))
            self._chains[chain_id] = replace(
                base,
                name=entry.get("name", base.name),
                stable_asset=entry.get("stable_asset", base.stable_asset),
            )
            if entry.get("rpc_url"):
                self._rpc_overrides[chain_id] = entry["rpc_url"]

    def get(self, chain_id: int) -> Optional[ChainInfo]:
        return self._chains.get(chain_id)

    def name(self, chain_id: int) -> str:
        info = self._chains.get(chain_id)
        return info.name if info else f"Chain {chain_id}"

    def is_supported(self, chain_id: int) -> bool:
        return chain_id in self._chains

    def supported_chain_ids(self, include_testnets: bool = False) -> List[int]:
        return [c.chain_id for c in self._chains.values() if include_testnets or not c.testnet]

    def stable_asset(self, chain_id: int) -> str:
        info = self._chains.get(chain_id)
        if info is None or not info.stable_asset:
            raise NoAssetMapping(chain_id)
        return info.stable_asset

    def rpc_url(self, chain_id: int) -> Optional[str]:
        """Config override first, then RPC_URL_<id>, then the chain's conventional variable."""
        if chain_id in self._rpc_overrides:
            return self._rpc_overrides[chain_id]
        by_chain = self._environ.get(f"RPC_URL_{chain_id}")
        if by_chain:
            return by_chain
        info = self._chains.get(chain_id)
        for key in (info.rpc_env if info else ()):
            if self._environ.get(key):
                return self._environ[key]
        return None


def to_minimal_units(amount_usd: float, decimals: int = STABLE_DECIMALS) -> int:
    """Floors a dollar amount into the stable asset's integer unit (1 USD == 1 token)."""
    scaled = Decimal(str(amount_usd)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_minimal_units(amount: int, decimals: int = STABLE_DECIMALS) -> float:
    return amount / (10 ** decimals)
