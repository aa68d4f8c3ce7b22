# yieldrelay/adapters.py
import logging
from typing import Dict, List, Optional

from .chain_engine import ensure_allowance
from .errors import ValidationFailed
from .models import DepositResult, YieldPool

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

AAVE_V3_POOLS: Dict[int, str] = {
    1: "0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2",
    10: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
    137: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
    8453: "0xA238Dd80C259a72e81d7e4664a9801593F98d1c5",
    42161: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
    11155111: "0x6Ae43d3271ff6888e7Fc43Fd7321a503ff738951",
    84532: "0x07eA79F68B2B3df564D0A34F8e19D9B1e339814b",
    421614: "0xBfC91D59fdAA134A4ED45f7B584cAf96D7792Eff",
}

# ReserveData as returned by Pool.getReserveData (v3 layout, 15 fields)
AAVE_POOL_ABI = [
    {
        "type": "function", "name": "getReserveData", "stateMutability": "view",
        "inputs": [{"name": "asset", "type": "address"}],
        "outputs": [{
            "name": "", "type": "tuple",
            "components": [
                {"name": "configuration", "type": "tuple", "components": [{"name": "data", "type": "uint256"}]},
                {"name": "liquidityIndex", "type": "uint128"},
                {"name": "currentLiquidityRate", "type": "uint128"},
                {"name": "variableBorrowIndex", "type": "uint128"},
                {"name": "currentVariableBorrowRate", "type": "uint128"},
                {"name": "currentStableBorrowRate", "type": "uint128"},
                {"name": "lastUpdateTimestamp", "type": "uint40"},
                {"name": "id", "type": "uint16"},
                {"name": "aTokenAddress", "type": "address"},
                {"name": "stableDebtTokenAddress", "type": "address"},
                {"name": "variableDebtTokenAddress", "type": "address"},
                {"name": "interestRateStrategyAddress", "type": "address"},
                {"name": "accruedToTreasury", "type": "uint128"},
                {"name": "unbacked", "type": "uint128"},
                {"name": "isolationModeTotalDebt", "type": "uint128"},
            ],
        }],
    },
    {
        "type": "function", "name": "supply", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "asset", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "onBehalfOf", "type": "address"},
            {"name": "referralCode", "type": "uint16"},
        ],
        "outputs": [],
    },
]
ATOKEN_INDEX = 8

ERC4626_ABI = [
    {
        "type": "function", "name": "asset", "stateMutability": "view",
        "inputs": [], "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function", "name": "deposit", "stateMutability": "nonpayable",
        "inputs": [{"name": "assets", "type": "uint256"}, {"name": "receiver", "type": "address"}],
        "outputs": [{"name": "shares", "type": "uint256"}],
    },
]


class ProtocolAdapter:
    """
    Deposit capability for one family of yield pools.
    `supports` is a cheap shape check, `validate` may read chain state,
    `deposit` moves funds and must secure allowance first.
    """
    name = "base"

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def supports(self, pool: YieldPool) -> bool:
        raise NotImplementedError

    async def validate(self, signer, pool: YieldPool, asset: str) -> None:
        raise NotImplementedError

    async def deposit(self, signer, pool: YieldPool, asset: str, amount: int) -> DepositResult:
        raise NotImplementedError


class AaveV3Adapter(ProtocolAdapter):
    """Lending-market deposits through the chain's Aave V3 Pool (supply on behalf of the signer)."""
    name = "AaveV3"

    def __init__(self, pools: Optional[Dict[int, str]] = None, logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        self.pools = dict(AAVE_V3_POOLS)
        self.pools.update({int(k): v for k, v in (pools or {}).items()})

    def supports(self, pool: YieldPool) -> bool:
        proto = (pool.protocol or "").lower()
        proj = (pool.project or "").lower()
        return proto == "aave-v3" or "aave" in proto or "aave" in proj

    def _pool_for(self, chain_id: int) -> str:
        address = self.pools.get(chain_id)
        if not address:
            raise ValidationFailed(self.name, f"Aave V3 not supported on chain {chain_id}")
        return address

    async def validate(self, signer, pool: YieldPool, asset: str) -> None:
        aave_pool = self._pool_for(pool.chain_id)
        reserve = await signer.call(aave_pool, AAVE_POOL_ABI, "getReserveData", asset)
        # An unlisted reserve comes back zeroed instead of reverting
        if reserve[ATOKEN_INDEX] == ZERO_ADDRESS:
            raise ValidationFailed(self.name, f"asset {asset} is not listed on the Aave pool {aave_pool}")

    async def deposit(self, signer, pool: YieldPool, asset: str, amount: int) -> DepositResult:
        aave_pool = self._pool_for(pool.chain_id)
        await ensure_allowance(signer, asset, aave_pool, amount, self.logger)

        self.logger.info(f"   🏦 Supplying {amount} to Aave V3 on chain {pool.chain_id}")
        receipt = await signer.transact(aave_pool, AAVE_POOL_ABI, "supply", asset, amount, signer.address, 0)
        return DepositResult(tx_hash=receipt.tx_hash, amount_deposited=amount, receipt_status=receipt.status)


class Erc4626Adapter(ProtocolAdapter):
    """Tokenized-vault deposits. Any pool with a callable contract address qualifies."""
    name = "ERC4626"

    def supports(self, pool: YieldPool) -> bool:
        return pool.has_contract_address

    async def validate(self, signer, pool: YieldPool, asset: str) -> None:
        vault_asset = await signer.call(pool.pool_address, ERC4626_ABI, "asset")
        if str(vault_asset).lower() != asset.lower():
            raise ValidationFailed(
                self.name, f"asset mismatch. Vault asset={vault_asset}, expected={asset}"
            )

    async def deposit(self, signer, pool: YieldPool, asset: str, amount: int) -> DepositResult:
        vault = pool.pool_address
        await ensure_allowance(signer, asset, vault, amount, self.logger)

        self.logger.info(f"   🏦 Depositing {amount} into vault {vault}")
        receipt = await signer.transact(vault, ERC4626_ABI, "deposit", amount, signer.address)
        return DepositResult(tx_hash=receipt.tx_hash, amount_deposited=amount, receipt_status=receipt.status)


def default_adapters(config: Optional[dict] = None, logger: Optional[logging.Logger] = None) -> List[ProtocolAdapter]:
    """Preference order matters: the first adapter that supports a pool handles it."""
    overrides = (config or {}).get('adapters', {}).get('aave_v3_pools')
    return [AaveV3Adapter(pools=overrides, logger=logger), Erc4626Adapter(logger=logger)]
