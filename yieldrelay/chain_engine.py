# yieldrelay/chain_engine.py
import asyncio
import logging
import os
from typing import Any, Dict, Iterable, Mapping, Optional

from eth_account import Account
from web3 import AsyncWeb3, AsyncHTTPProvider

from .chains import ChainRegistry
from .errors import DepositReverted, NoSignerConfigured
from .models import ADDRESS_RE, TxReceipt

ERC20_ABI = [
    {
        "type": "function", "name": "allowance", "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function", "name": "approve", "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function", "name": "balanceOf", "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


def _checksum_args(args: tuple) -> tuple:
    """Addresses passed as call arguments must be checksummed, same as the contract address."""
    return tuple(
        AsyncWeb3.to_checksum_address(a) if isinstance(a, str) and ADDRESS_RE.match(a) else a
        for a in args
    )


def _to_int(value: Any) -> int:
    """Accepts ints, decimal strings and 0x-prefixed hex strings."""
    if isinstance(value, int):
        return value
    return int(str(value), 0)


class ChainSigner:
    """
    A private key bound to one chain's RPC endpoint.
    Reads go straight to the node; writes are signed locally and serialized
    through a lock so concurrent workflows on the same chain never race on nonces.
    """
    def __init__(self, chain_id: int, w3: AsyncWeb3, account, logger: logging.Logger,
                 receipt_timeout: float = 180):
        self.chain_id = chain_id
        self.w3 = w3
        self.account = account
        self.logger = logger
        self.receipt_timeout = receipt_timeout
        self._send_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self.account.address

    def _contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)

    async def call(self, address: str, abi: list, fn_name: str, *args) -> Any:
        fn = getattr(self._contract(address, abi).functions, fn_name)
        return await fn(*_checksum_args(args)).call({"from": self.address})

    async def transact(self, address: str, abi: list, fn_name: str, *args) -> TxReceipt:
        fn = getattr(self._contract(address, abi).functions, fn_name)
        async with self._send_lock:
            nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
            tx = await fn(*_checksum_args(args)).build_transaction({
                "from": self.address,
                "nonce": nonce,
                "chainId": self.chain_id,
            })
            return await self._sign_and_send(tx)

    async def send_transaction(self, tx_request: Mapping[str, Any]) -> TxReceipt:
        """Sends a pre-built call (e.g. a routing step) as-is, filling only what the node must supply."""
        async with self._send_lock:
            tx: Dict[str, Any] = {
                "from": self.address,
                "to": AsyncWeb3.to_checksum_address(tx_request["to"]),
                "data": tx_request.get("data", "0x"),
                "value": _to_int(tx_request.get("value", 0)),
                "chainId": self.chain_id,
                "nonce": await self.w3.eth.get_transaction_count(self.address, "pending"),
            }
            if tx_request.get("gasLimit"):
                tx["gas"] = _to_int(tx_request["gasLimit"])
            else:
                tx["gas"] = await self.w3.eth.estimate_gas(tx)
            if tx_request.get("gasPrice"):
                tx["gasPrice"] = _to_int(tx_request["gasPrice"])
            else:
                tx["gasPrice"] = await self.w3.eth.gas_price
            return await self._sign_and_send(tx)

    async def _sign_and_send(self, tx: Dict[str, Any]) -> TxReceipt:
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        hex_hash = AsyncWeb3.to_hex(tx_hash)
        self.logger.info(f"   📤 Sent {hex_hash} on chain {self.chain_id}, waiting for receipt...")
        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        return TxReceipt(tx_hash=hex_hash, status=receipt.get("status"))

    async def close(self):
        await self.w3.provider.disconnect()


async def ensure_allowance(signer, token: str, spender: str, amount: int,
                           logger: Optional[logging.Logger] = None) -> Optional[TxReceipt]:
    """
    Raises the ERC20 allowance for `spender` to `amount` only when the current one is short.
    Returns the approval receipt, or None when no transaction was needed.
    """
    current = await signer.call(token, ERC20_ABI, "allowance", signer.address, spender)
    if current >= amount:
        return None

    if logger:
        logger.info(f"   🔓 Approving {amount} of {token} for {spender} (current {current})")
    receipt = await signer.transact(token, ERC20_ABI, "approve", spender, amount)
    if receipt.status != 1:
        raise DepositReverted("ERC20.approve", receipt.tx_hash)
    return receipt


class ChainEngine:
    """
    Owns RPC connections and signers for every chain the workflow touches.
    Signers are built lazily on first use and cached for the process lifetime.
    A missing key or RPC URL is a configuration error for that chain only.
    """
    def __init__(self, registry: ChainRegistry, config: dict, logger: logging.Logger,
                 environ: Optional[Mapping[str, str]] = None):
        self.registry = registry
        self.logger = logger
        self._environ = os.environ if environ is None else environ
        self._key_env = config['wallet'].get('private_key_env', 'EVM_PRIVATE_KEY')
        self._timeout = config['routing'].get('request_timeout_seconds', 30)
        self._signers: Dict[int, ChainSigner] = {}

    def _private_key(self, chain_id: int) -> str:
        key = self._environ.get(self._key_env)
        if not key:
            raise NoSignerConfigured(chain_id, f"{self._key_env} not set")
        return key

    def get_signer(self, chain_id: int) -> ChainSigner:
        if chain_id in self._signers:
            return self._signers[chain_id]

        key = self._private_key(chain_id)
        rpc_url = self.registry.rpc_url(chain_id)
        if not rpc_url:
            raise NoSignerConfigured(chain_id, f"no RPC URL configured (set RPC_URL_{chain_id})")

        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self._timeout}))
        signer = ChainSigner(chain_id, w3, Account.from_key(key), self.logger)
        self._signers[chain_id] = signer
        return signer

    async def initialize(self, chain_ids: Iterable[int]) -> bool:
        """
        Connects to each chain and checks the node reports the chain id we expect.
        Returns False if ANY chain fails the diagnostic.
        """
        all_connected = True
        self.logger.info("📡 TESTING CHAIN CONNECTIONS...")

        for chain_id in chain_ids:
            name = self.registry.name(chain_id).upper()
            try:
                signer = self.get_signer(chain_id)
                reported = await signer.w3.eth.chain_id
                if reported != chain_id:
                    self.logger.critical(f"   ❌ {name:<16} | WRONG NETWORK: RPC reports chain {reported}")
                    all_connected = False
                    continue
                block = await signer.w3.eth.block_number
                self.logger.info(f"   ✅ {name:<16} | Block: {block} | Signer: {signer.address}")
            except NoSignerConfigured as e:
                self.logger.critical(f"   ❌ {name:<16} | NOT CONFIGURED: {e}")
                all_connected = False
            except Exception as e:
                self.logger.error(f"   ❌ {name:<16} | RPC UNREACHABLE: {e}")
                all_connected = False

        return all_connected

    async def shutdown(self):
        """Closes every provider session that was opened."""
        for signer in self._signers.values():
            await signer.close()
        self._signers.clear()
