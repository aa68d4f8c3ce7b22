# yieldrelay/execution.py
import logging
from typing import Optional, Sequence, Tuple

from .adapters import ProtocolAdapter, default_adapters
from .chain_engine import ChainEngine
from .chains import ChainRegistry, to_minimal_units
from .errors import (
    AmountTooSmall,
    ConfigurationError,
    DepositFailed,
    DepositReverted,
    NoAdapterSupportsPool,
    ValidationFailed,
    YieldRelayError,
)
from .models import DepositOutcome, Depositability, YieldPool


class YieldExecutionEngine:
    """
    Puts arrived funds to work.
    Picks the first adapter (in fixed preference order) that supports the pool,
    validates, then deposits. Deposit is never attempted unless validation passed,
    and a reverted receipt is an error, not a success.
    """
    def __init__(self, chain_engine: ChainEngine, registry: ChainRegistry, logger: logging.Logger,
                 adapters: Optional[Sequence[ProtocolAdapter]] = None):
        self.chain_engine = chain_engine
        self.registry = registry
        self.logger = logger
        # Immutable after construction; shared read-only by concurrent workflows
        self.adapters: Tuple[ProtocolAdapter, ...] = tuple(adapters if adapters is not None else default_adapters(logger=logger))

    def select_adapter(self, pool: YieldPool) -> Optional[ProtocolAdapter]:
        for adapter in self.adapters:
            if adapter.supports(pool):
                return adapter
        return None

    async def deposit_max(self, pool: YieldPool, chain_id: int, amount_usd: float) -> DepositOutcome:
        """
        Deposits `amount_usd` of the chain's stable asset into `pool`.
        """
        # 1. Chain bindings (configuration errors surface as-is)
        signer = self.chain_engine.get_signer(chain_id)
        asset = self.registry.stable_asset(chain_id)

        # 2. Sizing
        amount = to_minimal_units(amount_usd)
        if amount <= 0:
            raise AmountTooSmall(f"Deposit amount too small: ${amount_usd}")

        # 3. Adapter dispatch
        adapter = self.select_adapter(pool)
        if adapter is None:
            raise NoAdapterSupportsPool(f"No protocol adapter supports {pool.protocol} pool on chain {pool.chain_id}")

        # 4. Validate before touching funds
        try:
            await adapter.validate(signer, pool, asset)
        except ValidationFailed:
            raise
        except Exception as e:
            raise ValidationFailed(adapter.name, str(e) or type(e).__name__) from e

        # 5. Deposit
        self.logger.info(f"⚡ DEPOSIT TRIGGERED: {adapter.name} | {self.registry.name(chain_id)} | ${amount_usd:,.2f}")
        try:
            result = await adapter.deposit(signer, pool, asset, amount)
        except YieldRelayError:
            raise
        except Exception as e:
            self.logger.error(f"❌ DEPOSIT FAILED: {adapter.name} | {e}")
            raise DepositFailed(adapter.name, str(e) or type(e).__name__) from e
        if result.receipt_status != 1:
            self.logger.error(f"❌ DEPOSIT REVERTED: {adapter.name} | tx {result.tx_hash}")
            raise DepositReverted(adapter.name, result.tx_hash)

        self.logger.info(f"✅ DEPOSITED: {adapter.name} | tx {result.tx_hash}")
        return DepositOutcome(adapter_name=adapter.name, tx_hash=result.tx_hash)

    async def is_depositable(self, pool: YieldPool) -> Depositability:
        """
        Pre-flight check: resolves chain bindings and runs the matching adapter's validate.
        Never raises and never moves funds.
        """
        try:
            signer = self.chain_engine.get_signer(pool.chain_id)
            asset = self.registry.stable_asset(pool.chain_id)
        except ConfigurationError as e:
            return Depositability(ok=False, reason=str(e))

        adapter = self.select_adapter(pool)
        if adapter is None:
            return Depositability(ok=False, reason="no adapter supports pool")

        try:
            await adapter.validate(signer, pool, asset)
        except ValidationFailed as e:
            return Depositability(ok=False, adapter=adapter.name, reason=e.reason)
        except Exception as e:
            return Depositability(ok=False, adapter=adapter.name, reason=str(e) or "validate failed")
        return Depositability(ok=True, adapter=adapter.name)

