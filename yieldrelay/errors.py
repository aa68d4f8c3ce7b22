# yieldrelay/errors.py
from typing import Optional

from .models import MonitorResult, TransferStatus


class YieldRelayError(Exception):
    """Base class for every failure raised by the rebalancing core."""


# --- Configuration (fatal to the workflow, never retried) ---

class ConfigurationError(YieldRelayError):
    pass


class NoSignerConfigured(ConfigurationError):
    def __init__(self, chain_id: int, detail: str):
        super().__init__(f"No signer for chain {chain_id}: {detail}")
        self.chain_id = chain_id


class NoAssetMapping(ConfigurationError):
    def __init__(self, chain_id: int):
        super().__init__(f"No stable asset mapping for chain {chain_id}")
        self.chain_id = chain_id


# --- Routing ---

class NoRouteFound(YieldRelayError):
    """The routing service answered but had nothing to offer. Recoverable."""


class RouteServiceError(YieldRelayError):
    """Transport or service failure while quoting. The original exception is kept as __cause__."""


class RouteExecutionError(YieldRelayError):
    """Submitting a route failed. Never retried automatically."""


# --- Bridge monitoring ---

class TransientStatusError(YieldRelayError):
    """A single status poll could not reach the status service."""


class BridgeFailed(YieldRelayError):
    def __init__(self, result: MonitorResult):
        status = result.final_status
        detail = (status.error or status.substatus) if status else None
        super().__init__(f"Bridge failed: {detail or 'Unknown error'}")
        self.result = result

    @property
    def status(self) -> Optional[TransferStatus]:
        return self.result.final_status


class BridgeTimeout(YieldRelayError):
    def __init__(self, result: MonitorResult):
        last = result.final_status.status.value if result.final_status else "UNKNOWN"
        super().__init__(
            f"Bridge timeout after {result.elapsed_seconds:.1f}s "
            f"({result.attempts} polls, last status {last})"
        )
        self.result = result
        self.elapsed_seconds = result.elapsed_seconds
        self.last_status = result.final_status


# --- Deposit execution ---

class ExecutionError(YieldRelayError):
    pass


class AmountTooSmall(ExecutionError):
    pass


class NoAdapterSupportsPool(ExecutionError):
    pass


class ValidationFailed(ExecutionError):
    def __init__(self, adapter: str, reason: str):
        super().__init__(f"{adapter} validation failed: {reason}")
        self.adapter = adapter
        self.reason = reason


class DepositReverted(ExecutionError):
    def __init__(self, adapter: str, tx_hash: Optional[str]):
        super().__init__(f"{adapter} transaction reverted (tx {tx_hash})")
        self.adapter = adapter
        self.tx_hash = tx_hash


class DepositFailed(ExecutionError):
    """The deposit call itself raised (RPC error, revert on simulation, receipt timeout)."""
    def __init__(self, adapter: str, reason: str):
        super().__init__(f"{adapter} deposit failed: {reason}")
        self.adapter = adapter
        self.reason = reason
