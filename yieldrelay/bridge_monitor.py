# yieldrelay/bridge_monitor.py
import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Sequence

from .errors import BridgeFailed, BridgeTimeout
from .models import MonitorResult, MonitorState, StatusType, TransferHandle, TransferStatus


def format_elapsed(seconds: float) -> str:
    seconds = int(seconds)
    minutes, rest = divmod(seconds, 60)
    if minutes > 0:
        return f"{minutes}m {rest}s"
    return f"{seconds}s"


class BridgeExecutionMonitor:
    """
    Follows a submitted transfer until it reaches a terminal state.

    SUBMITTED -> POLLING on the first poll. DONE ends with success, FAILED ends
    immediately with BridgeFailed, and running out of attempts ends with
    BridgeTimeout. Anything else, a failed poll included, just means "poll again".

    The monitor itself holds configuration only; every call keeps its own
    state, so one instance can watch many transfers concurrently.
    """
    def __init__(self, client, config: dict, logger: logging.Logger):
        cfg = config['monitor']
        self.client = client
        self.poll_interval = float(cfg.get('poll_interval_seconds', 5))
        self.max_wait_seconds = float(cfg.get('max_wait_seconds', 300))
        self.logger = logger

    def max_attempts(self, max_wait_seconds: float) -> int:
        # Always look at least once, even for a budget shorter than one interval
        return max(1, int(max_wait_seconds // self.poll_interval))

    async def wait_for_completion(self, transfer: TransferHandle, max_wait_seconds: Optional[float] = None,
                                  on_status_update: Optional[Callable[[TransferStatus], None]] = None) -> MonitorResult:
        budget = self.max_wait_seconds if max_wait_seconds is None else max_wait_seconds
        max_attempts = self.max_attempts(budget)

        state = MonitorState.SUBMITTED
        transitions = [state]
        last_status: Optional[TransferStatus] = None
        started = time.monotonic()

        self.logger.info(
            f"👀 MONITORING: {transfer.tx_hash[:12]}... | chain {transfer.from_chain} -> {transfer.to_chain} | "
            f"{max_attempts} polls every {self.poll_interval:g}s"
        )

        def _result(final_state: MonitorState, attempts: int) -> MonitorResult:
            if transitions[-1] is not final_state:
                transitions.append(final_state)
            return MonitorResult(
                success=final_state is MonitorState.DONE,
                state=final_state,
                final_status=last_status,
                attempts=attempts,
                elapsed_seconds=time.monotonic() - started,
                transitions=list(transitions),
            )

        for attempt in range(1, max_attempts + 1):
            if state is MonitorState.SUBMITTED:
                state = MonitorState.POLLING
                transitions.append(state)

            status = None
            try:
                status = await self.client.get_status(
                    transfer.tx_hash, transfer.from_chain, transfer.to_chain, transfer.bridge
                )
            except Exception as e:
                self.logger.warning(f"   Poll {attempt}/{max_attempts} error (retrying): {e}")

            if status is not None:
                if last_status is None or status.status is not last_status.status:
                    sub = f" ({status.substatus})" if status.substatus else ""
                    self.logger.info(f"   Status: {status.status.value}{sub}")
                last_status = status
                if on_status_update:
                    on_status_update(status)

                if status.status is StatusType.DONE:
                    result = _result(MonitorState.DONE, attempt)
                    self.logger.info(
                        f"✅ BRIDGED in {format_elapsed(result.elapsed_seconds)} | "
                        f"receiving tx {status.receiving_tx_hash or '-'}"
                    )
                    return result

                if status.status is StatusType.FAILED:
                    result = _result(MonitorState.FAILED, attempt)
                    self.logger.error(f"❌ BRIDGE FAILED: {status.error or status.substatus or 'Unknown error'}")
                    raise BridgeFailed(result)

            if attempt < max_attempts:
                await asyncio.sleep(self.poll_interval)

        result = _result(MonitorState.TIMED_OUT, max_attempts)
        self.logger.error(
            f"⏰ BRIDGE TIMEOUT after {format_elapsed(result.elapsed_seconds)} | "
            f"last status {last_status.status.value if last_status else 'UNKNOWN'}"
        )
        raise BridgeTimeout(result)

    async def monitor_many(self, transfers: Sequence[TransferHandle],
                           max_wait_seconds: Optional[float] = None) -> Dict[str, MonitorResult]:
        """
        Watches several independent transfers at once. Returns one result per tx hash;
        failures and timeouts are reported in the result instead of raised.
        """
        futures = [self.wait_for_completion(t, max_wait_seconds) for t in transfers]
        results = await asyncio.gather(*futures, return_exceptions=True)

        out: Dict[str, MonitorResult] = {}
        for transfer, res in zip(transfers, results):
            if isinstance(res, (BridgeFailed, BridgeTimeout)):
                out[transfer.tx_hash] = res.result
            elif isinstance(res, Exception):
                self.logger.error(f"Monitor for {transfer.tx_hash} crashed: {res}")
                out[transfer.tx_hash] = MonitorResult(
                    success=False,
                    state=MonitorState.FAILED,
                    final_status=TransferStatus(status=StatusType.FAILED, error=str(res)),
                    attempts=0,
                    elapsed_seconds=0.0,
                )
            else:
                out[transfer.tx_hash] = res
        return out
