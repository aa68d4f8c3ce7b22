# yieldrelay/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from typing import List, Any, Optional

AUDIT_HEADER = ["timestamp", "workflow_id", "stage", "from_chain", "to_chain", "amount_usd", "tx_hash", "detail"]


class AsyncAuditLogger:
    """
    Non-blocking audit trail for fund movements.
    Every stage of a rebalance workflow is queued here and written to CSV by a
    background task, so disk I/O never stalls a bridge poll or a deposit.
    """
    def __init__(self, filepath: str):
        self.filepath = filepath
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None

    async def start(self):
        """
        Creates the directory and the file (with header) if missing, then starts the writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(self.filepath):
            async with aiofiles.open(self.filepath, mode='w', newline='') as f:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(AUDIT_HEADER)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_event(self, row: List[Any]):
        """
        Queues one audit row. Returns immediately.
        """
        await self._queue.put(row)

    async def stop(self):
        """Flushes pending rows and stops the writer."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except Exception as e:
                # A lost audit row is reported, never allowed to stall a transfer
                stage = row[2] if len(row) > 2 else "?"
                print(f"⚠️  AUDIT WRITE FAILED [{stage}]: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()


# Chatty client libraries stay at WARNING unless we are debugging ourselves
NOISY_LIBRARIES = ("web3", "urllib3", "aiohttp", "asyncio")


def setup_console_logger(name: str, level: str):
    """
    Console logger shared by every engine. Workflow lines carry the emoji stage
    markers; RPC and HTTP client chatter is kept out unless level is DEBUG.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for lib in NOISY_LIBRARIES:
        logging.getLogger(lib).setLevel(logging.DEBUG if logger.level <= logging.DEBUG else logging.WARNING)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
