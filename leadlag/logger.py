# leadlag/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from datetime import datetime, timezone

from .models import LeaderEvent

AUDIT_HEADER = ["time", "leader", "direction", "change_percent", "price"]


class AsyncAuditLogger:
    """
    Non-blocking CSV trail of leader events.
    The tick pipeline only enqueues rows; a background task does the disk I/O.
    """
    def __init__(self, filepath: str):
        self.filepath = filepath
        self._queue = asyncio.Queue()
        self._worker_task = None

    async def start(self):
        """
        Creates the file (with header) if missing and starts the background writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0:
            async with aiofiles.open(self.filepath, mode='w', newline='') as f:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(AUDIT_HEADER)

        self._worker_task = asyncio.create_task(self._writer_worker())

    def record_event(self, event: LeaderEvent):
        """
        Called from the synchronous tick path, so it must never await.
        """
        ts = datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc).isoformat()
        self._queue.put_nowait([
            ts,
            event.leader,
            event.direction.value,
            f"{event.change_percent:.4f}",
            f"{event.price}",
        ])

    async def _writer_worker(self):
        """
        Background consumer that writes to disk.
        """
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except Exception as e:
                # Disk trouble must not reach the tick pipeline
                print(f"AUDIT LOGGING FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()

    async def shutdown(self):
        """Flushes queued rows, then stops the writer."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None


def setup_console_logger(name: str, level: str):
    """
    Sets up the standard Python logger for console output.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
