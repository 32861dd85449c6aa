# leadlag/persistence.py
import asyncio
import json
import logging
import os
import time
from typing import Optional

import aiofiles
import aiofiles.os

from .engine import CausalityEngine
from .models import now_ms


class SnapshotWriter:
    """
    Periodic full-state dumps, off the tick path.
    The snapshot is copied synchronously (consistent point in time), then
    serialized and written in the background. I/O errors are logged and the
    next cycle tries again.
    """
    def __init__(self, engine: CausalityEngine, config: dict, logger: logging.Logger):
        cfg = config.get('persistence', {})
        self.engine = engine
        self.logger = logger
        self.data_dir = cfg.get('data_dir', 'data')
        self.interval = cfg.get('save_interval_seconds', 60)
        self.retention_seconds = cfg.get('retention_hours', 24) * 3600
        self.prefix = cfg.get('file_prefix', 'cryptosoup_data_')
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    async def start(self):
        try:
            await aiofiles.os.makedirs(self.data_dir, exist_ok=True)
        except OSError as e:
            self.logger.error(f"Error creating data directory at {self.data_dir}: {e}")
        self._task = asyncio.create_task(self._run_loop())

    async def _run_loop(self):
        while True:
            await asyncio.sleep(self.interval)
            # Shielded so shutdown lets an in-flight write finish
            self._inflight = asyncio.create_task(self.save())
            try:
                await asyncio.shield(self._inflight)
            except Exception as e:
                self.logger.exception(f"Periodic save failed: {e}")

    async def save(self, skip_cleanup: bool = False) -> Optional[str]:
        """
        Writes one snapshot through a temp file and an atomic rename.
        Returns the written path, or None if the write failed.
        """
        payload = {"marketData": self.engine.snapshot(), "timestamp": now_ms()}
        filename = f"{self.prefix}{payload['timestamp']}.json"
        path = os.path.join(self.data_dir, filename)
        tmp_path = f"{path}.tmp"

        try:
            text = await asyncio.to_thread(json.dumps, payload, indent=2)
            async with aiofiles.open(tmp_path, mode='w') as f:
                await f.write(text)
            await aiofiles.os.replace(tmp_path, path)
            self.logger.info(f"💾 Data saved to {filename}")
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"Error saving data: {e}")
            return None

        if not skip_cleanup:
            await self.cleanup()
        return path

    async def cleanup(self) -> int:
        """Deletes .json dumps older than the retention window."""
        removed = 0
        cutoff = time.time() - self.retention_seconds
        try:
            names = await aiofiles.os.listdir(self.data_dir)
        except OSError as e:
            self.logger.warning(f"Retention scan failed: {e}")
            return 0

        for name in names:
            if not name.endswith('.json'):
                continue
            path = os.path.join(self.data_dir, name)
            try:
                st = await aiofiles.os.stat(path)
                if st.st_mtime < cutoff:
                    await aiofiles.os.remove(path)
                    removed += 1
                    self.logger.info(f"Deleted old data file: {name}")
            except OSError as e:
                self.logger.warning(f"Could not expire {name}: {e}")
        return removed

    async def shutdown(self):
        """Stops the periodic loop and writes a final snapshot without cleanup."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._inflight is not None and not self._inflight.done():
            try:
                await self._inflight
            except Exception as e:
                self.logger.exception(f"In-flight save failed: {e}")
        await self.save(skip_cleanup=True)
