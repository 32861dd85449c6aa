# leadlag/engine.py
import asyncio
import logging
from typing import Dict, List, Optional

from .correlator import CausalityCorrelator
from .ledger import LeaderEventLedger
from .matrix import CausalityMatrix
from .models import LeaderEvent, Statistics, Tick, TickUpdate, now_ms
from .price_tracker import MalformedTickError, PriceStateTracker, UnknownAssetError


class CausalityEngine:
    """
    Owns all engine state for a fixed asset universe and runs the tick pipeline:
    price tracker -> leader ledger -> correlator.

    Single writer: ticks submitted from any coroutine are queued and drained by
    one worker task. process_tick never awaits, so readers on the same loop
    always see the state between two ticks.
    """
    def __init__(self, assets: List[str], config: dict, logger: logging.Logger, audit_logger=None):
        cfg = config.get('causality', {})
        self.assets = list(assets)
        self.logger = logger
        self.audit_logger = audit_logger

        self.move_threshold = cfg.get('move_threshold', 2.0)
        self.follow_threshold = cfg.get('follow_threshold', 0.005)
        self.lag_window_ms = cfg.get('lag_window_ms', 300_000)
        self.history_capacity = cfg.get('history_capacity', 1000)

        self.stats = Statistics()
        self.tracker = PriceStateTracker(self.assets, logger, self.history_capacity)
        self.ledger = LeaderEventLedger(logger, self.move_threshold, self.lag_window_ms)
        self.matrix = CausalityMatrix(self.assets)
        self.correlator = CausalityCorrelator(
            self.matrix, self.stats, logger, self.follow_threshold, self.lag_window_ms
        )

        # Assets changed since the last broadcast batch
        self.pending_updates: Dict[str, dict] = {}

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self.accepting = False

    # --- WRITE PATH ---

    def process_tick(self, tick: Tick) -> Optional[TickUpdate]:
        """
        Runs one tick through the pipeline. Returns None when the tick is dropped.
        Dropped ticks leave state and counters untouched.
        """
        try:
            update = self.tracker.ingest_tick(tick.asset, tick.price, tick.timestamp)
        except UnknownAssetError:
            self.logger.debug(f"Dropped tick for untracked asset {tick.asset}")
            return None
        except MalformedTickError as e:
            self.logger.error(f"Dropped malformed tick: {e}")
            return None

        event = self.ledger.register_if_leader(
            update.asset, update.change_percent, update.price, update.timestamp
        )
        if event is not None and self.audit_logger is not None:
            self.audit_logger.record_event(event)

        self.correlator.correlate(
            update.asset, update.change_percent, update.timestamp, self.ledger.live_events()
        )

        self.stats.total_ticks += 1
        self.pending_updates[update.asset] = self.tracker.states[update.asset].to_dict()
        return update

    async def submit(self, tick: Tick):
        """Feed callback. Non-blocking hand-off to the single worker."""
        if not self.accepting:
            return
        await self._queue.put(tick)

    async def start(self):
        self.accepting = True
        self._worker_task = asyncio.create_task(self._tick_worker())

    async def _tick_worker(self):
        while True:
            tick = await self._queue.get()
            try:
                self.process_tick(tick)
            except Exception as e:
                self.logger.exception(f"Tick processing failed for {tick!r}: {e}")
            finally:
                self._queue.task_done()

    async def shutdown(self):
        """Stops new ingestion, drains what is already queued, then stops the worker."""
        self.accepting = False
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None

    def sweep(self, now: Optional[int] = None) -> int:
        """
        Prunes expired leader events between ticks. Skipped while ticks are
        queued: they were stamped earlier and must still see the events that
        were live at their own timestamp.
        """
        if not self._queue.empty():
            return 0
        return self.ledger.sweep(now if now is not None else now_ms())

    def drain_pending_updates(self) -> Dict[str, dict]:
        updates = self.pending_updates
        self.pending_updates = {}
        return updates

    # --- READ PATH ---

    def live_events(self) -> List[LeaderEvent]:
        return self.ledger.live_events()

    def history(self, asset: str, limit: int = 100) -> List[float]:
        return self.tracker.history(asset, limit)

    def prices(self) -> Dict[str, dict]:
        return self.tracker.prices_snapshot()

    def uptime_ms(self) -> int:
        return now_ms() - self.stats.start_time

    def snapshot(self) -> dict:
        """Serializable copy of the full engine state."""
        return {
            "prices": self.tracker.prices_snapshot(),
            "priceHistory": self.tracker.history_snapshot(),
            "leaderEvents": [e.to_dict() for e in self.ledger.live_events()],
            "causalityMatrix": self.matrix.to_dict(),
            "statistics": self.stats.to_dict(),
            "coinConfig": list(self.assets),
        }
