# leadlag/ledger.py
from typing import List, Optional
import logging

from .models import Direction, LeaderEvent


class LeaderEventLedger:
    """
    Keeps the leader events that are still inside the lag window.
    Expiry is lazy: the set is pruned against the clock of each arriving tick
    (and optionally by a background sweep), never on its own timer.
    """
    def __init__(self, logger: logging.Logger, move_threshold: float = 2.0, lag_window_ms: int = 300_000):
        self.logger = logger
        self.move_threshold = move_threshold
        self.lag_window_ms = lag_window_ms
        self._events: List[LeaderEvent] = []

    def register_if_leader(self, asset: str, change_percent: float, price: float, timestamp: int) -> Optional[LeaderEvent]:
        """
        Records a new leader event when the move clears the threshold,
        then prunes expired events. Pruning runs on every call.
        """
        event = None
        if abs(change_percent) >= self.move_threshold:
            direction = Direction.PUMP if change_percent > 0 else Direction.DUMP
            event = LeaderEvent(
                timestamp=timestamp,
                leader=asset,
                price=price,
                change_percent=change_percent,
                direction=direction,
            )
            self._events.append(event)
            self.logger.info(f"🚨 {asset} {direction.value.upper()}: {change_percent:.2f}%")

        self.prune(timestamp)
        return event

    def prune(self, now: int) -> int:
        """Drops events with now - timestamp >= lag window. Returns how many were dropped."""
        before = len(self._events)
        self._events = [e for e in self._events if now - e.timestamp < self.lag_window_ms]
        return before - len(self._events)

    def sweep(self, now: int) -> int:
        """Background variant of prune for quiet periods between ticks."""
        dropped = self.prune(now)
        if dropped:
            self.logger.debug(f"Swept {dropped} expired leader events")
        return dropped

    def live_events(self) -> List[LeaderEvent]:
        """Insertion-ordered view of the live set."""
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
