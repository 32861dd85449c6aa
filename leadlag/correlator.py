# leadlag/correlator.py
from typing import Iterable
import logging

from .matrix import CausalityMatrix
from .models import LeaderEvent, ResponseRecord, Statistics


class CausalityCorrelator:
    """
    Matches each tick against every live leader event and updates the matrix.
    The only writer of CausalityMatrix and of the divergence counter.

    A follower tick is scored against each live event independently, so two
    live events from the same leader both get credited, and a follower that
    moves again inside the window is credited again.
    """
    def __init__(self, matrix: CausalityMatrix, stats: Statistics, logger: logging.Logger,
                 follow_threshold: float = 0.005, lag_window_ms: int = 300_000):
        self.matrix = matrix
        self.stats = stats
        self.logger = logger
        self.follow_threshold = follow_threshold
        self.lag_window_ms = lag_window_ms

    def correlate(self, follower: str, change_percent: float, timestamp: int, live_events: Iterable[LeaderEvent]):
        # Follower noise floor is far below the leader threshold
        if abs(change_percent) < self.follow_threshold:
            return

        for event in live_events:
            if event.leader == follower:
                continue

            lag = timestamp - event.timestamp
            if lag >= self.lag_window_ms:
                continue

            rel = self.matrix.relation(event.leader, follower)
            same_direction = (change_percent > 0 and event.change_percent > 0) or \
                             (change_percent < 0 and event.change_percent < 0)

            if same_direction:
                magnitude_ratio = abs(change_percent / event.change_percent)
                rel.record_follow(lag, magnitude_ratio)
                event.followers_responded[follower] = ResponseRecord(
                    lag_time=lag,
                    change_percent=change_percent,
                    magnitude_ratio=magnitude_ratio,
                )
            else:
                rel.record_miss()
                self.stats.divergence_events += 1
