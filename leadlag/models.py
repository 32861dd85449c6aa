# leadlag/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List
import time


def now_ms() -> int:
    """Engine clock: receipt time in epoch milliseconds."""
    return int(time.time() * 1000)


class Direction(Enum):
    """
    Sign of a leader move.
    """
    PUMP = "pump"
    DUMP = "dump"


@dataclass(slots=True)
class Tick:
    """
    A single price print for one asset, stamped with receipt time.
    """
    asset: str
    price: float
    timestamp: int


@dataclass(slots=True)
class TickUpdate:
    """
    Output of the price tracker for one tick.
    This is the only thing the ledger and correlator see of a tick.
    """
    asset: str
    price: float
    change: float
    change_percent: float
    timestamp: int


@dataclass(slots=True)
class PriceState:
    price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0
    last_update: int = 0

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "lastUpdate": self.last_update,
        }


@dataclass(slots=True)
class ResponseRecord:
    """How one follower answered a leader event."""
    lag_time: int
    change_percent: float
    magnitude_ratio: float

    def to_dict(self) -> dict:
        return {
            "lagTime": self.lag_time,
            "changePercent": self.change_percent,
            "magnitudeRatio": self.magnitude_ratio,
        }


@dataclass(slots=True)
class LeaderEvent:
    """
    An outsized single-asset move that stays live for the lag window.
    Only `followers_responded` changes after creation.
    """
    timestamp: int
    leader: str
    price: float
    change_percent: float
    direction: Direction
    followers_responded: Dict[str, ResponseRecord] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "leader": self.leader,
            "price": self.price,
            "changePercent": self.change_percent,
            "direction": self.direction.value,
            "followersResponded": {k: v.to_dict() for k, v in self.followers_responded.items()},
        }


@dataclass(slots=True)
class CausalityRelation:
    """
    Statistics for one ordered (leader, follower) pair.
    Lag and magnitude are only recorded on a successful follow, so
    successful_follows + missed_follows >= len(lag_times) == len(magnitude_ratios).
    Means are kept as running sums; the raw lists are retained for export.
    """
    lag_times: List[int] = field(default_factory=list)
    magnitude_ratios: List[float] = field(default_factory=list)
    successful_follows: int = 0
    missed_follows: int = 0
    lag_sum: float = 0.0
    magnitude_sum: float = 0.0

    @property
    def total(self) -> int:
        return self.successful_follows + self.missed_follows

    @property
    def sample_size(self) -> int:
        return len(self.lag_times)

    @property
    def avg_lag(self) -> float:
        return self.lag_sum / len(self.lag_times) if self.lag_times else 0.0

    @property
    def avg_magnitude(self) -> float:
        return self.magnitude_sum / len(self.magnitude_ratios) if self.magnitude_ratios else 0.0

    @property
    def follow_rate(self) -> float:
        total = self.total
        return self.successful_follows / total if total > 0 else 0.0

    def record_follow(self, lag: int, magnitude_ratio: float):
        self.lag_times.append(lag)
        self.magnitude_ratios.append(magnitude_ratio)
        self.lag_sum += lag
        self.magnitude_sum += magnitude_ratio
        self.successful_follows += 1

    def record_miss(self):
        self.missed_follows += 1

    def to_dict(self) -> dict:
        return {
            "lagTimes": list(self.lag_times),
            "magnitudeRatios": list(self.magnitude_ratios),
            "successfulFollows": self.successful_follows,
            "missedFollows": self.missed_follows,
            "avgLag": self.avg_lag,
            "avgMagnitude": self.avg_magnitude,
            "followRate": self.follow_rate,
        }


@dataclass(slots=True)
class Statistics:
    """Process-lifetime counters, reset only on restart."""
    total_ticks: int = 0
    divergence_events: int = 0
    start_time: int = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "totalTicks": self.total_ticks,
            "divergenceEvents": self.divergence_events,
            "startTime": self.start_time,
        }
