# leadlag/price_tracker.py
from collections import deque
from typing import Deque, Dict, List, Iterable
import logging
import math

from .models import PriceState, TickUpdate


class UnknownAssetError(KeyError):
    """Raised for an asset outside the configured universe."""


class MalformedTickError(ValueError):
    """Raised for a tick whose price is missing, non-numeric or non-positive."""


class PriceStateTracker:
    """
    Holds the latest PriceState and a bounded price history per asset.
    The universe is fixed at construction; nothing is allocated for unknown assets.
    """
    def __init__(self, assets: Iterable[str], logger: logging.Logger, history_capacity: int = 1000):
        self.logger = logger
        self.history_capacity = history_capacity
        self.states: Dict[str, PriceState] = {}
        self.histories: Dict[str, Deque[float]] = {}
        for a in assets:
            self.states[a] = PriceState()
            self.histories[a] = deque(maxlen=history_capacity)

    def __contains__(self, asset: str) -> bool:
        return asset in self.states

    @property
    def assets(self) -> List[str]:
        return list(self.states.keys())

    def ingest_tick(self, asset: str, price: float, timestamp: int) -> TickUpdate:
        """
        Overwrites the asset's PriceState and appends to its history.
        Out-of-order timestamps are accepted as-is.
        """
        if asset not in self.states:
            raise UnknownAssetError(asset)
        if isinstance(price, bool) or not isinstance(price, (int, float)) or math.isnan(price) or math.isinf(price) or price <= 0:
            raise MalformedTickError(f"invalid price for {asset}: {price!r}")

        state = self.states[asset]
        # First tick has no previous price: treat it as unchanged
        previous = state.price or price
        change = price - previous
        change_percent = (change / previous) * 100 if previous > 0 else 0.0

        state.price = price
        state.change = change
        state.change_percent = change_percent
        state.last_update = timestamp

        # deque(maxlen) drops the oldest entry on overflow
        self.histories[asset].append(price)

        return TickUpdate(asset, price, change, change_percent, timestamp)

    def history(self, asset: str, limit: int = 100) -> List[float]:
        if asset not in self.histories:
            raise UnknownAssetError(asset)
        h = self.histories[asset]
        if limit <= 0:
            return []
        return list(h)[-limit:]

    def prices_snapshot(self) -> Dict[str, dict]:
        return {a: s.to_dict() for a, s in self.states.items()}

    def history_snapshot(self) -> Dict[str, List[float]]:
        return {a: list(h) for a, h in self.histories.items()}
