"""Shared test fixtures."""

import logging

import pytest

from leadlag.engine import CausalityEngine
from leadlag.models import Tick

ASSETS = ["A", "B", "C"]


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("leadlag.tests")


@pytest.fixture
def config() -> dict:
    return {
        "causality": {
            "move_threshold": 2.0,
            "follow_threshold": 0.005,
            "lag_window_ms": 300_000,
            "history_capacity": 1000,
            "min_samples": 10,
        },
        "server": {"broadcast_interval_ms": 500, "history_points": 100},
    }


@pytest.fixture
def engine(config, logger) -> CausalityEngine:
    return CausalityEngine(ASSETS, config, logger)


def feed(engine: CausalityEngine, asset: str, price: float, t: int):
    return engine.process_tick(Tick(asset=asset, price=price, timestamp=t))


@pytest.fixture
def scenario_engine(engine) -> CausalityEngine:
    """A pumps 3% at t=0, B follows +0.6% at 100ms, C diverges -0.6% at 200ms."""
    feed(engine, "A", 100.0, 0)
    feed(engine, "B", 100.0, 0)
    feed(engine, "C", 100.0, 0)
    feed(engine, "A", 103.0, 0)
    feed(engine, "B", 100.6, 100)
    feed(engine, "C", 99.4, 200)
    return engine
