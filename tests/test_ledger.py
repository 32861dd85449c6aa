"""Tests for leader event detection and lag-window pruning."""

import pytest

from leadlag.ledger import LeaderEventLedger
from leadlag.models import Direction

WINDOW = 300_000


@pytest.fixture
def ledger(logger) -> LeaderEventLedger:
    return LeaderEventLedger(logger, move_threshold=2.0, lag_window_ms=WINDOW)


def test_pump_and_dump_events(ledger) -> None:
    pump = ledger.register_if_leader("A", 3.0, 103.0, 0)
    dump = ledger.register_if_leader("B", -2.5, 97.5, 10)

    assert pump.direction is Direction.PUMP
    assert dump.direction is Direction.DUMP
    assert [e.leader for e in ledger.live_events()] == ["A", "B"]


def test_threshold_is_inclusive(ledger) -> None:
    assert ledger.register_if_leader("A", 2.0, 1.0, 0) is not None
    assert ledger.register_if_leader("A", -2.0, 1.0, 0) is not None
    assert ledger.register_if_leader("A", 1.99, 1.0, 0) is None
    assert len(ledger) == 2


def test_event_live_strictly_before_window_end(ledger) -> None:
    t0 = 1_000
    ledger.register_if_leader("A", 3.0, 1.0, t0)

    ledger.register_if_leader("B", 0.0, 1.0, t0 + WINDOW - 1)
    assert len(ledger.live_events()) == 1

    ledger.register_if_leader("B", 0.0, 1.0, t0 + WINDOW)
    assert ledger.live_events() == []


def test_prune_runs_on_non_leader_ticks(ledger) -> None:
    ledger.register_if_leader("A", 5.0, 1.0, 0)
    ledger.register_if_leader("A", 5.0, 1.0, 200_000)

    ledger.register_if_leader("C", 0.01, 1.0, 310_000)

    live = ledger.live_events()
    assert len(live) == 1
    assert live[0].timestamp == 200_000


def test_sweep_expires_during_quiet_period(ledger) -> None:
    ledger.register_if_leader("A", 5.0, 1.0, 0)

    assert ledger.sweep(WINDOW - 1) == 0
    assert ledger.sweep(WINDOW) == 1
    assert len(ledger) == 0


def test_live_events_is_a_copy(ledger) -> None:
    ledger.register_if_leader("A", 5.0, 1.0, 0)

    view = ledger.live_events()
    view.clear()

    assert len(ledger) == 1
