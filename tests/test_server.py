"""Tests for the REST and websocket surface."""

import asyncio

import pytest

from conftest import feed
from leadlag.models import now_ms
from leadlag.server import DashboardServer, parse_leading_int


@pytest.fixture
def server(scenario_engine, config, logger) -> DashboardServer:
    return DashboardServer(scenario_engine, config, logger)


@pytest.mark.asyncio
async def test_prices_endpoint(aiohttp_client, server) -> None:
    client = await aiohttp_client(server.app)

    resp = await client.get("/api/market/prices")
    body = await resp.json()

    assert resp.status == 200
    assert body["success"] is True
    assert body["prices"]["A"]["price"] == 103.0
    assert body["statistics"]["totalTicks"] == 6


@pytest.mark.asyncio
async def test_history_endpoint_and_unknown_coin(aiohttp_client, server) -> None:
    client = await aiohttp_client(server.app)

    resp = await client.get("/api/market/history/A")
    assert resp.status == 200
    assert (await resp.json())["history"] == [100.0, 103.0]

    resp = await client.get("/api/market/history/NOPE")
    assert resp.status == 404
    assert (await resp.json()) == {"success": False, "error": "Coin not found"}


@pytest.mark.asyncio
async def test_matrix_and_best_pairs(aiohttp_client, server) -> None:
    client = await aiohttp_client(server.app)

    matrix = await (await client.get("/api/causality/matrix")).json()
    assert matrix["matrix"]["A"]["B"]["sampleSize"] == 1

    default = await (await client.get("/api/causality/best-pairs")).json()
    assert default["pairs"] == []

    relaxed = await (await client.get("/api/causality/best-pairs?minSamples=1")).json()
    assert [(p["leader"], p["follower"]) for p in relaxed["pairs"]] == [("A", "B")]

    garbage = await (await client.get("/api/causality/best-pairs?minSamples=abc")).json()
    assert garbage["pairs"] == []


@pytest.mark.asyncio
async def test_csv_download(aiohttp_client, server) -> None:
    client = await aiohttp_client(server.app)

    resp = await client.get("/api/export/csv")
    text = await resp.text()

    assert resp.status == 200
    assert resp.content_type == "text/csv"
    assert "causality_matrix.csv" in resp.headers["Content-Disposition"]
    assert text.splitlines()[1] == "A,B,1,0,1.000,100,0.200,1"


@pytest.mark.asyncio
async def test_health(aiohttp_client, server) -> None:
    client = await aiohttp_client(server.app)

    body = await (await client.get("/api/health")).json()

    assert body["status"] == "running"
    assert body["coinsTracked"] == 3
    assert body["totalTicks"] == 6
    assert body["leaderEvents"] == 1
    assert body["connectedClients"] == 0
    assert body["coinbaseConnected"] is False


@pytest.mark.asyncio
async def test_websocket_initial_state(aiohttp_client, server) -> None:
    client = await aiohttp_client(server.app)

    ws = await client.ws_connect("/ws")
    msg = await ws.receive_json()

    assert msg["type"] == "initial_state"
    assert msg["coinConfig"] == ["A", "B", "C"]
    assert msg["leaderEvents"][0]["leader"] == "A"
    assert msg["statistics"]["divergenceEvents"] == 1
    assert len(server.clients) == 1
    await ws.close()


def test_batch_update_only_when_prices_changed(server) -> None:
    batch = server.build_batch()

    assert batch["type"] == "batch_update"
    assert set(batch["updates"]) == {"A", "B", "C"}
    assert batch["leaderEvents"] == 1
    assert server.build_batch() is None


@pytest.mark.parametrize("raw, expected", [
    ("12abc", 12),
    ("5.5", 5),
    (" 7", 7),
    ("-3", -3),
    ("abc", 0),
    ("", 0),
])
def test_parse_leading_int(raw, expected) -> None:
    assert parse_leading_int(raw) == expected


@pytest.mark.asyncio
async def test_best_pairs_uses_leading_integer(aiohttp_client, server) -> None:
    client = await aiohttp_client(server.app)

    body = await (await client.get("/api/causality/best-pairs?minSamples=1.9")).json()

    assert [(p["leader"], p["follower"]) for p in body["pairs"]] == [("A", "B")]


@pytest.fixture
def fast_server(engine, config, logger) -> DashboardServer:
    config = {**config, "server": {"broadcast_interval_ms": 20, "host": "127.0.0.1", "port": 0}}
    return DashboardServer(engine, config, logger)


@pytest.mark.asyncio
async def test_broadcast_loop_sends_one_batch_per_change(aiohttp_client, fast_server) -> None:
    engine = fast_server.engine
    stale = now_ms() - 400_000
    feed(engine, "A", 100.0, stale)
    feed(engine, "A", 103.0, stale)

    client = await aiohttp_client(fast_server.app)
    ws = await client.ws_connect("/ws")
    initial = await ws.receive_json(timeout=1)
    assert initial["type"] == "initial_state"
    assert len(initial["leaderEvents"]) == 1

    fast_server.start_broadcaster()
    try:
        first = await ws.receive_json(timeout=1)
        assert first["type"] == "batch_update"
        assert set(first["updates"]) == {"A"}
        # the quiet-period sweep expired the stale leader event
        assert first["leaderEvents"] == 0

        # several idle intervals; an empty batch would arrive before the next one
        await asyncio.sleep(0.15)

        feed(engine, "B", 50.0, now_ms())
        second = await ws.receive_json(timeout=1)
        assert second["type"] == "batch_update"
        assert set(second["updates"]) == {"B"}
    finally:
        await fast_server.stop_broadcaster()
        await ws.close()

    assert fast_server._broadcast_task is None


@pytest.mark.asyncio
async def test_start_and_shutdown_manage_broadcaster(fast_server) -> None:
    await fast_server.start()
    task = fast_server._broadcast_task
    assert task is not None and not task.done()

    await fast_server.shutdown()

    assert task.done()
    assert fast_server._broadcast_task is None
