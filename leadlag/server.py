# leadlag/server.py
import asyncio
import json
import logging
import re
from typing import Optional, Set

from aiohttp import web, WSMsgType

from .engine import CausalityEngine
from .models import now_ms
from .price_tracker import UnknownAssetError
from . import queries


LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_leading_int(raw: str) -> int:
    """
    Leading integer of a query value ("12abc" -> 12, "5.5" -> 5), 0 when there is none.
    """
    m = LEADING_INT.match(raw)
    return int(m.group(1)) if m else 0


class DashboardServer:
    """
    HTTP/websocket front for dashboard clients.
    REST handlers are pure reads over the engine. Websocket clients get one
    initial_state, then batch_update frames on a fixed cadence, never per tick.
    """
    def __init__(self, engine: CausalityEngine, config: dict, logger: logging.Logger, feed=None):
        cfg = config.get('server', {})
        self.engine = engine
        self.feed = feed
        self.logger = logger
        self.host = cfg.get('host', '0.0.0.0')
        self.port = cfg.get('port', 3000)
        self.broadcast_interval = cfg.get('broadcast_interval_ms', 500) / 1000
        self.history_points = cfg.get('history_points', 100)
        self.default_min_samples = config.get('causality', {}).get('min_samples', 10)

        self.clients: Set[web.WebSocketResponse] = set()
        self.app = self.build_app()
        self._runner: Optional[web.AppRunner] = None
        self._broadcast_task: Optional[asyncio.Task] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/ws', self.handle_ws)
        app.router.add_get('/api/market/prices', self.handle_prices)
        app.router.add_get('/api/market/history/{coin}', self.handle_history)
        app.router.add_get('/api/causality/matrix', self.handle_matrix)
        app.router.add_get('/api/causality/best-pairs', self.handle_best_pairs)
        app.router.add_get('/api/export/csv', self.handle_csv)
        app.router.add_get('/api/health', self.handle_health)
        return app

    # --- REST ---

    async def handle_prices(self, request: web.Request) -> web.Response:
        return web.json_response({
            "success": True,
            "timestamp": now_ms(),
            "prices": self.engine.prices(),
            "statistics": self.engine.stats.to_dict(),
        })

    async def handle_history(self, request: web.Request) -> web.Response:
        coin = request.match_info['coin']
        try:
            history = self.engine.history(coin, self.history_points)
        except UnknownAssetError:
            return web.json_response({"success": False, "error": "Coin not found"}, status=404)
        return web.json_response({"success": True, "coin": coin, "history": history})

    async def handle_matrix(self, request: web.Request) -> web.Response:
        return web.json_response({"success": True, **queries.matrix_snapshot(self.engine)})

    async def handle_best_pairs(self, request: web.Request) -> web.Response:
        min_samples = parse_leading_int(request.query.get('minSamples', '')) or self.default_min_samples
        return web.json_response({"success": True, **queries.best_pairs(self.engine, min_samples)})

    async def handle_csv(self, request: web.Request) -> web.Response:
        return web.Response(
            text=queries.export_csv(self.engine),
            content_type='text/csv',
            headers={'Content-Disposition': 'attachment; filename=causality_matrix.csv'},
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(self.health())

    def health(self) -> dict:
        return {
            "status": "running",
            "uptime": self.engine.uptime_ms(),
            "coinsTracked": len(self.engine.assets),
            "totalTicks": self.engine.stats.total_ticks,
            "leaderEvents": len(self.engine.ledger),
            "connectedClients": len(self.clients),
            "coinbaseConnected": bool(self.feed is not None and self.feed.connected),
        }

    # --- WEBSOCKET FAN-OUT ---

    def initial_state(self) -> dict:
        return {
            "type": "initial_state",
            "prices": self.engine.prices(),
            "leaderEvents": [e.to_dict() for e in self.engine.live_events()],
            "statistics": self.engine.stats.to_dict(),
            "coinConfig": list(self.engine.assets),
        }

    async def handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.logger.info("New frontend client connected")
        self.clients.add(ws)
        try:
            await ws.send_json(self.initial_state())
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    self.logger.error(f"Client WebSocket error: {ws.exception()}")
        finally:
            self.clients.discard(ws)
            self.logger.info("Frontend client disconnected")
        return ws

    def build_batch(self) -> Optional[dict]:
        """Pending price updates since the last batch, or None when nothing changed."""
        updates = self.engine.drain_pending_updates()
        if not updates:
            return None
        return {
            "type": "batch_update",
            "updates": updates,
            "timestamp": now_ms(),
            "leaderEvents": len(self.engine.ledger),
        }

    async def broadcast(self, data: dict):
        message = json.dumps(data)
        targets = [ws for ws in self.clients if not ws.closed]
        results = await asyncio.gather(*(ws.send_str(message) for ws in targets), return_exceptions=True)
        for ws, res in zip(targets, results):
            if isinstance(res, Exception):
                self.logger.warning(f"Dropping client after send failure: {res}")
                self.clients.discard(ws)

    async def _broadcast_loop(self):
        while True:
            await asyncio.sleep(self.broadcast_interval)
            # Expire leader events even when no ticks arrive
            self.engine.sweep()
            batch = self.build_batch()
            if batch is not None:
                await self.broadcast(batch)

    # --- LIFECYCLE ---

    async def start(self):
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        self.start_broadcaster()
        self.logger.info(f"🚀 Server running on port {self.port}")

    def start_broadcaster(self):
        self._broadcast_task = asyncio.create_task(self._broadcast_loop())

    async def stop_broadcaster(self):
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None

    async def shutdown(self):
        await self.stop_broadcaster()
        for ws in list(self.clients):
            await ws.close()
        if self._runner:
            await self._runner.cleanup()
