# leadlag/feed.py
import asyncio
import aiohttp
import json
import logging
from typing import Awaitable, Callable, List, Optional
from .models import Tick, now_ms

COINBASE_WS_URL = "wss://ws-feed.exchange.coinbase.com"


class ExchangeStream:
    def __init__(self, symbols: List[str], callback: Callable[[Tick], Awaitable[None]], logger: logging.Logger):
        self.symbols = symbols
        self.callback = callback
        self.logger = logger
        self.ws = None

    async def connect(self, session: aiohttp.ClientSession):
        raise NotImplementedError


def parse_coinbase_message(raw: str) -> Optional[Tick]:
    """
    Turns a Coinbase ticker frame into a Tick stamped with receipt time.
    Returns None for non-ticker frames (subscriptions, heartbeats).
    Raises ValueError for payloads that cannot be parsed.
    """
    data = json.loads(raw)
    if not isinstance(data, dict) or data.get('type') != 'ticker':
        return None
    try:
        return Tick(asset=data['product_id'], price=float(data['price']), timestamp=now_ms())
    except (KeyError, TypeError) as e:
        raise ValueError(f"bad ticker payload: {e}") from e


class CoinbaseStream(ExchangeStream):
    def __init__(self, symbols, callback, logger, url: str = COINBASE_WS_URL):
        super().__init__(symbols, callback, logger)
        self.url = url

    async def connect(self, session: aiohttp.ClientSession):
        # Coinbase product ids are used as-is: BTC-USD, ETH-USD
        async with session.ws_connect(self.url, heartbeat=30) as ws:
            self.ws = ws
            await ws.send_json({
                "type": "subscribe",
                "product_ids": self.symbols,
                "channels": ["ticker"],
            })
            self.logger.info(f"✅ Connected to Coinbase, subscribed to {len(self.symbols)} products")

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        tick = parse_coinbase_message(msg.data)
                    except ValueError as e:
                        # json.JSONDecodeError is a ValueError too
                        self.logger.error(f"Error parsing feed message: {e}")
                        continue
                    if tick is not None:
                        await self.callback(tick)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    break
            self.ws = None

    @property
    def connected(self) -> bool:
        return self.ws is not None and not self.ws.closed


class FeedEngine:
    """
    Keeps the upstream stream alive with a fixed-delay reconnect loop.
    A disconnect never touches engine state.
    """
    def __init__(self, coins: List[str], callback: Callable[[Tick], Awaitable[None]], config: dict, logger: logging.Logger):
        cfg = config.get('feed', {})
        self.coins = coins
        self.logger = logger
        self.reconnect_delay = cfg.get('reconnect_delay_seconds', 3)
        self.stream = CoinbaseStream(coins, callback, logger, cfg.get('url', COINBASE_WS_URL))
        self.running = False
        self._session: Optional[aiohttp.ClientSession] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.stream.connected

    async def start(self):
        self.running = True
        self._session = aiohttp.ClientSession()
        self.logger.info(f"🔌 CONNECTING FEED FOR {len(self.coins)} COINS...")
        self.task = asyncio.create_task(self._run_stream_forever())

    async def _run_stream_forever(self):
        while self.running:
            try:
                await self.stream.connect(self._session)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"WS Error: {e}")
            self.stream.ws = None
            if self.running:
                self.logger.warning(f"Feed disconnected, reconnecting in {self.reconnect_delay}s...")
                await asyncio.sleep(self.reconnect_delay)

    async def shutdown(self):
        """Cancels the stream task, including a pending reconnect sleep."""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        if self._session:
            await self._session.close()
