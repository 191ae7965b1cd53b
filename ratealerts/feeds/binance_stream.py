"""Binance websocket ticker stream.

Usage:
    stream = BinanceQuoteStream()
    connection = await stream.connect([Subject.crypto("BTC")])
    async for quote in connection.ticks():
        ...
    await connection.close()
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional

import websockets

from ratealerts.errors import NetworkError
from ratealerts.feeds.base import BaseQuoteConnection, BaseQuoteStream, Quote
from ratealerts.feeds.rest import binance_symbol
from ratealerts.models import Subject

logger = logging.getLogger(__name__)

BINANCE_WS_URL = "wss://stream.binance.com:9443/stream"


class BinanceQuoteConnection(BaseQuoteConnection):
    """An open combined-stream connection."""

    def __init__(self, ws, symbols: dict[str, Subject], recv_timeout: float = 30.0):
        self._ws = ws
        self._symbols = symbols
        self._recv_timeout = recv_timeout

    async def ticks(self) -> AsyncIterator[Quote]:
        while True:
            try:
                message = await asyncio.wait_for(self._ws.recv(), timeout=self._recv_timeout)
            except asyncio.TimeoutError:
                # Keep the connection alive through quiet periods
                try:
                    await self._ws.ping()
                except websockets.ConnectionClosed as e:
                    raise NetworkError(f"Binance stream closed: {e}") from e
                continue
            except websockets.ConnectionClosed as e:
                raise NetworkError(f"Binance stream closed: {e}") from e

            quote = self.parse_message(message)
            if quote is not None:
                yield quote

    def parse_message(self, message) -> Optional[Quote]:
        """Parse a combined-stream ticker message.

        Expected shape: ``{"stream": "btcusdt@ticker", "data": {"s": "BTCUSDT",
        "c": "43000.10", "E": 1700000000000, ...}}``. Anything else is
        ignored.
        """
        try:
            data = json.loads(message)["data"]
            subject = self._symbols.get(data["s"].upper())
            if subject is None:
                return None
            return Quote(
                subject=subject,
                price=float(data["c"]),
                timestamp=datetime.fromtimestamp(data["E"] / 1000),
            )
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, ValueError):
            logger.debug("Ignoring unparseable stream message: %.200s", message)
            return None

    async def close(self) -> None:
        try:
            await self._ws.close()
        except websockets.WebSocketException as e:
            logger.debug("Error while closing Binance stream: %s", e)


class BinanceQuoteStream(BaseQuoteStream):
    """Binance 24h ticker stream for crypto subjects quoted in USD."""

    def __init__(self, url: str = BINANCE_WS_URL, recv_timeout: float = 30.0):
        self.url = url
        self.recv_timeout = recv_timeout

    def supports(self, subject: Subject) -> bool:
        return binance_symbol(subject) is not None

    def stream_url(self, subjects: Iterable[Subject]) -> str:
        symbols = sorted(binance_symbol(s) for s in subjects if self.supports(s))
        streams = "/".join(f"{symbol.lower()}@ticker" for symbol in symbols)
        return f"{self.url}?streams={streams}"

    async def connect(self, subjects: Iterable[Subject]) -> BinanceQuoteConnection:
        subjects = [s for s in subjects if self.supports(s)]
        if not subjects:
            raise NetworkError("No streamable subjects to subscribe to")

        url = self.stream_url(subjects)
        try:
            ws = await websockets.connect(url)
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            raise NetworkError(f"Binance stream connection failed: {e}") from e

        logger.info(
            "Binance stream connected for %d symbols: %s",
            len(subjects),
            ", ".join(s.key for s in subjects[:5]),
        )
        symbols = {binance_symbol(s): s for s in subjects}
        return BinanceQuoteConnection(ws, symbols, recv_timeout=self.recv_timeout)
