"""REST rate providers.

Fiat pairs come from Hexarate, crypto prices from Binance. Transient
transport errors are retried with exponential backoff.
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ratealerts.errors import NetworkError
from ratealerts.feeds.base import BaseRateFetcher
from ratealerts.models import AlertKind, Provenance, RateSnapshot, Subject

logger = logging.getLogger(__name__)

HEXARATE_URL = "https://hexarate.paikama.co/api/rates"
BINANCE_REST_URL = "https://api.binance.com/api/v3"

# Binance quotes crypto in USDT, which stands in for USD.
STABLE_QUOTES = {"USD": "USDT", "USDT": "USDT"}


def binance_symbol(subject: Subject) -> Optional[str]:
    """Map a crypto subject to a Binance symbol (``BTC/USD`` -> ``BTCUSDT``)."""
    if subject.kind != AlertKind.CRYPTO:
        return None
    quote = STABLE_QUOTES.get(subject.quote)
    if quote is None:
        return None
    return f"{subject.base}{quote}"


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _get_json(client: httpx.AsyncClient, url: str, params: Optional[dict] = None) -> Any:
    response = await client.get(url, params=params)
    response.raise_for_status()
    return response.json()


class HexarateFetcher(BaseRateFetcher):
    """Fetches fiat exchange rates from Hexarate, one pair per request."""

    def __init__(
        self,
        base_url: str = HEXARATE_URL,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the fetcher.

        Args:
            base_url: Hexarate rates endpoint.
            timeout: Request timeout in seconds.
            client: Shared HTTP client. A fresh one is made per call if omitted.
            clock: Observation-time source for snapshots.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._clock = clock

    def supports(self, subject: Subject) -> bool:
        return subject.kind == AlertKind.CURRENCY

    async def fetch_rates(
        self,
        subjects: Iterable[Subject],
        provenance: Provenance,
    ) -> list[RateSnapshot]:
        pairs = [s for s in subjects if self.supports(s)]
        if not pairs:
            return []

        snapshots: list[RateSnapshot] = []
        failures: list[str] = []
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            for subject in pairs:
                url = f"{self.base_url}/{subject.base}/{subject.quote}/latest"
                try:
                    payload = await _get_json(client, url)
                    rate = float(payload["data"]["mid"])
                except (httpx.HTTPError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning("Failed to fetch %s: %s", subject, e)
                    failures.append(subject.key)
                    continue
                snapshots.append(RateSnapshot(
                    subject=subject,
                    rate=rate,
                    timestamp=self._clock(),
                    provenance=provenance,
                ))
        finally:
            if self._client is None:
                await client.aclose()

        if not snapshots:
            raise NetworkError(f"Hexarate fetch failed for {', '.join(failures)}")
        return snapshots


class BinanceRestFetcher(BaseRateFetcher):
    """Fetches crypto prices from the Binance ticker endpoint, batched when possible."""

    def __init__(
        self,
        base_url: str = BINANCE_REST_URL,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._clock = clock

    def supports(self, subject: Subject) -> bool:
        return binance_symbol(subject) is not None

    async def fetch_rates(
        self,
        subjects: Iterable[Subject],
        provenance: Provenance,
    ) -> list[RateSnapshot]:
        """Fetch all prices in one batch request.

        Binance rejects the whole batch with a 4xx when any symbol is
        unknown. In that case each symbol is requested on its own and the
        unknown ones are skipped.
        """
        by_symbol = {binance_symbol(s): s for s in subjects if self.supports(s)}
        if not by_symbol:
            return []

        url = f"{self.base_url}/ticker/price"
        params = {"symbols": json.dumps(sorted(by_symbol), separators=(",", ":"))}
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            try:
                payload = await _get_json(client, url, params=params)
            except httpx.HTTPStatusError as e:
                if len(by_symbol) == 1 or not e.response.is_client_error:
                    raise
                logger.warning(
                    "Binance rejected batch price request (%s), fetching symbols one by one",
                    e.response.status_code,
                )
                payload = await self._fetch_each(client, url, sorted(by_symbol))
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise NetworkError(f"Binance price fetch failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        now = self._clock()
        snapshots = []
        for item in payload:
            subject = by_symbol.get(item.get("symbol"))
            if subject is None:
                continue
            try:
                price = float(item["price"])
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring malformed Binance price entry: %s", item)
                continue
            snapshots.append(RateSnapshot(
                subject=subject, rate=price, timestamp=now, provenance=provenance
            ))
        return snapshots

    async def _fetch_each(
        self,
        client: httpx.AsyncClient,
        url: str,
        symbols: list[str],
    ) -> list[dict]:
        items = []
        failures = []
        for symbol in symbols:
            try:
                item = await _get_json(client, url, params={"symbol": symbol})
            except (httpx.HTTPError, json.JSONDecodeError) as e:
                logger.warning("Failed to fetch Binance price for %s: %s", symbol, e)
                failures.append(symbol)
                continue
            items.append(item)

        if not items:
            raise NetworkError(f"Binance price fetch failed for {', '.join(failures)}")
        return items


class CompositeFetcher(BaseRateFetcher):
    """Routes each subject to the first provider that supports it."""

    def __init__(self, fetchers: list[BaseRateFetcher]):
        self._fetchers = fetchers

    def supports(self, subject: Subject) -> bool:
        return any(f.supports(subject) for f in self._fetchers)

    async def fetch_rates(
        self,
        subjects: Iterable[Subject],
        provenance: Provenance,
    ) -> list[RateSnapshot]:
        remaining = list(subjects)
        snapshots: list[RateSnapshot] = []
        errors: list[NetworkError] = []

        for fetcher in self._fetchers:
            mine = [s for s in remaining if fetcher.supports(s)]
            if not mine:
                continue
            remaining = [s for s in remaining if not fetcher.supports(s)]
            try:
                snapshots.extend(await fetcher.fetch_rates(mine, provenance))
            except NetworkError as e:
                logger.warning("%s failed: %s", type(fetcher).__name__, e)
                errors.append(e)

        for subject in remaining:
            logger.warning("No rate provider for %s", subject)

        if errors and not snapshots:
            raise NetworkError("; ".join(str(e) for e in errors))
        return snapshots
