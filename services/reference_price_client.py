#!/usr/bin/env python3
import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import aiohttp

from analysis.models import AssetConfig, PriceQuote
from constants import (
    C_RED,
    C_RESET,
    PYTH_API_BASE_URL,
    REFERENCE_PRICE_CACHE_TTL,
    REFERENCE_PRICE_TIMEOUT,
    YAHOO_CHART_API_BASE_URL,
    YAHOO_USER_AGENT,
)


def log_error(message: str) -> None:
    """Centralized error logging."""
    print(f"{C_RED}{message}{C_RESET}")


async def api_get(url: str, session: aiohttp.ClientSession, params: Optional[Dict] = None, headers: Optional[Dict] = None, retries: int = 3, timeout: int = REFERENCE_PRICE_TIMEOUT, retry_delay: float = 2) -> Optional[Dict]:
    """Makes an async GET request with retries and timeout."""
    for attempt in range(retries):
        try:
            async with session.get(url, params=params, headers=headers, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            if attempt < retries - 1:
                await asyncio.sleep(retry_delay)
            else:
                log_error(f"Reference price request failed after {retries} attempts: {e}")
                return None


class YahooFinanceClient:
    def __init__(self, session: aiohttp.ClientSession, base_url: str = YAHOO_CHART_API_BASE_URL, retries: int = 3, retry_delay: float = 2):
        self.session = session
        self.base_url = base_url.rstrip('/')
        self.retries = retries
        self.retry_delay = retry_delay
        self.headers = {'User-Agent': YAHOO_USER_AGENT}

    async def get_price(self, symbol: str) -> Optional[PriceQuote]:
        url = f"{self.base_url}/{symbol}"
        data = await api_get(url, self.session, params={'interval': '1m', 'range': '1d'}, headers=self.headers, retries=self.retries, retry_delay=self.retry_delay)
        if not data:
            return None
        try:
            meta = data['chart']['result'][0]['meta']
            price = float(meta['regularMarketPrice'])
        except (KeyError, IndexError, TypeError, ValueError):
            log_error(f"Could not parse Yahoo Finance price for {symbol}.")
            return None
        if price <= 0:
            return None
        market_time = meta.get('regularMarketTime')
        timestamp = datetime.fromtimestamp(market_time, tz=timezone.utc) if market_time else datetime.now(timezone.utc)
        return PriceQuote(source='yahoo', price=price, timestamp=timestamp)


class PythHermesClient:
    def __init__(self, session: aiohttp.ClientSession, api_url: str = PYTH_API_BASE_URL, retries: int = 3, retry_delay: float = 2):
        self.session = session
        self.api_url = api_url.rstrip('/')
        self.retries = retries
        self.retry_delay = retry_delay

    async def get_price(self, feed_id: str) -> Optional[PriceQuote]:
        url = f"{self.api_url}/latest_price_feeds"
        data = await api_get(url, self.session, params={'ids[]': feed_id}, retries=self.retries, retry_delay=self.retry_delay)
        if not data:
            return None
        try:
            feed = data[0]['price']
            expo = int(feed['expo'])
            price = int(feed['price']) * 10 ** expo
            confidence = int(feed['conf']) * 10 ** expo
        except (KeyError, IndexError, TypeError, ValueError):
            log_error(f"Could not parse Pyth price feed {feed_id}.")
            return None
        if price <= 0:
            return None
        publish_time = feed.get('publish_time')
        timestamp = datetime.fromtimestamp(publish_time, tz=timezone.utc) if publish_time else datetime.now(timezone.utc)
        return PriceQuote(source='pyth', price=price, timestamp=timestamp, confidence=confidence)


class ReferencePriceClient:
    """Fair-value source: the preferred feed with a fallback to the other, cached briefly."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        source: str = 'yahoo',
        pyth_api_url: str = PYTH_API_BASE_URL,
        retries: int = 3,
        cache_ttl: float = REFERENCE_PRICE_CACHE_TTL,
        yahoo_client: Optional[YahooFinanceClient] = None,
        pyth_client: Optional[PythHermesClient] = None,
    ):
        self.source = source
        self.yahoo = yahoo_client or YahooFinanceClient(session, retries=retries)
        self.pyth = pyth_client or PythHermesClient(session, api_url=pyth_api_url, retries=retries)
        self.cache_ttl = cache_ttl
        self._cache: Dict[str, Tuple[float, PriceQuote]] = {}

    async def get_price(self, asset: AssetConfig) -> Optional[PriceQuote]:
        cached = self._cache.get(asset.symbol)
        if cached and time.monotonic() - cached[0] < self.cache_ttl:
            return cached[1]

        quote = None
        for fetch in self._fetch_order(asset):
            quote = await fetch()
            if quote is not None:
                break
        if quote is None:
            log_error(f"No reference price available for {asset.symbol} ({asset.reference_symbol}).")
            return None
        self._cache[asset.symbol] = (time.monotonic(), quote)
        return quote

    def _fetch_order(self, asset: AssetConfig):
        yahoo = lambda: self.yahoo.get_price(asset.reference_symbol)
        if not asset.pyth_feed_id:
            return [yahoo]
        pyth = lambda: self.pyth.get_price(asset.pyth_feed_id)
        return [pyth, yahoo] if self.source == 'pyth' else [yahoo, pyth]
