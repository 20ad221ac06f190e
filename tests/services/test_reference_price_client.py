import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from analysis.models import PriceQuote
from services.reference_price_client import PythHermesClient, ReferencePriceClient, YahooFinanceClient


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload
        self.status = 200

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        return None

    async def json(self):
        return self._payload


class MalformedResponse(FakeResponse):
    async def json(self):
        raise json.JSONDecodeError("Expecting value", "<html></html>", 0)


MALFORMED = object()


class FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, headers))
        if not self._responses:
            raise AssertionError("No more fake responses configured")
        payload = self._responses.pop(0)
        if payload is MALFORMED:
            return MalformedResponse(None)
        return FakeResponse(payload)


def _quote(price, source):
    return PriceQuote(source=source, price=price, timestamp=datetime.now(timezone.utc))


def _sources(yahoo_price, pyth_price):
    yahoo = MagicMock()
    yahoo.get_price = AsyncMock(return_value=None if yahoo_price is None else _quote(yahoo_price, 'yahoo'))
    pyth = MagicMock()
    pyth.get_price = AsyncMock(return_value=None if pyth_price is None else _quote(pyth_price, 'pyth'))
    return yahoo, pyth


@pytest.mark.asyncio
async def test_yahoo_reads_regular_market_price():
    payload = {'chart': {'result': [{'meta': {'regularMarketPrice': 251.37, 'regularMarketTime': 1_760_000_000}}]}}
    session = FakeSession([payload])
    client = YahooFinanceClient(session, base_url='http://mock-yahoo', retries=1)

    quote = await client.get_price('TSLA')

    assert quote.source == 'yahoo'
    assert quote.price == pytest.approx(251.37)
    url, _, headers = session.calls[0]
    assert url == 'http://mock-yahoo/TSLA'
    assert 'User-Agent' in headers


@pytest.mark.asyncio
async def test_yahoo_malformed_payload_returns_none():
    session = FakeSession([{'chart': {'result': []}}])
    client = YahooFinanceClient(session, base_url='http://mock-yahoo', retries=1)

    assert await client.get_price('TSLA') is None


@pytest.mark.asyncio
async def test_yahoo_malformed_body_returns_none():
    session = FakeSession([MALFORMED, MALFORMED])
    client = YahooFinanceClient(session, base_url='http://mock-yahoo', retries=2, retry_delay=0)

    assert await client.get_price('TSLA') is None
    assert len(session.calls) == 2


@pytest.mark.asyncio
async def test_pyth_scales_price_by_exponent():
    payload = [{'id': 'feed', 'price': {'price': '10080000000', 'conf': '5000000', 'expo': -8, 'publish_time': 1_760_000_000}}]
    session = FakeSession([payload])
    client = PythHermesClient(session, api_url='http://mock-pyth', retries=1)

    quote = await client.get_price('0xfeed')

    assert quote.source == 'pyth'
    assert quote.price == pytest.approx(100.8)
    assert quote.confidence == pytest.approx(0.05)
    url, params, _ = session.calls[0]
    assert url == 'http://mock-pyth/latest_price_feeds'
    assert params == {'ids[]': '0xfeed'}


@pytest.mark.asyncio
async def test_preferred_source_is_used_first(tsla):
    yahoo, pyth = _sources(100.0, 100.5)
    client = ReferencePriceClient(None, source='pyth', yahoo_client=yahoo, pyth_client=pyth)

    quote = await client.get_price(tsla)

    assert quote.source == 'pyth'
    yahoo.get_price.assert_not_awaited()


@pytest.mark.asyncio
async def test_falls_back_to_other_source(tsla):
    yahoo, pyth = _sources(None, 100.5)
    client = ReferencePriceClient(None, source='yahoo', yahoo_client=yahoo, pyth_client=pyth)

    quote = await client.get_price(tsla)

    assert quote.source == 'pyth'
    yahoo.get_price.assert_awaited_once_with('TSLA')
    pyth.get_price.assert_awaited_once_with(tsla.pyth_feed_id)


@pytest.mark.asyncio
async def test_asset_without_feed_uses_yahoo_only(nvda):
    yahoo, pyth = _sources(None, 100.5)
    client = ReferencePriceClient(None, source='pyth', yahoo_client=yahoo, pyth_client=pyth)

    assert await client.get_price(nvda) is None
    pyth.get_price.assert_not_awaited()


@pytest.mark.asyncio
async def test_recent_price_is_served_from_cache(tsla):
    yahoo, pyth = _sources(100.0, None)
    client = ReferencePriceClient(None, source='yahoo', cache_ttl=60, yahoo_client=yahoo, pyth_client=pyth)

    first = await client.get_price(tsla)
    second = await client.get_price(tsla)

    assert first is second
    assert yahoo.get_price.await_count == 1


@pytest.mark.asyncio
async def test_expired_cache_refetches(tsla):
    yahoo, pyth = _sources(100.0, None)
    client = ReferencePriceClient(None, source='yahoo', cache_ttl=0, yahoo_client=yahoo, pyth_client=pyth)

    await client.get_price(tsla)
    await client.get_price(tsla)

    assert yahoo.get_price.await_count == 2
