#!/usr/bin/env python3
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp

from analysis.models import AssetConfig, PriceQuote
from constants import (
    C_RED,
    C_RESET,
    JUPITER_API_BASE_URL,
    PRIORITY_FEE_LEVEL,
    PRIORITY_FEE_MAX_LAMPORTS,
    USDC_DECIMALS,
    USDC_MINT,
    VENUE_PRICE_PROBE_SLIPPAGE_BPS,
    VENUE_PRICE_PROBE_USDC,
)


def log_error(message: str) -> None:
    """Centralized error logging."""
    print(f"{C_RED}{message}{C_RESET}")


async def api_get(url: str, session: aiohttp.ClientSession, params: Optional[Dict] = None, retries: int = 3, timeout: int = 10, retry_delay: float = 2) -> Optional[Dict]:
    """Makes an async GET request with retries and timeout."""
    for attempt in range(retries):
        try:
            async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            if attempt < retries - 1:
                await asyncio.sleep(retry_delay)
            else:
                log_error(f"Jupiter GET failed after {retries} attempts: {e}")
                return None


async def api_post(url: str, session: aiohttp.ClientSession, json_data: Dict, retries: int = 3, timeout: int = 15, retry_delay: float = 2) -> Optional[Dict]:
    """Makes an async POST request with retries and timeout."""
    for attempt in range(retries):
        try:
            async with session.post(url, json=json_data, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            if attempt < retries - 1:
                await asyncio.sleep(retry_delay)
            else:
                log_error(f"Jupiter POST failed after {retries} attempts: {e}")
                return None


@dataclass(frozen=True)
class SwapQuote:
    """A Jupiter quote.

    ``raw`` is the untouched response and is what gets sent back to ``/swap``;
    the properties only read the fields the bot needs.
    """
    raw: Dict[str, Any]

    @classmethod
    def from_response(cls, payload: Any) -> 'SwapQuote':
        if not isinstance(payload, dict):
            raise ValueError("quote response is not an object")
        for key in ('inAmount', 'outAmount'):
            if key not in payload:
                raise ValueError(f"quote response missing {key}")
            int(payload[key])
        return cls(raw=payload)

    @property
    def input_mint(self) -> Optional[str]:
        return self.raw.get('inputMint')

    @property
    def output_mint(self) -> Optional[str]:
        return self.raw.get('outputMint')

    @property
    def in_amount(self) -> int:
        return int(self.raw['inAmount'])

    @property
    def out_amount(self) -> int:
        return int(self.raw['outAmount'])

    @property
    def price_impact_pct(self) -> float:
        value = self.raw.get('priceImpactPct')
        return float(value) if value not in (None, '') else 0.0

    @property
    def fee_amount(self) -> int:
        platform_fee = self.raw.get('platformFee') or {}
        return int(platform_fee.get('amount') or 0)


class JupiterClient:
    """Quote and swap-transaction gateway backed by the Jupiter swap API."""

    def __init__(self, session: aiohttp.ClientSession, api_url: str = JUPITER_API_BASE_URL, retries: int = 3, retry_delay: float = 2):
        self.session = session
        self.api_url = api_url.rstrip('/')
        self.retries = retries
        self.retry_delay = retry_delay

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Optional[SwapQuote]:
        """Quotes ``amount`` (smallest units of ``input_mint``)."""
        params = {
            'inputMint': input_mint,
            'outputMint': output_mint,
            'amount': str(int(amount)),
            'slippageBps': str(int(slippage_bps)),
            'restrictIntermediateTokens': 'true',
            'onlyDirectRoutes': 'false',
        }
        data = await api_get(f"{self.api_url}/quote", self.session, params=params, retries=self.retries, retry_delay=self.retry_delay)
        if data is None:
            return None
        if 'error' in data:
            log_error(f"Jupiter quote error for {input_mint} -> {output_mint}: {data['error']}")
            return None
        try:
            return SwapQuote.from_response(data)
        except (TypeError, ValueError) as exc:
            log_error(f"Could not parse Jupiter quote: {exc}")
            return None

    async def get_swap_transaction(
        self,
        quote: SwapQuote,
        user_public_key: str,
        priority_level: str = PRIORITY_FEE_LEVEL,
        max_priority_lamports: int = PRIORITY_FEE_MAX_LAMPORTS,
    ) -> Optional[str]:
        """Returns the base64 unsigned versioned transaction for ``quote``."""
        body = {
            'quoteResponse': quote.raw,
            'userPublicKey': user_public_key,
            'wrapAndUnwrapSol': True,
            'dynamicComputeUnitLimit': True,
            'prioritizationFeeLamports': {
                'priorityLevelWithMaxLamports': {
                    'priorityLevel': priority_level,
                    'maxLamports': max_priority_lamports,
                }
            },
        }
        data = await api_post(f"{self.api_url}/swap", self.session, json_data=body, retries=self.retries, retry_delay=self.retry_delay)
        if not data or not data.get('swapTransaction'):
            log_error("Jupiter did not return a swap transaction.")
            return None
        return data['swapTransaction']

    async def get_token_price(self, asset: AssetConfig) -> Optional[PriceQuote]:
        """Venue price in USDC per token, from a fixed-size USDC buy quote."""
        amount = int(VENUE_PRICE_PROBE_USDC * 10 ** USDC_DECIMALS)
        quote = await self.get_quote(USDC_MINT, asset.mint, amount, VENUE_PRICE_PROBE_SLIPPAGE_BPS)
        if quote is None or quote.out_amount <= 0:
            return None
        usdc_in = quote.in_amount / 10 ** USDC_DECIMALS
        tokens_out = quote.out_amount / 10 ** asset.decimals
        return PriceQuote(
            source='jupiter',
            price=usdc_in / tokens_out,
            timestamp=datetime.now(timezone.utc),
        )
