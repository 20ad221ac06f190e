#!/usr/bin/env python3
from datetime import datetime, timezone
from typing import Optional, Tuple

from analysis.models import (
    BUY_CHEAP_VENUE,
    SELL_CHEAP_VENUE,
    AssetConfig,
    Opportunity,
    PriceQuote,
    SpreadResult,
)
from config import AppConfig
from constants import DEFAULT_GAS_COST_USD, DEFAULT_TRADING_FEE_PERCENT


def calculate_spread(venue_price: float, reference_price: float) -> SpreadResult:
    """Spread of the venue price against the reference price.

    The reference price is the denominator for the percentage. A venue price
    below the reference means buy on the venue and realize at the reference.
    """
    if reference_price <= 0:
        raise ValueError(f"reference price must be positive, got {reference_price}")
    if venue_price <= 0:
        raise ValueError(f"venue price must be positive, got {venue_price}")
    signed = reference_price - venue_price
    direction = BUY_CHEAP_VENUE if venue_price < reference_price else SELL_CHEAP_VENUE
    return SpreadResult(
        direction=direction,
        abs_spread=abs(signed),
        spread_percent=abs(signed) / reference_price * 100,
    )


def estimate_profit(
    notional: float,
    venue_price: float,
    reference_price: float,
    direction: str,
    fee_percent: float = DEFAULT_TRADING_FEE_PERCENT,
    gas_cost: float = DEFAULT_GAS_COST_USD,
) -> float:
    """Net profit in USD of one round trip of ``notional`` after fees and gas."""
    if direction == BUY_CHEAP_VENUE:
        entry_price, exit_price = venue_price, reference_price
    else:
        entry_price, exit_price = reference_price, venue_price
    shares = notional / entry_price
    gross_profit = shares * exit_price - notional
    fees = notional * fee_percent / 100 + gas_cost
    return gross_profit - fees


class OpportunityAnalyzer:
    def __init__(self, config: AppConfig):
        self.config = config

    def evaluate(
        self,
        asset: AssetConfig,
        venue_quote: PriceQuote,
        reference_quote: PriceQuote,
    ) -> Tuple[SpreadResult, float, Optional[Opportunity]]:
        """Computes spread and profit and returns an Opportunity when both clear the minimums."""
        spread = calculate_spread(venue_quote.price, reference_quote.price)
        profit = estimate_profit(
            self.config.trade_amount_usdc,
            venue_quote.price,
            reference_quote.price,
            spread.direction,
            fee_percent=self.config.trading_fee_percent,
            gas_cost=self.config.gas_cost_usd,
        )
        if not self.is_actionable(spread.spread_percent, profit):
            return spread, profit, None

        opportunity = Opportunity(
            symbol=asset.symbol,
            timestamp=datetime.now(timezone.utc),
            venue_price=venue_quote.price,
            reference_price=reference_quote.price,
            spread=spread.abs_spread,
            spread_percent=spread.spread_percent,
            estimated_profit=profit,
            direction=spread.direction,
        )
        return spread, profit, opportunity

    def is_actionable(self, spread_percent: float, profit: float) -> bool:
        return spread_percent >= self.config.min_spread_percent and profit >= self.config.min_profit
