#!/usr/bin/env python3
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import List, NamedTuple, Optional

# Trade directions
BUY_CHEAP_VENUE = 'BUY_CHEAP_VENUE'
SELL_CHEAP_VENUE = 'SELL_CHEAP_VENUE'

# Per-asset monitor states
STATE_IDLE = 'IDLE'
STATE_CHECKING = 'CHECKING'
STATE_OPPORTUNITY = 'OPPORTUNITY'
STATE_NO_OPPORTUNITY = 'NO_OPPORTUNITY'


class AssetConfig(NamedTuple):
    """A tokenized stock to monitor."""
    symbol: str
    mint: str
    reference_symbol: str
    pyth_feed_id: Optional[str] = None
    decimals: int = 9


@dataclass
class PriceQuote:
    """A single price observation from the venue or the reference feed."""
    source: str
    price: float
    timestamp: datetime
    confidence: Optional[float] = None


@dataclass(frozen=True)
class SpreadResult:
    direction: str
    abs_spread: float
    spread_percent: float


@dataclass(frozen=True)
class Opportunity:
    """A spread that cleared both the spread and profit minimums."""
    symbol: str
    timestamp: datetime
    venue_price: float
    reference_price: float
    spread: float
    spread_percent: float
    estimated_profit: float
    direction: str

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload['timestamp'] = self.timestamp.isoformat()
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> 'Opportunity':
        return cls(
            symbol=payload['symbol'],
            timestamp=datetime.fromisoformat(payload['timestamp']),
            venue_price=float(payload['venue_price']),
            reference_price=float(payload['reference_price']),
            spread=float(payload['spread']),
            spread_percent=float(payload['spread_percent']),
            estimated_profit=float(payload['estimated_profit']),
            direction=payload['direction'],
        )


@dataclass(frozen=True)
class TradeIntent:
    asset: AssetConfig
    direction: str
    notional: float
    expected_profit: float
    venue_price: float
    reference_price: float
    spread_percent: float

    @classmethod
    def from_opportunity(cls, opportunity: Opportunity, asset: AssetConfig, notional: float) -> 'TradeIntent':
        return cls(
            asset=asset,
            direction=opportunity.direction,
            notional=notional,
            expected_profit=opportunity.estimated_profit,
            venue_price=opportunity.venue_price,
            reference_price=opportunity.reference_price,
            spread_percent=opportunity.spread_percent,
        )


@dataclass(slots=True)
class TradeOutcome:
    success: bool
    signatures: List[str] = field(default_factory=list)
    realized_profit: float = 0.0
    error: Optional[str] = None
    wallet_name: Optional[str] = None
    wallet_address: Optional[str] = None
    exit_reason: Optional[str] = None
    simulated: bool = False

    @property
    def signature(self) -> Optional[str]:
        """Buy and sell signatures joined as ``buy|sell``."""
        return '|'.join(self.signatures) if self.signatures else None


@dataclass(slots=True)
class Position:
    """An open convergence position, from buy confirmation until the sell completes."""
    symbol: str
    mint: str
    wallet_address: str
    entry_price: float
    entry_time: float
    token_amount: int
    token_decimals: int
    cost_usdc: float
    buy_signature: str
    check_count: int = 0
    failed_quotes: int = 0
    state: str = 'HOLDING'
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    position_id: Optional[int] = None

    @property
    def token_quantity(self) -> float:
        return self.token_amount / (10 ** self.token_decimals)


@dataclass(slots=True)
class AssetStats:
    """Running per-asset monitor statistics."""
    total_checks: int = 0
    priced_checks: int = 0
    avg_spread_percent: float = 0.0
    max_spread_percent: float = 0.0
    opportunities_found: int = 0
    total_estimated_profit: float = 0.0
    state: str = STATE_IDLE
    last_result: Optional[str] = None
    last_spread_percent: Optional[float] = None
    last_error: Optional[str] = None

    def record_spread(self, spread_percent: float) -> None:
        self.priced_checks += 1
        self.avg_spread_percent += (spread_percent - self.avg_spread_percent) / self.priced_checks
        self.max_spread_percent = max(self.max_spread_percent, spread_percent)
        self.last_spread_percent = spread_percent
