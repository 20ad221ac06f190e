"""Dataclasses representing stored trade records."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class PositionRecord:
    id: int
    symbol: str
    mint: str
    wallet_address: str
    entry_price: float
    token_amount: int
    token_decimals: int
    cost_usdc: float
    buy_signature: str
    opened_at: datetime
    status: str
    closed_at: Optional[datetime] = None
    exit_reason: Optional[str] = None
    sell_signature: Optional[str] = None
    realized_profit: Optional[float] = None

    @property
    def token_quantity(self) -> float:
        return self.token_amount / (10 ** self.token_decimals)


@dataclass(slots=True)
class TradeRecord:
    id: int
    symbol: str
    direction: str
    notional: float
    success: bool
    simulated: bool
    signature: Optional[str]
    realized_profit: float
    expected_profit: float
    error: Optional[str]
    wallet_name: Optional[str]
    exit_reason: Optional[str]
    recorded_at: datetime
