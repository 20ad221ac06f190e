"""Post-buy exit timing for convergence trades.

A position is held for at least ``min_hold_seconds`` and then checked every
``check_interval_seconds`` against a fresh sell quote. The first matching
rule wins:

* take profit: unrealized profit reached ``take_profit_percent``
* max hold: ``max_hold_seconds`` elapsed, whatever the profit
* min profit: unrealized profit is above ``min_profit_exit_percent``
* emergency: ``max_failed_quotes`` consecutive sell quotes failed

There is no stop-loss.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from analysis.models import Position
from config import AppConfig
from constants import (
    DEFAULT_CHECK_INTERVAL_SECONDS,
    DEFAULT_EMERGENCY_SLIPPAGE_BPS,
    DEFAULT_MAX_FAILED_QUOTES,
    DEFAULT_MAX_HOLD_SECONDS,
    DEFAULT_MIN_HOLD_SECONDS,
    DEFAULT_MIN_PROFIT_EXIT_PERCENT,
    DEFAULT_SELL_SLIPPAGE_BPS,
    DEFAULT_TAKE_PROFIT_PERCENT,
)

logger = logging.getLogger(__name__)

EXIT_TAKE_PROFIT = 'EXIT_TAKE_PROFIT'
EXIT_MAX_HOLD = 'EXIT_MAX_HOLD'
EXIT_MIN_PROFIT = 'EXIT_MIN_PROFIT'
EXIT_EMERGENCY = 'EXIT_EMERGENCY'
EXIT_SHUTDOWN = 'EXIT_SHUTDOWN'

SleepFn = Callable[[float], Awaitable[bool]]
ExitQuoteFn = Callable[[Position, int], Awaitable[Optional[float]]]


async def wait_for_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleeps up to ``seconds``; returns True as soon as ``stop_event`` is set."""
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, seconds))
    except asyncio.TimeoutError:
        return False
    return True


@dataclass(frozen=True)
class ConvergenceSettings:
    min_hold_seconds: float = DEFAULT_MIN_HOLD_SECONDS
    max_hold_seconds: float = DEFAULT_MAX_HOLD_SECONDS
    check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS
    take_profit_percent: float = DEFAULT_TAKE_PROFIT_PERCENT
    min_profit_exit_percent: float = DEFAULT_MIN_PROFIT_EXIT_PERCENT
    max_failed_quotes: int = DEFAULT_MAX_FAILED_QUOTES
    sell_slippage_bps: int = DEFAULT_SELL_SLIPPAGE_BPS
    emergency_slippage_bps: int = DEFAULT_EMERGENCY_SLIPPAGE_BPS

    @classmethod
    def from_config(cls, config: AppConfig) -> 'ConvergenceSettings':
        return cls(
            min_hold_seconds=config.min_hold_seconds,
            max_hold_seconds=config.max_hold_seconds,
            check_interval_seconds=config.check_interval_seconds,
            take_profit_percent=config.take_profit_percent,
            min_profit_exit_percent=config.min_profit_exit_percent,
            max_failed_quotes=config.max_failed_quotes,
            emergency_slippage_bps=config.emergency_slippage_bps,
        )


@dataclass(frozen=True)
class ExitDecision:
    reason: str
    slippage_bps: int
    held_seconds: float
    profit_percent: Optional[float] = None
    quoted_usdc: Optional[float] = None


def evaluate_exit(profit_percent: float, held_seconds: float, settings: ConvergenceSettings) -> Optional[str]:
    """Exit reason for a successfully quoted check, or None to keep holding."""
    min_hold_elapsed = held_seconds >= settings.min_hold_seconds
    if min_hold_elapsed and profit_percent >= settings.take_profit_percent:
        return EXIT_TAKE_PROFIT
    if held_seconds >= settings.max_hold_seconds:
        return EXIT_MAX_HOLD
    if min_hold_elapsed and profit_percent > settings.min_profit_exit_percent:
        return EXIT_MIN_PROFIT
    return None


class ConvergenceMonitor:
    def __init__(
        self,
        settings: ConvergenceSettings,
        quote_exit: ExitQuoteFn,
        stop_event: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self.settings = settings
        self._quote_exit = quote_exit
        self._stop_event = stop_event or asyncio.Event()
        self._clock = clock
        self._sleep = sleep or (lambda seconds: wait_for_stop(self._stop_event, seconds))

    async def run(self, position: Position) -> ExitDecision:
        """Holds ``position`` until an exit rule fires or shutdown is requested."""
        settings = self.settings
        logger.info(
            "Holding %.6f %s from $%.4f; first check in %ss",
            position.token_quantity,
            position.symbol,
            position.entry_price,
            settings.min_hold_seconds,
        )
        if await self._sleep(settings.min_hold_seconds):
            return self._shutdown(position)

        while True:
            position.check_count += 1
            held = self._clock() - position.entry_time
            try:
                usdc_out = await self._quote_exit(position, settings.sell_slippage_bps)
            except Exception:
                logger.exception("Sell quote for %s raised", position.symbol)
                usdc_out = None

            if usdc_out is None:
                position.failed_quotes += 1
                logger.warning(
                    "Sell quote failed for %s (%d/%d)",
                    position.symbol,
                    position.failed_quotes,
                    settings.max_failed_quotes,
                )
                if position.failed_quotes >= settings.max_failed_quotes:
                    position.state = EXIT_EMERGENCY
                    return ExitDecision(EXIT_EMERGENCY, settings.emergency_slippage_bps, held)
                if held >= settings.max_hold_seconds:
                    position.state = EXIT_MAX_HOLD
                    return ExitDecision(EXIT_MAX_HOLD, settings.sell_slippage_bps, held)
            else:
                position.failed_quotes = 0
                profit_percent = (usdc_out - position.cost_usdc) / position.cost_usdc * 100
                logger.info(
                    "Check #%d %s: held %.0fs, quote $%.4f, P&L %+.3f%%",
                    position.check_count,
                    position.symbol,
                    held,
                    usdc_out,
                    profit_percent,
                )
                reason = evaluate_exit(profit_percent, held, settings)
                if reason is not None:
                    position.state = reason
                    return ExitDecision(reason, settings.sell_slippage_bps, held, profit_percent, usdc_out)

            if await self._sleep(settings.check_interval_seconds):
                return self._shutdown(position)

    def _shutdown(self, position: Position) -> ExitDecision:
        position.state = EXIT_SHUTDOWN
        held = self._clock() - position.entry_time
        logger.warning("Shutdown requested while holding %s; position left open", position.symbol)
        return ExitDecision(EXIT_SHUTDOWN, self.settings.sell_slippage_bps, held)
