# scanner.py
import asyncio
import logging
import time
from dataclasses import replace
from typing import Dict, List, Optional, Set

from analysis.analyzer import OpportunityAnalyzer
from analysis.models import (
    STATE_CHECKING,
    STATE_IDLE,
    STATE_NO_OPPORTUNITY,
    STATE_OPPORTUNITY,
    AssetConfig,
    AssetStats,
    Opportunity,
    TradeIntent,
)
from bot.notifications import TelegramNotifier
from config import AppConfig
from constants import C_BLUE, C_GREEN, C_RED, C_RESET, C_YELLOW
from services.convergence_monitor import wait_for_stop
from services.jupiter_client import JupiterClient
from services.reference_price_client import ReferencePriceClient
from services.trade_executor import TRADE_IN_PROGRESS, TradeExecutor
from storage import OpportunityLog

logger = logging.getLogger(__name__)


class SpreadScanner:
    """Polls every configured asset on a fixed interval and emits opportunities."""

    def __init__(
        self,
        config: AppConfig,
        jupiter_client: JupiterClient,
        reference_client: ReferencePriceClient,
        opportunity_log: OpportunityLog,
        trade_executor: Optional[TradeExecutor] = None,
        notifier: Optional[TelegramNotifier] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.config = config
        self.jupiter_client = jupiter_client
        self.reference_client = reference_client
        self.opportunity_log = opportunity_log
        self.trade_executor = trade_executor
        self.notifier = notifier
        self.analyzer = OpportunityAnalyzer(config)
        self.stop_event = stop_event or asyncio.Event()
        self.stats: Dict[str, AssetStats] = {asset.symbol: AssetStats() for asset in config.assets}
        self.ticks = 0
        self.last_tick_time: Optional[str] = None
        self.found_last_tick = 0
        self.last_error: Optional[str] = None
        self._tick_tasks: Set[asyncio.Task] = set()
        self._trade_tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return not self.stop_event.is_set()

    def stop(self) -> None:
        self.stop_event.set()

    async def start(self):
        """Prints the startup banner and runs ticks until stopped."""
        symbols = ", ".join(asset.symbol for asset in self.config.assets)
        mode = "LIVE" if self.config.auto_execute else "SIMULATION"
        print(f"{C_BLUE}Monitoring {symbols} every {self.config.poll_interval:g}s "
              f"(min spread {self.config.min_spread_percent}%, min profit ${self.config.min_profit:.2f}, "
              f"notional ${self.config.trade_amount_usdc:.2f}, {mode}){C_RESET}")
        if self.trade_executor is None:
            print(f"{C_YELLOW}No wallets loaded; opportunities are logged but not traded.{C_RESET}")
        await self._run_main_loop()

    async def _run_main_loop(self):
        """Starts a tick every interval, measured from tick start."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self.stop_event.is_set():
            task = asyncio.create_task(self.run_tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            next_tick += self.config.poll_interval
            if await wait_for_stop(self.stop_event, next_tick - loop.time()):
                break
        await self._drain()

    async def _drain(self) -> None:
        pending = list(self._tick_tasks) + list(self._trade_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def run_tick(self) -> List[Opportunity]:
        """Checks all assets concurrently and returns the opportunities emitted."""
        self.ticks += 1
        results = await asyncio.gather(*(self._check_asset(asset) for asset in self.config.assets))
        opportunities = [opp for opp in results if opp is not None]
        self.last_tick_time = time.strftime('%Y-%m-%d %H:%M:%S UTC', time.gmtime())
        self.found_last_tick = len(opportunities)
        logger.debug("Tick %d finished with %d opportunities", self.ticks, len(opportunities))
        return opportunities

    async def _check_asset(self, asset: AssetConfig) -> Optional[Opportunity]:
        stats = self.stats[asset.symbol]
        stats.state = STATE_CHECKING
        stats.total_checks += 1
        opportunity = None
        try:
            venue_quote, reference_quote = await asyncio.gather(
                self.jupiter_client.get_token_price(asset),
                self.reference_client.get_price(asset),
            )
            if venue_quote is None or reference_quote is None:
                missing = "venue" if venue_quote is None else "reference"
                stats.last_error = f"No {missing} price"
                logger.info("%s: no %s price this tick", asset.symbol, missing)
            else:
                spread, profit, opportunity = self.analyzer.evaluate(asset, venue_quote, reference_quote)
                stats.record_spread(spread.spread_percent)
                stats.last_error = None
                logger.debug(
                    "%s venue $%.4f ref $%.4f spread %.3f%% est $%.2f",
                    asset.symbol,
                    venue_quote.price,
                    reference_quote.price,
                    spread.spread_percent,
                    profit,
                )
        except Exception as exc:
            stats.last_error = str(exc)
            self.last_error = f"{asset.symbol}: {exc}"
            logger.exception("Check failed for %s", asset.symbol)
            opportunity = None

        if opportunity is None:
            stats.last_result = STATE_NO_OPPORTUNITY
            stats.state = STATE_IDLE
            return None

        stats.last_result = STATE_OPPORTUNITY
        stats.opportunities_found += 1
        stats.total_estimated_profit += opportunity.estimated_profit
        stats.state = STATE_IDLE
        try:
            await self._handle_opportunity(asset, opportunity)
        except Exception as exc:
            self.last_error = f"{asset.symbol}: {exc}"
            logger.exception("Handling opportunity for %s failed", asset.symbol)
        return opportunity

    async def _handle_opportunity(self, asset: AssetConfig, opportunity: Opportunity) -> None:
        self._print_opportunity(opportunity)
        try:
            await self.opportunity_log.append(opportunity)
        except OSError as exc:
            logger.error("Could not persist opportunity for %s: %s", asset.symbol, exc)
        if self.notifier is not None:
            await self.notifier.send_opportunity(opportunity)
        if self.trade_executor is not None:
            task = asyncio.create_task(self._execute_trade(asset, opportunity))
            self._trade_tasks.add(task)
            task.add_done_callback(self._trade_tasks.discard)

    async def _execute_trade(self, asset: AssetConfig, opportunity: Opportunity) -> None:
        try:
            await self._run_trade(asset, opportunity)
        except Exception as exc:
            self.last_error = f"{asset.symbol}: {exc}"
            logger.exception("Trade task for %s failed", asset.symbol)

    async def _run_trade(self, asset: AssetConfig, opportunity: Opportunity) -> None:
        intent = TradeIntent.from_opportunity(opportunity, asset, self.config.trade_amount_usdc)
        outcome = await self.trade_executor.execute(intent)
        if outcome.error == TRADE_IN_PROGRESS:
            return
        if outcome.success:
            label = "SIMULATED" if outcome.simulated else "TRADE"
            print(f"{C_GREEN}{label} {asset.symbol} OK via {outcome.wallet_name} | "
                  f"P&L ${outcome.realized_profit:+.4f} | {outcome.signature}{C_RESET}")
        else:
            print(f"{C_RED}TRADE {asset.symbol} FAILED: {outcome.error}{C_RESET}")
        if self.notifier is not None:
            await self.notifier.send_trade_outcome(intent, outcome)

    def _print_opportunity(self, opp: Opportunity):
        """Formats and prints a single opportunity to the console."""
        print(f"{C_GREEN}OPPORTUNITY: {opp.symbol} {opp.direction}"
              f" | Venue ${opp.venue_price:.4f} vs Ref ${opp.reference_price:.4f}"
              f" | Spread {opp.spread_percent:.3f}% | Est. ${opp.estimated_profit:.2f}{C_RESET}")

    def summary(self) -> Dict[str, AssetStats]:
        """Snapshot of per-asset statistics."""
        return {symbol: replace(stats) for symbol, stats in self.stats.items()}

    def format_summary(self) -> str:
        lines = [f"Ticks: {self.ticks}"]
        for symbol, stats in self.summary().items():
            lines.append(
                f"  {symbol}: checks {stats.total_checks}, avg spread {stats.avg_spread_percent:.3f}%, "
                f"max {stats.max_spread_percent:.3f}%, opportunities {stats.opportunities_found}, "
                f"est. profit ${stats.total_estimated_profit:.2f}"
            )
        return "\n".join(lines)

    def print_summary(self) -> None:
        print("=" * 50)
        print(self.format_summary())
        print("=" * 50)
