"""Single-flight execution of buy-cheap-venue convergence trades on Jupiter."""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Optional

import aiohttp

from analysis.models import BUY_CHEAP_VENUE, Position, TradeIntent, TradeOutcome
from config import AppConfig
from constants import C_RED, C_RESET, HIGH_PRICE_IMPACT_PCT, USDC_DECIMALS, USDC_MINT
from services.convergence_monitor import (
    EXIT_SHUTDOWN,
    ConvergenceMonitor,
    ConvergenceSettings,
    ExitDecision,
    SleepFn,
)
from services.jupiter_client import JupiterClient, SwapQuote
from services.solana_rpc import SolanaRpcClient, SolanaRpcError, sign_swap_transaction
from services.wallet_pool import WalletIdentity, WalletPool
from storage.sqlite_repository import SQLiteRepository

TRADE_IN_PROGRESS = "Trade already in progress"


class TradeExecutionError(RuntimeError):
    """A swap could not be submitted or confirmed."""


@dataclass(slots=True)
class SwapFill:
    signature: str
    in_amount: int
    out_amount: int


class TradeExecutor:
    """Turns one TradeIntent into one TradeOutcome, at most one at a time."""

    def __init__(
        self,
        config: AppConfig,
        wallet_pool: WalletPool,
        jupiter_client: JupiterClient,
        rpc_client: SolanaRpcClient,
        repository: Optional[SQLiteRepository] = None,
        stop_event: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self.config = config
        self.wallet_pool = wallet_pool
        self.jupiter_client = jupiter_client
        self.rpc_client = rpc_client
        self.repository = repository
        self.settings = ConvergenceSettings.from_config(config)
        self._stop_event = stop_event or asyncio.Event()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.active_intent: Optional[TradeIntent] = None
        self.active_position: Optional[Position] = None
        self.logger = logging.getLogger(__name__)

    @property
    def trade_in_progress(self) -> bool:
        return self._lock.locked()

    async def execute(self, intent: TradeIntent) -> TradeOutcome:
        if self._lock.locked():
            self.logger.info("Skipping %s opportunity: %s", intent.asset.symbol, TRADE_IN_PROGRESS.lower())
            return TradeOutcome(success=False, error=TRADE_IN_PROGRESS)

        async with self._lock:
            self.active_intent = intent
            try:
                return await self._execute_locked(intent)
            finally:
                self.active_intent = None
                self.active_position = None

    async def _execute_locked(self, intent: TradeIntent) -> TradeOutcome:
        symbol = intent.asset.symbol
        wallet = await self.wallet_pool.select_wallet()
        if wallet is None:
            return self._reject(symbol, "No wallet available")
        if await self.wallet_pool.has_insufficient_balance(wallet, intent.notional):
            return self._reject(symbol, f"Insufficient balance in {wallet.name} for {intent.notional:.2f} USDC")

        reason = self._validate(intent)
        if reason is not None:
            return self._reject(symbol, reason)

        if not self.config.auto_execute:
            outcome = self._simulate(intent, wallet)
        else:
            try:
                outcome = await self._run_live_trade(intent, wallet)
            except Exception as exc:
                self.logger.exception("Unexpected error while trading %s", symbol)
                outcome = TradeOutcome(success=False, error=f"Unexpected error: {exc}")
            outcome.wallet_name = wallet.name
            outcome.wallet_address = wallet.public_key

        self.wallet_pool.record_trade(wallet, outcome.success, outcome.realized_profit)
        if self.repository is not None:
            try:
                await self.repository.record_trade(intent, outcome)
            except (sqlite3.Error, OSError) as exc:
                self.logger.error("Could not record %s trade: %s", symbol, exc)
        return outcome

    def _validate(self, intent: TradeIntent) -> Optional[str]:
        if intent.spread_percent < self.config.min_spread_percent:
            return f"Spread {intent.spread_percent:.3f}% below minimum {self.config.min_spread_percent}%"
        if intent.expected_profit < self.config.min_profit:
            return f"Expected profit ${intent.expected_profit:.2f} below minimum ${self.config.min_profit:.2f}"
        if intent.direction != BUY_CHEAP_VENUE:
            return f"Direction {intent.direction} is not supported; only {BUY_CHEAP_VENUE} trades are executed"
        return None

    def _reject(self, symbol: str, reason: str) -> TradeOutcome:
        self.logger.warning("Trade for %s rejected: %s", symbol, reason)
        return TradeOutcome(success=False, error=reason)

    def _simulate(self, intent: TradeIntent, wallet: WalletIdentity) -> TradeOutcome:
        self.logger.info(
            "[Simulated] Buy %s with %.2f USDC from %s at $%.4f (ref $%.4f, spread %.3f%%, expected $%.2f)",
            intent.asset.symbol,
            intent.notional,
            wallet.name,
            intent.venue_price,
            intent.reference_price,
            intent.spread_percent,
            intent.expected_profit,
        )
        return TradeOutcome(
            success=True,
            signatures=[f"SIMULATED_{int(time.time() * 1000)}"],
            realized_profit=intent.expected_profit,
            wallet_name=wallet.name,
            wallet_address=wallet.public_key,
            simulated=True,
        )

    async def _run_live_trade(self, intent: TradeIntent, wallet: WalletIdentity) -> TradeOutcome:
        asset = intent.asset
        buy_amount = int(round(intent.notional * 10 ** USDC_DECIMALS))
        buy_quote = await self.jupiter_client.get_quote(USDC_MINT, asset.mint, buy_amount, self.config.max_slippage_bps)
        if buy_quote is None:
            return TradeOutcome(success=False, error=f"Failed to get buy quote for {asset.symbol}")
        self.logger.debug(
            "Buy quote for %s: %d -> %d (fee %d)", asset.symbol, buy_quote.in_amount, buy_quote.out_amount, buy_quote.fee_amount
        )
        if buy_quote.price_impact_pct > HIGH_PRICE_IMPACT_PCT:
            self.logger.warning("High price impact on %s buy: %.2f%%", asset.symbol, buy_quote.price_impact_pct)

        try:
            buy_fill = await self._swap(buy_quote, wallet, USDC_MINT, asset.mint)
        except TradeExecutionError as exc:
            return TradeOutcome(success=False, error=f"Buy failed: {exc}")

        try:
            return await self._hold_and_close(intent, wallet, buy_fill)
        except Exception as exc:
            self.logger.exception("Unexpected error while holding %s", asset.symbol)
            quantity = buy_fill.out_amount / 10 ** asset.decimals
            message = (
                f"Unexpected error after buying {quantity:.6f} {asset.symbol} ({exc}); "
                f"tokens left in {wallet.name} ({wallet.public_key})"
            )
            self._operator_alert(message)
            return TradeOutcome(success=False, signatures=[buy_fill.signature], error=message)

    async def _hold_and_close(self, intent: TradeIntent, wallet: WalletIdentity, buy_fill: SwapFill) -> TradeOutcome:
        asset = intent.asset
        cost_usdc = buy_fill.in_amount / 10 ** USDC_DECIMALS
        tokens = buy_fill.out_amount / 10 ** asset.decimals
        position = Position(
            symbol=asset.symbol,
            mint=asset.mint,
            wallet_address=wallet.public_key,
            entry_price=cost_usdc / tokens,
            entry_time=self._clock(),
            token_amount=buy_fill.out_amount,
            token_decimals=asset.decimals,
            cost_usdc=cost_usdc,
            buy_signature=buy_fill.signature,
        )
        self.active_position = position
        self.logger.info(
            "Bought %.6f %s for %.4f USDC (fill $%.4f, quoted $%.4f) tx %s",
            tokens,
            asset.symbol,
            cost_usdc,
            position.entry_price,
            intent.venue_price,
            buy_fill.signature,
        )
        if self.repository is not None:
            try:
                position.position_id = await self.repository.record_position_open(position)
            except (sqlite3.Error, OSError) as exc:
                self.logger.error("Could not persist open %s position (tx %s): %s", asset.symbol, buy_fill.signature, exc)

        monitor = ConvergenceMonitor(
            self.settings,
            self._quote_exit,
            stop_event=self._stop_event,
            clock=self._clock,
            sleep=self._sleep,
        )
        decision = await monitor.run(position)
        if decision.reason == EXIT_SHUTDOWN:
            message = (
                f"Shutdown while holding {position.token_quantity:.6f} {asset.symbol} in {wallet.name}; "
                f"position left open for reconciliation"
            )
            self._operator_alert(message)
            return TradeOutcome(
                success=False,
                signatures=[buy_fill.signature],
                error=message,
                exit_reason=decision.reason,
            )
        return await self._close_position(position, decision, wallet)

    async def _close_position(self, position: Position, decision: ExitDecision, wallet: WalletIdentity) -> TradeOutcome:
        self.logger.info(
            "Exiting %s via %s after %.0fs (%d checks)",
            position.symbol,
            decision.reason,
            decision.held_seconds,
            position.check_count,
        )
        sell_quote = await self.jupiter_client.get_quote(position.mint, USDC_MINT, position.token_amount, decision.slippage_bps)
        error: Optional[str] = None
        sell_fill: Optional[SwapFill] = None
        if sell_quote is None:
            error = "Failed to get sell quote"
        else:
            try:
                sell_fill = await self._swap(sell_quote, wallet, position.mint, USDC_MINT)
            except TradeExecutionError as exc:
                error = str(exc)

        if sell_fill is None:
            message = (
                f"Sell of {position.token_quantity:.6f} {position.symbol} failed ({error}); "
                f"tokens left in {wallet.name} ({wallet.public_key})"
            )
            self._operator_alert(message)
            return TradeOutcome(
                success=False,
                signatures=[position.buy_signature],
                error=message,
                exit_reason=decision.reason,
            )

        usdc_received = sell_fill.out_amount / 10 ** USDC_DECIMALS
        realized_profit = usdc_received - position.cost_usdc
        position.state = 'CLOSED'
        if self.repository is not None and position.position_id is not None:
            try:
                await self.repository.record_position_closed(
                    position.position_id,
                    exit_reason=decision.reason,
                    sell_signature=sell_fill.signature,
                    realized_profit=realized_profit,
                )
            except (sqlite3.Error, OSError) as exc:
                self.logger.error("Could not persist close of %s position (tx %s): %s", position.symbol, sell_fill.signature, exc)
        self.logger.info(
            "Sold %s for %.4f USDC, realized %+.4f USDC (%s) tx %s",
            position.symbol,
            usdc_received,
            realized_profit,
            decision.reason,
            sell_fill.signature,
        )
        return TradeOutcome(
            success=True,
            signatures=[position.buy_signature, sell_fill.signature],
            realized_profit=realized_profit,
            exit_reason=decision.reason,
        )

    async def _quote_exit(self, position: Position, slippage_bps: int) -> Optional[float]:
        quote = await self.jupiter_client.get_quote(position.mint, USDC_MINT, position.token_amount, slippage_bps)
        if quote is None:
            return None
        return quote.out_amount / 10 ** USDC_DECIMALS

    async def _swap(self, quote: SwapQuote, wallet: WalletIdentity, input_mint: str, output_mint: str) -> SwapFill:
        """Signs, sends and confirms ``quote``; amounts come from the confirmed transaction."""
        if (quote.input_mint and quote.input_mint != input_mint) or (quote.output_mint and quote.output_mint != output_mint):
            raise TradeExecutionError(
                f"Quote route {quote.input_mint} -> {quote.output_mint} does not match {input_mint} -> {output_mint}"
            )
        swap_transaction = await self.jupiter_client.get_swap_transaction(quote, wallet.public_key)
        if not swap_transaction:
            raise TradeExecutionError("Failed to get swap transaction")
        try:
            raw_transaction = sign_swap_transaction(swap_transaction, wallet.keypair)
        except ValueError as exc:
            raise TradeExecutionError(f"Could not sign swap transaction: {exc}") from exc

        try:
            signature = await self.rpc_client.send_transaction(raw_transaction)
            confirmed = await self.rpc_client.confirm_transaction(signature)
        except (SolanaRpcError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TradeExecutionError(str(exc)) from exc
        if not confirmed:
            raise TradeExecutionError(f"Transaction {signature} was not confirmed")

        in_amount, out_amount = quote.in_amount, quote.out_amount
        try:
            changes = await self.rpc_client.get_token_balance_changes(signature, wallet.public_key)
        except (SolanaRpcError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.logger.warning("Could not read fill amounts for %s: %s", signature, exc)
            changes = None
        if changes and changes.get(input_mint, 0) < 0 and changes.get(output_mint, 0) > 0:
            in_amount, out_amount = -changes[input_mint], changes[output_mint]
        else:
            self.logger.warning("Using quoted amounts for %s; fill not reported by the ledger", signature)
        return SwapFill(signature=signature, in_amount=in_amount, out_amount=out_amount)

    def _operator_alert(self, message: str) -> None:
        self.logger.error(message)
        print(f"{C_RED}ACTION REQUIRED: {message}{C_RESET}")
