#!/usr/bin/env python3
import asyncio
import logging
import signal
import sys
import time
from typing import Optional

import aiohttp
from telegram import BotCommand
from telegram.ext import Application, CommandHandler
from telegram.error import TimedOut, TelegramError

import constants
from bot.handlers import (
    help_command,
    opportunities_command,
    scaninfo_command,
    stats_command,
    status_command,
    trades_command,
    wallets_command,
)
from bot.notifications import TelegramNotifier
from config import AppConfig, load_config
from scanner import SpreadScanner
from services.jupiter_client import JupiterClient
from services.reference_price_client import ReferencePriceClient
from services.solana_rpc import SolanaRpcClient
from services.trade_executor import TradeExecutor
from services.wallet_pool import WalletPool
from storage import OpportunityLog, SQLiteRepository

HTTP_USER_AGENT = 'RStockArbBot/1.0'


def build_components(
    config: AppConfig,
    session: aiohttp.ClientSession,
    repository: SQLiteRepository,
    opportunity_log: OpportunityLog,
    stop_event: asyncio.Event,
    notifier: Optional[TelegramNotifier] = None,
) -> dict:
    """Wires clients, wallet pool, trade executor and scanner around one HTTP session."""
    rpc_client = SolanaRpcClient(session, config.rpc_url)
    jupiter_client = JupiterClient(session, config.jupiter_api_url, retries=config.max_retries)
    reference_client = ReferencePriceClient(
        session,
        source=config.reference_source,
        pyth_api_url=config.pyth_api_url,
        retries=config.max_retries,
    )

    wallet_pool = WalletPool(rpc_client, strategy=config.wallet_strategy)
    loaded = wallet_pool.add_wallets(config.wallet_private_keys)
    if config.wallet_private_keys:
        print(f"Loaded {loaded}/{len(config.wallet_private_keys)} wallet(s) using {config.wallet_strategy} selection.")
    if config.auto_execute and loaded == 0:
        print(f"{constants.C_RED}--auto-execute is enabled but no wallet credential could be decoded.{constants.C_RESET}")
        sys.exit(1)

    trade_executor = None
    if loaded:
        trade_executor = TradeExecutor(
            config,
            wallet_pool,
            jupiter_client,
            rpc_client,
            repository=repository,
            stop_event=stop_event,
        )

    scanner = SpreadScanner(
        config,
        jupiter_client,
        reference_client,
        opportunity_log,
        trade_executor=trade_executor,
        notifier=notifier,
        stop_event=stop_event,
    )
    return {
        'rpc_client': rpc_client,
        'jupiter_client': jupiter_client,
        'reference_client': reference_client,
        'wallet_pool': wallet_pool,
        'trade_executor': trade_executor,
        'scanner': scanner,
    }


async def report_open_positions(repository: SQLiteRepository) -> None:
    """Warns about positions left open by a previous run."""
    positions = await repository.fetch_open_positions()
    for position in positions:
        print(
            f"{constants.C_YELLOW}Unreconciled position #{position.id}: {position.token_quantity:.6f} {position.symbol} "
            f"in {position.wallet_address} bought {position.opened_at:%Y-%m-%d %H:%M:%S} UTC "
            f"at ${position.entry_price:.4f} (tx {position.buy_signature}). Sell manually or close it out.{constants.C_RESET}"
        )


async def post_init_hook(application: Application) -> None:
    """A hook that runs after the bot is initialized to set up shared clients and tasks."""
    session = aiohttp.ClientSession(headers={'User-Agent': HTTP_USER_AGENT})
    application.bot_data['http_session'] = session

    config: AppConfig = application.bot_data['config']
    repository: SQLiteRepository = application.bot_data['repository']
    stop_event = asyncio.Event()
    application.bot_data['stop_event'] = stop_event

    notifier = TelegramNotifier(application.bot, config.telegram_chat_id)
    components = build_components(
        config,
        session,
        repository,
        application.bot_data['opportunity_log'],
        stop_event,
        notifier=notifier,
    )
    application.bot_data.update(components)

    await report_open_positions(repository)

    commands = [
        BotCommand("status", "Check bot status"),
        BotCommand("stats", "Spread statistics per token"),
        BotCommand("wallets", "Wallet balances and trades"),
        BotCommand("opportunities", "Recent opportunities"),
        BotCommand("trades", "Recent trades"),
        BotCommand("scaninfo", "See current monitor config"),
        BotCommand("help", "Show help message"),
    ]
    try:
        await application.bot.set_my_commands(commands)
    except (TimedOut, TelegramError) as exc:
        print(
            f"{constants.C_YELLOW}Warning: unable to set Telegram bot commands ({exc})."
            f" Continuing startup without updating commands.{constants.C_RESET}"
        )

    scanner_task = asyncio.create_task(components['scanner'].start())
    application.bot_data['scanner_task'] = scanner_task


async def post_shutdown_hook(application: Application) -> None:
    """A hook that runs on application shutdown to clean up resources."""
    scanner: Optional[SpreadScanner] = application.bot_data.get('scanner')
    scanner_task = application.bot_data.get('scanner_task')
    if scanner:
        scanner.stop()
    if scanner_task:
        await scanner_task
    if scanner:
        scanner.print_summary()
    wallet_pool: Optional[WalletPool] = application.bot_data.get('wallet_pool')
    if wallet_pool and len(wallet_pool):
        print(wallet_pool.format_summary())
    session = application.bot_data.get('http_session')
    if session:
        await session.close()
    repository = application.bot_data.get('repository')
    if repository:
        await repository.close()


async def run_cli(config: AppConfig, repository: SQLiteRepository, opportunity_log: OpportunityLog) -> None:
    """Runs the monitor without Telegram until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    async with aiohttp.ClientSession(headers={'User-Agent': HTTP_USER_AGENT}) as session:
        components = build_components(config, session, repository, opportunity_log, stop_event)
        scanner: SpreadScanner = components['scanner']
        await report_open_positions(repository)
        try:
            await scanner.start()
        finally:
            scanner.print_summary()
            wallet_pool: WalletPool = components['wallet_pool']
            if len(wallet_pool):
                print(wallet_pool.format_summary())
            await repository.close()


def main() -> None:
    """The main synchronous entry point for the application."""
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    repository = SQLiteRepository(config.trade_history_path)
    opportunity_log = OpportunityLog(config.opportunity_log_path)

    if not config.telegram_enabled:
        print("Telegram is not configured. The application will run in CLI-only mode.")
        asyncio.run(run_cli(config, repository, opportunity_log))
        return

    application = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(post_init_hook)
        .post_shutdown(post_shutdown_hook)
        .build()
    )

    application.bot_data['config'] = config
    application.bot_data['start_time'] = time.time()
    application.bot_data['repository'] = repository
    application.bot_data['opportunity_log'] = opportunity_log

    application.add_handler(CommandHandler("start", help_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("stats", stats_command))
    application.add_handler(CommandHandler("wallets", wallets_command))
    application.add_handler(CommandHandler("opportunities", opportunities_command))
    application.add_handler(CommandHandler("trades", trades_command))
    application.add_handler(CommandHandler("scaninfo", scaninfo_command))

    application.run_polling()


if __name__ == "__main__":
    main()
