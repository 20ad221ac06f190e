# bot/handlers.py
import time
from html import escape

from telegram import Update
from telegram.ext import ContextTypes

# --- Command Handlers ---

async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays a help message with all available commands."""
    help_text = """
    <b>Tokenized Stock Arbitrage Bot</b>

    Watches Jupiter prices for tokenized stocks against reference market prices and trades the spread.

    <b><u>Available Commands:</u></b>
    /status - Bot status, mode and last tick
    /stats - Per-token spread statistics
    /wallets - Wallet balances and trade counts
    /opportunities - Most recent opportunities
    /trades - Most recent trades
    /scaninfo - Current monitor configuration
    /help - Show this help message
    """
    await update.message.reply_html(help_text)

async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Checks and reports the bot's operational status and scanner state."""
    bot_data = context.application.bot_data
    config = bot_data.get('config')
    scanner = bot_data.get('scanner')
    scanner_task = bot_data.get('scanner_task')
    trade_executor = bot_data.get('trade_executor')
    start_time = bot_data.get('start_time', 0)

    uptime_seconds = time.time() - start_time
    uptime_str = time.strftime('%H:%M:%S', time.gmtime(uptime_seconds))

    if scanner_task and not scanner_task.done():
        scanner_status = "✅ Running"
    elif scanner_task and scanner_task.done():
        scanner_status = "❌ Stopped with error" if not scanner_task.cancelled() and scanner_task.exception() else "⏹️ Stopped"
    else:
        scanner_status = "⚠️ Not running"

    mode = "LIVE" if config and config.auto_execute else "SIMULATION"
    if trade_executor is None:
        trading = "🚫 No wallets loaded"
    elif trade_executor.trade_in_progress:
        intent = trade_executor.active_intent
        trading = f"🔄 Trade in progress ({escape(intent.asset.symbol)})" if intent else "🔄 Trade in progress"
    else:
        trading = "💤 Idle"

    status_text = (
        f"<b>🤖 Bot Status</b>\n"
        f"Uptime: <code>{uptime_str}</code>\n"
        f"Mode: <code>{mode}</code>\n\n"
        f"<b>🔍 Monitor</b>\n"
        f"Status: {scanner_status}\n"
        f"Trading: {trading}\n"
    )

    if scanner:
        status_text += f"Ticks: <code>{scanner.ticks}</code>\n"
        status_text += f"Last Tick: <code>{scanner.last_tick_time or 'Never'}</code>\n"
        status_text += f"Found Last Tick: <code>{scanner.found_last_tick}</code>\n"
        if scanner.last_error:
            status_text += f"Last Error: <pre>{escape(scanner.last_error)}</pre>\n"

    await update.message.reply_html(status_text)

async def stats_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Shows running spread statistics per monitored token."""
    scanner = context.application.bot_data.get('scanner')
    if not scanner:
        await update.message.reply_text("Monitor is not running.")
        return

    lines = ["<b>📊 Spread Statistics</b>\n"]
    for symbol, stats in scanner.summary().items():
        last = f"{stats.last_spread_percent:.3f}%" if stats.last_spread_percent is not None else "-"
        lines.append(
            f"<b>{escape(symbol)}</b>: checks {stats.total_checks}, last {last}, "
            f"avg {stats.avg_spread_percent:.3f}%, max {stats.max_spread_percent:.3f}%, "
            f"opps {stats.opportunities_found}, est. ${stats.total_estimated_profit:.2f}"
        )
    await update.message.reply_html("\n".join(lines))

async def wallets_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists wallets with cached balances and trade counters."""
    wallet_pool = context.application.bot_data.get('wallet_pool')
    if not wallet_pool or len(wallet_pool) == 0:
        await update.message.reply_text("No wallets loaded.")
        return

    lines = [f"<b>👛 Wallets</b> (strategy <code>{wallet_pool.strategy.value}</code>)\n"]
    for stats in wallet_pool.get_all_stats():
        key = stats['public_key']
        lines.append(
            f"<b>{escape(stats['name'])}</b> <code>{key[:4]}…{key[-4:]}</code>\n"
            f"   {stats['usdc_balance']:.2f} USDC | {stats['sol_balance']:.4f} SOL\n"
            f"   Trades {stats['successful_trades']}/{stats['total_trades']} | P&amp;L ${stats['total_profit']:+.2f}"
        )
    totals = wallet_pool.get_total_balances()
    lines.append(
        f"\n<b>Total:</b> {totals['usdc']:.2f} USDC | {totals['sol']:.4f} SOL | P&amp;L ${wallet_pool.get_total_profit():+.2f}"
    )
    await update.message.reply_html("\n".join(lines))

async def opportunities_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Shows the most recent logged opportunities."""
    opportunity_log = context.application.bot_data.get('opportunity_log')
    recent = opportunity_log.recent(5) if opportunity_log else []
    if not recent:
        await update.message.reply_text("No opportunities recorded yet.")
        return

    lines = ["<b>📈 Recent Opportunities</b>\n"]
    for opp in reversed(recent):
        lines.append(
            f"{opp.timestamp.strftime('%m-%d %H:%M:%S')} <b>{escape(opp.symbol)}</b> "
            f"{opp.spread_percent:.3f}% | ${opp.venue_price:.2f} vs ${opp.reference_price:.2f} | est. ${opp.estimated_profit:.2f}"
        )
    await update.message.reply_html("\n".join(lines))

async def trades_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Shows the most recent recorded trades."""
    repository = context.application.bot_data.get('repository')
    trades = await repository.fetch_recent_trades(limit=5) if repository else []
    if not trades:
        await update.message.reply_text("No trades recorded yet.")
        return

    lines = ["<b>💱 Recent Trades</b>\n"]
    for trade in trades:
        icon = "🧪" if trade.simulated else ("✅" if trade.success else "❌")
        detail = f"P&amp;L ${trade.realized_profit:+.4f}" if trade.success else escape(trade.error or "failed")
        lines.append(
            f"{icon} {trade.recorded_at.strftime('%m-%d %H:%M:%S')} <b>{escape(trade.symbol)}</b> "
            f"${trade.notional:.2f} | {detail}"
        )
    await update.message.reply_html("\n".join(lines))

async def scaninfo_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays the current monitor configuration."""
    config = context.application.bot_data.get('config')

    if not config:
        await update.message.reply_text("Scanner configuration not found.")
        return

    tokens = ", ".join(asset.symbol for asset in config.assets)
    message = (
        f"<b>🔍 Current Monitor Configuration</b>\n\n"
        f"<b>Tokens:</b> <code>{escape(tokens)}</code>\n"
        f"<b>Reference:</b> <code>{config.reference_source}</code>\n"
        f"<b>Interval:</b> <code>{config.poll_interval:g}s</code>\n"
        f"<b>Min Spread:</b> <code>{config.min_spread_percent}%</code>\n"
        f"<b>Min Profit:</b> <code>${config.min_profit:.2f}</code>\n"
        f"<b>Notional:</b> <code>${config.trade_amount_usdc:.2f}</code>\n"
        f"<b>Take Profit:</b> <code>{config.take_profit_percent}%</code> | "
        f"<b>Max Hold:</b> <code>{config.max_hold_seconds:g}s</code>"
    )

    await update.message.reply_html(message)
