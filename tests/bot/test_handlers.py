import time
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.keypair import Keypair

from analysis.models import AssetStats
from bot.handlers import (
    help_command,
    opportunities_command,
    scaninfo_command,
    stats_command,
    status_command,
    trades_command,
    wallets_command,
)
from services.wallet_pool import WalletPool
from storage.models import TradeRecord


@pytest.fixture
def update():
    update = MagicMock()
    update.message.reply_html = AsyncMock()
    update.message.reply_text = AsyncMock()
    return update


def _context(**bot_data):
    context = MagicMock()
    context.application.bot_data = bot_data
    return context


def _sent_html(update):
    update.message.reply_html.assert_awaited_once()
    return update.message.reply_html.call_args.args[0]


@pytest.mark.asyncio
async def test_help_lists_commands(update):
    await help_command(update, _context())

    text = _sent_html(update)
    assert '/status' in text
    assert '/wallets' in text


@pytest.mark.asyncio
async def test_status_reports_running_scanner(update, mock_config):
    scanner = MagicMock(ticks=7, last_tick_time='2025-01-01 00:00:00 UTC', found_last_tick=1, last_error=None)
    scanner_task = MagicMock()
    scanner_task.done.return_value = False

    await status_command(update, _context(
        config=mock_config,
        scanner=scanner,
        scanner_task=scanner_task,
        trade_executor=None,
        start_time=time.time(),
    ))

    text = _sent_html(update)
    assert 'Running' in text
    assert 'SIMULATION' in text
    assert 'No wallets loaded' in text
    assert '<code>7</code>' in text


@pytest.mark.asyncio
async def test_stats_without_scanner(update):
    await stats_command(update, _context())

    update.message.reply_text.assert_awaited_once_with("Monitor is not running.")


@pytest.mark.asyncio
async def test_stats_lists_each_token(update):
    stats = AssetStats(total_checks=4, avg_spread_percent=0.5, max_spread_percent=0.9, opportunities_found=1)
    stats.last_spread_percent = 0.6
    scanner = MagicMock()
    scanner.summary.return_value = {'TSLAr': stats}

    await stats_command(update, _context(scanner=scanner))

    text = _sent_html(update)
    assert '<b>TSLAr</b>: checks 4' in text
    assert 'max 0.900%' in text


@pytest.mark.asyncio
async def test_wallets_lists_balances(update):
    pool = WalletPool(MagicMock())
    wallet = pool.add_wallet(str(Keypair()))
    wallet.usdc_balance = 250.0
    pool.record_trade(wallet, True, 1.5)

    await wallets_command(update, _context(wallet_pool=pool))

    text = _sent_html(update)
    assert 'Wallet-1' in text
    assert '250.00 USDC' in text
    assert 'Trades 1/1' in text


@pytest.mark.asyncio
async def test_wallets_without_pool(update):
    await wallets_command(update, _context())

    update.message.reply_text.assert_awaited_once_with("No wallets loaded.")


@pytest.mark.asyncio
async def test_opportunities_empty(update):
    log = MagicMock()
    log.recent.return_value = []

    await opportunities_command(update, _context(opportunity_log=log))

    update.message.reply_text.assert_awaited_once_with("No opportunities recorded yet.")


@pytest.mark.asyncio
async def test_trades_lists_recent(update):
    repository = MagicMock()
    repository.fetch_recent_trades = AsyncMock(return_value=[
        TradeRecord(
            id=1,
            symbol='TSLAr',
            direction='BUY_CHEAP_VENUE',
            notional=100.0,
            success=False,
            simulated=False,
            signature='buy',
            realized_profit=0.0,
            expected_profit=0.49,
            error='Sell <failed>',
            wallet_name='Wallet-1',
            exit_reason=None,
            recorded_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        )
    ])

    await trades_command(update, _context(repository=repository))

    text = _sent_html(update)
    assert 'TSLAr' in text
    assert 'Sell &lt;failed&gt;' in text
    repository.fetch_recent_trades.assert_awaited_once_with(limit=5)


@pytest.mark.asyncio
async def test_scaninfo_shows_thresholds(update, mock_config):
    await scaninfo_command(update, _context(config=mock_config))

    text = _sent_html(update)
    assert 'TSLAr' in text
    assert '0.5%' in text
    assert '$100.00' in text
