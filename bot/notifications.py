# bot/notifications.py
import logging
from html import escape

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from analysis.models import Opportunity, TradeIntent, TradeOutcome

logger = logging.getLogger(__name__)


def format_opportunity_message(opp: Opportunity) -> str:
    return (
        f"<b>📈 {escape(opp.symbol)} spread {opp.spread_percent:.3f}%</b>\n"
        f"Direction: <code>{opp.direction}</code>\n"
        f"Jupiter: <code>${opp.venue_price:.4f}</code>\n"
        f"Reference: <code>${opp.reference_price:.4f}</code>\n"
        f"Est. profit: <code>${opp.estimated_profit:.2f}</code>"
    )


def format_trade_message(intent: TradeIntent, outcome: TradeOutcome) -> str:
    symbol = escape(intent.asset.symbol)
    if outcome.success:
        title = "🧪 Simulated trade" if outcome.simulated else "✅ Trade closed"
        lines = [
            f"<b>{title}: {symbol}</b>",
            f"Wallet: <code>{escape(outcome.wallet_name or '-')}</code>",
            f"Notional: <code>${intent.notional:.2f}</code>",
            f"P&amp;L: <code>${outcome.realized_profit:+.4f}</code>",
        ]
        if outcome.exit_reason:
            lines.append(f"Exit: <code>{outcome.exit_reason}</code>")
    else:
        lines = [
            f"<b>❌ Trade failed: {symbol}</b>",
            f"<pre>{escape(outcome.error or 'unknown error')}</pre>",
        ]
    if outcome.signature:
        lines.append(f"Tx: <code>{escape(outcome.signature)}</code>")
    return "\n".join(lines)


class TelegramNotifier:
    """Pushes opportunity and trade alerts to the operator chat."""

    def __init__(self, bot: Bot, chat_id: str):
        self.bot = bot
        self.chat_id = chat_id

    async def send(self, text: str) -> bool:
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
            )
            return True
        except TelegramError as exc:
            logger.warning("Telegram alert failed: %s", exc)
            return False

    async def send_opportunity(self, opp: Opportunity) -> bool:
        return await self.send(format_opportunity_message(opp))

    async def send_trade_outcome(self, intent: TradeIntent, outcome: TradeOutcome) -> bool:
        return await self.send(format_trade_message(intent, outcome))
