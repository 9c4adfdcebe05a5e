import asyncio
import logging
from datetime import datetime
from functools import lru_cache

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup

from .. import config
from ..models import NotificationKind

logger = logging.getLogger(__name__)


def format_message(kind, payload):
    symbol = config.CURRENCY_SYMBOL
    now = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    if kind == NotificationKind.WITHDRAWAL_REQUEST:
        details = ", ".join(f"{k}: {v}" for k, v in (payload.get("details") or {}).items())
        return (
            "💰 New Withdrawal Request\n\n"
            f"👤 User: {payload.get('userName', 'User')} ({payload.get('userEmail', '')})\n"
            f"💸 Amount: {symbol}{payload.get('amount')}\n"
            f"🏦 Method: {payload.get('method')}\n"
            f"📱 Details: {details or '-'}\n\n"
            f"⏰ Time: {now}"
        )

    if kind == NotificationKind.TASK_SUBMISSION:
        return (
            "📋 New Task Submission\n\n"
            f"👤 User: {payload.get('userName', 'User')} ({payload.get('userEmail', '')})\n"
            f"🧩 Task: {payload.get('taskTitle')} ({payload.get('taskId')})\n"
            f"💵 Reward: {symbol}{payload.get('taskPrice')}\n\n"
            f"⏰ Time: {now}"
        )

    return (
        "👑 Admin Action\n\n"
        f"🔧 {payload.get('action')}\n"
        f"👤 Admin: {payload.get('adminId')}\n"
        f"🆔 Target: {payload.get('targetId')}\n\n"
        f"⏰ Time: {now}"
    )


def review_buttons(kind, payload):
    if kind == NotificationKind.WITHDRAWAL_REQUEST:
        target = f"wd_{payload['withdrawalId']}"
    elif kind == NotificationKind.TASK_SUBMISSION:
        target = f"sub_{payload['submissionId']}"
    else:
        return None
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("✅ Approve", callback_data=f"approve_{target}"),
         InlineKeyboardButton("❌ Reject", callback_data=f"reject_{target}")]
    ])


class TelegramNotifier:
    """Fire-and-forget messages to the admin chat. Never raises."""

    def __init__(self, token, chat_id):
        self.token = token
        self.chat_id = chat_id

    @property
    def enabled(self):
        return bool(self.token and self.chat_id)

    def notify(self, kind, payload):
        kind = NotificationKind(kind)
        if not self.enabled:
            logger.info(f"Telegram not configured, dropping {kind.value} notification")
            return
        try:
            asyncio.run(self._send(format_message(kind, payload), review_buttons(kind, payload)))
        except Exception as e:
            logger.error(f"Error sending {kind.value} notification: {e}")

    async def _send(self, text, reply_markup=None):
        async with Bot(self.token) as bot:
            await bot.send_message(chat_id=self.chat_id, text=text, reply_markup=reply_markup)


@lru_cache(maxsize=None)
def get_notifier():
    return TelegramNotifier(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_ADMIN_ID)
