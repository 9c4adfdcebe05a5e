import logging

import requests
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from . import config

# Enable logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger(__name__)

ACTIONS = {"approve", "reject"}
TARGETS = {"wd": "withdrawals", "sub": "submissions"}


def parse_callback(data):
    """Split ``approve_wd_<id>`` style callback data into (action, kind, id).

    Returns ``None`` for anything that is not a review button.
    """
    parts = (data or "").split("_", 2)
    if len(parts) != 3:
        return None
    action, target, record_id = parts
    if action not in ACTIONS or target not in TARGETS or not record_id:
        return None
    return action, TARGETS[target], record_id


class AdminAPI:
    """Thin client for the backend's admin endpoints."""

    def __init__(self, base_url, api_key, admin_id=None, timeout=config.REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers["Authorization"] = f"Bearer {api_key}"
        if admin_id:
            self.session.headers["X-Admin-Id"] = f"telegram:{admin_id}"
        self.timeout = timeout

    def _call(self, method, path, **kwargs):
        response = self.session.request(method, f"{self.base_url}/api/admin{path}", timeout=self.timeout, **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise RuntimeError(f"{response.status_code}: {detail}")
        return response.json()

    def stats(self):
        return self._call("GET", "/stats")

    def pending(self, kind):
        return self._call("GET", f"/{kind}/pending")

    def approve(self, kind, record_id):
        return self._call("POST", f"/{kind}/{record_id}/approve")

    def reject(self, kind, record_id, reason):
        return self._call("POST", f"/{kind}/{record_id}/reject", json={"reason": reason})


def get_api():
    return AdminAPI(config.BACKEND_URL, config.ADMIN_API_KEY, config.TELEGRAM_ADMIN_ID)


def is_admin(user):
    return user is not None and user.id == config.TELEGRAM_ADMIN_ID


# Start command
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user = update.effective_user

    if not is_admin(user):
        await update.message.reply_text(
            f"👋 Hi {user.first_name}! This bot only serves CashByKing admins."
        )
        return

    await admin(update, context)


# Admin commands
async def admin(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not is_admin(update.effective_user):
        await update.message.reply_text("❌ You are not authorized to use admin commands.")
        return

    keyboard = [
        [InlineKeyboardButton("📊 Stats", callback_data='stats')],
        [InlineKeyboardButton("📋 Pending Submissions", callback_data='pending_submissions')],
        [InlineKeyboardButton("💸 Pending Withdrawals", callback_data='pending_withdrawals')],
    ]
    await update.message.reply_text(
        "👑 Admin Panel\n\n"
        "Select an option:",
        reply_markup=InlineKeyboardMarkup(keyboard)
    )


def format_stats(stats):
    symbol = config.CURRENCY_SYMBOL
    return (
        "📊 CashByKing Stats\n\n"
        f"👥 Users: {stats.get('totalUsers', 0)} ({stats.get('verifiedUsers', 0)} verified)\n"
        f"🧩 Active tasks: {stats.get('activeTasks', 0)}\n"
        f"⏳ Pending reviews: {stats.get('pendingReviews', 0)}\n"
        f"💸 Pending withdrawals: {stats.get('pendingWithdrawals', 0)}\n"
        f"💰 Total withdrawn: {symbol}{stats.get('totalWithdrawn', 0)}"
    )


def pending_keyboard(kind, items):
    target = "wd" if kind == "withdrawals" else "sub"
    rows = []
    for item in items[:10]:
        label = item.get("taskTitle") or f"{config.CURRENCY_SYMBOL}{item.get('amount')} {item.get('method', '')}"
        rows.append([
            InlineKeyboardButton(f"✅ {label}", callback_data=f"approve_{target}_{item['id']}"),
            InlineKeyboardButton("❌", callback_data=f"reject_{target}_{item['id']}"),
        ])
    return InlineKeyboardMarkup(rows)


async def pending(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not is_admin(update.effective_user):
        await update.message.reply_text("❌ You are not authorized to use admin commands.")
        return

    kind = "withdrawals" if context.args and context.args[0].startswith("w") else "submissions"
    try:
        items = get_api().pending(kind)
    except (requests.RequestException, RuntimeError) as e:
        logger.error(f"Error loading pending {kind}: {e}")
        await update.message.reply_text(f"⚠️ Could not load pending {kind}.")
        return

    if not items:
        await update.message.reply_text(f"✅ No pending {kind}.")
        return
    await update.message.reply_text(
        f"⏳ {len(items)} pending {kind}",
        reply_markup=pending_keyboard(kind, items)
    )


# Callback query handler
async def button_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query

    if not is_admin(query.from_user):
        await query.answer("❌ You are not authorized!", show_alert=True)
        return
    await query.answer()

    data = query.data
    api = get_api()

    if data == 'stats':
        try:
            await query.edit_message_text(format_stats(api.stats()))
        except (requests.RequestException, RuntimeError) as e:
            logger.error(f"Error loading stats: {e}")
            await query.edit_message_text("⚠️ Could not load stats.")
        return

    if data in ('pending_submissions', 'pending_withdrawals'):
        kind = data.split('_', 1)[1]
        try:
            items = api.pending(kind)
        except (requests.RequestException, RuntimeError) as e:
            logger.error(f"Error loading pending {kind}: {e}")
            await query.edit_message_text(f"⚠️ Could not load pending {kind}.")
            return
        if not items:
            await query.edit_message_text(f"✅ No pending {kind}.")
        else:
            await query.edit_message_text(
                f"⏳ {len(items)} pending {kind}",
                reply_markup=pending_keyboard(kind, items)
            )
        return

    parsed = parse_callback(data)
    if parsed is None:
        logger.warning(f"Unknown callback data: {data}")
        return

    action, kind, record_id = parsed
    if action == 'reject':
        # The reason arrives as the admin's next text message
        context.user_data['pending_reject'] = (kind, record_id)
        await query.edit_message_text(
            f"{query.message.text}\n\n✏️ Send the rejection reason for {record_id}:"
        )
        return

    try:
        api.approve(kind, record_id)
    except (requests.RequestException, RuntimeError) as e:
        logger.error(f"Error approving {kind} {record_id}: {e}")
        await query.edit_message_text(f"{query.message.text}\n\n⚠️ Approve failed: {e}")
        return
    await query.edit_message_text(f"{query.message.text}\n\n✅ Approved")


async def reason_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    pending_reject = context.user_data.pop('pending_reject', None)
    if pending_reject is None or not is_admin(update.effective_user):
        return

    kind, record_id = pending_reject
    reason = update.message.text.strip()
    try:
        get_api().reject(kind, record_id, reason)
    except (requests.RequestException, RuntimeError) as e:
        logger.error(f"Error rejecting {kind} {record_id}: {e}")
        await update.message.reply_text(f"⚠️ Reject failed: {e}")
        return
    await update.message.reply_text(f"❌ Rejected {record_id}: {reason}")


# Main function
def main():
    if not config.TELEGRAM_BOT_TOKEN:
        raise ValueError("TELEGRAM_BOT_TOKEN environment variable not set")

    application = Application.builder().token(config.TELEGRAM_BOT_TOKEN).build()

    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("admin", admin))
    application.add_handler(CommandHandler("pending", pending))
    application.add_handler(CallbackQueryHandler(button_callback))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, reason_message))

    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == '__main__':
    main()
