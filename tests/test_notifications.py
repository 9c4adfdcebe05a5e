import pytest

from cashbyking.models import NotificationKind
from cashbyking.utils import telegram
from cashbyking.utils.telegram import TelegramNotifier, format_message, review_buttons
from telegram_bot.bot import parse_callback, pending_keyboard

WITHDRAWAL = {
    "userName": "Asha",
    "userEmail": "asha@example.com",
    "amount": "80.00",
    "method": "UPI",
    "details": {"upiId": "asha@upi"},
    "withdrawalId": "w123",
}


def test_withdrawal_message_and_buttons():
    text = format_message(NotificationKind.WITHDRAWAL_REQUEST, WITHDRAWAL)
    assert "New Withdrawal Request" in text
    assert "80.00" in text
    assert "upiId: asha@upi" in text

    buttons = review_buttons(NotificationKind.WITHDRAWAL_REQUEST, WITHDRAWAL).inline_keyboard[0]
    assert [b.callback_data for b in buttons] == ["approve_wd_w123", "reject_wd_w123"]


def test_submission_buttons():
    payload = {"taskTitle": "Follow", "taskId": "TK-1", "taskPrice": "25.00", "submissionId": "s9"}
    assert "New Task Submission" in format_message(NotificationKind.TASK_SUBMISSION, payload)
    buttons = review_buttons(NotificationKind.TASK_SUBMISSION, payload).inline_keyboard[0]
    assert [b.callback_data for b in buttons] == ["approve_sub_s9", "reject_sub_s9"]


def test_admin_action_has_no_buttons():
    payload = {"action": "User deleted", "adminId": "admin-1", "targetId": "asha"}
    assert "User deleted" in format_message(NotificationKind.ADMIN_ACTION, payload)
    assert review_buttons(NotificationKind.ADMIN_ACTION, payload) is None


def test_unconfigured_notifier_drops_messages(monkeypatch):
    sent = []

    async def fake_send(self, text, reply_markup=None):
        sent.append(text)

    monkeypatch.setattr(TelegramNotifier, "_send", fake_send)
    TelegramNotifier(None, None).notify("admin-action", {"action": "x"})
    assert sent == []

    TelegramNotifier("token", "42").notify("withdrawal-request", WITHDRAWAL)
    assert len(sent) == 1


def test_notifier_failures_are_swallowed(monkeypatch):
    async def broken_send(self, text, reply_markup=None):
        raise RuntimeError("telegram down")

    monkeypatch.setattr(TelegramNotifier, "_send", broken_send)
    TelegramNotifier("token", "42").notify(NotificationKind.TASK_SUBMISSION, {"submissionId": "s1"})


def test_get_notifier_is_shared():
    assert telegram.get_notifier() is telegram.get_notifier()


@pytest.mark.parametrize("data, expected", [
    ("approve_wd_w123", ("approve", "withdrawals", "w123")),
    ("reject_sub_18c2f_ab", ("reject", "submissions", "18c2f_ab")),
    ("approve_xx_1", None),
    ("delete_wd_1", None),
    ("approve_wd_", None),
    ("stats", None),
    (None, None),
])
def test_parse_callback(data, expected):
    assert parse_callback(data) == expected


def test_pending_keyboard():
    keyboard = pending_keyboard("submissions", [{"id": "s1", "taskTitle": "Follow"}])
    approve, reject = keyboard.inline_keyboard[0]
    assert approve.callback_data == "approve_sub_s1"
    assert reject.callback_data == "reject_sub_s1"
