import logging

from .. import config
from ..database import WITHDRAWALS
from ..errors import InsufficientBalanceError, ValidationError
from ..models import NotificationKind, Withdrawal, WithdrawalMethod, WithdrawalStatus, to_money
from .accounts import get_user

logger = logging.getLogger(__name__)

REQUIRED_DETAILS = {
    WithdrawalMethod.UPI: {"upiId": "UPI ID"},
    WithdrawalMethod.BANK: {
        "accountNumber": "Account number",
        "ifscCode": "IFSC code",
        "accountName": "Account holder name",
    },
}

def withdrawal_methods():
    return [
        {"method": method.value, "fields": list(fields)}
        for method, fields in REQUIRED_DETAILS.items()
    ]

def withdrawal_rules():
    return {
        "minimumAmount": float(config.MIN_WITHDRAWAL),
        "currency": config.CURRENCY_SYMBOL,
        "methods": [method.value for method in WithdrawalMethod],
        "processing": "Withdrawals are reviewed by an admin; the balance is debited on approval.",
    }

def validate_request(amount, method, details):
    """Return the cleaned (amount, method, details) or raise ValidationError."""
    amount = to_money(amount, exact=True)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if amount < config.MIN_WITHDRAWAL:
        raise ValidationError(f"Minimum withdrawal is {config.CURRENCY_SYMBOL}{config.MIN_WITHDRAWAL}")

    try:
        method = WithdrawalMethod(method)
    except ValueError:
        raise ValidationError(f"Invalid withdrawal method: {method}")

    details = {key: str(value).strip() for key, value in (details or {}).items() if value is not None}
    missing = [label for key, label in REQUIRED_DETAILS[method].items() if not details.get(key)]
    if missing:
        raise ValidationError(f"Missing {', '.join(missing)}")

    return amount, method, details

def request_withdrawal(ctx, amount, method, details) -> Withdrawal:
    """Record a pending withdrawal. The balance is only debited on approval."""
    uid = ctx.actor_id
    amount, method, details = validate_request(amount, method, details)

    with ctx.store.atomic():
        user = get_user(ctx, uid)
        balance = user.financial_info.balance
        if amount > balance:
            raise InsufficientBalanceError(
                f"Insufficient balance: {balance} available, {amount} requested"
            )

        key = ctx.store.new_key()
        withdrawal = Withdrawal(
            id=key,
            user_id=uid,
            amount=amount,
            method=method,
            details=details,
            status=WithdrawalStatus.PENDING,
            timestamp=ctx.store.server_timestamp(),
        )
        ctx.store.set(f"{WITHDRAWALS}/{key}", withdrawal.to_record())

    logger.info(f"Withdrawal {key} of {amount} requested by {uid} via {method.value}")
    ctx.notify(NotificationKind.WITHDRAWAL_REQUEST, {
        "userName": user.personal_info.name,
        "userEmail": user.personal_info.email,
        "amount": str(amount),
        "method": method.value,
        "details": details,
        "withdrawalId": key,
    })
    return withdrawal


def list_withdrawals(ctx, uid=None, status=None):
    records = ctx.store.get(WITHDRAWALS) or {}
    withdrawals = [Withdrawal.from_record(key, record) for key, record in records.items()]
    if uid:
        withdrawals = [w for w in withdrawals if w.user_id == uid]
    if status:
        withdrawals = [w for w in withdrawals if w.status == status]
    return sorted(withdrawals, key=lambda w: w.timestamp or 0, reverse=True)
