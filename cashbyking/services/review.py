"""Admin review of task submissions and withdrawal requests.

Each submission or withdrawal moves from ``pending`` to ``approved`` or
``rejected`` exactly once. The move is claimed with a store transaction on
the record's status, and every side effect of a decision (ledger entries,
counters, ``completedBy``) is written in the same ``atomic()`` scope as the
claim, so a second reviewer racing on the same record gets a
``ConflictError`` and nothing is applied twice.

An approval locks the submitter's and the referrer's records in key order
right after the claim, before touching either, so two approvals for users
who referred each other wait on one another instead of deadlocking.
"""
import logging

from ..database import PENDING_TASKS, TASKS, USERS, WITHDRAWALS
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    NotificationKind,
    Submission,
    SubmissionStatus,
    Withdrawal,
    WithdrawalStatus,
)

logger = logging.getLogger(__name__)


def _require_reason(reason):
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to reject")
    return reason


def _claim(ctx, path, label, changes):
    """Move the pending record at ``path`` to its final state and return it."""

    def decide(record):
        if record is None:
            raise NotFoundError(f"{label} not found")
        if record.get("status") != "pending":
            raise ConflictError(f"{label} already {record.get('status')}")
        record.update(changes)
        return record

    return ctx.store.transaction(path, decide)


def _bump_history(ctx, uid, outcome):
    """Move one submission out of ``pending``; returns the previous ``outcome`` count.

    Returns None, writing nothing, if the user no longer exists.
    """
    previous = {}

    def move(record):
        if not record or "personalInfo" not in record:
            logger.warning(f"User {uid} no longer exists, task history not updated")
            return record
        history = record.setdefault("taskHistory", {})
        previous[outcome] = int(history.get(outcome) or 0)
        history["pending"] = max(0, int(history.get("pending") or 0) - 1)
        history[outcome] = previous[outcome] + 1
        return record

    ctx.store.transaction(f"{USERS}/{uid}", move)
    return previous.get(outcome)


def _lock_users(ctx, uid):
    """Lock the submitter and their referrer in key order before any write."""
    referrer_id = ctx.store.get(f"{USERS}/{uid}/personalInfo/referrerId")
    ctx.store.lock(*(f"{USERS}/{user}" for user in (uid, referrer_id) if user))


def _add_completed_by(ctx, task_id, uid):
    def append(record):
        if record is None:
            logger.warning(f"Task {task_id} no longer exists, completedBy not updated")
            return None
        completed_by = record.get("completedBy") or []
        if uid not in completed_by:
            completed_by.append(uid)
        record["completedBy"] = completed_by
        return record

    ctx.store.transaction(f"{TASKS}/{task_id}", append)


# Submissions

def approve_submission(ctx, submission_id) -> Submission:
    ctx.require_admin()
    path = f"{PENDING_TASKS}/{submission_id}"

    with ctx.store.atomic():
        record = _claim(ctx, path, f"Submission {submission_id}", {
            "status": SubmissionStatus.APPROVED.value,
            "reviewedAt": ctx.store.server_timestamp(),
            "reviewedBy": ctx.actor_id,
        })
        submission = Submission.from_record(submission_id, record)
        _lock_users(ctx, submission.user_id)

        ctx.ledger.credit(
            submission.user_id,
            submission.task_price,
            f"Task completion: {submission.task_id}",
            submission_id=submission_id,
        )
        completed_before = _bump_history(ctx, submission.user_id, "completed")
        _add_completed_by(ctx, submission.task_id, submission.user_id)

        if completed_before == 0:
            ctx.ledger.award_first_task_bonus(submission.user_id)

    logger.info(
        f"Admin {ctx.actor_id} approved submission {submission_id} "
        f"({submission.task_id}, {submission.task_price} to {submission.user_id})"
    )
    ctx.notify(NotificationKind.ADMIN_ACTION, {
        "action": f"Task approved: {submission.task_title or submission.task_id}",
        "adminId": ctx.actor_id,
        "targetId": submission.user_id,
    })
    return submission


def reject_submission(ctx, submission_id, reason) -> Submission:
    ctx.require_admin()
    reason = _require_reason(reason)
    path = f"{PENDING_TASKS}/{submission_id}"

    with ctx.store.atomic():
        record = _claim(ctx, path, f"Submission {submission_id}", {
            "status": SubmissionStatus.REJECTED.value,
            "reviewedAt": ctx.store.server_timestamp(),
            "reviewedBy": ctx.actor_id,
            "adminFeedback": reason,
        })
        submission = Submission.from_record(submission_id, record)

        _bump_history(ctx, submission.user_id, "rejected")
        ctx.ledger.log_info(
            submission.user_id,
            f"Task rejected: {submission.task_id} ({reason})",
            submission_id=submission_id,
        )

    logger.info(f"Admin {ctx.actor_id} rejected submission {submission_id}: {reason}")
    ctx.notify(NotificationKind.ADMIN_ACTION, {
        "action": f"Task rejected: {submission.task_title or submission.task_id} ({reason})",
        "adminId": ctx.actor_id,
        "targetId": submission.user_id,
    })
    return submission


# Withdrawals

def approve_withdrawal(ctx, withdrawal_id) -> Withdrawal:
    ctx.require_admin()
    path = f"{WITHDRAWALS}/{withdrawal_id}"

    with ctx.store.atomic():
        record = _claim(ctx, path, f"Withdrawal {withdrawal_id}", {
            "status": WithdrawalStatus.APPROVED.value,
            "processedAt": ctx.store.server_timestamp(),
            "approvedBy": ctx.actor_id,
        })
        withdrawal = Withdrawal.from_record(withdrawal_id, record)
        ctx.ledger.debit(
            withdrawal.user_id,
            withdrawal.amount,
            "Withdrawal approved",
            withdrawal_id=withdrawal_id,
        )

    logger.info(
        f"Admin {ctx.actor_id} approved withdrawal {withdrawal_id} "
        f"({withdrawal.amount} for {withdrawal.user_id})"
    )
    ctx.notify(NotificationKind.ADMIN_ACTION, {
        "action": f"Withdrawal approved: {withdrawal.amount} via {withdrawal.method}",
        "adminId": ctx.actor_id,
        "targetId": withdrawal.user_id,
    })
    return withdrawal


def reject_withdrawal(ctx, withdrawal_id, reason) -> Withdrawal:
    ctx.require_admin()
    reason = _require_reason(reason)
    path = f"{WITHDRAWALS}/{withdrawal_id}"

    with ctx.store.atomic():
        record = _claim(ctx, path, f"Withdrawal {withdrawal_id}", {
            "status": WithdrawalStatus.REJECTED.value,
            "processedAt": ctx.store.server_timestamp(),
            "rejectedBy": ctx.actor_id,
            "adminReason": reason,
        })
        withdrawal = Withdrawal.from_record(withdrawal_id, record)
        ctx.ledger.log_info(
            withdrawal.user_id,
            f"Withdrawal rejected: {reason}",
            withdrawal_id=withdrawal_id,
        )

    logger.info(f"Admin {ctx.actor_id} rejected withdrawal {withdrawal_id}: {reason}")
    ctx.notify(NotificationKind.ADMIN_ACTION, {
        "action": f"Withdrawal rejected: {withdrawal.amount} ({reason})",
        "adminId": ctx.actor_id,
        "targetId": withdrawal.user_id,
    })
    return withdrawal
