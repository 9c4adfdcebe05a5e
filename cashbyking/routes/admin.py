from typing import Optional

from fastapi import APIRouter, Depends

from ..context import RequestContext, admin_context
from ..database import TRANSACTIONS
from ..models import (
    BalanceAdjustment,
    BulkBonusRequest,
    ReasonRequest,
    SubmissionStatus,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
    Transaction,
    TransactionType,
    VerifyRequest,
    WithdrawalStatus,
)
from ..services import accounts, review, tasks, withdrawals
from .users import dump

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/stats")
def get_admin_stats(ctx: RequestContext = Depends(admin_context)):
    users = accounts.list_users(ctx)
    all_tasks = tasks.list_tasks(ctx)
    all_withdrawals = withdrawals.list_withdrawals(ctx)

    return {
        "totalUsers": len(users),
        "verifiedUsers": sum(1 for u in users if u.personal_info.verified),
        "totalBalance": float(sum(u.financial_info.balance for u in users)),
        "totalEarned": float(sum(u.financial_info.total_earned for u in users)),
        "activeTasks": sum(1 for t in all_tasks if t.status == TaskStatus.ACTIVE),
        "totalTasks": len(all_tasks),
        "pendingReviews": len(tasks.list_submissions(ctx, status=SubmissionStatus.PENDING)),
        "pendingWithdrawals": sum(1 for w in all_withdrawals if w.status == WithdrawalStatus.PENDING),
        "totalWithdrawn": float(sum(
            w.amount for w in all_withdrawals if w.status == WithdrawalStatus.APPROVED
        )),
    }


# Users

@router.get("/users")
def get_users(ctx: RequestContext = Depends(admin_context)):
    users = sorted(accounts.list_users(ctx), key=lambda u: u.personal_info.join_date or 0, reverse=True)
    return [dump(u) for u in users]


@router.post("/users/{uid}/verify")
def verify_user(uid: str, data: Optional[VerifyRequest] = None, ctx: RequestContext = Depends(admin_context)):
    verified = data.verified if data else True
    return dump(accounts.set_verified(ctx, uid, verified))


@router.post("/users/{uid}/balance")
def adjust_user_balance(uid: str, data: BalanceAdjustment, ctx: RequestContext = Depends(admin_context)):
    txn = accounts.adjust_balance(ctx, uid, data.amount, data.reason)
    return {
        "success": True,
        "transaction": dump(txn),
        "user": dump(accounts.get_user(ctx, uid)),
    }


@router.delete("/users/{uid}")
def delete_user(uid: str, ctx: RequestContext = Depends(admin_context)):
    accounts.delete_user(ctx, uid)
    return {"success": True, "message": f"User {uid} deleted"}


# Tasks

@router.post("/tasks")
def create_task(data: TaskCreate, ctx: RequestContext = Depends(admin_context)):
    return dump(tasks.create_task(ctx, data))


@router.put("/tasks/{task_id}")
def update_task(task_id: str, data: TaskUpdate, ctx: RequestContext = Depends(admin_context)):
    return dump(tasks.update_task(ctx, task_id, data))


@router.post("/tasks/{task_id}/toggle")
def toggle_task(task_id: str, ctx: RequestContext = Depends(admin_context)):
    return dump(tasks.toggle_task(ctx, task_id))


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, ctx: RequestContext = Depends(admin_context)):
    tasks.delete_task(ctx, task_id)
    return {"success": True, "message": f"Task {task_id} deleted"}


# Submissions

@router.get("/submissions/pending")
def get_pending_submissions(ctx: RequestContext = Depends(admin_context)):
    pending = tasks.list_submissions(ctx, status=SubmissionStatus.PENDING)
    # Oldest first, review queue order
    return [dump(s) for s in reversed(pending)]


@router.post("/submissions/{submission_id}/approve")
def approve_submission(submission_id: str, ctx: RequestContext = Depends(admin_context)):
    submission = review.approve_submission(ctx, submission_id)
    return {"success": True, "message": "Submission approved", "submission": dump(submission)}


@router.post("/submissions/{submission_id}/reject")
def reject_submission(submission_id: str, data: ReasonRequest, ctx: RequestContext = Depends(admin_context)):
    submission = review.reject_submission(ctx, submission_id, data.reason)
    return {"success": True, "message": "Submission rejected", "submission": dump(submission)}


# Withdrawals

@router.get("/withdrawals/pending")
def get_pending_withdrawals(ctx: RequestContext = Depends(admin_context)):
    pending = withdrawals.list_withdrawals(ctx, status=WithdrawalStatus.PENDING)
    return [dump(w) for w in reversed(pending)]


@router.post("/withdrawals/{withdrawal_id}/approve")
def approve_withdrawal(withdrawal_id: str, ctx: RequestContext = Depends(admin_context)):
    withdrawal = review.approve_withdrawal(ctx, withdrawal_id)
    return {"success": True, "message": "Withdrawal approved", "withdrawal": dump(withdrawal)}


@router.post("/withdrawals/{withdrawal_id}/reject")
def reject_withdrawal(withdrawal_id: str, data: ReasonRequest, ctx: RequestContext = Depends(admin_context)):
    withdrawal = review.reject_withdrawal(ctx, withdrawal_id, data.reason)
    return {"success": True, "message": "Withdrawal rejected", "withdrawal": dump(withdrawal)}


# Ledger

@router.get("/transactions")
def get_transactions(
    uid: Optional[str] = None,
    type: Optional[TransactionType] = None,
    limit: int = 100,
    ctx: RequestContext = Depends(admin_context),
):
    records = ctx.store.get(TRANSACTIONS) or {}
    transactions = [Transaction.from_record(key, record) for key, record in records.items()]
    if uid:
        transactions = [t for t in transactions if t.user_id == uid]
    if type:
        transactions = [t for t in transactions if t.type == type]
    transactions.sort(key=lambda t: t.timestamp or 0, reverse=True)
    return [dump(t) for t in transactions[:limit]]


@router.post("/bonus/bulk")
def bulk_bonus(data: BulkBonusRequest, ctx: RequestContext = Depends(admin_context)):
    result = accounts.bulk_bonus(ctx, data.amount, data.reason)
    return {"success": True, **result.to_dict()}
