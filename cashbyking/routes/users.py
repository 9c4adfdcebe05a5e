from fastapi import APIRouter, Depends

from ..context import RequestContext, public_context, user_context
from ..database import TRANSACTIONS
from ..models import SignupRequest, Transaction
from ..services import accounts, tasks

router = APIRouter(prefix="/api/users", tags=["users"])


def dump(model):
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/register")
def register(data: SignupRequest, ctx: RequestContext = Depends(public_context)):
    ctx.actor_id = data.uid
    user = accounts.signup(ctx, data.name, data.email, data.phone, data.referral_code)
    return dump(user)


@router.get("/{uid}")
def get_user(ctx: RequestContext = Depends(user_context)):
    return dump(accounts.get_user(ctx, ctx.actor_id))


@router.get("/{uid}/transactions")
def get_user_transactions(limit: int = 50, ctx: RequestContext = Depends(user_context)):
    accounts.get_user(ctx, ctx.actor_id)
    records = ctx.store.get(TRANSACTIONS) or {}
    transactions = [
        Transaction.from_record(key, record) for key, record in records.items()
        if record.get("userId") == ctx.actor_id
    ]
    transactions.sort(key=lambda txn: txn.timestamp or 0, reverse=True)
    return [dump(txn) for txn in transactions[:limit]]


@router.get("/{uid}/submissions")
def get_user_submissions(ctx: RequestContext = Depends(user_context)):
    return [dump(s) for s in tasks.list_submissions(ctx, uid=ctx.actor_id)]


@router.get("/{uid}/referrals")
def get_user_referrals(ctx: RequestContext = Depends(user_context)):
    user = accounts.get_user(ctx, ctx.actor_id)
    referred = accounts.list_referrals(ctx, ctx.actor_id)
    return {
        "refCode": user.personal_info.ref_code,
        "count": user.referrals.count,
        "earnings": float(user.referrals.earnings),
        "referred": [
            {
                "uid": u.uid,
                "name": u.personal_info.name,
                "joinDate": u.personal_info.join_date,
                "completedTasks": u.task_history.completed,
            }
            for u in referred
        ],
    }
