from fastapi import APIRouter, Depends

from ..context import RequestContext, user_context
from ..models import WithdrawalCreate
from ..services import withdrawals
from .users import dump

router = APIRouter(prefix="/api/withdrawals", tags=["withdrawals"])


@router.get("/user/{uid}")
def get_user_withdrawals(limit: int = 50, ctx: RequestContext = Depends(user_context)):
    return [dump(w) for w in withdrawals.list_withdrawals(ctx, uid=ctx.actor_id)[:limit]]


@router.post("/request/{uid}")
def request_withdrawal(data: WithdrawalCreate, ctx: RequestContext = Depends(user_context)):
    withdrawal = withdrawals.request_withdrawal(ctx, data.amount, data.method, data.details)
    return {
        "success": True,
        "message": "Withdrawal request submitted",
        "withdrawal": dump(withdrawal),
    }


@router.get("/methods")
def get_withdrawal_methods():
    return withdrawals.withdrawal_methods()


@router.get("/rules")
def get_withdrawal_rules():
    return withdrawals.withdrawal_rules()
