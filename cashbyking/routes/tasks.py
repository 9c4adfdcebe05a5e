from typing import Optional

from fastapi import APIRouter, Depends

from ..context import RequestContext, public_context, user_context
from ..models import TaskStatus, TaskSubmit
from ..services import tasks
from .users import dump

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("/")
def get_all_tasks(
    status: Optional[TaskStatus] = TaskStatus.ACTIVE,
    limit: int = 50,
    ctx: RequestContext = Depends(public_context),
):
    return [dump(task) for task in tasks.list_tasks(ctx, status)[:limit]]


@router.get("/{task_id}")
def get_task(task_id: str, ctx: RequestContext = Depends(public_context)):
    return dump(tasks.get_task(ctx, task_id))


@router.get("/{task_id}/status/{uid}")
def get_task_status(task_id: str, ctx: RequestContext = Depends(user_context)):
    return {"taskId": task_id, "status": tasks.task_status_for(ctx, task_id, ctx.actor_id)}


@router.post("/{task_id}/submit/{uid}")
def submit_task(
    task_id: str,
    data: Optional[TaskSubmit] = None,
    ctx: RequestContext = Depends(user_context),
):
    proof_url = data.proof_url if data else None
    submission = tasks.submit_task(ctx, task_id, proof_url=proof_url)
    return {
        "success": True,
        "message": "Task submitted for review",
        "submission": dump(submission),
    }


@router.post("/{task_id}/like/{uid}")
def like_task(task_id: str, ctx: RequestContext = Depends(user_context)):
    return tasks.toggle_like(ctx, task_id)
