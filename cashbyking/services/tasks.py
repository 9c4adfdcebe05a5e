import logging
import uuid

from ..database import PENDING_TASKS, TASKS, USERS
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import NotificationKind, Submission, SubmissionStatus, Task, TaskStatus, User, to_money

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "price", "url", "steps", "instructions", "time_limit", "status")


def get_task(ctx, task_id) -> Task:
    record = ctx.store.get(f"{TASKS}/{task_id}")
    if not record:
        raise NotFoundError(f"Task {task_id} not found")
    return Task.from_record(task_id, record)


def list_tasks(ctx, status=None):
    records = ctx.store.get(TASKS) or {}
    tasks = [Task.from_record(task_id, record) for task_id, record in records.items()]
    if status:
        tasks = [task for task in tasks if task.status == status]
    return sorted(tasks, key=lambda task: task.created_at or 0, reverse=True)


def list_submissions(ctx, uid=None, status=None):
    records = ctx.store.get(PENDING_TASKS) or {}
    submissions = [Submission.from_record(key, record) for key, record in records.items()]
    if uid:
        submissions = [s for s in submissions if s.user_id == uid]
    if status:
        submissions = [s for s in submissions if s.status == status]
    return sorted(submissions, key=lambda s: s.submitted_at or 0, reverse=True)


def task_status_for(ctx, task_id, uid):
    task = get_task(ctx, task_id)
    if uid in task.completed_by:
        return "completed"
    for submission in list_submissions(ctx, uid=uid, status=SubmissionStatus.PENDING):
        if submission.task_id == task_id:
            return "pending"
    return "available"


# Admin

def create_task(ctx, data) -> Task:
    ctx.require_admin()
    task = Task(
        id=f"TK-{str(uuid.uuid4())[:8].upper()}",
        title=data.title,
        description=data.description,
        price=to_money(data.price),
        url=data.url,
        steps=data.steps,
        instructions=data.instructions,
        time_limit=data.time_limit,
        created_at=ctx.store.server_timestamp(),
    )
    ctx.store.set(f"{TASKS}/{task.id}", task.to_record())
    logger.info(f"Admin {ctx.actor_id} created task {task.id} ({task.title}, {task.price})")
    return task


def update_task(ctx, task_id, data) -> Task:
    ctx.require_admin()
    changes = {
        key: value for key, value in data.model_dump(exclude_none=True).items()
        if key in EDITABLE_FIELDS
    }
    if not changes:
        raise ValidationError("No valid fields to update")
    if "price" in changes:
        changes["price"] = to_money(changes["price"])

    def apply(record):
        if record is None:
            raise NotFoundError(f"Task {task_id} not found")
        task = Task.from_record(task_id, record).model_copy(update=changes)
        return Task.model_validate(task.model_dump()).to_record()

    ctx.store.transaction(f"{TASKS}/{task_id}", apply)
    logger.info(f"Admin {ctx.actor_id} updated task {task_id}: {sorted(changes)}")
    return get_task(ctx, task_id)


def toggle_task(ctx, task_id) -> Task:
    ctx.require_admin()

    def flip(status):
        if status is None:
            raise NotFoundError(f"Task {task_id} not found")
        return TaskStatus.INACTIVE.value if status == TaskStatus.ACTIVE else TaskStatus.ACTIVE.value

    new_status = ctx.store.transaction(f"{TASKS}/{task_id}/status", flip)
    logger.info(f"Task {task_id} is now {new_status}")
    return get_task(ctx, task_id)


def delete_task(ctx, task_id):
    ctx.require_admin()
    with ctx.store.atomic():
        get_task(ctx, task_id)
        ctx.store.delete(f"{TASKS}/{task_id}")
    logger.warning(f"Admin {ctx.actor_id} deleted task {task_id}")


# Users

def submit_task(ctx, task_id, proof_url=None) -> Submission:
    uid = ctx.actor_id

    def reserve(record):
        if not record or "personalInfo" not in record:
            raise NotFoundError(f"User {uid} not found")
        history = record.setdefault("taskHistory", {})
        history["pending"] = int(history.get("pending") or 0) + 1
        return record

    with ctx.store.atomic():
        # Holds the user's record so that concurrent submissions by the same
        # user are serialized before the duplicate check.
        user = User.from_record(uid, ctx.store.transaction(f"{USERS}/{uid}", reserve))

        task = get_task(ctx, task_id)
        if task.status != TaskStatus.ACTIVE:
            raise ValidationError("Task is not active")
        if uid in task.completed_by:
            raise ConflictError("Task already completed")
        if task_status_for(ctx, task_id, uid) == "pending":
            raise ConflictError("Task already submitted and under review")

        key = ctx.store.new_key()
        submission = Submission(
            id=key,
            user_id=uid,
            task_id=task_id,
            task_title=task.title,
            task_price=task.price,
            status=SubmissionStatus.PENDING,
            submitted_at=ctx.store.server_timestamp(),
            proof_url=proof_url,
        )
        ctx.store.set(f"{PENDING_TASKS}/{key}", submission.to_record())

    logger.info(f"User {uid} submitted task {task_id} as {key}")
    ctx.notify(NotificationKind.TASK_SUBMISSION, {
        "userName": user.personal_info.name,
        "userEmail": user.personal_info.email,
        "taskTitle": task.title,
        "taskId": task_id,
        "taskPrice": str(task.price),
        "submissionId": key,
    })
    return submission


def toggle_like(ctx, task_id):
    uid = ctx.actor_id
    result = {}

    def toggle(record):
        if record is None:
            raise NotFoundError(f"Task {task_id} not found")
        likes_data = record.get("likesData") or {}
        liked = not likes_data.get(uid, False)
        if liked:
            likes_data[uid] = True
        else:
            likes_data.pop(uid, None)
        record["likesData"] = likes_data
        record["likes"] = max(0, int(record.get("likes") or 0) + (1 if liked else -1))
        result.update(liked=liked, likes=record["likes"])
        return record

    ctx.store.transaction(f"{TASKS}/{task_id}", toggle)
    return result
