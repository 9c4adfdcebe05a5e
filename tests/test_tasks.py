from decimal import Decimal

import pytest

from cashbyking.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from cashbyking.models import NotificationKind, TaskCreate, TaskStatus, TaskUpdate
from cashbyking.services import review, tasks


def test_create_task(store, admin_ctx, make_ctx):
    task = tasks.create_task(admin_ctx, TaskCreate(title="Install app", price=Decimal("12.5"), steps=["Open", "Install"]))

    assert task.id.startswith("TK-")
    record = store.get(f"TASKS/{task.id}")
    assert record["price"] == Decimal("12.50")
    assert record["status"] == "active"
    assert record["steps"] == ["Open", "Install"]

    with pytest.raises(PermissionDeniedError):
        tasks.create_task(make_ctx("asha"), TaskCreate(title="x", price=Decimal("1")))


def test_update_toggle_delete(store, admin_ctx, make_task):
    task = make_task()

    updated = tasks.update_task(admin_ctx, task.id, TaskUpdate(title="Like our page", price=Decimal("30")))
    assert updated.title == "Like our page"
    assert updated.price == Decimal("30.00")

    assert tasks.toggle_task(admin_ctx, task.id).status == "inactive"
    assert tasks.list_tasks(admin_ctx, TaskStatus.ACTIVE) == []
    assert tasks.toggle_task(admin_ctx, task.id).status == "active"

    tasks.delete_task(admin_ctx, task.id)
    with pytest.raises(NotFoundError):
        tasks.get_task(admin_ctx, task.id)
    with pytest.raises(NotFoundError):
        tasks.toggle_task(admin_ctx, task.id)


def test_update_requires_fields(admin_ctx, make_task):
    task = make_task()
    with pytest.raises(ValidationError):
        tasks.update_task(admin_ctx, task.id, TaskUpdate())


def test_submit_task(store, make_user, make_task, make_ctx, notifier):
    make_user("asha")
    task = make_task(price="25")

    submission = tasks.submit_task(make_ctx("asha"), task.id, proof_url="https://res.cloudinary.com/x.png")

    record = store.get(f"PENDING_TASKS/{submission.id}")
    assert record["status"] == "pending"
    assert record["taskPrice"] == Decimal("25.00")
    assert record["proofUrl"] == "https://res.cloudinary.com/x.png"
    assert store.get("USERS/asha/taskHistory/pending") == 1
    assert notifier.sent[-1][0] == NotificationKind.TASK_SUBMISSION
    assert notifier.sent[-1][1]["submissionId"] == submission.id
    assert tasks.task_status_for(make_ctx("asha"), task.id, "asha") == "pending"


def test_duplicate_submission_conflicts(store, make_user, make_task, make_ctx):
    make_user("asha")
    task = make_task()
    tasks.submit_task(make_ctx("asha"), task.id)

    with pytest.raises(ConflictError):
        tasks.submit_task(make_ctx("asha"), task.id)

    assert store.get("USERS/asha/taskHistory/pending") == 1
    assert len(store.get("PENDING_TASKS")) == 1


def test_completed_task_cannot_be_resubmitted(admin_ctx, make_user, make_task, make_ctx):
    make_user("asha")
    task = make_task()
    submission = tasks.submit_task(make_ctx("asha"), task.id)
    review.approve_submission(admin_ctx, submission.id)

    assert tasks.task_status_for(admin_ctx, task.id, "asha") == "completed"
    with pytest.raises(ConflictError):
        tasks.submit_task(make_ctx("asha"), task.id)


def test_rejected_task_can_be_resubmitted(admin_ctx, make_user, make_task, make_ctx):
    make_user("asha")
    task = make_task()
    submission = tasks.submit_task(make_ctx("asha"), task.id)
    review.reject_submission(admin_ctx, submission.id, "Blurry screenshot")

    assert tasks.task_status_for(admin_ctx, task.id, "asha") == "available"
    tasks.submit_task(make_ctx("asha"), task.id)


def test_submit_inactive_or_missing_task(store, admin_ctx, make_user, make_task, make_ctx):
    make_user("asha")
    task = make_task()
    tasks.toggle_task(admin_ctx, task.id)

    with pytest.raises(ValidationError):
        tasks.submit_task(make_ctx("asha"), task.id)
    with pytest.raises(NotFoundError):
        tasks.submit_task(make_ctx("asha"), "TK-MISSING")
    assert store.get("USERS/asha/taskHistory/pending") == 0
    assert store.get("PENDING_TASKS") is None


def test_submit_requires_registered_user(make_task, make_ctx):
    task = make_task()
    with pytest.raises(NotFoundError):
        tasks.submit_task(make_ctx("ghost"), task.id)


def test_toggle_like(store, make_task, make_ctx):
    task = make_task()

    assert tasks.toggle_like(make_ctx("asha"), task.id) == {"liked": True, "likes": 1}
    assert tasks.toggle_like(make_ctx("bala"), task.id) == {"liked": True, "likes": 2}
    assert tasks.toggle_like(make_ctx("asha"), task.id) == {"liked": False, "likes": 1}
    assert store.get(f"TASKS/{task.id}/likesData") == {"bala": True}

    with pytest.raises(NotFoundError):
        tasks.toggle_like(make_ctx("asha"), "TK-MISSING")


def test_request_notifications_wait_for_background(store, notifier, make_user, make_task):
    import asyncio

    from fastapi import BackgroundTasks

    from cashbyking.context import RequestContext

    make_user("asha")
    task = make_task()
    background = BackgroundTasks()
    ctx = RequestContext(store=store, notifier=notifier, actor_id="asha", background=background)

    tasks.submit_task(ctx, task.id)
    assert NotificationKind.TASK_SUBMISSION not in notifier.kinds()
    assert len(background.tasks) == 1

    asyncio.run(background())
    assert notifier.kinds()[-1] == NotificationKind.TASK_SUBMISSION
