from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from cashbyking import config
from cashbyking.context import RequestContext, pwd_context
from cashbyking.database import MemoryStore, get_store
from cashbyking.models import TaskCreate
from cashbyking.services import accounts, tasks
from cashbyking.utils.telegram import get_notifier

ADMIN_KEY = "test-admin-key"


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, kind, payload):
        self.sent.append((kind, payload))

    def kinds(self):
        return [kind for kind, _ in self.sent]


@pytest.fixture(autouse=True)
def ledger_rules(monkeypatch):
    monkeypatch.setattr(config, "MIN_WITHDRAWAL", Decimal("50"))
    monkeypatch.setattr(config, "SIGNUP_BONUS", Decimal("5"))
    monkeypatch.setattr(config, "REFERRER_SIGNUP_BONUS", Decimal("0"))
    monkeypatch.setattr(config, "FIRST_TASK_REFERRAL_BONUS", Decimal("10"))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def admin_ctx(store, notifier):
    return RequestContext(store=store, notifier=notifier, actor_id="admin-1", is_admin=True)


@pytest.fixture
def make_ctx(store, notifier):
    def make(uid):
        return RequestContext(store=store, notifier=notifier, actor_id=uid)
    return make


@pytest.fixture
def make_user(make_ctx):
    def make(uid, referral_code=None, name=None):
        return accounts.signup(
            make_ctx(uid), name or uid.title(), f"{uid}@example.com", "9999999999", referral_code
        )
    return make


@pytest.fixture
def make_task(admin_ctx):
    def make(price="25", title="Follow our page"):
        return tasks.create_task(admin_ctx, TaskCreate(title=title, price=Decimal(price), url="https://example.com"))
    return make


@pytest.fixture
def client(store, notifier, monkeypatch):
    from cashbyking.app import app

    monkeypatch.setattr(config, "ADMIN_API_KEY_HASH", pwd_context.hash(ADMIN_KEY))
    monkeypatch.setattr(config, "ADMIN_API_KEY", None)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_KEY}"}
