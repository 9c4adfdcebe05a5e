import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import BackgroundTasks, Depends, Header, HTTPException
from passlib.context import CryptContext

from . import config
from .database import DocumentStore, get_store
from .errors import PermissionDeniedError
from .utils.telegram import get_notifier

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass
class RequestContext:
    """Who is acting, and against which store and notifier.

    Every service function takes one of these instead of reading a
    module-level current user.
    """
    store: DocumentStore
    notifier: object
    actor_id: str
    is_admin: bool = False
    background: Optional[BackgroundTasks] = None

    @property
    def ledger(self):
        from .services.ledger import Ledger
        return Ledger(self.store)

    def require_admin(self):
        if not self.is_admin:
            raise PermissionDeniedError()

    def notify(self, kind, payload):
        """Send now, or after the response when running inside a request."""
        if self.background is not None:
            self.background.add_task(self.notifier.notify, kind, payload)
        else:
            self.notifier.notify(kind, payload)


def verify_admin_key(key: str) -> bool:
    if not key:
        return False
    if config.ADMIN_API_KEY_HASH:
        return pwd_context.verify(key, config.ADMIN_API_KEY_HASH)
    if config.ADMIN_API_KEY:
        return hmac.compare_digest(key, config.ADMIN_API_KEY)
    logger.error("No admin API key configured, admin endpoints are locked")
    return False


def user_context(
    uid: str,
    background_tasks: BackgroundTasks,
    store: DocumentStore = Depends(get_store),
    notifier=Depends(get_notifier),
) -> RequestContext:
    return RequestContext(store=store, notifier=notifier, actor_id=uid, background=background_tasks)


def admin_context(
    background_tasks: BackgroundTasks,
    authorization: Optional[str] = Header(default=None),
    x_admin_id: Optional[str] = Header(default=None),
    store: DocumentStore = Depends(get_store),
    notifier=Depends(get_notifier),
) -> RequestContext:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not verify_admin_key(token.strip()):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return RequestContext(
        store=store,
        notifier=notifier,
        actor_id=x_admin_id or "admin",
        is_admin=True,
        background=background_tasks,
    )


def public_context(
    background_tasks: BackgroundTasks,
    store: DocumentStore = Depends(get_store),
    notifier=Depends(get_notifier),
) -> RequestContext:
    return RequestContext(store=store, notifier=notifier, actor_id="anonymous", background=background_tasks)
