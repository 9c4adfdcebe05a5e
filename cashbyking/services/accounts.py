import logging
import secrets
import string

from ..database import USERS
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import NotificationKind, PersonalInfo, User

logger = logging.getLogger(__name__)

REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code():
    return "CBK" + "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(6))


def get_user(ctx, uid) -> User:
    record = ctx.store.get(f"{USERS}/{uid}")
    if not record:
        raise NotFoundError(f"User {uid} not found")
    return User.from_record(uid, record)


def list_users(ctx):
    records = ctx.store.get(USERS) or {}
    return [User.from_record(uid, record) for uid, record in records.items()]


def find_by_referral_code(ctx, code):
    code = (code or "").strip().upper()
    if not code:
        return None
    for uid, record in (ctx.store.get(USERS) or {}).items():
        if (record.get("personalInfo") or {}).get("refCode") == code:
            return uid
    return None


def list_referrals(ctx, uid):
    get_user(ctx, uid)
    return [
        user for user in list_users(ctx)
        if user.personal_info.referrer_id == uid
    ]


def signup(ctx, name, email, phone="", referral_code=None) -> User:
    uid = ctx.actor_id
    name, email = (name or "").strip(), (email or "").strip()
    if not name or not email:
        raise ValidationError("Name and email are required")

    referrer_id = None
    if referral_code:
        referrer_id = find_by_referral_code(ctx, referral_code)
        if referrer_id is None:
            logger.info(f"Unknown referral code {referral_code!r} used by {uid}, ignoring")

    existing_codes = {
        (record.get("personalInfo") or {}).get("refCode")
        for record in (ctx.store.get(USERS) or {}).values()
    }
    ref_code = generate_referral_code()
    while ref_code in existing_codes:
        ref_code = generate_referral_code()

    user = User(
        uid=uid,
        personal_info=PersonalInfo(
            name=name,
            email=email,
            phone=(phone or "").strip(),
            join_date=ctx.store.server_timestamp(),
            ref_code=ref_code,
            referrer_id=referrer_id,
        ),
    )

    with ctx.store.atomic():
        try:
            ctx.store.create(f"{USERS}/{uid}", user.to_record())
        except ConflictError:
            raise ConflictError(f"User {uid} already exists")
        if referrer_id and not ctx.ledger.apply_signup_bonus(uid, referrer_id):
            ctx.store.delete(f"{USERS}/{uid}/personalInfo/referrerId")
            referrer_id = None

    logger.info(f"User {uid} signed up" + (f" referred by {referrer_id}" if referrer_id else ""))
    return get_user(ctx, uid)


def set_verified(ctx, uid, verified=True) -> User:
    ctx.require_admin()

    def mark(info):
        if info is None:
            raise NotFoundError(f"User {uid} not found")
        info["verified"] = bool(verified)
        return info

    ctx.store.transaction(f"{USERS}/{uid}/personalInfo", mark)
    logger.info(f"Admin {ctx.actor_id} set verified={verified} on {uid}")
    ctx.notify(NotificationKind.ADMIN_ACTION, {
        "action": "User verified" if verified else "User unverified",
        "adminId": ctx.actor_id,
        "targetId": uid,
    })
    return get_user(ctx, uid)


def delete_user(ctx, uid):
    ctx.require_admin()
    with ctx.store.atomic():
        get_user(ctx, uid)
        ctx.store.delete(f"{USERS}/{uid}")
    logger.warning(f"Admin {ctx.actor_id} deleted user {uid}")
    ctx.notify(NotificationKind.ADMIN_ACTION, {
        "action": "User deleted",
        "adminId": ctx.actor_id,
        "targetId": uid,
    })


def adjust_balance(ctx, uid, amount, reason="Admin adjustment"):
    ctx.require_admin()
    txn = ctx.ledger.adjust(uid, amount, reason or "Admin adjustment")
    ctx.notify(NotificationKind.ADMIN_ACTION, {
        "action": f"Balance adjusted: {txn.type} {txn.amount}",
        "adminId": ctx.actor_id,
        "targetId": uid,
    })
    return txn


def bulk_bonus(ctx, amount, reason="Bulk bonus from admin"):
    ctx.require_admin()
    result = ctx.ledger.bulk_bonus(amount, reason)
    ctx.notify(NotificationKind.ADMIN_ACTION, {
        "action": f"Bulk bonus {amount}: {len(result.succeeded)} ok, {len(result.failed)} failed",
        "adminId": ctx.actor_id,
        "targetId": "all users",
    })
    return result
