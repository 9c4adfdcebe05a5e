"""Balance mutations and the append-only transaction log.

Every balance change happens inside a store transaction on the user's
``financialInfo`` and is paired with a ``TRANSACTIONS`` entry written in the
same ``atomic()`` scope, so a failure leaves neither behind.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from .. import config
from ..database import TRANSACTIONS, USERS
from ..errors import InsufficientBalanceError, MarketplaceError, NotFoundError, ValidationError
from ..models import Transaction, TransactionType, to_money

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self):
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "failures": self.failed,
        }


class Ledger:
    def __init__(self, store):
        self.store = store

    def credit(self, uid, amount, reason, **refs) -> Transaction:
        amount = self._positive(amount)

        def add(info):
            info["balance"] = to_money(info.get("balance", 0)) + amount
            info["totalEarned"] = to_money(info.get("totalEarned", 0)) + amount

        with self.store.atomic():
            self._update_user(uid, "financialInfo", add)
            txn = self._log(uid, TransactionType.CREDIT, amount, reason, **refs)

        logger.info(f"Credited {amount} to {uid}: {reason}")
        return txn

    def debit(self, uid, amount, reason, withdrawal_id=None) -> Transaction:
        amount = self._positive(amount)

        def take(info):
            balance = to_money(info.get("balance", 0))
            if amount > balance:
                raise InsufficientBalanceError(
                    f"Insufficient balance: {balance} available, {amount} requested"
                )
            info["balance"] = balance - amount
            if withdrawal_id:
                info["totalWithdrawn"] = to_money(info.get("totalWithdrawn", 0)) + amount

        with self.store.atomic():
            self._update_user(uid, "financialInfo", take)
            txn = self._log(uid, TransactionType.DEBIT, amount, reason, withdrawal_id=withdrawal_id)

        logger.info(f"Debited {amount} from {uid}: {reason}")
        return txn

    def adjust(self, uid, amount, reason="Admin adjustment") -> Transaction:
        amount = to_money(amount)
        if amount > 0:
            return self.credit(uid, amount, reason)
        if amount < 0:
            return self.debit(uid, -amount, reason)
        raise ValidationError("Adjustment amount cannot be zero")

    def log_info(self, uid, reason, **refs) -> Transaction:
        with self.store.atomic():
            return self._log(uid, TransactionType.INFO, to_money(0), reason, **refs)

    # Referral bonuses

    def apply_signup_bonus(self, uid, referrer_id):
        """Count the signup for ``referrer_id`` and pay the signup bonuses.

        Returns False, changing nothing, if the referrer no longer exists.
        """
        with self.store.atomic():
            if not self._lock_user(referrer_id):
                logger.warning(f"Referrer {referrer_id} of {uid} no longer exists, signup not referred")
                return False
            self._add_referral(referrer_id, count=1)

            signup_bonus = to_money(config.SIGNUP_BONUS)
            if signup_bonus > 0 and self._claim_flag(uid, "hasReceivedSignupBonus"):
                self.credit(uid, signup_bonus, "Referral signup bonus")

            referrer_bonus = to_money(config.REFERRER_SIGNUP_BONUS)
            if referrer_bonus > 0:
                self.credit(referrer_id, referrer_bonus, f"Referral signup bonus: {uid}")
                self._add_referral(referrer_id, earnings=referrer_bonus)
        return True

    def award_first_task_bonus(self, uid):
        """Pay the referrer of ``uid`` once, the first time ``uid`` completes a task.

        The ``hasReceivedFirstTaskBonus`` claim and the credit share one
        atomic scope: either both are written or neither is.
        """
        bonus = to_money(config.FIRST_TASK_REFERRAL_BONUS)
        if bonus <= 0:
            return None

        with self.store.atomic():
            referrer_id = self.store.get(f"{USERS}/{uid}/personalInfo/referrerId")
            if not referrer_id:
                return None
            if not self._lock_user(referrer_id):
                logger.warning(f"Referrer {referrer_id} of {uid} no longer exists, no first task bonus")
                return None
            if not self._claim_flag(uid, "hasReceivedFirstTaskBonus"):
                return None

            txn = self.credit(referrer_id, bonus, "Referral first task bonus")
            self._add_referral(referrer_id, earnings=bonus)

        logger.info(f"First task bonus of {bonus} paid to {referrer_id} for {uid}")
        return txn

    def bulk_bonus(self, amount, reason="Bulk bonus from admin") -> BatchResult:
        """Credit every user independently; one failure does not stop the batch."""
        amount = self._positive(amount)
        users = self.store.get(USERS) or {}
        result = BatchResult()

        for uid in users:
            try:
                self.credit(uid, amount, reason)
            except MarketplaceError as e:
                logger.error(f"Bulk bonus failed for {uid}: {e}")
                result.failed[uid] = str(e)
            else:
                result.succeeded.append(uid)

        logger.info(
            f"Bulk bonus of {amount}: {len(result.succeeded)} credited, {len(result.failed)} failed"
        )
        return result

    # Internals

    def _positive(self, amount):
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        return amount

    def _lock_user(self, uid):
        """Lock ``uid``'s record for the enclosing scope; False if the user is gone."""
        self.store.lock(f"{USERS}/{uid}")
        return self.store.get(f"{USERS}/{uid}/personalInfo") is not None

    def _update_user(self, uid, section, fn):
        """Apply ``fn`` to one section of an existing user's record, in place."""

        def apply(record):
            if not record or "personalInfo" not in record:
                raise NotFoundError(f"User {uid} not found")
            fn(record.setdefault(section, {}))
            return record

        self.store.transaction(f"{USERS}/{uid}", apply)

    def _add_referral(self, referrer_id, count=0, earnings=0):
        def add(referrals):
            referrals["count"] = int(referrals.get("count") or 0) + count
            referrals["earnings"] = to_money(referrals.get("earnings", 0)) + to_money(earnings)

        self._update_user(referrer_id, "referrals", add)

    def _claim_flag(self, uid, flag):
        claimed = []

        def claim(info):
            if not info.get(flag):
                info[flag] = True
                claimed.append(flag)

        self._update_user(uid, "personalInfo", claim)
        return bool(claimed)

    def _log(self, uid, type, amount, reason, **refs):
        key = self.store.new_key()
        txn = Transaction(
            id=key,
            user_id=uid,
            type=type,
            amount=amount,
            reason=reason,
            timestamp=self.store.server_timestamp(),
            **refs,
        )
        self.store.set(f"{TRANSACTIONS}/{key}", txn.to_record())
        return txn
