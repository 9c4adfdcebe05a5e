from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from .errors import ValidationError

CENT = Decimal("0.01")

# Decimal in Python, plain number in JSON responses
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def to_money(value, exact=False) -> Decimal:
    """Round ``value`` to cents; with ``exact``, refuse anything finer than a cent."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    rounded = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if exact and rounded != amount:
        raise ValidationError(f"Amount {value} has more than two decimal places")
    return rounded


class TaskStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawalMethod(str, Enum):
    UPI = "UPI"
    BANK = "BANK"


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    INFO = "info"


class NotificationKind(str, Enum):
    TASK_SUBMISSION = "task-submission"
    WITHDRAWAL_REQUEST = "withdrawal-request"
    ADMIN_ACTION = "admin-action"


class StoreModel(BaseModel):
    """camelCase in the store and in responses, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
    )


class Record(StoreModel):
    """A top-level store record whose key is kept outside the stored value."""
    key_field: ClassVar[str] = "id"

    @classmethod
    def from_record(cls, key, record):
        return cls.model_validate({**record, cls.key_field: key})

    def to_record(self):
        return self.model_dump(by_alias=True, exclude={self.key_field}, exclude_none=True)


# Users

class PersonalInfo(StoreModel):
    name: str
    email: str
    phone: str = ""
    verified: bool = False
    join_date: Optional[int] = None
    ref_code: str
    referrer_id: Optional[str] = None
    has_received_signup_bonus: bool = False
    has_received_first_task_bonus: bool = False


class FinancialInfo(StoreModel):
    balance: Money = Decimal("0")
    total_earned: Money = Decimal("0")
    total_withdrawn: Money = Decimal("0")


class TaskHistory(StoreModel):
    pending: int = 0
    completed: int = 0
    rejected: int = 0


class Referrals(StoreModel):
    count: int = 0
    earnings: Money = Decimal("0")


class User(Record):
    key_field: ClassVar[str] = "uid"

    uid: str
    personal_info: PersonalInfo
    financial_info: FinancialInfo = Field(default_factory=FinancialInfo)
    task_history: TaskHistory = Field(default_factory=TaskHistory)
    referrals: Referrals = Field(default_factory=Referrals)


# Tasks and submissions

class Task(Record):
    id: str
    title: str
    description: str = ""
    price: Money = Field(gt=0)
    url: str = ""
    steps: List[str] = Field(default_factory=list)
    instructions: str = ""
    time_limit: Optional[int] = None
    status: TaskStatus = TaskStatus.ACTIVE
    likes: int = 0
    likes_data: Dict[str, bool] = Field(default_factory=dict)
    completed_by: List[str] = Field(default_factory=list)
    created_at: Optional[int] = None


class Submission(Record):
    id: str
    user_id: str
    task_id: str
    task_title: str = ""
    task_price: Money
    status: SubmissionStatus = SubmissionStatus.PENDING
    submitted_at: Optional[int] = None
    reviewed_at: Optional[int] = None
    reviewed_by: Optional[str] = None
    admin_feedback: Optional[str] = None
    proof_url: Optional[str] = None


# Withdrawals and ledger

class Withdrawal(Record):
    id: str
    user_id: str
    amount: Money = Field(gt=0)
    method: WithdrawalMethod
    details: Dict[str, str] = Field(default_factory=dict)
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    timestamp: Optional[int] = None
    processed_at: Optional[int] = None
    approved_by: Optional[str] = None
    rejected_by: Optional[str] = None
    admin_reason: Optional[str] = None


class Transaction(Record):
    id: str
    user_id: str
    type: TransactionType
    amount: Money = Decimal("0")
    reason: str
    timestamp: Optional[int] = None
    withdrawal_id: Optional[str] = None
    submission_id: Optional[str] = None


# Request bodies

class SignupRequest(BaseModel):
    uid: str
    name: str
    email: str
    phone: str = ""
    referral_code: Optional[str] = None


class TaskCreate(BaseModel):
    title: str
    description: str = ""
    price: Decimal = Field(gt=0)
    url: str = ""
    steps: List[str] = Field(default_factory=list)
    instructions: str = ""
    time_limit: Optional[int] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0)
    url: Optional[str] = None
    steps: Optional[List[str]] = None
    instructions: Optional[str] = None
    time_limit: Optional[int] = None
    status: Optional[TaskStatus] = None


class TaskSubmit(BaseModel):
    proof_url: Optional[str] = None


class WithdrawalCreate(BaseModel):
    amount: Decimal
    method: WithdrawalMethod
    details: Dict[str, str] = Field(default_factory=dict)


class ReasonRequest(BaseModel):
    reason: str = ""


class VerifyRequest(BaseModel):
    verified: bool = True


class BalanceAdjustment(BaseModel):
    amount: Decimal
    reason: str = "Admin adjustment"


class BulkBonusRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    reason: str = "Bulk bonus from admin"
