"""계정/지갑 도메인 모델.

계정은 전화번호(숫자만, 국제 형식)로 식별되며, 잔액과 최신순 트랜잭션 로그를 함께 가진다.
잔액 == completed/reversed 상태 credit 합 - debit 합 이 항상 성립해야 한다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TransactionType(StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"


class PaymentMethod(StrEnum):
    SIGNUP_BONUS = "signup_bonus"
    CARD = "card"
    COUPON = "coupon"
    CARD_REVERSAL = "card_reversal"
    ADJUSTMENT = "adjustment"
    SPEND = "spend"


class TransactionStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ABANDONED = "abandoned"
    REVERSED = "reversed"


# reversed 는 한 번 completed 였던 credit 이고, 차감은 별도 card_reversal debit 으로 기록된다.
BALANCE_AFFECTING_STATUSES: frozenset[TransactionStatus] = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.REVERSED}
)

# pending 에서만 나갈 수 있고, completed 에서는 reversed 로만 갈 수 있다.
ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
            TransactionStatus.EXPIRED,
            TransactionStatus.ABANDONED,
        }
    ),
    TransactionStatus.COMPLETED: frozenset({TransactionStatus.REVERSED}),
}


class Transaction(BaseModel):
    """계정에 내장되는 트랜잭션 레코드."""

    id: str
    type: TransactionType
    payment_method: PaymentMethod
    tums_amount: int
    fiat_amount: int = 0
    description: str
    status: TransactionStatus
    reference: str | None = None  # 멱등 매칭용 (게이트웨이 결제, 유지비 과금 기간)
    coupon_code: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    expires_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def affects_balance(self) -> bool:
        return self.status in BALANCE_AFFECTING_STATUSES

    @property
    def signed_amount(self) -> int:
        if self.type == TransactionType.CREDIT:
            return self.tums_amount
        return -self.tums_amount

    def can_transition_to(self, status: TransactionStatus) -> bool:
        return status in ALLOWED_TRANSITIONS.get(self.status, frozenset())


class Account(BaseModel):
    id: str | None = None
    phone: str
    display_name: str
    email: str | None = None
    balance: int = 0
    transactions: list[Transaction] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @property
    def has_email(self) -> bool:
        return bool(self.email)


def ledger_balance(transactions: list[Transaction]) -> int:
    """트랜잭션 로그만으로 계산한 잔액. 저장된 balance 와 항상 같아야 한다."""
    return sum(tx.signed_amount for tx in transactions if tx.affects_balance)


class EmailAssignment(StrEnum):
    """이메일 등록 시도 결과 (저장소 레벨)."""

    ASSIGNED = "assigned"
    ALREADY_SET = "already_set"
    TAKEN = "taken"
    NO_ACCOUNT = "no_account"
