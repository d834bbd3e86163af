from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

from .account import Transaction, TransactionStatus


class SettlementOutcome(StrEnum):
    """게이트웨이 이벤트를 정규화한 정산 결과 종류."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"
    PENDING = "pending"
    PROCESSING = "processing"
    REVERSED = "reversed"
    REFUNDED = "refunded"
    DISPUTE = "dispute"


class PendingPayment(BaseModel):
    reference: str
    tums_amount: int
    fiat_amount: int
    expires_at: datetime


class CheckoutSession(BaseModel):
    payment: PendingPayment
    authorization_url: str


class SettlementResult(BaseModel):
    reference: str
    phone: str
    outcome: SettlementOutcome
    status: TransactionStatus
    balance_changed: bool
    new_balance: int | None = None
    transaction: Transaction
    reversal: Transaction | None = None
    # 역정산 시 잔액 부족으로 덜 차감된 양
    shortfall: int = 0
