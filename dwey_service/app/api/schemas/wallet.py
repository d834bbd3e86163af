from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime

from ...models.account import Transaction


class BalanceResponse(BaseModel):
    phone: str
    balance: int


class TransactionResponse(BaseModel):
    """트랜잭션 응답 DTO."""

    id: str
    type: str
    payment_method: str
    tums_amount: int
    fiat_amount: int
    description: str
    status: str
    reference: str | None = None
    coupon_code: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDateTime
    completed_at: UtcDateTime | None = None

    @classmethod
    def from_domain(cls, tx: Transaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            type=tx.type.value,
            payment_method=tx.payment_method.value,
            tums_amount=tx.tums_amount,
            fiat_amount=tx.fiat_amount,
            description=tx.description,
            status=tx.status.value,
            reference=tx.reference,
            coupon_code=tx.coupon_code,
            failure_reason=tx.failure_reason,
            metadata=tx.metadata,
            created_at=tx.created_at,
            completed_at=tx.completed_at,
        )


class AdjustBalanceRequest(BaseModel):
    """관리자 잔액 조정 요청. balance 는 조정 후의 목표 잔액이다."""

    balance: int = Field(ge=0)
    reason: str


class AdjustBalanceResponse(BaseModel):
    balance: int
    transaction: TransactionResponse | None = None
