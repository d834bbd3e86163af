"""accounts 컬렉션 도큐먼트.

트랜잭션 로그는 계정 도큐먼트 안에 최신순 배열로 내장한다. 잔액 변경과 로그 추가를
한 번의 update_one 으로 묶어야 원자성이 보장되기 때문이다.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from common.mongo.types import (
    BaseDocument,
    MongoDateTime,
    OptionalMongoDateTime,
    from_object_id,
)

from ...models.account import (
    Account,
    PaymentMethod,
    Transaction,
    TransactionStatus,
    TransactionType,
)


class TransactionRecord(BaseModel):
    """accounts.transactions[] 원소."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    type: TransactionType
    payment_method: PaymentMethod
    tums_amount: int
    fiat_amount: int = 0
    description: str
    status: TransactionStatus
    reference: str | None = None
    coupon_code: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: MongoDateTime
    expires_at: OptionalMongoDateTime = None
    completed_at: OptionalMongoDateTime = None

    @classmethod
    def from_domain(cls, tx: Transaction) -> "TransactionRecord":
        return cls.model_validate(tx.model_dump())

    def to_mongo_record(self) -> dict[str, Any]:
        return self.model_dump()

    def to_domain(self) -> Transaction:
        return Transaction.model_validate(self.model_dump())


class AccountDocument(BaseDocument):
    """MongoDB accounts 컬렉션 도큐먼트 모델."""

    phone: str
    display_name: str
    email: str | None = None
    balance: int = 0
    transactions: list[TransactionRecord] = Field(default_factory=list)

    def to_domain(self) -> Account:
        created_at: datetime = self.created_at
        updated_at: datetime = self.updated_at
        return Account(
            id=from_object_id(self.id),
            phone=self.phone,
            display_name=self.display_name,
            email=self.email,
            balance=self.balance,
            transactions=[record.to_domain() for record in self.transactions],
            created_at=created_at,
            updated_at=updated_at,
        )
