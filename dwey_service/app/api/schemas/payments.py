from __future__ import annotations

from pydantic import BaseModel

from common.types.datetime import UtcDateTime

from ...models.payment import SettlementResult
from .wallet import TransactionResponse


class CheckoutRequest(BaseModel):
    """지갑 충전 요청. amount 는 나이라 단위 정수다."""

    phone: str
    amount: int
    display_name: str | None = None


class CheckoutResponse(BaseModel):
    reference: str
    amount: int
    tums_amount: int
    expires_at: UtcDateTime
    authorization_url: str


class SettlementResponse(BaseModel):
    reference: str
    phone: str
    outcome: str
    status: str
    balance_changed: bool
    new_balance: int | None = None
    transaction: TransactionResponse
    reversal: TransactionResponse | None = None
    shortfall: int = 0

    @classmethod
    def from_domain(cls, result: SettlementResult) -> "SettlementResponse":
        return cls(
            reference=result.reference,
            phone=result.phone,
            outcome=result.outcome.value,
            status=result.status.value,
            balance_changed=result.balance_changed,
            new_balance=result.new_balance,
            transaction=TransactionResponse.from_domain(result.transaction),
            reversal=(
                TransactionResponse.from_domain(result.reversal)
                if result.reversal is not None
                else None
            ),
            shortfall=result.shortfall,
        )
