from __future__ import annotations

from pydantic import BaseModel

from common.types.datetime import UtcDateTime

from ...models.account import Account


class RegisterRequest(BaseModel):
    """첫 접촉 시 소프트 가입 요청."""

    phone: str
    display_name: str | None = None


class RegisterEmailRequest(BaseModel):
    email: str
    display_name: str | None = None


class AccountResponse(BaseModel):
    """계정 응답 DTO. 트랜잭션 로그는 wallet 히스토리 API 로 따로 조회한다."""

    phone: str
    display_name: str
    email: str | None = None
    balance: int
    created_at: UtcDateTime
    updated_at: UtcDateTime

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        return cls(
            phone=account.phone,
            display_name=account.display_name,
            email=account.email,
            balance=account.balance,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class RegisterResponse(BaseModel):
    account: AccountResponse
    created: bool


class RegisterEmailResponse(BaseModel):
    account: AccountResponse
    newly_set: bool
