"""계정 내부 API. 채팅 봇이 첫 메시지와 register 명령에서 호출한다."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from ...services.account_service import AccountService, get_account_service
from ...services.rate_limiter import RateLimiter, get_rate_limiter
from ..dependencies import enforce_account_rate_limit
from ..schemas.accounts import (
    AccountResponse,
    RegisterEmailRequest,
    RegisterEmailResponse,
    RegisterRequest,
    RegisterResponse,
)


router = APIRouter()


@router.post("", summary="소프트 가입")
def register(
    req: RegisterRequest,
    service: Annotated[AccountService, Depends(get_account_service)],
) -> RegisterResponse:
    """없으면 가입 보너스와 함께 만들고, 있으면 그대로 반환한다."""
    account, created = service.soft_register(req.phone, req.display_name)
    return RegisterResponse(account=AccountResponse.from_domain(account), created=created)


@router.get("/{phone}", summary="계정 조회")
def get_account(
    phone: str,
    service: Annotated[AccountService, Depends(get_account_service)],
) -> AccountResponse:
    return AccountResponse.from_domain(service.get_account(phone))


@router.post("/{phone}/email", summary="이메일 등록")
def register_email(
    phone: str,
    req: RegisterEmailRequest,
    service: Annotated[AccountService, Depends(get_account_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> RegisterEmailResponse:
    """이메일은 한 번만 설정할 수 있고 계정 간에 유일하다."""
    normalized = enforce_account_rate_limit(limiter, phone, "register_email")
    account, newly_set = service.register_email(normalized, req.email, req.display_name)
    return RegisterEmailResponse(
        account=AccountResponse.from_domain(account), newly_set=newly_set
    )
