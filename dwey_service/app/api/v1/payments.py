"""결제 내부 API. 웹훅 정산은 ../webhook.py 에 있다."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from ...services.payment_service import PaymentService, get_checkout_payment_service
from ...services.rate_limiter import RateLimiter, get_rate_limiter
from ..dependencies import enforce_account_rate_limit
from ..schemas.payments import CheckoutRequest, CheckoutResponse, SettlementResponse


router = APIRouter()


@router.post("/checkout", summary="지갑 충전 결제창 생성")
def checkout(
    req: CheckoutRequest,
    service: Annotated[PaymentService, Depends(get_checkout_payment_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> CheckoutResponse:
    """pending 트랜잭션을 만들고 Paystack 결제 링크를 돌려준다."""
    phone = enforce_account_rate_limit(limiter, req.phone, "fund_wallet")
    session = service.start_checkout(phone, req.amount, req.display_name)
    return CheckoutResponse(
        reference=session.payment.reference,
        amount=session.payment.fiat_amount,
        tums_amount=session.payment.tums_amount,
        expires_at=session.payment.expires_at,
        authorization_url=session.authorization_url,
    )


@router.post("/{reference}/verify", summary="결제 상태 직접 확인")
def verify_payment(
    reference: str,
    service: Annotated[PaymentService, Depends(get_checkout_payment_service)],
) -> SettlementResponse:
    """웹훅이 늦을 때 게이트웨이에 직접 물어 정산한다. 이미 정산됐으면 409."""
    return SettlementResponse.from_domain(service.verify(reference))
