"""Paystack 웹훅.

서명(x-paystack-signature, raw body 의 HMAC-SHA512)을 확인한 뒤에만 정산한다.
Paystack 은 2xx 가 아니면 재전송하므로, 이미 정산된 reference 나 모르는 reference 는
로그만 남기고 200 으로 응답한다.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ..clients.paystack import SIGNATURE_HEADER, verify_signature
from ..config import AppConfig, get_config, require_paystack_secret_key
from ..exceptions import AlreadySettledError, TransactionNotFound
from ..models.payment import SettlementOutcome
from ..services.payment_service import PaymentService, get_payment_service


logger = logging.getLogger(__name__)

router = APIRouter()

PAYSTACK_EVENT_OUTCOMES: dict[str, SettlementOutcome] = {
    "charge.success": SettlementOutcome.SUCCESS,
    "charge.failed": SettlementOutcome.FAILED,
    "refund.processed": SettlementOutcome.REFUNDED,
    "charge.dispute.create": SettlementOutcome.DISPUTE,
}


def _extract_reference(event: str, data: dict[str, Any]) -> str | None:
    # 환불/분쟁 이벤트는 원 거래를 transaction 필드 아래에 싣는다.
    if event.startswith(("refund.", "charge.dispute.")):
        tx = data.get("transaction")
        if isinstance(tx, dict) and tx.get("reference"):
            return str(tx["reference"])
        if data.get("transaction_reference"):
            return str(data["transaction_reference"])
    reference = data.get("reference")
    return str(reference) if reference else None


@router.post("/webhook/paystack", summary="Paystack 웹훅", include_in_schema=False)
async def paystack_webhook(
    request: Request,
    service: Annotated[PaymentService, Depends(get_payment_service)],
    config: Annotated[AppConfig, Depends(get_config)],
) -> JSONResponse:
    raw_body = await request.body()
    secret = require_paystack_secret_key(config.payment)
    if not verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("paystack webhook rejected: invalid signature")
        return JSONResponse(
            status_code=401,
            content={"code": "invalid_signature", "message": "Invalid signature"},
        )

    try:
        body = json.loads(raw_body)
    except ValueError:
        return JSONResponse(
            status_code=400,
            content={"code": "invalid_payload", "message": "Malformed JSON body"},
        )
    if not isinstance(body, dict):
        return JSONResponse(
            status_code=400,
            content={"code": "invalid_payload", "message": "Webhook body must be a JSON object"},
        )

    event = str(body.get("event") or "")
    data = body.get("data")
    if not isinstance(data, dict):
        data = {}
    outcome = PAYSTACK_EVENT_OUTCOMES.get(event)
    if outcome is None:
        logger.info("paystack webhook event ignored: %s", event)
        return JSONResponse(content={"status": "ignored"})

    reference = _extract_reference(event, data)
    if reference is None:
        logger.warning("paystack webhook %s without reference", event)
        return JSONResponse(content={"status": "ignored"})

    metadata = {
        "event": event,
        "gateway_response": data.get("gateway_response"),
        "amount_kobo": data.get("amount"),
        "source": "webhook",
    }
    try:
        result = await run_in_threadpool(service.settle, reference, outcome, metadata)
    except AlreadySettledError as exc:
        logger.info("paystack webhook duplicate: %s", exc.status, extra={"reference": reference})
        return JSONResponse(content={"status": "already_settled"})
    except TransactionNotFound:
        logger.warning("paystack webhook for unknown reference", extra={"reference": reference})
        return JSONResponse(content={"status": "unknown_reference"})

    return JSONResponse(
        content={"status": "processed", "transaction_status": result.status.value}
    )
