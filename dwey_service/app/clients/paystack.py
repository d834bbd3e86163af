"""Paystack REST 클라이언트 (transaction initialize / verify) 와 웹훅 서명 검증."""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from ..config import PaymentConfig, get_config, require_paystack_secret_key
from ..exceptions import PaymentGatewayError, UpstreamTimeoutError


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
KOBO_PER_NAIRA = 100


@dataclass(slots=True)
class CheckoutInit:
    authorization_url: str
    access_code: str | None
    reference: str


@dataclass(slots=True)
class VerifiedTransaction:
    reference: str
    status: str  # success | failed | abandoned | reversed | ...
    amount_kobo: int
    gateway_response: str | None
    raw: dict[str, Any]


class PaymentGateway(Protocol):
    def initialize(
        self, email: str, fiat_amount: int, reference: str, metadata: dict[str, Any]
    ) -> CheckoutInit:  # pragma: no cover - Protocol
        ...

    def verify(self, reference: str) -> VerifiedTransaction:  # pragma: no cover - Protocol
        ...


def compute_signature(raw_body: bytes, secret_key: str) -> str:
    return hmac.new(secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret_key: str) -> bool:
    """원본 바디 바이트에 대한 HMAC-SHA512 를 상수 시간 비교한다."""
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(raw_body, secret_key), signature)


class PaystackClient:
    """동기 httpx 클라이언트. 모든 호출은 timeout 으로 제한하며, 같은 요청 안에서 재시도하지 않는다."""

    def __init__(self, config: PaymentConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._secret_key = require_paystack_secret_key(config)
        self._client = client or httpx.Client(
            base_url=config.paystack_base_url,
            timeout=config.paystack_timeout_seconds,
            headers={
                "Authorization": f"Bearer {self._secret_key}",
                "Content-Type": "application/json",
            },
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("paystack %s %s timed out: %s", method, path, exc)
            raise UpstreamTimeoutError("paystack") from exc
        except httpx.RequestError as exc:
            logger.error("paystack %s %s failed: %s", method, path, exc)
            raise PaymentGatewayError(str(exc)) from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise PaymentGatewayError(
                f"non-JSON response from paystack (status={resp.status_code})"
            ) from exc

        if resp.status_code >= 400 or not body.get("status"):
            message = str(body.get("message") or f"HTTP {resp.status_code}")
            logger.warning("paystack %s %s rejected: %s", method, path, message)
            raise PaymentGatewayError(message)

        return body.get("data") or {}

    def initialize(
        self, email: str, fiat_amount: int, reference: str, metadata: dict[str, Any]
    ) -> CheckoutInit:
        payload: dict[str, Any] = {
            "email": email,
            "amount": fiat_amount * KOBO_PER_NAIRA,
            "reference": reference,
            "metadata": metadata,
        }
        if self._config.callback_url:
            payload["callback_url"] = self._config.callback_url

        data = self._request("POST", "/transaction/initialize", json=payload)
        return CheckoutInit(
            authorization_url=str(data.get("authorization_url", "")),
            access_code=data.get("access_code"),
            reference=str(data.get("reference") or reference),
        )

    def verify(self, reference: str) -> VerifiedTransaction:
        data = self._request("GET", f"/transaction/verify/{reference}")
        return VerifiedTransaction(
            reference=str(data.get("reference") or reference),
            status=str(data.get("status") or ""),
            amount_kobo=int(data.get("amount") or 0),
            gateway_response=data.get("gateway_response"),
            raw=data,
        )


_paystack_client: PaystackClient | None = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI DI용 Paystack 클라이언트 (커넥션 풀 재사용을 위해 프로세스 전역)."""

    global _paystack_client

    if _paystack_client is None:
        _paystack_client = PaystackClient(get_config().payment)
    return _paystack_client
