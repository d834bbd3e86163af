"""WhatsApp HTTP 게이트웨이(UltraMsg 호환) 클라이언트."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .config import WhatsAppConfig


logger = logging.getLogger(__name__)


class WhatsAppError(RuntimeError):
    """게이트웨이가 오류를 돌려주거나 연결에 실패했을 때."""


class TextSender(Protocol):
    def send_text(self, to: str, body: str) -> None:  # pragma: no cover - Protocol
        ...


class WhatsAppClient:
    def __init__(self, config: WhatsAppConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def _url(self, endpoint: str) -> str:
        return f"{self._config.base_url.rstrip('/')}/{self._config.instance_id}{endpoint}"

    def send_text(self, to: str, body: str) -> None:
        """실패하면 WhatsAppError. 재시도는 이벤트 버스의 retry 토픽에 맡긴다."""
        payload: dict[str, Any] = {"to": to, "body": body}
        try:
            resp = self._client.post(
                self._url("/messages/chat"),
                params={"token": self._config.token},
                data=payload,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise WhatsAppError(
                f"whatsapp gateway HTTP error: {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise WhatsAppError(f"whatsapp gateway network error: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise WhatsAppError("whatsapp gateway response was not JSON") from exc

        if not isinstance(data, dict):
            raise WhatsAppError("whatsapp gateway response was not a JSON object")
        if data.get("error"):
            raise WhatsAppError(str(data["error"]))
