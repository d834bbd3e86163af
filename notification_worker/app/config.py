from __future__ import annotations

import os
from dataclasses import dataclass


WHATSAPP_INSTANCE_ID = "WHATSAPP_INSTANCE_ID"
WHATSAPP_TOKEN = "WHATSAPP_TOKEN"
WHATSAPP_BASE_URL = "WHATSAPP_BASE_URL"
WHATSAPP_TIMEOUT_SECONDS = "WHATSAPP_TIMEOUT_SECONDS"
NOTIFICATION_BATCH_SIZE = "NOTIFICATION_BATCH_SIZE"
NOTIFICATION_BATCH_DELAY_SECONDS = "NOTIFICATION_BATCH_DELAY_SECONDS"

DEFAULT_WHATSAPP_BASE_URL = "https://api.ultramsg.com"


@dataclass(slots=True)
class WhatsAppConfig:
    instance_id: str
    token: str
    base_url: str = DEFAULT_WHATSAPP_BASE_URL
    timeout_seconds: float = 15.0


@dataclass(slots=True)
class DispatchConfig:
    """메시지를 batch_size 개 보낼 때마다 batch_delay_seconds 만큼 쉰다."""

    batch_size: int = 10
    batch_delay_seconds: float = 2.0


@dataclass(slots=True)
class AppConfig:
    """notification-worker 전체 설정 루트."""

    whatsapp: WhatsAppConfig
    dispatch: DispatchConfig


def load_whatsapp_config() -> WhatsAppConfig:
    instance_id = os.getenv(WHATSAPP_INSTANCE_ID, "").strip()
    token = os.getenv(WHATSAPP_TOKEN, "").strip()
    if not instance_id or not token:
        raise RuntimeError(
            f"{WHATSAPP_INSTANCE_ID} and {WHATSAPP_TOKEN} environment variables are required for notification-worker",
        )

    base_url = os.getenv(WHATSAPP_BASE_URL, "").strip() or DEFAULT_WHATSAPP_BASE_URL
    timeout_raw = os.getenv(WHATSAPP_TIMEOUT_SECONDS)
    timeout = float(timeout_raw) if timeout_raw else 15.0

    return WhatsAppConfig(
        instance_id=instance_id,
        token=token,
        base_url=base_url,
        timeout_seconds=timeout,
    )


def load_dispatch_config() -> DispatchConfig:
    batch_size_raw = os.getenv(NOTIFICATION_BATCH_SIZE)
    delay_raw = os.getenv(NOTIFICATION_BATCH_DELAY_SECONDS)
    return DispatchConfig(
        batch_size=max(1, int(batch_size_raw)) if batch_size_raw else 10,
        batch_delay_seconds=max(0.0, float(delay_raw)) if delay_raw else 2.0,
    )


def load_config() -> AppConfig:
    """notification-worker 설정을 로드하여 AppConfig 로 반환한다."""

    return AppConfig(whatsapp=load_whatsapp_config(), dispatch=load_dispatch_config())
