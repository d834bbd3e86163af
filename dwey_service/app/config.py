from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG_FILE_NAME = "config.yaml"


@dataclass(slots=True)
class PricingConfig:
    """tums 단가표."""

    create_link: int = 250
    daily_maintenance: int = 20
    link_info_check: int = 10
    set_temporal_target: int = 10
    kill_temporal_target: int = 10
    signup_bonus: int = 1000


@dataclass(slots=True)
class BillingConfig:
    horizon_hours: int = 24
    grace_hours: int = 24
    # 삭제 예정 시각 기준으로 얼마나 앞서 경고를 보낼지
    warning_lead_hours: int = 24
    claim_lease_seconds: int = 300
    sweep_initial_delay_seconds: float = 30.0
    sweep_interval_seconds: float = 24.0 * 60.0 * 60.0
    payment_expiry_interval_seconds: float = 10.0 * 60.0


@dataclass(slots=True)
class RateLimitConfig:
    window_seconds: int = 60
    max_requests: int = 5
    # action 별 허용량. redirect 는 해시된 IP 단위라 훨씬 넉넉하다.
    overrides: dict[str, int] = field(default_factory=lambda: {"redirect": 60})
    eviction_interval_seconds: float = 5.0 * 60.0
    backend: str = "memory"

    def limit_for(self, action: str) -> int:
        return self.overrides.get(action, self.max_requests)


@dataclass(slots=True)
class PaymentConfig:
    tums_per_naira: int = 1
    min_fiat_amount: int = 100
    max_fiat_amount: int = 1_000_000
    pending_ttl_minutes: int = 60
    paystack_base_url: str = "https://api.paystack.co"
    paystack_timeout_seconds: float = 10.0
    paystack_secret_key: str | None = None
    callback_url: str | None = None


@dataclass(slots=True)
class LinkConfig:
    short_domain: str = "https://d-wey.com"
    bot_phone_number: str = "2348012345678"
    default_message: str = "Hello! I'd like to chat with you."
    click_hash_salt: str = "d-wey-default-salt"
    random_code_length: int = 6
    random_code_attempts: int = 10


@dataclass(slots=True)
class AppConfig:
    """dwey-service 전체 설정 루트.

    단가/과금 표는 config.yaml 에서, 비밀값과 배포 환경 값은 환경 변수에서 읽는다.
    """

    pricing: PricingConfig = field(default_factory=PricingConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    link: LinkConfig = field(default_factory=LinkConfig)


def _find_config_path() -> Path | None:
    """현재 작업 디렉토리부터 상위로 올라가며 config.yaml 을 찾는다. 없으면 기본값을 쓴다."""

    explicit = os.getenv("DWEY_CONFIG_PATH", "").strip()
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise RuntimeError(f"DWEY_CONFIG_PATH points to a missing file: {explicit}")
        return path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def _read_int(section: dict[str, Any], key: str, default: int, source: str) -> int:
    raw_value = section.get(key, default)
    try:
        return int(raw_value)
    except (TypeError, ValueError) as exc:  # noqa: TRY003
        raise RuntimeError(f"invalid {key} in {source}: {raw_value!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name, "").strip()
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except ValueError as exc:  # noqa: TRY003
        raise RuntimeError(f"{name} must be an integer value, got: {raw_value!r}") from exc


def _load_pricing(data: dict[str, Any], source: str) -> PricingConfig:
    section = data.get("pricing") or {}
    defaults = PricingConfig()
    return PricingConfig(
        create_link=_read_int(section, "create_link", defaults.create_link, source),
        daily_maintenance=_read_int(
            section, "daily_maintenance", defaults.daily_maintenance, source
        ),
        link_info_check=_read_int(
            section, "link_info_check", defaults.link_info_check, source
        ),
        set_temporal_target=_read_int(
            section, "set_temporal_target", defaults.set_temporal_target, source
        ),
        kill_temporal_target=_read_int(
            section, "kill_temporal_target", defaults.kill_temporal_target, source
        ),
        signup_bonus=_read_int(section, "signup_bonus", defaults.signup_bonus, source),
    )


def _load_billing(data: dict[str, Any], source: str) -> BillingConfig:
    section = data.get("billing") or {}
    defaults = BillingConfig()
    return BillingConfig(
        horizon_hours=_read_int(section, "horizon_hours", defaults.horizon_hours, source),
        grace_hours=_read_int(section, "grace_hours", defaults.grace_hours, source),
        warning_lead_hours=_read_int(
            section, "warning_lead_hours", defaults.warning_lead_hours, source
        ),
        claim_lease_seconds=_read_int(
            section, "claim_lease_seconds", defaults.claim_lease_seconds, source
        ),
        sweep_initial_delay_seconds=float(
            section.get("sweep_initial_delay_seconds", defaults.sweep_initial_delay_seconds)
        ),
        sweep_interval_seconds=float(
            section.get("sweep_interval_seconds", defaults.sweep_interval_seconds)
        ),
        payment_expiry_interval_seconds=float(
            section.get(
                "payment_expiry_interval_seconds",
                defaults.payment_expiry_interval_seconds,
            )
        ),
    )


def _load_rate_limit(data: dict[str, Any], source: str) -> RateLimitConfig:
    section = data.get("rate_limit") or {}
    defaults = RateLimitConfig()

    overrides = dict(defaults.overrides)
    for action, value in (section.get("overrides") or {}).items():
        try:
            overrides[str(action)] = int(value)
        except (TypeError, ValueError) as exc:  # noqa: TRY003
            raise RuntimeError(
                f"invalid rate_limit.overrides.{action} in {source}: {value!r}"
            ) from exc

    backend = os.getenv("RATE_LIMIT_BACKEND", "").strip().lower() or str(
        section.get("backend", defaults.backend)
    )
    if backend not in {"memory", "mongo"}:
        raise RuntimeError(f"RATE_LIMIT_BACKEND must be 'memory' or 'mongo', got {backend!r}")

    return RateLimitConfig(
        window_seconds=_read_int(
            section, "window_seconds", defaults.window_seconds, source
        ),
        max_requests=_read_int(section, "max_requests", defaults.max_requests, source),
        overrides=overrides,
        eviction_interval_seconds=float(
            section.get("eviction_interval_seconds", defaults.eviction_interval_seconds)
        ),
        backend=backend,
    )


def _load_payment() -> PaymentConfig:
    defaults = PaymentConfig()
    bot_phone = os.getenv("BOT_PHONE_NUMBER", "").strip()
    callback_url = os.getenv("PAYSTACK_CALLBACK_URL", "").strip() or None
    if callback_url is None and bot_phone:
        callback_url = f"https://api.whatsapp.com/send?phone={bot_phone}"

    return PaymentConfig(
        tums_per_naira=_env_int("TUMS_PER_NAIRA", defaults.tums_per_naira),
        min_fiat_amount=_env_int("PAYMENT_MIN_AMOUNT", defaults.min_fiat_amount),
        max_fiat_amount=_env_int("PAYMENT_MAX_AMOUNT", defaults.max_fiat_amount),
        pending_ttl_minutes=_env_int(
            "PAYMENT_PENDING_TTL_MINUTES", defaults.pending_ttl_minutes
        ),
        paystack_base_url=os.getenv("PAYSTACK_BASE_URL", "").strip()
        or defaults.paystack_base_url,
        paystack_timeout_seconds=float(
            _env_int("PAYSTACK_TIMEOUT_SECONDS", int(defaults.paystack_timeout_seconds))
        ),
        paystack_secret_key=os.getenv("PAYSTACK_SECRET_KEY", "").strip() or None,
        callback_url=callback_url,
    )


def _load_link() -> LinkConfig:
    defaults = LinkConfig()
    return LinkConfig(
        short_domain=(
            os.getenv("SHORT_DOMAIN", "").strip() or defaults.short_domain
        ).rstrip("/"),
        bot_phone_number=os.getenv("BOT_PHONE_NUMBER", "").strip()
        or defaults.bot_phone_number,
        default_message=defaults.default_message,
        click_hash_salt=os.getenv("CLICK_HASH_SALT", "").strip()
        or defaults.click_hash_salt,
    )


def load_config() -> AppConfig:
    path = _find_config_path()
    data: dict[str, Any] = {}
    source = "defaults"
    if path is not None:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        source = str(path)

    return AppConfig(
        pricing=_load_pricing(data, source),
        billing=_load_billing(data, source),
        rate_limit=_load_rate_limit(data, source),
        payment=_load_payment(),
        link=_load_link(),
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """프로세스 전역 설정. FastAPI Depends 와 스케줄러가 같은 값을 공유한다."""
    return load_config()


def require_paystack_secret_key(config: PaymentConfig) -> str:
    if not config.paystack_secret_key:
        raise RuntimeError("PAYSTACK_SECRET_KEY environment variable is required")
    return config.paystack_secret_key
