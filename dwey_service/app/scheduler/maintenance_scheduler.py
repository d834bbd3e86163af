"""주기적인 정리 작업: 오래된 pending 결제 만료, 레이트 리미터 윈도우 정리."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from common.mongo.client import get_database

from ..config import get_config
from ..repositories.account_repository import AccountRepository
from ..repositories.ledger_repository import LedgerRepository
from ..services.account_service import AccountService
from ..services.ledger_service import LedgerService
from ..services.notification_queue import get_notification_queue
from ..services.payment_service import PaymentService
from ..services.rate_limiter import get_rate_limiter


logger = logging.getLogger(__name__)


_MAINTENANCE_THREADS: list[threading.Thread] = []
_MAINTENANCE_STOP_EVENT: threading.Event | None = None


def _expire_payments() -> None:
    config = get_config()
    db = get_database()
    ledger_repo = LedgerRepository(db)
    service = PaymentService(
        ledger_repo,
        LedgerService(ledger_repo),
        AccountService(AccountRepository(db), config.pricing.signup_bonus),
        get_notification_queue(),
        config.payment,
    )
    service.expire_stale_payments()


def _evict_rate_limits() -> None:
    evicted = get_rate_limiter().evict_expired()
    if evicted:
        logger.debug("evicted %d rate limit windows", evicted)


def _run_periodic(
    stop_event: threading.Event, name: str, interval: float, job: Callable[[], None]
) -> None:
    logger.info("%s thread started (interval=%.0f seconds)", name, interval)
    try:
        while not stop_event.wait(interval):
            try:
                job()
            except Exception:  # noqa: BLE001
                logger.exception("%s run failed", name)
    finally:
        logger.info("%s thread stopped", name)


def start_maintenance_scheduler() -> None:
    """FastAPI lifespan 에서 호출된다."""

    global _MAINTENANCE_STOP_EVENT

    if any(t.is_alive() for t in _MAINTENANCE_THREADS):
        return

    billing = get_config().billing
    rate_limit = get_config().rate_limit
    jobs: list[tuple[str, float, Callable[[], None]]] = [
        ("payment-expiry", billing.payment_expiry_interval_seconds, _expire_payments),
        ("rate-limit-eviction", rate_limit.eviction_interval_seconds, _evict_rate_limits),
    ]

    stop_event = threading.Event()
    _MAINTENANCE_STOP_EVENT = stop_event
    _MAINTENANCE_THREADS.clear()

    for name, interval, job in jobs:
        thread = threading.Thread(
            target=_run_periodic,
            args=(stop_event, name, float(interval), job),
            name=name,
            daemon=True,
        )
        _MAINTENANCE_THREADS.append(thread)
        thread.start()

    logger.info("maintenance scheduler threads launched (%d jobs)", len(jobs))


def stop_maintenance_scheduler() -> None:
    global _MAINTENANCE_STOP_EVENT

    if _MAINTENANCE_STOP_EVENT is None:
        return

    _MAINTENANCE_STOP_EVENT.set()
    for thread in _MAINTENANCE_THREADS:
        thread.join(timeout=10.0)

    _MAINTENANCE_THREADS.clear()
    _MAINTENANCE_STOP_EVENT = None

    logger.info("maintenance scheduler threads stopped by shutdown")
