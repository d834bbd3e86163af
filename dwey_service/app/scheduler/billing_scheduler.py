from __future__ import annotations

import logging
import threading

from common.mongo.client import get_database

from ..config import get_config
from ..repositories.click_repository import ClickRepository
from ..repositories.ledger_repository import LedgerRepository
from ..repositories.link_repository import LinkRepository
from ..services.billing_service import BillingService
from ..services.ledger_service import LedgerService
from ..services.notification_queue import get_notification_queue


logger = logging.getLogger(__name__)


_BILLING_SCHEDULER_THREAD: threading.Thread | None = None
_BILLING_SCHEDULER_STOP_EVENT: threading.Event | None = None


def _build_service() -> BillingService:
    config = get_config()
    db = get_database()
    return BillingService(
        link_repo=LinkRepository(db),
        click_repo=ClickRepository(db),
        ledger_service=LedgerService(LedgerRepository(db)),
        notification_queue=get_notification_queue(),
        pricing=config.pricing,
        billing=config.billing,
    )


def _run_scheduler_loop(stop_event: threading.Event) -> None:
    billing = get_config().billing
    logger.info(
        "billing scheduler thread started (initial delay=%.0f seconds, interval=%.0f seconds)",
        billing.sweep_initial_delay_seconds,
        billing.sweep_interval_seconds,
    )

    try:
        # 기동 직후의 부하를 피해 잠시 기다린 뒤 첫 스윕을 돈다.
        if stop_event.wait(billing.sweep_initial_delay_seconds):
            return

        service = _build_service()

        logger.info("billing sweep starting (initial run)")
        try:
            service.run_sweep()
        except Exception:  # noqa: BLE001
            logger.exception("billing sweep failed (initial run)")

        while not stop_event.wait(billing.sweep_interval_seconds):
            logger.info("billing sweep starting (scheduled run)")
            try:
                service.run_sweep()
            except Exception:  # noqa: BLE001
                logger.exception("billing sweep failed (scheduled run)")
    except Exception:  # noqa: BLE001
        logger.exception("billing scheduler could not start")
    finally:
        logger.info("billing scheduler thread stopped")


def start_billing_scheduler() -> None:
    """일일 과금 스윕 스레드를 시작한다.

    FastAPI lifespan 에서 호출된다.
    """

    global _BILLING_SCHEDULER_THREAD, _BILLING_SCHEDULER_STOP_EVENT

    if _BILLING_SCHEDULER_THREAD and _BILLING_SCHEDULER_THREAD.is_alive():
        return

    stop_event = threading.Event()
    thread = threading.Thread(
        target=_run_scheduler_loop,
        args=(stop_event,),
        name="billing-scheduler",
        daemon=True,
    )

    _BILLING_SCHEDULER_STOP_EVENT = stop_event
    _BILLING_SCHEDULER_THREAD = thread

    thread.start()
    logger.info("billing scheduler thread launched")


def stop_billing_scheduler() -> None:
    """과금 스윕 스레드를 정지한다. 진행 중인 스윕은 끝날 때까지 기다리지 않는다."""

    global _BILLING_SCHEDULER_THREAD, _BILLING_SCHEDULER_STOP_EVENT

    if _BILLING_SCHEDULER_THREAD is None or _BILLING_SCHEDULER_STOP_EVENT is None:
        return

    _BILLING_SCHEDULER_STOP_EVENT.set()
    _BILLING_SCHEDULER_THREAD.join(timeout=10.0)

    _BILLING_SCHEDULER_THREAD = None
    _BILLING_SCHEDULER_STOP_EVENT = None

    logger.info("billing scheduler thread stopped by shutdown")
