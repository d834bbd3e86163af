"""일일 유지비 과금 스윕.

링크를 한 번에 하나씩 lease 로 잡아서 처리하므로, 스윕이 둘 이상 동시에 돌아도
같은 링크가 두 번 과금되지 않는다. 인프라 오류로 처리하지 못한 링크는 스윕이 끝날 때
lease 를 풀어 다음 주기에 다시 시도한다.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from common.events.notification import NotificationKind
from common.types.datetime import format_display_time

from ..config import BillingConfig, PricingConfig
from ..exceptions import InsufficientBalanceError
from ..models.account import PaymentMethod
from ..models.link import DeactivationReason, Link
from ..repositories.interfaces import ClickRepositoryInterface, LinkRepositoryInterface
from .ledger_service import LedgerService
from .notification_queue import NotificationQueue, notify_safely


logger = logging.getLogger(__name__)


def maintenance_reference(link: Link) -> str:
    """(링크, 과금 기간) 단위 차감 reference. 기간은 과금 시점의 next_billing_at 으로 구분한다."""
    return f"maint_{link.id}_{int(link.next_billing_at.timestamp())}"


@dataclass(slots=True)
class SweepReport:
    run_id: str
    billed: int = 0
    deactivated: int = 0
    warned: int = 0
    deleted: int = 0
    failures: int = 0
    notification_failures: int = 0
    failed_codes: list[str] = field(default_factory=list)


class BillingService:
    def __init__(
        self,
        link_repo: LinkRepositoryInterface,
        click_repo: ClickRepositoryInterface,
        ledger_service: LedgerService,
        notification_queue: NotificationQueue,
        pricing: PricingConfig,
        billing: BillingConfig,
    ) -> None:
        self._link_repo = link_repo
        self._click_repo = click_repo
        self._ledger_service = ledger_service
        self._queue = notification_queue
        self._pricing = pricing
        self._billing = billing

    def run_sweep(self, now: datetime | None = None) -> SweepReport:
        """과금 → 삭제 경고 → 유예 기간이 지난 링크 삭제 순으로 한 번 돈다."""
        started = now or datetime.now(timezone.utc)
        report = SweepReport(run_id=uuid.uuid4().hex)
        logger.info("billing sweep started", extra={"run_id": report.run_id})

        held: list[Link] = []
        try:
            self._bill_due_links(started, report, held)
            self._send_deletion_warnings(started, report)
            self._delete_expired_links(started, report, held)
        finally:
            for link in held:
                if link.id is not None:
                    self._release(link.id, report.run_id)

        logger.info(
            "billing sweep finished (billed=%d, deactivated=%d, warned=%d, deleted=%d, failures=%d, notification_failures=%d)",
            report.billed,
            report.deactivated,
            report.warned,
            report.deleted,
            report.failures,
            report.notification_failures,
            extra={"run_id": report.run_id},
        )
        return report

    def _lease_until(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self._billing.claim_lease_seconds)

    def _release(self, link_id: str, claim_id: str) -> None:
        try:
            self._link_repo.release_claim(link_id, claim_id)
        except Exception:  # noqa: BLE001
            # lease 가 끝나면 자연히 풀린다.
            logger.exception("failed to release billing claim", extra={"run_id": claim_id})

    def _notify(self, report: SweepReport, recipient: str, text: str, kind: str) -> None:
        if not notify_safely(self._queue, recipient, text, kind):
            report.notification_failures += 1

    def _record_failure(self, report: SweepReport, link: Link, held: list[Link]) -> None:
        report.failures += 1
        report.failed_codes.append(link.short_code)
        held.append(link)

    # --- 과금 ----------------------------------------------------------------

    def _bill_due_links(self, now: datetime, report: SweepReport, held: list[Link]) -> None:
        while True:
            link = self._link_repo.claim_due_for_billing(now, report.run_id, self._lease_until())
            if link is None or link.id is None:
                return
            try:
                self._bill_one(link, report, held)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "billing failed, will retry next cycle",
                    extra={"run_id": report.run_id, "short_code": link.short_code},
                )
                self._record_failure(report, link, held)

    def _bill_one(self, link: Link, report: SweepReport, held: list[Link]) -> None:
        assert link.id is not None
        fee = self._pricing.daily_maintenance
        reference = maintenance_reference(link)
        paid = self._ledger_service.find_by_reference(reference)
        if paid is not None:
            # 이전 스윕에서 차감만 되고 만료 시각 갱신이 실패했다. 같은 기간은 다시 걷지 않는다.
            new_balance = self._ledger_service.get_balance(link.creator_phone)
            logger.warning(
                "billing period already paid, extending horizon only",
                extra={"run_id": report.run_id, "short_code": link.short_code, "reference": reference},
            )
        else:
            try:
                _, new_balance = self._ledger_service.debit(
                    link.creator_phone,
                    fee,
                    f"Daily maintenance - {link.short_code}",
                    PaymentMethod.SPEND,
                    reference=reference,
                    metadata={"short_code": link.short_code, "run_id": report.run_id},
                )
            except InsufficientBalanceError as exc:
                self._deactivate(link, report, exc.available, held)
                return

        now = datetime.now(timezone.utc)
        next_billing_at = now + timedelta(hours=self._billing.horizon_hours)
        if not self._link_repo.extend_billing(link.id, report.run_id, next_billing_at, now):
            # 차감은 이미 끝났다. 링크가 사라졌거나 lease 를 잃은 경우라 로그만 남긴다.
            logger.warning(
                "billing debit done but horizon was not extended",
                extra={"run_id": report.run_id, "short_code": link.short_code},
            )
        report.billed += 1
        logger.info(
            "billed %d tums (balance=%d)",
            fee,
            new_balance,
            extra={"run_id": report.run_id, "short_code": link.short_code},
        )

    def _deactivate(
        self, link: Link, report: SweepReport, available: int, held: list[Link]
    ) -> None:
        assert link.id is not None
        now = datetime.now(timezone.utc)
        if not self._link_repo.deactivate_claimed(
            link.id, report.run_id, DeactivationReason.INSUFFICIENT_BALANCE, now
        ):
            logger.warning(
                "link could not be deactivated under claim",
                extra={"run_id": report.run_id, "short_code": link.short_code},
            )
            held.append(link)
            return

        report.deactivated += 1
        logger.info(
            "link deactivated for insufficient balance",
            extra={"run_id": report.run_id, "short_code": link.short_code},
        )
        fee = self._pricing.daily_maintenance
        text = (
            f"⚠️ Your link {link.redirect_url} has been deactivated.\n"
            f"Daily maintenance costs {fee} tums and your balance is {available} tums.\n"
            f"Top up with 'fund wallet', then reactivate with: reactivate {link.short_code}"
        )
        self._notify(report, link.creator_phone, text, NotificationKind.LINK_DEACTIVATED)

    # --- 삭제 경고 -----------------------------------------------------------

    def _send_deletion_warnings(self, now: datetime, report: SweepReport) -> None:
        grace = timedelta(hours=self._billing.grace_hours)
        lead = timedelta(hours=self._billing.warning_lead_hours)
        warn_before = now - max(grace - lead, timedelta(0))
        not_before = now - grace

        while True:
            link = self._link_repo.claim_deletion_warning(warn_before, not_before)
            if link is None:
                return
            report.warned += 1
            deletes_at = (link.deactivated_at or now) + grace
            text = (
                f"⏳ Your inactive link {link.redirect_url} will be deleted on "
                f"{format_display_time(deletes_at)}.\n"
                f"Reactivate it before then with: reactivate {link.short_code}"
            )
            self._notify(report, link.creator_phone, text, NotificationKind.BILLING_WARNING)

    # --- 삭제 ----------------------------------------------------------------

    def _delete_expired_links(self, now: datetime, report: SweepReport, held: list[Link]) -> None:
        cutoff = now - timedelta(hours=self._billing.grace_hours)
        while True:
            link = self._link_repo.claim_due_for_deletion(
                cutoff, now, report.run_id, self._lease_until()
            )
            if link is None or link.id is None:
                return
            try:
                self._delete_one(link, report)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "link deletion failed, will retry next cycle",
                    extra={"run_id": report.run_id, "short_code": link.short_code},
                )
                self._record_failure(report, link, held)

    def _delete_one(self, link: Link, report: SweepReport) -> None:
        assert link.id is not None
        # 알림을 먼저 넣는다. 삭제 뒤에는 링크 정보가 남지 않는다.
        text = (
            f"🗑️ Your link {link.redirect_url} was inactive for "
            f"{self._billing.grace_hours} hours and has been deleted.\n"
            f"The code {link.short_code} is free again."
        )
        self._notify(report, link.creator_phone, text, NotificationKind.LINK_DELETED)

        removed_clicks = self._click_repo.delete_for_link(link.id)
        if self._link_repo.delete_claimed(link.id, report.run_id):
            report.deleted += 1
            logger.info(
                "link deleted after grace window (clicks removed=%d)",
                removed_clicks,
                extra={"run_id": report.run_id, "short_code": link.short_code},
            )
        else:
            logger.warning(
                "link was not deleted, claim lost or reactivated",
                extra={"run_id": report.run_id, "short_code": link.short_code},
            )
