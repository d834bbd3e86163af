from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from common.events.notification import NotificationKind
from dwey_service.app.exceptions import LinkNotFound
from dwey_service.app.models.link import DeactivationReason, Link
from dwey_service.app.services.billing_service import BillingService, SweepReport
from dwey_service.app.services.ledger_service import LedgerService
from dwey_service.app.services.link_service import LinkService
from dwey_service.tests.fakes import (
    CREATOR,
    TARGET,
    FakeClickRepository,
    FakeLinkRepository,
    FakeNotificationQueue,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _due_link(link_service: LinkService, link_repo: FakeLinkRepository, code: str) -> Link:
    link = link_service.create(CREATOR, TARGET, custom_code=code).link
    assert link.id is not None
    past = _now() - timedelta(minutes=1)
    link_repo.force_update(link.id, next_billing_at=past, expires_at=past)
    stored = link_repo.find_by_id(link.id)
    assert stored is not None
    return stored


def _inactive_link(
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    code: str,
    deactivated_ago: timedelta,
) -> Link:
    link = link_service.create(CREATOR, TARGET, custom_code=code).link
    assert link.id is not None
    link_repo.force_update(
        link.id,
        is_active=False,
        deactivated_at=_now() - deactivated_ago,
        deactivation_reason=DeactivationReason.INSUFFICIENT_BALANCE,
    )
    stored = link_repo.find_by_id(link.id)
    assert stored is not None
    return stored


def test_due_link_is_billed_and_extended(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    ledger_service: LedgerService,
) -> None:
    link = _due_link(link_service, link_repo, "shop")
    assert link.id is not None

    report = billing_service.run_sweep()

    assert report.billed == 1
    assert report.deactivated == 0
    assert ledger_service.get_balance(CREATOR) == 730
    history, _ = ledger_service.get_history(CREATOR)
    assert history[0].description == "Daily maintenance - shop"

    stored = link_repo.find_by_id(link.id)
    assert stored is not None
    assert stored.is_active is True
    assert stored.billing_claim_id is None
    assert stored.next_billing_at > _now() + timedelta(hours=23)
    assert stored.expires_at == stored.next_billing_at

    # 같은 주기에 다시 돌려도 두 번 과금하지 않는다.
    assert billing_service.run_sweep().billed == 0
    assert ledger_service.get_balance(CREATOR) == 730


def test_link_without_funds_is_deactivated_and_owner_notified(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    ledger_service: LedgerService,
    queue: FakeNotificationQueue,
) -> None:
    link = _due_link(link_service, link_repo, "shop")
    assert link.id is not None
    ledger_service.adjust_balance(CREATOR, 10)

    report = billing_service.run_sweep()

    assert report.billed == 0
    assert report.deactivated == 1
    stored = link_repo.find_by_id(link.id)
    assert stored is not None
    assert stored.is_active is False
    assert stored.deactivation_reason == DeactivationReason.INSUFFICIENT_BALANCE
    assert stored.deactivated_at is not None
    assert ledger_service.get_balance(CREATOR) == 10

    recipient, text, kind = queue.sent[0]
    assert recipient == CREATOR
    assert kind == NotificationKind.LINK_DEACTIVATED
    assert "reactivate shop" in text
    assert "fund wallet" in text


def test_deletion_warning_is_sent_once(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    queue: FakeNotificationQueue,
) -> None:
    _inactive_link(link_service, link_repo, "quiet", timedelta(hours=1))

    first = billing_service.run_sweep()
    second = billing_service.run_sweep()

    assert first.warned == 1
    assert second.warned == 0
    assert queue.kinds_for(CREATOR) == [NotificationKind.BILLING_WARNING]
    assert "reactivate quiet" in queue.sent[0][1]


def test_link_past_grace_is_deleted_with_clicks(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    click_repo: FakeClickRepository,
    queue: FakeNotificationQueue,
) -> None:
    link = link_service.create(CREATOR, TARGET, custom_code="stale").link
    assert link.id is not None
    link_service.visit("stale", "1.1.1.1", "ua")
    link_repo.force_update(
        link.id,
        is_active=False,
        deactivated_at=_now() - timedelta(hours=25),
        deactivation_reason=DeactivationReason.KILLED_BY_OWNER,
    )

    report = billing_service.run_sweep()

    assert report.deleted == 1
    assert link_repo.find_by_id(link.id) is None
    assert click_repo.list_clicks(link.id) == []
    assert queue.kinds_for(CREATOR) == [NotificationKind.LINK_DELETED]
    with pytest.raises(LinkNotFound):
        link_service.reactivate(CREATOR, "stale")
    # 삭제된 코드는 다시 쓸 수 있다.
    assert link_service.create(CREATOR, TARGET, custom_code="stale").link.short_code == "stale"


def test_recently_deactivated_link_is_kept(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
) -> None:
    link = _inactive_link(link_service, link_repo, "fresh", timedelta(hours=23))

    report = billing_service.run_sweep()

    assert report.deleted == 0
    assert link.id is not None
    assert link_repo.find_by_id(link.id) is not None


def test_notification_failure_is_counted_not_fatal(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    ledger_service: LedgerService,
    queue: FakeNotificationQueue,
) -> None:
    _due_link(link_service, link_repo, "shop")
    ledger_service.adjust_balance(CREATOR, 0)
    queue.fail = True

    report = billing_service.run_sweep()

    assert report.deactivated == 1
    assert report.notification_failures == 1
    assert report.failures == 0


def test_infrastructure_failure_releases_claim_for_next_cycle(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    ledger_service: LedgerService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    link = _due_link(link_service, link_repo, "shop")
    assert link.id is not None

    def broken_debit(*args: object, **kwargs: object) -> None:
        raise RuntimeError("storage timeout")

    monkeypatch.setattr(ledger_service, "debit", broken_debit)

    report = billing_service.run_sweep()

    assert report.failures == 1
    assert report.failed_codes == ["shop"]
    stored = link_repo.find_by_id(link.id)
    assert stored is not None
    assert stored.is_active is True
    assert stored.billing_claim_id is None
    assert stored.next_billing_at == link.next_billing_at

    monkeypatch.undo()
    assert billing_service.run_sweep().billed == 1


def test_concurrent_sweeps_bill_each_link_once(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    ledger_service: LedgerService,
) -> None:
    for code in ("one", "two", "three"):
        _due_link(link_service, link_repo, code)
    assert ledger_service.get_balance(CREATOR) == 250

    reports: list[SweepReport] = []
    lock = threading.Lock()

    def sweep() -> None:
        report = billing_service.run_sweep()
        with lock:
            reports.append(report)

    threads = [threading.Thread(target=sweep) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(report.billed for report in reports) == 3
    assert ledger_service.get_balance(CREATOR) == 190


def test_horizon_failure_after_debit_does_not_bill_period_twice(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    ledger_service: LedgerService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    link = _due_link(link_service, link_repo, "shop")
    assert link.id is not None

    def broken_extend(*args: object, **kwargs: object) -> bool:
        raise RuntimeError("storage timeout")

    monkeypatch.setattr(link_repo, "extend_billing", broken_extend)
    first = billing_service.run_sweep()

    assert first.billed == 0
    assert first.failures == 1
    assert ledger_service.get_balance(CREATOR) == 730

    monkeypatch.undo()
    second = billing_service.run_sweep()

    assert second.billed == 1
    assert ledger_service.get_balance(CREATOR) == 730
    history, _ = ledger_service.get_history(CREATOR)
    maintenance = [tx for tx in history if tx.description == "Daily maintenance - shop"]
    assert len(maintenance) == 1

    stored = link_repo.find_by_id(link.id)
    assert stored is not None
    assert stored.billing_claim_id is None
    assert stored.next_billing_at > _now() + timedelta(hours=23)


def test_lost_deactivation_claim_is_released(
    billing_service: BillingService,
    link_service: LinkService,
    link_repo: FakeLinkRepository,
    ledger_service: LedgerService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    link = _due_link(link_service, link_repo, "shop")
    assert link.id is not None
    ledger_service.adjust_balance(CREATOR, 0)
    monkeypatch.setattr(link_repo, "deactivate_claimed", lambda *args, **kwargs: False)

    report = billing_service.run_sweep()

    assert report.deactivated == 0
    stored = link_repo.find_by_id(link.id)
    assert stored is not None
    assert stored.is_active is True
    assert stored.billing_claim_id is None
