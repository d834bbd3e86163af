from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from dwey_service.app.config import BillingConfig, LinkConfig, PricingConfig
from dwey_service.app.exceptions import (
    CodeUnavailable,
    InsufficientBalanceError,
    LinkAlreadyActive,
    LinkNotFound,
    NotLinkOwner,
    RaceLostError,
    TargetInvalid,
    TemporalTargetAlreadySet,
    TemporalTargetNotSet,
)
from dwey_service.app.models.link import DeactivationReason
from dwey_service.app.services.account_service import AccountService
from dwey_service.app.services.ledger_service import LedgerService
from dwey_service.app.services.link_service import LinkService
from dwey_service.tests.fakes import (
    CREATOR,
    OTHER,
    TARGET,
    FakeClickRepository,
    FakeLinkRepository,
)


def test_create_debits_and_builds_urls(
    link_service: LinkService,
    ledger_service: LedgerService,
    account_service: AccountService,
) -> None:
    created = link_service.create(CREATOR, "0802 222 2222", custom_code="My-Shop!")

    link = created.link
    assert link.short_code == "myshop"
    assert link.target_phone == TARGET
    assert created.redirect_url == "https://d-wey.com/myshop"
    assert link.whatsapp_url.startswith(f"https://wa.me/{TARGET}?text=Hello!%20I'd")
    assert link.expires_at == link.next_billing_at
    assert link.expires_at - link.created_at == timedelta(hours=24)
    assert created.new_balance == 750
    history, _ = ledger_service.get_history(CREATOR)
    assert history[0].description == "Link creation - myshop"
    # 대상 번호도 소프트 가입된다.
    assert account_service.get_account(TARGET).balance == 1000


def test_create_uses_custom_message(link_service: LinkService) -> None:
    created = link_service.create(CREATOR, TARGET, message="Order now")
    assert created.link.custom_message == "Order now"
    assert created.link.whatsapp_url.endswith("?text=Order%20now")
    assert len(created.link.short_code) == 6


def test_create_rejects_bad_target(link_service: LinkService) -> None:
    with pytest.raises(TargetInvalid):
        link_service.create(CREATOR, "12345")


def test_create_without_balance_reserves_nothing(
    link_service: LinkService,
    ledger_service: LedgerService,
    account_service: AccountService,
    link_repo: FakeLinkRepository,
) -> None:
    account_service.soft_register(CREATOR)
    ledger_service.adjust_balance(CREATOR, 100)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        link_service.create(CREATOR, TARGET, custom_code="shop")

    assert exc_info.value.required == 250
    assert exc_info.value.available == 100
    assert link_repo.all() == []


def test_taken_code_suggests_free_variations(link_service: LinkService) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")
    link_service.create(CREATOR, TARGET, custom_code="shop1")

    with pytest.raises(CodeUnavailable) as exc_info:
        link_service.create(OTHER, TARGET, custom_code="SHOP")

    assert exc_info.value.suggestions == ["shop2", "shop3", "shop4"]


def test_concurrent_custom_code_has_one_winner(
    link_service: LinkService,
    ledger_service: LedgerService,
    link_repo: FakeLinkRepository,
) -> None:
    phones = [f"23480600000{index:02d}" for index in range(6)]

    def attempt(phone: str) -> bool:
        try:
            link_service.create(phone, TARGET, custom_code="race")
        except CodeUnavailable:
            return False
        return True

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(attempt, phones))

    assert results.count(True) == 1
    assert len(link_repo.all()) == 1
    charged = [p for p in phones if ledger_service.get_balance(p) == 750]
    assert len(charged) == 1


def test_random_code_retries_then_gives_up(
    link_repo: FakeLinkRepository,
    click_repo: FakeClickRepository,
    account_service: AccountService,
    ledger_service: LedgerService,
) -> None:
    service = LinkService(
        link_repo,
        click_repo,
        account_service,
        ledger_service,
        pricing=PricingConfig(),
        billing=BillingConfig(),
        link_config=LinkConfig(random_code_attempts=3),
        code_generator=lambda length: "fixed1",
    )
    service.create(CREATOR, TARGET)

    with pytest.raises(RaceLostError):
        service.create(CREATOR, TARGET)
    # 두 번째 생성은 비용이 빠지지 않는다.
    assert ledger_service.get_balance(CREATOR) == 750


def test_failed_debit_removes_reserved_link(
    link_service: LinkService,
    ledger_service: LedgerService,
    link_repo: FakeLinkRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def losing_debit(*args: object, **kwargs: object) -> None:
        raise InsufficientBalanceError(required=250, available=0)

    link_service.create(CREATOR, TARGET, custom_code="keep")
    monkeypatch.setattr(ledger_service, "debit", losing_debit)

    with pytest.raises(InsufficientBalanceError):
        link_service.create(CREATOR, TARGET, custom_code="gone")

    assert [link.short_code for link in link_repo.all()] == ["keep"]
    assert link_service.public_info("keep").short_code == "keep"


def test_resolve_deactivates_expired_link(
    link_service: LinkService, link_repo: FakeLinkRepository
) -> None:
    link = link_service.create(CREATOR, TARGET, custom_code="old").link
    assert link.id is not None
    link_repo.force_update(
        link.id, expires_at=datetime.now(timezone.utc) - timedelta(seconds=1)
    )

    assert link_service.resolve("OLD") is None
    stored = link_repo.find_by_id(link.id)
    assert stored is not None
    assert stored.is_active is False
    assert stored.deactivation_reason == DeactivationReason.EXPIRED


def test_visit_counts_unique_visitors(
    link_service: LinkService, link_repo: FakeLinkRepository, click_repo: FakeClickRepository
) -> None:
    link = link_service.create(CREATOR, TARGET, custom_code="shop").link

    assert link_service.visit("shop", "10.0.0.1", "Mozilla") == link.whatsapp_url
    link_service.visit("shop", "10.0.0.1", "Mozilla")
    link_service.visit("shop", "10.0.0.2", "Mozilla")

    stored = link_repo.find_by_code("shop")
    assert stored is not None
    assert stored.total_clicks == 3
    assert stored.unique_clicks == 2
    assert stored.last_clicked_at is not None
    # 원문 IP 는 저장되지 않는다.
    assert all("10.0.0" not in click.hashed_ip for click in click_repo.clicks)


def test_visit_unknown_code_returns_none(link_service: LinkService) -> None:
    assert link_service.visit("nothing", "10.0.0.1", None) is None
    assert "nothing" in link_service.not_found_redirect_url("nothing")
    assert link_service.not_found_redirect_url("x").startswith(
        "https://wa.me/2348012345678?text="
    )


def test_temporal_target_overrides_redirect(
    link_service: LinkService, ledger_service: LedgerService
) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")

    charged = link_service.set_temporal_target(CREATOR, "shop", OTHER)
    assert charged.new_balance == 740
    assert charged.link.temporal_target_phone == OTHER
    assert link_service.visit("shop", "1.1.1.1", "ua") == charged.link.temporal_whatsapp_url

    with pytest.raises(TemporalTargetAlreadySet):
        link_service.set_temporal_target(CREATOR, "shop", TARGET)

    cleared = link_service.kill_temporal_target(CREATOR, "shop")
    assert cleared.link.temporal_target_phone is None
    assert cleared.new_balance == 730
    with pytest.raises(TemporalTargetNotSet):
        link_service.kill_temporal_target(CREATOR, "shop")
    assert ledger_service.get_balance(CREATOR) == 730


def test_lost_temporal_race_is_refunded(
    link_service: LinkService,
    ledger_service: LedgerService,
    link_repo: FakeLinkRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")
    monkeypatch.setattr(link_repo, "set_temporal_target", lambda *args: False)

    with pytest.raises(TemporalTargetAlreadySet):
        link_service.set_temporal_target(CREATOR, "shop", OTHER)

    assert ledger_service.get_balance(CREATOR) == 750
    history, _ = ledger_service.get_history(CREATOR)
    assert history[0].description == "Refund - Set temporal target - shop"


def test_owner_checks(link_service: LinkService) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")

    with pytest.raises(NotLinkOwner):
        link_service.kill_link(OTHER, "shop")
    with pytest.raises(NotLinkOwner):
        link_service.set_temporal_target(TARGET, "shop", OTHER)
    with pytest.raises(LinkNotFound):
        link_service.kill_link(CREATOR, "missing")


def test_kill_and_reactivate(
    link_service: LinkService, ledger_service: LedgerService
) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")

    killed = link_service.kill_link(CREATOR, "shop")
    assert killed.is_active is False
    assert killed.deactivation_reason == DeactivationReason.KILLED_BY_OWNER
    assert link_service.visit("shop", "1.1.1.1", "ua") is None
    assert link_service.kill_link(CREATOR, "shop").is_active is False

    before = datetime.now(timezone.utc)
    revived = link_service.reactivate(CREATOR, "shop")
    assert revived.new_balance == 730
    assert revived.link.is_active is True
    assert revived.link.deactivated_at is None
    assert revived.link.expires_at >= before + timedelta(hours=24)
    with pytest.raises(LinkAlreadyActive):
        link_service.reactivate(CREATOR, "shop")
    assert ledger_service.get_balance(CREATOR) == 730


def test_kill_blocked_by_billing_claim(
    link_service: LinkService, link_repo: FakeLinkRepository
) -> None:
    link = link_service.create(CREATOR, TARGET, custom_code="shop").link
    assert link.id is not None
    link_repo.force_update(
        link.id,
        billing_claim_id="sweep",
        billing_claimed_until=datetime.now(timezone.utc) + timedelta(minutes=5),
    )

    with pytest.raises(RaceLostError):
        link_service.kill_link(CREATOR, "shop")


def test_reactivate_without_balance_keeps_link_inactive(
    link_service: LinkService, ledger_service: LedgerService
) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")
    link_service.kill_link(CREATOR, "shop")
    ledger_service.adjust_balance(CREATOR, 5)

    with pytest.raises(InsufficientBalanceError):
        link_service.reactivate(CREATOR, "shop")
    assert link_service.public_info("shop").is_active is False


def test_link_info_charges_viewer_and_returns_analytics(
    link_service: LinkService, ledger_service: LedgerService
) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")
    link_service.visit("shop", "1.1.1.1", "ua")
    link_service.visit("shop", "1.1.1.1", "ua")

    info = link_service.get_link_info(TARGET, "shop")

    assert info.analytics.total_clicks == 2
    assert info.analytics.unique_clicks == 1
    assert info.analytics.unique_click_rate == 50.0
    assert info.new_balance == 990
    assert ledger_service.get_balance(CREATOR) == 750
    with pytest.raises(NotLinkOwner):
        link_service.get_link_info(OTHER, "shop")


def test_listing_and_performance(link_service: LinkService) -> None:
    link_service.create(CREATOR, TARGET, custom_code="alpha")
    link_service.create(CREATOR, OTHER, custom_code="beta")
    link_service.create(OTHER, TARGET, custom_code="gamma")
    link_service.visit("beta", "1.1.1.1", "ua")
    link_service.kill_link(CREATOR, "alpha")

    assert {l.short_code for l in link_service.list_user_links(CREATOR)} == {"alpha", "beta"}
    assert [l.short_code for l in link_service.list_user_links(CREATOR, active_only=True)] == [
        "beta"
    ]
    assert [l.short_code for l in link_service.list_links_by_target(CREATOR, TARGET)] == [
        "alpha"
    ]
    assert link_service.best_performing(CREATOR)[0].short_code == "beta"
    assert link_service.lowest_performing(CREATOR, limit=1)[0].short_code == "alpha"
