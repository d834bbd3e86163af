"""계정 하나가 가입부터 링크 삭제까지 가는 흐름."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from common.events.notification import NotificationKind
from dwey_service.app.models.account import ledger_balance
from dwey_service.app.models.payment import SettlementOutcome
from dwey_service.app.services.account_service import AccountService
from dwey_service.app.services.billing_service import BillingService
from dwey_service.app.services.coupon_service import CouponService
from dwey_service.app.services.ledger_service import LedgerService
from dwey_service.app.services.link_service import LinkService
from dwey_service.app.services.payment_service import PaymentService
from dwey_service.tests.fakes import (
    CREATOR,
    TARGET,
    FakeAccountRepository,
    FakeLinkRepository,
    FakeNotificationQueue,
)


def test_link_lifecycle_keeps_ledger_consistent(
    account_service: AccountService,
    ledger_service: LedgerService,
    coupon_service: CouponService,
    payment_service: PaymentService,
    link_service: LinkService,
    billing_service: BillingService,
    link_repo: FakeLinkRepository,
    account_repo: FakeAccountRepository,
    queue: FakeNotificationQueue,
) -> None:
    account_service.register_email(CREATOR, "ada@example.com")
    link = link_service.create(CREATOR, TARGET, custom_code="shop").link
    assert link.id is not None

    # 잔액을 거의 다 쓴 상태에서 과금 시점이 온다.
    ledger_service.adjust_balance(CREATOR, 5)
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    link_repo.force_update(link.id, next_billing_at=past, expires_at=past)

    report = billing_service.run_sweep()
    assert report.deactivated == 1
    assert link_service.visit("shop", "1.1.1.1", "ua") is None

    # 쿠폰과 카드 결제로 충전한 뒤 다시 켠다.
    coupon_service.create_coupon("WELCOME", 10)
    coupon_service.redeem(CREATOR, "welcome")
    pending = payment_service.create_pending(CREATOR, 100)
    payment_service.settle(pending.reference, SettlementOutcome.SUCCESS)
    assert ledger_service.get_balance(CREATOR) == 115

    revived = link_service.reactivate(CREATOR, "shop")
    assert revived.new_balance == 95
    assert link_service.visit("shop", "1.1.1.1", "ua") == link.whatsapp_url

    # 다시 끄고 유예 기간이 지나면 삭제된다.
    link_service.kill_link(CREATOR, "shop")
    link_repo.force_update(
        link.id, deactivated_at=datetime.now(timezone.utc) - timedelta(hours=25)
    )
    assert billing_service.run_sweep().deleted == 1
    assert link_repo.find_by_code("shop") is None

    account = account_repo.find_by_phone(CREATOR)
    assert account is not None
    assert account.balance == ledger_balance(account.transactions) == 95
    assert queue.kinds_for(CREATOR) == [
        NotificationKind.LINK_DEACTIVATED,
        NotificationKind.PAYMENT_SUCCEEDED,
        NotificationKind.LINK_DELETED,
    ]
