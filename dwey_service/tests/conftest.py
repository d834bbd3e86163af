from __future__ import annotations

import pytest

from dwey_service.app.config import (
    BillingConfig,
    LinkConfig,
    PaymentConfig,
    PricingConfig,
)
from dwey_service.app.services.account_service import AccountService
from dwey_service.app.services.billing_service import BillingService
from dwey_service.app.services.coupon_service import CouponService
from dwey_service.app.services.ledger_service import LedgerService
from dwey_service.app.services.link_service import LinkService
from dwey_service.app.services.payment_service import PaymentService
from dwey_service.tests.fakes import (
    AccountStore,
    FakeAccountRepository,
    FakeClickRepository,
    FakeCouponRepository,
    FakeLedgerRepository,
    FakeLinkRepository,
    FakeNotificationQueue,
    FakePaymentGateway,
)


@pytest.fixture
def pricing() -> PricingConfig:
    return PricingConfig()


@pytest.fixture
def billing_config() -> BillingConfig:
    return BillingConfig()


@pytest.fixture
def link_config() -> LinkConfig:
    return LinkConfig()


@pytest.fixture
def payment_config() -> PaymentConfig:
    return PaymentConfig(paystack_secret_key="sk_test_secret")


@pytest.fixture
def account_store() -> AccountStore:
    return AccountStore()


@pytest.fixture
def account_repo(account_store: AccountStore) -> FakeAccountRepository:
    return FakeAccountRepository(account_store)


@pytest.fixture
def ledger_repo(account_store: AccountStore) -> FakeLedgerRepository:
    return FakeLedgerRepository(account_store)


@pytest.fixture
def coupon_repo() -> FakeCouponRepository:
    return FakeCouponRepository()


@pytest.fixture
def link_repo() -> FakeLinkRepository:
    return FakeLinkRepository()


@pytest.fixture
def click_repo() -> FakeClickRepository:
    return FakeClickRepository()


@pytest.fixture
def queue() -> FakeNotificationQueue:
    return FakeNotificationQueue()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def ledger_service(ledger_repo: FakeLedgerRepository) -> LedgerService:
    return LedgerService(ledger_repo)


@pytest.fixture
def account_service(
    account_repo: FakeAccountRepository, pricing: PricingConfig
) -> AccountService:
    return AccountService(account_repo, signup_bonus=pricing.signup_bonus)


@pytest.fixture
def coupon_service(
    coupon_repo: FakeCouponRepository,
    account_service: AccountService,
    ledger_service: LedgerService,
) -> CouponService:
    return CouponService(coupon_repo, account_service, ledger_service)


@pytest.fixture
def payment_service(
    ledger_repo: FakeLedgerRepository,
    ledger_service: LedgerService,
    account_service: AccountService,
    queue: FakeNotificationQueue,
    payment_config: PaymentConfig,
    gateway: FakePaymentGateway,
) -> PaymentService:
    return PaymentService(
        ledger_repo,
        ledger_service,
        account_service,
        queue,
        payment_config,
        gateway=gateway,
    )


@pytest.fixture
def link_service(
    link_repo: FakeLinkRepository,
    click_repo: FakeClickRepository,
    account_service: AccountService,
    ledger_service: LedgerService,
    pricing: PricingConfig,
    billing_config: BillingConfig,
    link_config: LinkConfig,
) -> LinkService:
    return LinkService(
        link_repo,
        click_repo,
        account_service,
        ledger_service,
        pricing=pricing,
        billing=billing_config,
        link_config=link_config,
    )


@pytest.fixture
def billing_service(
    link_repo: FakeLinkRepository,
    click_repo: FakeClickRepository,
    ledger_service: LedgerService,
    queue: FakeNotificationQueue,
    pricing: PricingConfig,
    billing_config: BillingConfig,
) -> BillingService:
    return BillingService(
        link_repo, click_repo, ledger_service, queue, pricing, billing_config
    )
