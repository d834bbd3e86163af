from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from common.events.notification import NotificationKind
from dwey_service.app.exceptions import (
    AlreadySettledError,
    EmailRequired,
    InvalidInputError,
    PaymentGatewayError,
    TransactionNotFound,
)
from dwey_service.app.models.account import (
    PaymentMethod,
    TransactionStatus,
    ledger_balance,
)
from dwey_service.app.models.payment import SettlementOutcome
from dwey_service.app.services.account_service import AccountService
from dwey_service.app.services.ledger_service import LedgerService
from dwey_service.app.services.payment_service import PaymentService
from dwey_service.tests.fakes import (
    CREATOR,
    FakeAccountRepository,
    FakeLedgerRepository,
    FakeNotificationQueue,
    FakePaymentGateway,
)


@pytest.fixture(autouse=True)
def _registered(account_service: AccountService) -> None:
    account_service.register_email(CREATOR, "ada@example.com")


def test_create_pending_does_not_touch_balance(
    payment_service: PaymentService, ledger_repo: FakeLedgerRepository
) -> None:
    pending = payment_service.create_pending(CREATOR, 500)

    assert pending.tums_amount == 500
    assert pending.reference.startswith(f"pay_{CREATOR}_")
    found = ledger_repo.find_by_reference(pending.reference)
    assert found is not None
    assert found[1].status == TransactionStatus.PENDING
    assert ledger_repo.get_balance(CREATOR) == 1000


@pytest.mark.parametrize("amount", [99, 1_000_001])
def test_create_pending_enforces_amount_bounds(
    payment_service: PaymentService, amount: int
) -> None:
    with pytest.raises(InvalidInputError):
        payment_service.create_pending(CREATOR, amount)


def test_create_pending_requires_email(payment_service: PaymentService) -> None:
    with pytest.raises(EmailRequired):
        payment_service.create_pending("2348099999999", 500)


def test_success_is_applied_exactly_once(
    payment_service: PaymentService,
    ledger_service: LedgerService,
    queue: FakeNotificationQueue,
) -> None:
    pending = payment_service.create_pending(CREATOR, 500)

    result = payment_service.settle(pending.reference, SettlementOutcome.SUCCESS)
    assert result.balance_changed is True
    assert result.new_balance == 1500
    assert result.status == TransactionStatus.COMPLETED

    with pytest.raises(AlreadySettledError):
        payment_service.settle(pending.reference, SettlementOutcome.SUCCESS)
    with pytest.raises(AlreadySettledError):
        payment_service.settle(pending.reference, SettlementOutcome.FAILED)

    assert ledger_service.get_balance(CREATOR) == 1500
    assert queue.kinds_for(CREATOR) == [NotificationKind.PAYMENT_SUCCEEDED]


def test_failure_closes_pending_without_credit(
    payment_service: PaymentService,
    ledger_repo: FakeLedgerRepository,
    queue: FakeNotificationQueue,
) -> None:
    pending = payment_service.create_pending(CREATOR, 500)

    result = payment_service.settle(
        pending.reference,
        SettlementOutcome.FAILED,
        {"gateway_response": "Declined"},
    )

    assert result.status == TransactionStatus.FAILED
    assert result.transaction.failure_reason == "Declined"
    assert ledger_repo.get_balance(CREATOR) == 1000
    assert queue.kinds_for(CREATOR) == [NotificationKind.PAYMENT_FAILED]
    with pytest.raises(AlreadySettledError):
        payment_service.settle(pending.reference, SettlementOutcome.SUCCESS)


def test_reversal_clamps_at_zero_and_reports_shortfall(
    payment_service: PaymentService,
    ledger_service: LedgerService,
    account_repo: FakeAccountRepository,
) -> None:
    pending = payment_service.create_pending(CREATOR, 500)
    payment_service.settle(pending.reference, SettlementOutcome.SUCCESS)
    ledger_service.debit(CREATOR, 1300, "spent most of it")

    result = payment_service.settle(pending.reference, SettlementOutcome.REFUNDED)

    assert result.status == TransactionStatus.REVERSED
    assert result.reversal is not None
    assert result.reversal.payment_method == PaymentMethod.CARD_REVERSAL
    assert result.reversal.tums_amount == 200
    assert result.shortfall == 300
    assert result.new_balance == 0

    account = account_repo.find_by_phone(CREATOR)
    assert account is not None
    assert account.balance == ledger_balance(account.transactions) == 0

    with pytest.raises(AlreadySettledError):
        payment_service.settle(pending.reference, SettlementOutcome.REVERSED)


def test_failed_reversal_debit_restores_status_so_resend_succeeds(
    monkeypatch: pytest.MonkeyPatch,
    payment_service: PaymentService,
    ledger_service: LedgerService,
    ledger_repo: FakeLedgerRepository,
) -> None:
    pending = payment_service.create_pending(CREATOR, 500)
    payment_service.settle(pending.reference, SettlementOutcome.SUCCESS)
    assert ledger_service.get_balance(CREATOR) == 1500

    original = ledger_repo.apply_if_balance
    calls = {"count": 0}

    def flaky_apply(*args: object, **kwargs: object) -> int | None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("store unavailable")
        return original(*args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(ledger_repo, "apply_if_balance", flaky_apply)

    with pytest.raises(RuntimeError):
        payment_service.settle(pending.reference, SettlementOutcome.REVERSED)

    found = ledger_repo.find_by_reference(pending.reference)
    assert found is not None
    assert found[1].status == TransactionStatus.COMPLETED
    assert ledger_service.get_balance(CREATOR) == 1500

    result = payment_service.settle(pending.reference, SettlementOutcome.REVERSED)

    assert result.status == TransactionStatus.REVERSED
    assert result.new_balance == 1000
    assert ledger_service.get_balance(CREATOR) == 1000


def test_reversal_of_pending_payment_is_rejected(payment_service: PaymentService) -> None:
    pending = payment_service.create_pending(CREATOR, 500)
    with pytest.raises(AlreadySettledError):
        payment_service.settle(pending.reference, SettlementOutcome.REVERSED)


def test_processing_and_dispute_leave_balance_alone(
    payment_service: PaymentService,
    ledger_service: LedgerService,
    queue: FakeNotificationQueue,
) -> None:
    pending = payment_service.create_pending(CREATOR, 500)

    processing = payment_service.settle(pending.reference, SettlementOutcome.PROCESSING)
    dispute = payment_service.settle(pending.reference, SettlementOutcome.DISPUTE)

    assert processing.balance_changed is False
    assert dispute.status == TransactionStatus.PENDING
    assert ledger_service.get_balance(CREATOR) == 1000
    assert queue.kinds_for(CREATOR) == [
        NotificationKind.PAYMENT_INFO,
        NotificationKind.PAYMENT_INFO,
    ]


def test_unknown_reference(payment_service: PaymentService) -> None:
    with pytest.raises(TransactionNotFound):
        payment_service.settle("pay_missing", SettlementOutcome.SUCCESS)


def test_expired_pending_can_no_longer_be_credited(
    payment_service: PaymentService, ledger_repo: FakeLedgerRepository
) -> None:
    pending = payment_service.create_pending(CREATOR, 500)
    # 만료 시각을 지난 것처럼 만든다.
    touched = ledger_repo.expire_pending(
        datetime.now(timezone.utc) + timedelta(hours=2), "Payment session expired"
    )

    assert touched == 1
    with pytest.raises(AlreadySettledError) as exc_info:
        payment_service.settle(pending.reference, SettlementOutcome.SUCCESS)
    assert exc_info.value.status == TransactionStatus.EXPIRED.value
    assert payment_service.expire_stale_payments() == 0


def test_notification_failure_does_not_undo_settlement(
    payment_service: PaymentService,
    ledger_service: LedgerService,
    queue: FakeNotificationQueue,
) -> None:
    pending = payment_service.create_pending(CREATOR, 500)
    queue.fail = True

    result = payment_service.settle(pending.reference, SettlementOutcome.SUCCESS)

    assert result.new_balance == 1500
    assert ledger_service.get_balance(CREATOR) == 1500


def test_start_checkout_returns_authorization_url(
    payment_service: PaymentService, gateway: FakePaymentGateway
) -> None:
    session = payment_service.start_checkout(CREATOR, 1000)

    assert session.authorization_url.endswith(session.payment.reference)
    assert gateway.initialized[0]["email"] == "ada@example.com"
    assert gateway.initialized[0]["fiat_amount"] == 1000


def test_start_checkout_abandons_pending_when_gateway_fails(
    payment_service: PaymentService,
    gateway: FakePaymentGateway,
    ledger_service: LedgerService,
) -> None:
    gateway.fail_initialize = True

    with pytest.raises(PaymentGatewayError):
        payment_service.start_checkout(CREATOR, 1000)

    history, _ = ledger_service.get_history(CREATOR)
    assert history[0].status == TransactionStatus.ABANDONED


def test_verify_settles_through_gateway_status(
    payment_service: PaymentService, gateway: FakePaymentGateway
) -> None:
    pending = payment_service.create_pending(CREATOR, 300)
    gateway.verify_status = "success"

    result = payment_service.verify(pending.reference)

    assert result.outcome == SettlementOutcome.SUCCESS
    assert result.new_balance == 1300
    assert result.transaction.metadata["source"] == "verify"


def test_internal_debit_reference_is_not_settleable(
    payment_service: PaymentService, ledger_service: LedgerService
) -> None:
    ledger_service.debit(CREATOR, 20, "Daily maintenance - shop", reference="maint_link-1_0")

    with pytest.raises(TransactionNotFound):
        payment_service.settle("maint_link-1_0", SettlementOutcome.REVERSED)
    assert ledger_service.get_balance(CREATOR) == 980
