"""카드 결제 정산 서비스.

pending 트랜잭션은 createPending 시점에 tums 양을 확정하고, 정산 시에는 다시 계산하지 않는다.
게이트웨이는 같은 이벤트를 재전송할 수 있으므로 모든 전이는 조건부 쓰기로 한 번만 일어난다.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends

from common.events.notification import NotificationKind

from ..clients.paystack import PaymentGateway, get_payment_gateway
from ..config import AppConfig, PaymentConfig, get_config
from ..exceptions import (
    AlreadySettledError,
    EmailRequired,
    InvalidInputError,
    PaymentGatewayError,
    TransactionNotFound,
    UpstreamTimeoutError,
)
from ..models.account import (
    PaymentMethod,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from ..models.payment import (
    CheckoutSession,
    PendingPayment,
    SettlementOutcome,
    SettlementResult,
)
from ..repositories.interfaces import LedgerRepositoryInterface
from .account_service import AccountService, get_account_service
from .ledger_service import (
    LedgerService,
    build_transaction,
    get_ledger_repository,
    get_ledger_service,
)
from .notification_queue import NotificationQueue, get_notification_queue, notify_safely


logger = logging.getLogger(__name__)

EXPIRED_REASON = "Payment session expired"

_FAIL_STATUS: dict[SettlementOutcome, TransactionStatus] = {
    SettlementOutcome.FAILED: TransactionStatus.FAILED,
    SettlementOutcome.CANCELLED: TransactionStatus.CANCELLED,
    SettlementOutcome.ABANDONED: TransactionStatus.CANCELLED,
}

# 게이트웨이 verify 응답의 status 값
GATEWAY_STATUS_OUTCOMES: dict[str, SettlementOutcome] = {
    "success": SettlementOutcome.SUCCESS,
    "failed": SettlementOutcome.FAILED,
    "abandoned": SettlementOutcome.ABANDONED,
    "cancelled": SettlementOutcome.CANCELLED,
    "reversed": SettlementOutcome.REVERSED,
    "refunded": SettlementOutcome.REFUNDED,
    "ongoing": SettlementOutcome.PROCESSING,
    "pending": SettlementOutcome.PENDING,
    "processing": SettlementOutcome.PROCESSING,
    "queued": SettlementOutcome.PENDING,
}


def new_payment_reference(phone: str) -> str:
    millis = int(time.time() * 1000)
    return f"pay_{phone}_{millis}{secrets.token_hex(2)}"


class PaymentService:
    def __init__(
        self,
        ledger_repo: LedgerRepositoryInterface,
        ledger_service: LedgerService,
        account_service: AccountService,
        notification_queue: NotificationQueue,
        config: PaymentConfig,
        gateway: PaymentGateway | None = None,
    ) -> None:
        self._ledger_repo = ledger_repo
        self._ledger_service = ledger_service
        self._account_service = account_service
        self._queue = notification_queue
        self._config = config
        self._gateway = gateway

    # --- pending 생성 --------------------------------------------------------

    def create_pending(
        self, phone: str, fiat_amount: int, display_name: str | None = None
    ) -> PendingPayment:
        if fiat_amount < self._config.min_fiat_amount:
            raise InvalidInputError(
                f"Minimum top-up is ₦{self._config.min_fiat_amount:,}."
            )
        if fiat_amount > self._config.max_fiat_amount:
            raise InvalidInputError(
                f"Maximum top-up is ₦{self._config.max_fiat_amount:,}."
            )

        account, _ = self._account_service.soft_register(phone, display_name)
        if not account.email:
            raise EmailRequired()

        now = datetime.now(timezone.utc)
        tums_amount = fiat_amount * self._config.tums_per_naira
        reference = new_payment_reference(account.phone)
        expires_at = now + timedelta(minutes=self._config.pending_ttl_minutes)

        tx = build_transaction(
            tx_type=TransactionType.CREDIT,
            payment_method=PaymentMethod.CARD,
            tums_amount=tums_amount,
            fiat_amount=fiat_amount,
            description=f"Wallet top-up - ₦{fiat_amount:,} ({tums_amount} tums)",
            status=TransactionStatus.PENDING,
            reference=reference,
            expires_at=expires_at,
            now=now,
        )
        self._ledger_service.append_transaction(account.phone, tx)

        logger.info(
            "pending payment created: ₦%d -> %d tums",
            fiat_amount,
            tums_amount,
            extra={"account": account.phone, "reference": reference},
        )
        return PendingPayment(
            reference=reference,
            tums_amount=tums_amount,
            fiat_amount=fiat_amount,
            expires_at=expires_at,
        )

    def start_checkout(
        self, phone: str, fiat_amount: int, display_name: str | None = None
    ) -> CheckoutSession:
        """pending 을 만들고 게이트웨이 결제창을 연다. 실패하면 pending 을 abandoned 로 닫는다."""
        if self._gateway is None:
            raise RuntimeError("payment gateway is not configured")

        pending = self.create_pending(phone, fiat_amount, display_name)
        account = self._account_service.get_account(phone)

        try:
            init = self._gateway.initialize(
                email=account.email or "",
                fiat_amount=fiat_amount,
                reference=pending.reference,
                metadata={"phone": account.phone, "tums_amount": pending.tums_amount},
            )
        except (PaymentGatewayError, UpstreamTimeoutError) as exc:
            self.fail_checkout(pending.reference, exc.message)
            raise

        return CheckoutSession(payment=pending, authorization_url=init.authorization_url)

    def fail_checkout(self, reference: str, reason: str) -> bool:
        now = datetime.now(timezone.utc)
        changed = self._ledger_repo.transition_pending(
            reference,
            TransactionStatus.ABANDONED,
            now,
            reason,
            {"abandoned_reason": reason},
        )
        if changed:
            logger.warning(
                "checkout abandoned: %s", reason, extra={"reference": reference}
            )
        return changed

    # --- 정산 ----------------------------------------------------------------

    def settle(
        self,
        reference: str,
        outcome: SettlementOutcome,
        metadata: dict[str, Any] | None = None,
    ) -> SettlementResult:
        metadata = dict(metadata or {})
        found = self._ledger_repo.find_by_reference(reference)
        if found is None:
            raise TransactionNotFound(reference)
        phone, tx = found
        if tx.payment_method != PaymentMethod.CARD:
            # 유지비 차감 등 내부 reference 는 게이트웨이 정산 대상이 아니다.
            raise TransactionNotFound(reference)

        if outcome == SettlementOutcome.SUCCESS:
            return self._settle_success(reference, phone, tx, metadata)
        if outcome in _FAIL_STATUS:
            return self._settle_failure(reference, phone, tx, outcome, metadata)
        if outcome in (SettlementOutcome.REVERSED, SettlementOutcome.REFUNDED):
            return self._settle_reversal(reference, phone, tx, outcome, metadata)
        if outcome in (SettlementOutcome.PENDING, SettlementOutcome.PROCESSING):
            if tx.status != TransactionStatus.PENDING:
                raise AlreadySettledError(reference, tx.status.value)
            notify_safely(
                self._queue,
                phone,
                f"⏳ Your payment {reference} is still processing. "
                "We'll let you know once it's confirmed.",
                NotificationKind.PAYMENT_INFO,
            )
            return self._result(reference, phone, outcome, tx)

        # dispute
        if tx.status not in (TransactionStatus.PENDING, TransactionStatus.COMPLETED):
            raise AlreadySettledError(reference, tx.status.value)
        logger.warning("payment dispute opened", extra={"reference": reference, "account": phone})
        notify_safely(
            self._queue,
            phone,
            f"⚠️ A dispute was opened on your payment {reference}. "
            "Your balance is unchanged while it is reviewed.",
            NotificationKind.PAYMENT_INFO,
        )
        return self._result(reference, phone, outcome, tx)

    def _result(
        self,
        reference: str,
        phone: str,
        outcome: SettlementOutcome,
        tx: Transaction,
        **kwargs: Any,
    ) -> SettlementResult:
        return SettlementResult(
            reference=reference,
            phone=phone,
            outcome=outcome,
            status=kwargs.pop("status", tx.status),
            balance_changed=kwargs.pop("balance_changed", False),
            transaction=tx,
            **kwargs,
        )

    def _reread_status(self, reference: str, fallback: TransactionStatus) -> str:
        found = self._ledger_repo.find_by_reference(reference)
        return (found[1].status if found else fallback).value

    def _settle_success(
        self,
        reference: str,
        phone: str,
        tx: Transaction,
        metadata: dict[str, Any],
    ) -> SettlementResult:
        if tx.status != TransactionStatus.PENDING:
            raise AlreadySettledError(reference, tx.status.value)

        now = datetime.now(timezone.utc)
        merged = {**tx.metadata, **metadata}
        applied = self._ledger_repo.complete_pending(reference, tx.tums_amount, now, merged)
        if applied is None:
            # 동시에 들어온 재전송이 먼저 처리했다.
            raise AlreadySettledError(reference, self._reread_status(reference, tx.status))
        _, new_balance = applied

        completed = tx.model_copy(
            update={
                "status": TransactionStatus.COMPLETED,
                "completed_at": now,
                "metadata": merged,
            }
        )
        logger.info(
            "payment settled: +%d tums, balance=%d",
            tx.tums_amount,
            new_balance,
            extra={"account": phone, "reference": reference},
        )
        notify_safely(
            self._queue,
            phone,
            "🎉 *Payment Successful!*\n\n"
            "✅ Your payment has been confirmed\n"
            f"💰 Reference: {reference}\n"
            f"🪙 {tx.tums_amount} tums added. Balance: {new_balance} tums\n\n"
            "_Thank you for your payment!_",
            NotificationKind.PAYMENT_SUCCEEDED,
        )
        return self._result(
            reference,
            phone,
            SettlementOutcome.SUCCESS,
            completed,
            status=TransactionStatus.COMPLETED,
            balance_changed=True,
            new_balance=new_balance,
        )

    def _settle_failure(
        self,
        reference: str,
        phone: str,
        tx: Transaction,
        outcome: SettlementOutcome,
        metadata: dict[str, Any],
    ) -> SettlementResult:
        if tx.status != TransactionStatus.PENDING:
            raise AlreadySettledError(reference, tx.status.value)

        status = _FAIL_STATUS[outcome]
        reason = str(
            metadata.get("gateway_response") or metadata.get("reason") or outcome.value
        )
        now = datetime.now(timezone.utc)
        merged = {**tx.metadata, **metadata}
        if not self._ledger_repo.transition_pending(reference, status, now, reason, merged):
            raise AlreadySettledError(reference, self._reread_status(reference, tx.status))

        logger.info(
            "payment %s: %s",
            status.value,
            reason,
            extra={"account": phone, "reference": reference},
        )
        notify_safely(
            self._queue,
            phone,
            f"❌ Your payment {reference} was {status.value} ({reason}). "
            "No tums were charged. Send 'fund wallet' to try again.",
            NotificationKind.PAYMENT_FAILED,
        )
        updated = tx.model_copy(
            update={"status": status, "failure_reason": reason, "completed_at": now}
        )
        return self._result(reference, phone, outcome, updated, status=status)

    def _settle_reversal(
        self,
        reference: str,
        phone: str,
        tx: Transaction,
        outcome: SettlementOutcome,
        metadata: dict[str, Any],
    ) -> SettlementResult:
        if tx.status != TransactionStatus.COMPLETED:
            raise AlreadySettledError(reference, tx.status.value)

        now = datetime.now(timezone.utc)
        merged = {**tx.metadata, **metadata, "reversed_at": now.isoformat()}
        if not self._ledger_repo.mark_reversed(reference, now, merged):
            raise AlreadySettledError(reference, self._reread_status(reference, tx.status))

        try:
            reversal, new_balance, shortfall = self._ledger_service.debit_clamped(
                phone,
                tx.tums_amount,
                f"Card reversal - {reference}",
                PaymentMethod.CARD_REVERSAL,
                metadata={"reversed_reference": reference, "outcome": outcome.value},
            )
        except Exception:
            # 차감이 기록되지 않았으므로 completed 로 되돌려 재전송된 이벤트가 다시 처리되게 한다.
            restored = self._ledger_repo.restore_completed(
                reference, datetime.now(timezone.utc), tx.metadata
            )
            logger.error(
                "reversal debit failed, status restored=%s",
                restored,
                extra={"account": phone, "reference": reference},
            )
            raise
        logger.info(
            "payment reversed: -%d tums (shortfall=%d), balance=%d",
            reversal.tums_amount,
            shortfall,
            new_balance,
            extra={"account": phone, "reference": reference},
        )
        notify_safely(
            self._queue,
            phone,
            f"↩️ Your payment {reference} was reversed. "
            f"{reversal.tums_amount} tums were deducted. Balance: {new_balance} tums",
            NotificationKind.PAYMENT_REVERSED,
        )
        updated = tx.model_copy(
            update={"status": TransactionStatus.REVERSED, "metadata": merged}
        )
        return self._result(
            reference,
            phone,
            outcome,
            updated,
            status=TransactionStatus.REVERSED,
            balance_changed=reversal.tums_amount > 0,
            new_balance=new_balance,
            reversal=reversal,
            shortfall=shortfall,
        )

    def verify(self, reference: str) -> SettlementResult:
        """게이트웨이에 직접 상태를 물어 정산한다 (웹훅이 오지 않은 경우)."""
        if self._gateway is None:
            raise RuntimeError("payment gateway is not configured")

        verified = self._gateway.verify(reference)
        outcome = GATEWAY_STATUS_OUTCOMES.get(verified.status.lower())
        if outcome is None:
            raise InvalidInputError(f"Unknown payment status: {verified.status}")
        return self.settle(
            reference,
            outcome,
            {
                "gateway_response": verified.gateway_response,
                "amount_kobo": verified.amount_kobo,
                "source": "verify",
            },
        )

    # --- 만료 스윕 -----------------------------------------------------------

    def expire_stale_payments(self) -> int:
        """만료 시각이 지난 pending 결제를 expired 로 바꾼다. 영향받은 계정 수를 반환한다."""
        now = datetime.now(timezone.utc)
        touched = self._ledger_repo.expire_pending(now, EXPIRED_REASON)
        if touched:
            logger.info("expired stale pending payments on %d accounts", touched)
        return touched


def get_payment_service(
    ledger_repo: LedgerRepositoryInterface = Depends(get_ledger_repository),
    ledger_service: LedgerService = Depends(get_ledger_service),
    account_service: AccountService = Depends(get_account_service),
    notification_queue: NotificationQueue = Depends(get_notification_queue),
    config: AppConfig = Depends(get_config),
) -> PaymentService:
    """FastAPI DI용 PaymentService 팩토리 (게이트웨이 없이, 웹훅 정산용)."""
    return PaymentService(
        ledger_repo,
        ledger_service,
        account_service,
        notification_queue,
        config.payment,
    )


def get_checkout_payment_service(
    ledger_repo: LedgerRepositoryInterface = Depends(get_ledger_repository),
    ledger_service: LedgerService = Depends(get_ledger_service),
    account_service: AccountService = Depends(get_account_service),
    notification_queue: NotificationQueue = Depends(get_notification_queue),
    config: AppConfig = Depends(get_config),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentService:
    """FastAPI DI용 PaymentService 팩토리 (Paystack 호출 포함)."""
    return PaymentService(
        ledger_repo,
        ledger_service,
        account_service,
        notification_queue,
        config.payment,
        gateway=gateway,
    )
