"""지갑 원장 서비스.

credit/debit 은 저장소의 단일 조건부 쓰기로 처리되므로 동시 차감이 잔액을 넘지 못한다.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database

from ..exceptions import AccountNotFound, InsufficientBalanceError, InvalidInputError
from ..models.account import (
    PaymentMethod,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from ..repositories.interfaces import LedgerRepositoryInterface
from ..repositories.ledger_repository import LedgerRepository


logger = logging.getLogger(__name__)

MAX_HISTORY_PAGE_SIZE = 100


def new_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex}"


def build_transaction(
    *,
    tx_type: TransactionType,
    payment_method: PaymentMethod,
    tums_amount: int,
    description: str,
    status: TransactionStatus = TransactionStatus.COMPLETED,
    fiat_amount: int = 0,
    reference: str | None = None,
    coupon_code: str | None = None,
    metadata: dict[str, Any] | None = None,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> Transaction:
    now = now or datetime.now(timezone.utc)
    return Transaction(
        id=new_transaction_id(),
        type=tx_type,
        payment_method=payment_method,
        tums_amount=tums_amount,
        fiat_amount=fiat_amount,
        description=description,
        status=status,
        reference=reference,
        coupon_code=coupon_code,
        metadata=dict(metadata or {}),
        created_at=now,
        expires_at=expires_at,
        completed_at=now if status == TransactionStatus.COMPLETED else None,
    )


class LedgerService:
    """잔액 변경과 트랜잭션 로그 관리."""

    def __init__(self, ledger_repo: LedgerRepositoryInterface) -> None:
        self._ledger_repo = ledger_repo

    def get_balance(self, phone: str) -> int:
        balance = self._ledger_repo.get_balance(phone)
        if balance is None:
            raise AccountNotFound(phone)
        return balance

    def credit(
        self,
        phone: str,
        amount: int,
        description: str,
        method: PaymentMethod,
        *,
        fiat_amount: int = 0,
        reference: str | None = None,
        coupon_code: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[Transaction, int]:
        """completed credit 트랜잭션을 기록하고 (트랜잭션, 새 잔액) 을 반환한다."""
        if amount <= 0:
            raise InvalidInputError("Amount must be a positive number of tums")

        tx = build_transaction(
            tx_type=TransactionType.CREDIT,
            payment_method=method,
            tums_amount=amount,
            description=description,
            fiat_amount=fiat_amount,
            reference=reference,
            coupon_code=coupon_code,
            metadata=metadata,
        )
        new_balance = self._ledger_repo.credit(phone, tx)
        if new_balance is None:
            raise AccountNotFound(phone)

        logger.info(
            "credited %d tums to %s (%s), balance=%d",
            amount,
            phone,
            method.value,
            new_balance,
            extra={"account": phone},
        )
        return tx, new_balance

    def debit(
        self,
        phone: str,
        amount: int,
        description: str,
        method: PaymentMethod = PaymentMethod.SPEND,
        *,
        reference: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[Transaction, int]:
        """잔액이 충분할 때만 차감한다. 부족하면 InsufficientBalanceError."""
        if amount <= 0:
            raise InvalidInputError("Amount must be a positive number of tums")

        tx = build_transaction(
            tx_type=TransactionType.DEBIT,
            payment_method=method,
            tums_amount=amount,
            description=description,
            reference=reference,
            metadata=metadata,
        )
        new_balance = self._ledger_repo.debit(phone, tx)
        if new_balance is None:
            available = self._ledger_repo.get_balance(phone)
            if available is None:
                raise AccountNotFound(phone)
            raise InsufficientBalanceError(required=amount, available=available)

        logger.info(
            "debited %d tums from %s, balance=%d",
            amount,
            phone,
            new_balance,
            extra={"account": phone},
        )
        return tx, new_balance

    def debit_clamped(
        self,
        phone: str,
        amount: int,
        description: str,
        method: PaymentMethod,
        *,
        metadata: dict[str, Any] | None = None,
        max_attempts: int = 10,
    ) -> tuple[Transaction, int, int]:
        """잔액을 0 아래로 내리지 않는 범위에서 최대 amount 만큼 차감한다.

        관측한 잔액에 대한 CAS 로 반영하며, (트랜잭션, 새 잔액, 못 걷은 양) 을 반환한다.
        """
        for _ in range(max_attempts):
            observed = self._ledger_repo.get_balance(phone)
            if observed is None:
                raise AccountNotFound(phone)

            charged = min(observed, amount)
            shortfall = amount - charged
            tx_metadata = dict(metadata or {})
            tx_metadata.update({"requested": amount, "shortfall": shortfall})
            tx = build_transaction(
                tx_type=TransactionType.DEBIT,
                payment_method=method,
                tums_amount=charged,
                description=description,
                metadata=tx_metadata,
            )
            new_balance = self._ledger_repo.apply_if_balance(phone, observed, tx)
            if new_balance is not None:
                if shortfall:
                    logger.warning(
                        "clamped debit for %s: requested=%d charged=%d shortfall=%d",
                        phone,
                        amount,
                        charged,
                        shortfall,
                        extra={"account": phone},
                    )
                return tx, new_balance, shortfall

        raise RuntimeError(f"balance of {phone} kept changing during clamped debit")

    def adjust_balance(
        self, phone: str, new_balance: int, reason: str = "Admin adjustment"
    ) -> tuple[Transaction | None, int]:
        """관리자 잔액 조정. 차이만큼 adjustment 트랜잭션을 남겨 원장 불변식을 유지한다."""
        if new_balance < 0:
            raise InvalidInputError("Balance cannot be negative")

        for _ in range(10):
            observed = self._ledger_repo.get_balance(phone)
            if observed is None:
                raise AccountNotFound(phone)
            if observed == new_balance:
                return None, observed

            delta = new_balance - observed
            tx = build_transaction(
                tx_type=TransactionType.CREDIT if delta > 0 else TransactionType.DEBIT,
                payment_method=PaymentMethod.ADJUSTMENT,
                tums_amount=abs(delta),
                description=reason,
                metadata={"previous_balance": observed},
            )
            applied = self._ledger_repo.apply_if_balance(phone, observed, tx)
            if applied is not None:
                logger.info(
                    "adjusted balance of %s from %d to %d",
                    phone,
                    observed,
                    applied,
                    extra={"account": phone},
                )
                return tx, applied

        raise RuntimeError(f"balance of {phone} kept changing during adjustment")

    def find_by_reference(self, reference: str) -> tuple[str, Transaction] | None:
        return self._ledger_repo.find_by_reference(reference)

    def append_transaction(self, phone: str, transaction: Transaction) -> None:
        """잔액에 영향이 없는 트랜잭션(pending 등)만 추가한다."""
        if transaction.affects_balance:
            raise ValueError("balance-affecting transactions must go through credit/debit")
        if not self._ledger_repo.append_transaction(phone, transaction):
            raise AccountNotFound(phone)

    def get_history(
        self, phone: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[Transaction], int]:
        page = max(1, page)
        page_size = min(max(1, page_size), MAX_HISTORY_PAGE_SIZE)
        return self._ledger_repo.get_history(phone, page, page_size)


def get_ledger_repository(
    db: Database = Depends(get_database),
) -> LedgerRepositoryInterface:
    """FastAPI DI용 LedgerRepository 팩토리."""
    return LedgerRepository(db)


def get_ledger_service(
    ledger_repo: LedgerRepositoryInterface = Depends(get_ledger_repository),
) -> LedgerService:
    """FastAPI DI용 LedgerService 팩토리."""
    return LedgerService(ledger_repo)
