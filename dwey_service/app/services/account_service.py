from __future__ import annotations

import logging
import re

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database

from ..config import AppConfig, get_config
from ..exceptions import (
    AccountNotFound,
    EmailAlreadySet,
    EmailTaken,
    InvalidInputError,
)
from ..models.account import (
    Account,
    EmailAssignment,
    PaymentMethod,
    TransactionType,
)
from ..repositories.account_repository import AccountRepository
from ..repositories.interfaces import AccountRepositoryInterface
from ..utils.phone import normalize_phone
from .ledger_service import build_transaction


logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_PATTERN.match(email or ""))


class AccountService:
    """계정 소프트 가입/이메일 등록."""

    def __init__(
        self,
        account_repo: AccountRepositoryInterface,
        signup_bonus: int,
    ) -> None:
        self._account_repo = account_repo
        self._signup_bonus = signup_bonus

    def soft_register(self, phone: str, display_name: str | None = None) -> tuple[Account, bool]:
        """첫 접촉 시 계정을 만들고 가입 보너스를 한 번만 지급한다. (account, 신규 여부)"""
        phone = normalize_phone(phone)
        name = (display_name or "").strip() or phone

        bonus = build_transaction(
            tx_type=TransactionType.CREDIT,
            payment_method=PaymentMethod.SIGNUP_BONUS,
            tums_amount=self._signup_bonus,
            description=f"Welcome bonus - {self._signup_bonus} tums",
        )
        account, created = self._account_repo.get_or_create(phone, name, bonus)
        if created:
            logger.info(
                "new account created with signup bonus %d",
                self._signup_bonus,
                extra={"account": phone},
            )
        return account, created

    def register_email(
        self, phone: str, email: str, display_name: str | None = None
    ) -> tuple[Account, bool]:
        """이메일은 한 번만 등록할 수 있다. 같은 이메일 재요청은 성공(변경 없음)으로 본다.

        (account, 이번에 등록됐는지) 를 반환한다.
        """
        email = (email or "").strip().lower()
        if not is_valid_email(email):
            raise InvalidInputError("Invalid email format. Example: register you@example.com")

        account, _ = self.soft_register(phone, display_name)
        if account.email:
            if account.email == email:
                return account, False
            raise EmailAlreadySet(account.email)

        result = self._account_repo.assign_email(account.phone, email)
        if result == EmailAssignment.TAKEN:
            raise EmailTaken(email)
        if result == EmailAssignment.NO_ACCOUNT:  # pragma: no cover - 방금 생성됨
            raise AccountNotFound(account.phone)

        updated = self._account_repo.find_by_phone(account.phone)
        if updated is None:  # pragma: no cover - 방금 생성됨
            raise AccountNotFound(account.phone)

        if result == EmailAssignment.ALREADY_SET:
            # 동시 요청이 먼저 설정한 경우
            if updated.email == email:
                return updated, False
            raise EmailAlreadySet(updated.email or "")

        logger.info("email registered", extra={"account": account.phone})
        return updated, True

    def is_email_taken(self, email: str) -> bool:
        return self._account_repo.find_by_email((email or "").strip().lower()) is not None

    def get_account(self, phone: str) -> Account:
        normalized = normalize_phone(phone)
        account = self._account_repo.find_by_phone(normalized)
        if account is None:
            raise AccountNotFound(normalized)
        return account


def get_account_repository(
    db: Database = Depends(get_database),
) -> AccountRepositoryInterface:
    """FastAPI DI용 AccountRepository 팩토리."""
    return AccountRepository(db)


def get_account_service(
    account_repo: AccountRepositoryInterface = Depends(get_account_repository),
    config: AppConfig = Depends(get_config),
) -> AccountService:
    """FastAPI DI용 AccountService 팩토리."""
    return AccountService(account_repo, signup_bonus=config.pricing.signup_bonus)
