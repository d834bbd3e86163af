from __future__ import annotations

import logging
from datetime import datetime, timezone

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from ..models.account import Account, EmailAssignment, Transaction
from .documents.account_document import AccountDocument, TransactionRecord
from .interfaces import AccountRepositoryInterface


logger = logging.getLogger(__name__)

# 프로필 조회에는 트랜잭션 로그 전체가 필요 없다.
_PROFILE_PROJECTION = {"transactions": {"$slice": 20}}


class AccountRepository(AccountRepositoryInterface):
    """accounts 컬렉션의 계정/프로필 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["accounts"]

    def find_by_phone(self, phone: str) -> Account | None:
        doc = self._col.find_one({"phone": phone}, _PROFILE_PROJECTION)
        if not doc:
            return None
        return AccountDocument.model_validate(doc).to_domain()

    def find_by_email(self, email: str) -> Account | None:
        doc = self._col.find_one({"email": email}, _PROFILE_PROJECTION)
        if not doc:
            return None
        return AccountDocument.model_validate(doc).to_domain()

    def get_or_create(
        self, phone: str, display_name: str, signup_transaction: Transaction
    ) -> tuple[Account, bool]:
        """소프트 가입 (Atomic).

        upsert + $setOnInsert 로 "없을 때만 생성" 을 한 번의 쓰기로 처리한다.
        동시에 같은 phone 으로 upsert 하면 uniq_phone 인덱스 때문에 한쪽이
        DuplicateKeyError 를 받는데, 이는 이미 생성된 것이므로 조회로 대체한다.
        """
        now = datetime.now(timezone.utc)
        record = TransactionRecord.from_domain(signup_transaction).to_mongo_record()

        try:
            result = self._col.update_one(
                {"phone": phone},
                {
                    "$setOnInsert": {
                        "phone": phone,
                        "display_name": display_name,
                        "email": None,
                        "balance": signup_transaction.tums_amount,
                        "transactions": [record],
                        "created_at": now,
                        "updated_at": now,
                    }
                },
                upsert=True,
            )
            created = result.upserted_id is not None
        except DuplicateKeyError:
            created = False

        account = self.find_by_phone(phone)
        if account is None:  # pragma: no cover - 위에서 생성/존재가 보장됨
            raise RuntimeError(f"account {phone} vanished right after upsert")
        return account, created

    def assign_email(self, phone: str, email: str) -> EmailAssignment:
        now = datetime.now(timezone.utc)
        try:
            result = self._col.update_one(
                {"phone": phone, "email": None},
                {"$set": {"email": email, "updated_at": now}},
            )
        except DuplicateKeyError:
            return EmailAssignment.TAKEN

        if result.modified_count == 1:
            return EmailAssignment.ASSIGNED

        if self._col.count_documents({"phone": phone}, limit=1) == 0:
            return EmailAssignment.NO_ACCOUNT
        return EmailAssignment.ALREADY_SET
