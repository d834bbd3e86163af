"""지갑 잔액/트랜잭션 로그 저장소.

모든 잔액 변경은 하나의 update 로 (조건 검사 + $inc + 로그 $push) 를 함께 수행한다.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pymongo import ReturnDocument
from pymongo.database import Database

from ..models.account import Transaction, TransactionStatus
from .documents.account_document import TransactionRecord
from .interfaces import LedgerRepositoryInterface


def _push_newest_first(transaction: Transaction) -> dict[str, Any]:
    return {
        "transactions": {
            "$each": [TransactionRecord.from_domain(transaction).to_mongo_record()],
            "$position": 0,
        }
    }


class LedgerRepository(LedgerRepositoryInterface):
    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["accounts"]

    def get_balance(self, phone: str) -> int | None:
        doc = self._col.find_one({"phone": phone}, {"balance": 1})
        if not doc:
            return None
        return int(doc.get("balance", 0))

    def _apply(
        self, query: dict[str, Any], transaction: Transaction
    ) -> int | None:
        now = datetime.now(timezone.utc)
        doc = self._col.find_one_and_update(
            query,
            {
                "$inc": {"balance": transaction.signed_amount},
                "$push": _push_newest_first(transaction),
                "$set": {"updated_at": now},
            },
            projection={"balance": 1},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return int(doc["balance"])

    def credit(self, phone: str, transaction: Transaction) -> int | None:
        return self._apply({"phone": phone}, transaction)

    def debit(self, phone: str, transaction: Transaction) -> int | None:
        return self._apply(
            {"phone": phone, "balance": {"$gte": transaction.tums_amount}},
            transaction,
        )

    def apply_if_balance(
        self, phone: str, expected_balance: int, transaction: Transaction
    ) -> int | None:
        return self._apply({"phone": phone, "balance": expected_balance}, transaction)

    def append_transaction(self, phone: str, transaction: Transaction) -> bool:
        now = datetime.now(timezone.utc)
        result = self._col.update_one(
            {"phone": phone},
            {
                "$push": _push_newest_first(transaction),
                "$set": {"updated_at": now},
            },
        )
        return result.matched_count == 1

    def find_by_reference(self, reference: str) -> tuple[str, Transaction] | None:
        doc = self._col.find_one(
            {"transactions.reference": reference},
            {"phone": 1, "transactions": {"$elemMatch": {"reference": reference}}},
        )
        if not doc or not doc.get("transactions"):
            return None
        record = TransactionRecord.model_validate(doc["transactions"][0])
        return str(doc["phone"]), record.to_domain()

    def complete_pending(
        self,
        reference: str,
        tums_amount: int,
        completed_at: datetime,
        metadata: dict[str, Any],
    ) -> tuple[str, int] | None:
        """pending -> completed 와 잔액 증가를 한 번에 (정확히 한 번 credit)."""
        doc = self._col.find_one_and_update(
            {
                "transactions": {
                    "$elemMatch": {
                        "reference": reference,
                        "status": TransactionStatus.PENDING.value,
                        "tums_amount": tums_amount,
                    }
                }
            },
            {
                "$inc": {"balance": tums_amount},
                "$set": {
                    "transactions.$.status": TransactionStatus.COMPLETED.value,
                    "transactions.$.completed_at": completed_at,
                    "transactions.$.metadata": metadata,
                    "updated_at": completed_at,
                },
            },
            projection={"phone": 1, "balance": 1},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return str(doc["phone"]), int(doc["balance"])

    def transition_pending(
        self,
        reference: str,
        status: TransactionStatus,
        at: datetime,
        failure_reason: str | None,
        metadata: dict[str, Any],
    ) -> bool:
        result = self._col.update_one(
            {
                "transactions": {
                    "$elemMatch": {
                        "reference": reference,
                        "status": TransactionStatus.PENDING.value,
                    }
                }
            },
            {
                "$set": {
                    "transactions.$.status": status.value,
                    "transactions.$.failure_reason": failure_reason,
                    "transactions.$.completed_at": at,
                    "transactions.$.metadata": metadata,
                    "updated_at": at,
                }
            },
        )
        return result.modified_count == 1

    def mark_reversed(
        self, reference: str, at: datetime, metadata: dict[str, Any]
    ) -> bool:
        result = self._col.update_one(
            {
                "transactions": {
                    "$elemMatch": {
                        "reference": reference,
                        "status": TransactionStatus.COMPLETED.value,
                    }
                }
            },
            {
                "$set": {
                    "transactions.$.status": TransactionStatus.REVERSED.value,
                    "transactions.$.metadata": metadata,
                    "updated_at": at,
                }
            },
        )
        return result.modified_count == 1

    def restore_completed(
        self, reference: str, at: datetime, metadata: dict[str, Any]
    ) -> bool:
        result = self._col.update_one(
            {
                "transactions": {
                    "$elemMatch": {
                        "reference": reference,
                        "status": TransactionStatus.REVERSED.value,
                    }
                }
            },
            {
                "$set": {
                    "transactions.$.status": TransactionStatus.COMPLETED.value,
                    "transactions.$.metadata": metadata,
                    "updated_at": at,
                }
            },
        )
        return result.modified_count == 1

    def expire_pending(self, now: datetime, reason: str) -> int:
        overdue = {
            "status": TransactionStatus.PENDING.value,
            "expires_at": {"$lte": now},
        }
        result = self._col.update_many(
            {"transactions": {"$elemMatch": overdue}},
            {
                "$set": {
                    "transactions.$[tx].status": TransactionStatus.EXPIRED.value,
                    "transactions.$[tx].failure_reason": reason,
                    "transactions.$[tx].completed_at": now,
                    "updated_at": now,
                }
            },
            array_filters=[
                {
                    "tx.status": TransactionStatus.PENDING.value,
                    "tx.expires_at": {"$lte": now},
                }
            ],
        )
        return result.modified_count

    def get_history(
        self, phone: str, page: int, page_size: int
    ) -> tuple[list[Transaction], int]:
        skip = max(0, (page - 1) * page_size)
        pipeline = [
            {"$match": {"phone": phone}},
            {
                "$project": {
                    "total": {"$size": {"$ifNull": ["$transactions", []]}},
                    "transactions": {"$slice": ["$transactions", skip, page_size]},
                }
            },
        ]
        docs = list(self._col.aggregate(pipeline))
        if not docs:
            return [], 0

        doc = docs[0]
        items = [
            TransactionRecord.model_validate(raw).to_domain()
            for raw in doc.get("transactions") or []
        ]
        return items, int(doc.get("total", 0))
