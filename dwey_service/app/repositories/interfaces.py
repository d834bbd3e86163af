"""저장소 계약.

아래 표시된 메서드는 "단일 원자적 조건부 쓰기" 여야 한다. 애플리케이션에서
읽고-나서-쓰는 방식으로 구현하면 동시 요청(채팅 명령, 웹훅 재전송, 리다이렉트,
여러 인스턴스의 스윕) 사이에서 불변식이 깨진다. 다른 저장소로 바꿔도 이 계약은 유지해야 한다.

- LedgerRepositoryInterface.debit / apply_if_balance / complete_pending: 잔액 조건 + 증감 + 로그 추가
- CouponRepositoryInterface.try_redeem: 조건 충족 시 used_by 추가 + used_count 증가
- LinkRepositoryInterface.insert: 유니크 short_code 제약이 곧 예약이다
- ClickRepositoryInterface.record_visitor: (link_id, fingerprint) insert-if-absent
- LinkRepositoryInterface.claim_*: lease 기반 claim (lock/skip)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from ..models.account import Account, EmailAssignment, Transaction, TransactionStatus
from ..models.coupon import Coupon
from ..models.link import ClickEvent, DeactivationReason, Link


class AccountRepositoryInterface(Protocol):
    """계정 식별/프로필."""

    def find_by_phone(self, phone: str) -> Account | None:  # pragma: no cover - Protocol
        ...

    def find_by_email(self, email: str) -> Account | None:  # pragma: no cover - Protocol
        ...

    def get_or_create(
        self, phone: str, display_name: str, signup_transaction: Transaction
    ) -> tuple[Account, bool]:  # pragma: no cover - Protocol
        """없으면 signup_transaction 을 포함해 생성하고 (account, created) 를 반환한다.

        원자적: 동시에 여러 번 호출돼도 계정과 가입 보너스는 한 번만 생긴다.
        """
        ...

    def assign_email(
        self, phone: str, email: str
    ) -> EmailAssignment:  # pragma: no cover - Protocol
        """email 이 비어 있을 때만 설정한다 (원자적, 이메일 유니크)."""
        ...


class LedgerRepositoryInterface(Protocol):
    """잔액과 트랜잭션 로그. 모든 잔액 변경은 정확히 하나의 트랜잭션 기록을 남긴다."""

    def get_balance(self, phone: str) -> int | None:  # pragma: no cover - Protocol
        ...

    def credit(
        self, phone: str, transaction: Transaction
    ) -> int | None:  # pragma: no cover - Protocol
        """잔액 증가 + 로그 추가. 새 잔액, 계정이 없으면 None."""
        ...

    def debit(
        self, phone: str, transaction: Transaction
    ) -> int | None:  # pragma: no cover - Protocol
        """원자적: balance >= amount 일 때만 차감 + 로그 추가. 새 잔액, 조건 불충족 시 None."""
        ...

    def apply_if_balance(
        self, phone: str, expected_balance: int, transaction: Transaction
    ) -> int | None:  # pragma: no cover - Protocol
        """원자적 CAS: 현재 잔액이 expected_balance 일 때만 signed_amount 를 반영한다."""
        ...

    def append_transaction(
        self, phone: str, transaction: Transaction
    ) -> bool:  # pragma: no cover - Protocol
        """잔액에 영향 없는 (pending 등) 트랜잭션만 추가한다."""
        ...

    def find_by_reference(
        self, reference: str
    ) -> tuple[str, Transaction] | None:  # pragma: no cover - Protocol
        """reference 로 (계정 phone, 트랜잭션) 을 찾는다."""
        ...

    def complete_pending(
        self,
        reference: str,
        tums_amount: int,
        completed_at: datetime,
        metadata: dict[str, Any],
    ) -> tuple[str, int] | None:  # pragma: no cover - Protocol
        """원자적: pending 인 트랜잭션을 completed 로 바꾸면서 같은 쓰기로 잔액을 올린다.

        (phone, 새 잔액) 을 반환하고, 이미 pending 이 아니면 None.
        """
        ...

    def transition_pending(
        self,
        reference: str,
        status: TransactionStatus,
        at: datetime,
        failure_reason: str | None,
        metadata: dict[str, Any],
    ) -> bool:  # pragma: no cover - Protocol
        """원자적: pending -> (failed|cancelled|abandoned|expired). 잔액 변화 없음."""
        ...

    def mark_reversed(
        self, reference: str, at: datetime, metadata: dict[str, Any]
    ) -> bool:  # pragma: no cover - Protocol
        """원자적: completed -> reversed."""
        ...

    def restore_completed(
        self, reference: str, at: datetime, metadata: dict[str, Any]
    ) -> bool:  # pragma: no cover - Protocol
        """원자적: reversed -> completed. 역정산 차감이 실패했을 때 되돌린다."""
        ...

    def expire_pending(self, now: datetime, reason: str) -> int:  # pragma: no cover - Protocol
        """expires_at 이 지난 pending 트랜잭션을 expired 로 바꾸고, 영향받은 계정 수를 반환한다."""
        ...

    def get_history(
        self, phone: str, page: int, page_size: int
    ) -> tuple[list[Transaction], int]:  # pragma: no cover - Protocol
        ...


class CouponRepositoryInterface(Protocol):
    def insert(self, coupon: Coupon) -> Coupon | None:  # pragma: no cover - Protocol
        """코드가 이미 있으면 None."""
        ...

    def find_by_code(self, code: str) -> Coupon | None:  # pragma: no cover - Protocol
        ...

    def try_redeem(
        self, code: str, phone: str, now: datetime
    ) -> Coupon | None:  # pragma: no cover - Protocol
        """원자적: 유효/미만료/미사용/한도 미달 조건을 모두 만족할 때만 phone 을 추가하고 갱신된 쿠폰을 반환한다."""
        ...

    def disable(self, code: str) -> bool:  # pragma: no cover - Protocol
        ...

    def list_active(self, now: datetime) -> list[Coupon]:  # pragma: no cover - Protocol
        ...

    def list_redeemed_by(self, phone: str) -> list[Coupon]:  # pragma: no cover - Protocol
        ...


class LinkRepositoryInterface(Protocol):
    def insert(self, link: Link) -> Link | None:  # pragma: no cover - Protocol
        """원자적 예약: short_code 가 이미 있으면 None."""
        ...

    def delete(self, link_id: str) -> bool:  # pragma: no cover - Protocol
        ...

    def find_by_id(self, link_id: str) -> Link | None:  # pragma: no cover - Protocol
        ...

    def find_by_code(self, short_code: str) -> Link | None:  # pragma: no cover - Protocol
        ...

    def codes_in_use(self, candidates: list[str]) -> set[str]:  # pragma: no cover - Protocol
        ...

    def deactivate_if_expired(
        self, link_id: str, now: datetime
    ) -> bool:  # pragma: no cover - Protocol
        """원자적: 활성 상태이고 expires_at <= now 일 때만 expired 로 비활성화한다."""
        ...

    def deactivate_by_owner(
        self, link_id: str, owner_phone: str, now: datetime
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def set_temporal_target(
        self,
        link_id: str,
        owner_phone: str,
        target_phone: str,
        whatsapp_url: str,
        now: datetime,
    ) -> bool:  # pragma: no cover - Protocol
        """원자적: 임시 타깃이 비어 있을 때만 설정한다."""
        ...

    def clear_temporal_target(
        self, link_id: str, owner_phone: str, now: datetime
    ) -> bool:  # pragma: no cover - Protocol
        """원자적: 임시 타깃이 있을 때만 해제한다."""
        ...

    def reactivate(
        self,
        link_id: str,
        owner_phone: str,
        now: datetime,
        horizon: datetime,
    ) -> Link | None:  # pragma: no cover - Protocol
        """원자적: 비활성이고 claim 이 없을 때만 활성화하고 비활성 마커를 지운다."""
        ...

    def increment_clicks(
        self, link_id: str, is_unique: bool, at: datetime
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def list_by_creator(
        self, creator_phone: str, active_only: bool
    ) -> list[Link]:  # pragma: no cover - Protocol
        ...

    def list_by_target(
        self, creator_phone: str, target_phone: str
    ) -> list[Link]:  # pragma: no cover - Protocol
        ...

    def list_by_clicks(
        self, creator_phone: str, limit: int, ascending: bool
    ) -> list[Link]:  # pragma: no cover - Protocol
        ...

    # --- 과금 스윕 -----------------------------------------------------------

    def claim_due_for_billing(
        self, now: datetime, claim_id: str, lease_until: datetime
    ) -> Link | None:  # pragma: no cover - Protocol
        """원자적 claim: 활성이고 next_billing_at <= now 이며 lease 가 비었거나 만료된 링크 하나."""
        ...

    def extend_billing(
        self,
        link_id: str,
        claim_id: str,
        next_billing_at: datetime,
        now: datetime,
    ) -> bool:  # pragma: no cover - Protocol
        """claim 보유자만 horizon 연장 + claim 해제."""
        ...

    def deactivate_claimed(
        self,
        link_id: str,
        claim_id: str,
        reason: DeactivationReason,
        now: datetime,
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def release_claim(
        self, link_id: str, claim_id: str
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def claim_deletion_warning(
        self, warn_before: datetime, not_before: datetime
    ) -> Link | None:  # pragma: no cover - Protocol
        """원자적: deactivated_at 이 (not_before, warn_before] 이고 경고 미발송인 링크 하나의 마커를 세운다."""
        ...

    def claim_due_for_deletion(
        self,
        cutoff: datetime,
        now: datetime,
        claim_id: str,
        lease_until: datetime,
    ) -> Link | None:  # pragma: no cover - Protocol
        """원자적 claim: 비활성이고 deactivated_at <= cutoff 인 링크 하나."""
        ...

    def delete_claimed(
        self, link_id: str, claim_id: str
    ) -> bool:  # pragma: no cover - Protocol
        ...


class ClickRepositoryInterface(Protocol):
    def record_visitor(
        self, link_id: str, hashed_fingerprint: str, at: datetime
    ) -> bool:  # pragma: no cover - Protocol
        """원자적 insert-if-absent. 처음 본 방문자면 True."""
        ...

    def insert_click(self, click: ClickEvent) -> ClickEvent:  # pragma: no cover - Protocol
        ...

    def list_clicks(self, link_id: str) -> list[ClickEvent]:  # pragma: no cover - Protocol
        ...

    def delete_for_link(self, link_id: str) -> int:  # pragma: no cover - Protocol
        ...
