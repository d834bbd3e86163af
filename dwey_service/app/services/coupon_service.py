"""쿠폰 사용/관리 서비스."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database
from common.types.datetime import format_display_time

from ..exceptions import (
    AlreadyExistsError,
    CouponAlreadyUsed,
    CouponDisabled,
    CouponExpired,
    CouponNotFound,
    CouponUsageLimitReached,
    DweyError,
    EmailRequired,
    InvalidInputError,
)
from ..models.account import PaymentMethod
from ..models.coupon import Coupon, CouponValidation, RedemptionResult
from ..repositories.coupon_repository import CouponRepository
from ..repositories.interfaces import CouponRepositoryInterface
from .account_service import AccountService, get_account_service
from .ledger_service import LedgerService, get_ledger_service


logger = logging.getLogger(__name__)

MIN_CODE_LENGTH = 3


def normalize_coupon_code(code: str) -> str:
    return (code or "").strip().upper()


class CouponService:
    def __init__(
        self,
        coupon_repo: CouponRepositoryInterface,
        account_service: AccountService,
        ledger_service: LedgerService,
    ) -> None:
        self._coupon_repo = coupon_repo
        self._account_service = account_service
        self._ledger_service = ledger_service

    def redeem(self, phone: str, code: str, display_name: str | None = None) -> RedemptionResult:
        """쿠폰 사용.

        1) 형식 검사 2) 이메일 등록 확인 3) 쿠폰 측 원자적 갱신 4) 원장 credit.
        3) 이 실패하면 쓰기 이후 상태를 다시 읽어 실패 사유를 구분한다.
        """
        code = normalize_coupon_code(code)
        if len(code) < MIN_CODE_LENGTH:
            raise InvalidInputError("Invalid coupon code format")

        account, _ = self._account_service.soft_register(phone, display_name)
        if not account.email:
            raise EmailRequired()

        now = datetime.now(timezone.utc)
        coupon = self._coupon_repo.try_redeem(code, account.phone, now)
        if coupon is None:
            raise self._diagnose_rejection(code, account.phone, now)

        try:
            _, new_balance = self._ledger_service.credit(
                account.phone,
                coupon.tums_amount,
                f"Coupon {coupon.code} - {coupon.tums_amount} tums",
                PaymentMethod.COUPON,
                coupon_code=coupon.code,
            )
        except Exception:
            # 쿠폰은 이미 사용 처리됐는데 credit 이 실패한 불일치 상태. 수동 보정이 필요하다.
            logger.exception(
                "coupon %s consumed but ledger credit of %d tums failed",
                coupon.code,
                coupon.tums_amount,
                extra={"account": account.phone},
            )
            raise

        logger.info(
            "coupon %s redeemed (%d tums)",
            coupon.code,
            coupon.tums_amount,
            extra={"account": account.phone},
        )
        return RedemptionResult(coupon=coupon, new_balance=new_balance)

    def _diagnose_rejection(self, code: str, phone: str, now: datetime) -> DweyError:
        coupon = self._coupon_repo.find_by_code(code)
        if coupon is None:
            return CouponNotFound(code)
        if not coupon.is_valid:
            return CouponDisabled(code)
        if coupon.is_expired(now):
            return CouponExpired(code)
        if phone in coupon.used_by:
            return CouponAlreadyUsed(code)
        if coupon.is_exhausted:
            return CouponUsageLimitReached(code)
        # 조건은 모두 통과하는데 매칭이 안 된 경우는 사실상 한도 경합에서 진 것이다.
        return CouponUsageLimitReached(code)

    def validate(self, code: str, phone: str | None = None) -> CouponValidation:
        """사용하지 않고 사용 가능 여부만 확인한다."""
        code = normalize_coupon_code(code)
        coupon = self._coupon_repo.find_by_code(code)
        if coupon is None:
            return CouponValidation(valid=False, reason=CouponNotFound(code).message)

        now = datetime.now(timezone.utc)
        error: DweyError | None = None
        if not coupon.is_valid:
            error = CouponDisabled(code)
        elif coupon.is_expired(now):
            error = CouponExpired(code)
        elif phone is not None and phone in coupon.used_by:
            error = CouponAlreadyUsed(code)
        elif coupon.is_exhausted:
            error = CouponUsageLimitReached(code)

        if error is not None:
            return CouponValidation(valid=False, reason=error.message, coupon=coupon)
        return CouponValidation(valid=True, coupon=coupon)

    def history(self, phone: str) -> list[Coupon]:
        return self._coupon_repo.list_redeemed_by(phone)

    def has_used(self, phone: str, code: str) -> bool:
        coupon = self._coupon_repo.find_by_code(normalize_coupon_code(code))
        return coupon is not None and phone in coupon.used_by

    # --- 관리 ----------------------------------------------------------------

    def create_coupon(
        self,
        code: str,
        tums_amount: int,
        description: str = "",
        expires_at: datetime | None = None,
        max_uses: int | None = None,
    ) -> Coupon:
        code = normalize_coupon_code(code)
        if len(code) < MIN_CODE_LENGTH:
            raise InvalidInputError("Coupon code must be at least 3 characters")
        if tums_amount <= 0:
            raise InvalidInputError("Coupon amount must be positive")
        if max_uses is not None and max_uses <= 0:
            raise InvalidInputError("max_uses must be positive")

        now = datetime.now(timezone.utc)
        created = self._coupon_repo.insert(
            Coupon(
                code=code,
                tums_amount=tums_amount,
                description=description,
                expires_at=expires_at,
                max_uses=max_uses,
                created_at=now,
                updated_at=now,
            )
        )
        if created is None:
            raise AlreadyExistsError("Coupon code already exists")

        logger.info("coupon %s created (%d tums, max_uses=%s)", code, tums_amount, max_uses)
        return created

    def disable_coupon(self, code: str) -> None:
        code = normalize_coupon_code(code)
        if not self._coupon_repo.disable(code):
            raise CouponNotFound(code)
        logger.info("coupon %s disabled", code)

    def list_active(self) -> list[Coupon]:
        return self._coupon_repo.list_active(datetime.now(timezone.utc))


def format_coupon_info(coupon: Coupon) -> str:
    """채팅 봇이 그대로 보낼 수 있는 쿠폰 요약."""
    lines = [f"*{coupon.code}* - {coupon.tums_amount} tums"]
    if coupon.description:
        lines.append(coupon.description)
    if coupon.expires_at is not None:
        lines.append(f"Expires: {format_display_time(coupon.expires_at)}")
    if coupon.remaining_uses is not None:
        lines.append(f"Uses left: {coupon.remaining_uses}")
    return "\n".join(lines)


def get_coupon_repository(
    db: Database = Depends(get_database),
) -> CouponRepositoryInterface:
    """FastAPI DI용 CouponRepository 팩토리."""
    return CouponRepository(db)


def get_coupon_service(
    coupon_repo: CouponRepositoryInterface = Depends(get_coupon_repository),
    account_service: AccountService = Depends(get_account_service),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> CouponService:
    """FastAPI DI용 CouponService 팩토리."""
    return CouponService(coupon_repo, account_service, ledger_service)
