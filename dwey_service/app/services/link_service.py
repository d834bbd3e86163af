"""링크 생성/리다이렉트/클릭 추적/소유자 조작.

short_code 예약은 유니크 인덱스에 대한 insert 자체로 이루어지고, 생성 비용은
예약이 성공한 뒤에 차감한다. 차감이 경합에서 지면 예약한 링크를 지운다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database

from ..config import AppConfig, BillingConfig, LinkConfig, PricingConfig, get_config
from ..exceptions import (
    CodeUnavailable,
    InsufficientBalanceError,
    InvalidInputError,
    LinkAlreadyActive,
    LinkNotFound,
    NotLinkOwner,
    RaceLostError,
    TargetInvalid,
    TemporalTargetAlreadySet,
    TemporalTargetNotSet,
)
from ..models.account import PaymentMethod
from ..models.link import (
    ChargeResult,
    ClickEvent,
    ClickResult,
    CreatedLink,
    Link,
    LinkInfo,
    LinkPublicInfo,
)
from ..repositories.click_repository import ClickRepository
from ..repositories.interfaces import ClickRepositoryInterface, LinkRepositoryInterface
from ..repositories.link_repository import LinkRepository
from ..utils.hashing import salted_hash, visitor_fingerprint
from ..utils.phone import normalize_phone
from ..utils.short_code import (
    build_redirect_url,
    build_whatsapp_url,
    code_variations,
    generate_random_code,
    normalize_code,
    sanitize_custom_code,
)
from .account_service import AccountService, get_account_service
from .analytics_service import compute_analytics
from .ledger_service import LedgerService, get_ledger_service


logger = logging.getLogger(__name__)

MAX_CODE_SUGGESTIONS = 3
DEFAULT_PERFORMANCE_LIMIT = 5


class LinkService:
    def __init__(
        self,
        link_repo: LinkRepositoryInterface,
        click_repo: ClickRepositoryInterface,
        account_service: AccountService,
        ledger_service: LedgerService,
        pricing: PricingConfig,
        billing: BillingConfig,
        link_config: LinkConfig,
        code_generator: Callable[[int], str] = generate_random_code,
    ) -> None:
        self._link_repo = link_repo
        self._click_repo = click_repo
        self._account_service = account_service
        self._ledger_service = ledger_service
        self._pricing = pricing
        self._billing = billing
        self._link_config = link_config
        self._code_generator = code_generator

    # --- 생성 ----------------------------------------------------------------

    def create(
        self,
        creator_phone: str,
        target: str,
        custom_code: str | None = None,
        message: str | None = None,
        display_name: str | None = None,
    ) -> CreatedLink:
        cost = self._pricing.create_link
        creator, _ = self._account_service.soft_register(creator_phone, display_name)

        try:
            target_phone = normalize_phone(target)
        except InvalidInputError as exc:
            raise TargetInvalid(target) from exc
        self._account_service.soft_register(target_phone)

        # 잔액이 명백히 부족하면 코드를 예약하지 않는다. 경합은 아래 보상 삭제가 처리한다.
        available = self._ledger_service.get_balance(creator.phone)
        if available < cost:
            raise InsufficientBalanceError(required=cost, available=available)

        text = (message or "").strip() or self._link_config.default_message
        if custom_code:
            link = self._reserve_custom(creator.phone, target_phone, custom_code, text)
        else:
            link = self._reserve_random(creator.phone, target_phone, text)

        try:
            _, new_balance = self._ledger_service.debit(
                creator.phone,
                cost,
                f"Link creation - {link.short_code}",
                PaymentMethod.SPEND,
                metadata={"short_code": link.short_code},
            )
        except Exception:
            # 예약한 링크를 되돌린다. 차감 없이 링크가 남으면 안 된다.
            if link.id is not None:
                self._link_repo.delete(link.id)
            raise

        logger.info(
            "link created -> %s",
            target_phone,
            extra={"account": creator.phone, "short_code": link.short_code},
        )
        return CreatedLink(link=link, redirect_url=link.redirect_url, new_balance=new_balance)

    def _build_link(self, creator_phone: str, target_phone: str, code: str, text: str) -> Link:
        now = datetime.now(timezone.utc)
        horizon = now + timedelta(hours=self._billing.horizon_hours)
        return Link(
            creator_phone=creator_phone,
            target_phone=target_phone,
            short_code=code,
            whatsapp_url=build_whatsapp_url(target_phone, text),
            redirect_url=build_redirect_url(self._link_config.short_domain, code),
            custom_message=text,
            created_at=now,
            updated_at=now,
            expires_at=horizon,
            next_billing_at=horizon,
        )

    def _reserve_custom(
        self, creator_phone: str, target_phone: str, custom_code: str, text: str
    ) -> Link:
        code = sanitize_custom_code(custom_code)
        link = self._link_repo.insert(self._build_link(creator_phone, target_phone, code, text))
        if link is not None:
            return link

        variations = code_variations(code)
        taken = self._link_repo.codes_in_use(variations)
        suggestions = [c for c in variations if c not in taken][:MAX_CODE_SUGGESTIONS]
        raise CodeUnavailable(code, suggestions)

    def _reserve_random(self, creator_phone: str, target_phone: str, text: str) -> Link:
        length = self._link_config.random_code_length
        for attempt in range(1, self._link_config.random_code_attempts + 1):
            code = self._code_generator(length)
            link = self._link_repo.insert(
                self._build_link(creator_phone, target_phone, code, text)
            )
            if link is not None:
                return link
            logger.debug("random short code collision (attempt %d)", attempt)

        logger.error(
            "failed to reserve a random short code after %d attempts",
            self._link_config.random_code_attempts,
        )
        raise RaceLostError("short_code")

    # --- 리다이렉트 ------------------------------------------------------------

    def resolve(self, short_code: str) -> Link | None:
        """활성 링크를 찾는다. 만료가 지났으면 즉시 expired 로 비활성화하고 None."""
        link = self._link_repo.find_by_code(normalize_code(short_code))
        if link is None or not link.is_active:
            return None

        now = datetime.now(timezone.utc)
        if link.expires_at <= now:
            if link.id is not None and self._link_repo.deactivate_if_expired(link.id, now):
                logger.info("link expired on access", extra={"short_code": link.short_code})
            return None
        return link

    def track_click(
        self, link_id: str, hashed_ip: str, hashed_fingerprint: str
    ) -> ClickResult:
        """(link, fingerprint) 처음 조합이면 unique. 카운터는 $inc 로만 올린다."""
        now = datetime.now(timezone.utc)
        is_unique = self._click_repo.record_visitor(link_id, hashed_fingerprint, now)
        self._click_repo.insert_click(
            ClickEvent(
                link_id=link_id,
                hashed_ip=hashed_ip,
                hashed_fingerprint=hashed_fingerprint,
                is_unique=is_unique,
                clicked_at=now,
            )
        )
        self._link_repo.increment_clicks(link_id, is_unique, now)
        return ClickResult(is_unique=is_unique)

    def visit(self, short_code: str, client_ip: str, user_agent: str | None) -> str | None:
        """리다이렉트 라우트용. 대상 URL 을 반환하고, 클릭 기록 실패는 리다이렉트를 막지 않는다."""
        link = self.resolve(short_code)
        if link is None or link.id is None:
            return None

        salt = self._link_config.click_hash_salt
        try:
            self.track_click(
                link.id,
                salted_hash(client_ip, salt),
                salted_hash(visitor_fingerprint(client_ip, user_agent), salt),
            )
        except Exception:  # noqa: BLE001
            logger.exception("click tracking failed", extra={"short_code": link.short_code})
        return link.target_url

    def not_found_redirect_url(self, short_code: str) -> str:
        text = (
            f'Hi! The link "{short_code}" was not found. '
            "Can you help me create a WhatsApp link?"
        )
        return build_whatsapp_url(self._link_config.bot_phone_number, text)

    def public_info(self, short_code: str) -> LinkPublicInfo:
        link = self._link_repo.find_by_code(normalize_code(short_code))
        if link is None:
            raise LinkNotFound(short_code)
        return LinkPublicInfo(
            short_code=link.short_code,
            is_active=link.is_active,
            total_clicks=link.total_clicks,
            unique_clicks=link.unique_clicks,
            created_at=link.created_at,
            expires_at=link.expires_at,
        )

    # --- 소유자 조작 ----------------------------------------------------------

    def _owned_link(self, phone: str, short_code: str) -> Link:
        link = self._link_repo.find_by_code(normalize_code(short_code))
        if link is None or link.id is None:
            raise LinkNotFound(short_code)
        if link.creator_phone != phone:
            raise NotLinkOwner(short_code)
        return link

    def _require_balance(self, phone: str, amount: int) -> None:
        available = self._ledger_service.get_balance(phone)
        if available < amount:
            raise InsufficientBalanceError(required=amount, available=available)

    def _refund(self, phone: str, amount: int, description: str, short_code: str) -> None:
        try:
            self._ledger_service.credit(
                phone,
                amount,
                f"Refund - {description}",
                PaymentMethod.ADJUSTMENT,
                metadata={"short_code": short_code, "refund": True},
            )
        except Exception:
            logger.exception(
                "refund of %d tums failed after a lost link update",
                amount,
                extra={"account": phone, "short_code": short_code},
            )
            raise

    def set_temporal_target(self, phone: str, short_code: str, target: str) -> ChargeResult:
        phone = normalize_phone(phone)
        link = self._owned_link(phone, short_code)
        if link.temporal_target_phone:
            raise TemporalTargetAlreadySet(link.short_code)

        try:
            temporal_phone = normalize_phone(target)
        except InvalidInputError as exc:
            raise TargetInvalid(target) from exc
        self._account_service.soft_register(temporal_phone)

        cost = self._pricing.set_temporal_target
        description = f"Set temporal target - {link.short_code}"
        _, new_balance = self._ledger_service.debit(
            phone, cost, description, PaymentMethod.SPEND, metadata={"short_code": link.short_code}
        )

        now = datetime.now(timezone.utc)
        url = build_whatsapp_url(temporal_phone, link.custom_message)
        assert link.id is not None
        if not self._link_repo.set_temporal_target(link.id, phone, temporal_phone, url, now):
            self._refund(phone, cost, description, link.short_code)
            raise TemporalTargetAlreadySet(link.short_code)

        updated = self._link_repo.find_by_id(link.id) or link
        logger.info(
            "temporal target set -> %s",
            temporal_phone,
            extra={"account": phone, "short_code": link.short_code},
        )
        return ChargeResult(link=updated, new_balance=new_balance)

    def kill_temporal_target(self, phone: str, short_code: str) -> ChargeResult:
        phone = normalize_phone(phone)
        link = self._owned_link(phone, short_code)
        if not link.temporal_target_phone:
            raise TemporalTargetNotSet(link.short_code)

        cost = self._pricing.kill_temporal_target
        description = f"Kill temporal target - {link.short_code}"
        _, new_balance = self._ledger_service.debit(
            phone, cost, description, PaymentMethod.SPEND, metadata={"short_code": link.short_code}
        )

        now = datetime.now(timezone.utc)
        assert link.id is not None
        if not self._link_repo.clear_temporal_target(link.id, phone, now):
            self._refund(phone, cost, description, link.short_code)
            raise TemporalTargetNotSet(link.short_code)

        updated = self._link_repo.find_by_id(link.id) or link
        logger.info("temporal target removed", extra={"account": phone, "short_code": link.short_code})
        return ChargeResult(link=updated, new_balance=new_balance)

    def reactivate(self, phone: str, short_code: str) -> ChargeResult:
        """비활성 링크를 다시 켠다. 하루치 유지비를 받고 horizon 을 지금부터 24시간으로 재설정한다."""
        phone = normalize_phone(phone)
        link = self._owned_link(phone, short_code)
        if link.is_active:
            raise LinkAlreadyActive(link.short_code)

        cost = self._pricing.daily_maintenance
        description = f"Reactivation - {link.short_code}"
        _, new_balance = self._ledger_service.debit(
            phone, cost, description, PaymentMethod.SPEND, metadata={"short_code": link.short_code}
        )

        now = datetime.now(timezone.utc)
        horizon = now + timedelta(hours=self._billing.horizon_hours)
        assert link.id is not None
        updated = self._link_repo.reactivate(link.id, phone, now, horizon)
        if updated is None:
            self._refund(phone, cost, description, link.short_code)
            current = self._link_repo.find_by_id(link.id)
            if current is None:
                raise LinkNotFound(short_code)
            if current.is_active:
                raise LinkAlreadyActive(link.short_code)
            raise RaceLostError("link")

        logger.info("link reactivated", extra={"account": phone, "short_code": link.short_code})
        return ChargeResult(link=updated, new_balance=new_balance)

    def kill_link(self, phone: str, short_code: str) -> Link:
        """소유자가 링크를 끈다 (reason=killed_by_owner). 유예 기간 후 스윕이 삭제한다."""
        phone = normalize_phone(phone)
        link = self._owned_link(phone, short_code)
        if not link.is_active:
            return link

        now = datetime.now(timezone.utc)
        assert link.id is not None
        if not self._link_repo.deactivate_by_owner(link.id, phone, now):
            current = self._link_repo.find_by_id(link.id)
            if current is None:
                raise LinkNotFound(short_code)
            if not current.is_active:
                return current
            raise RaceLostError("link")

        logger.info("link killed by owner", extra={"account": phone, "short_code": link.short_code})
        return self._link_repo.find_by_id(link.id) or link

    def get_link_info(self, phone: str, short_code: str) -> LinkInfo:
        """링크 요약 + 분석. 생성자/대상/임시 대상만 볼 수 있고 조회 비용이 든다."""
        phone = normalize_phone(phone)
        link = self._link_repo.find_by_code(normalize_code(short_code))
        if link is None or link.id is None:
            raise LinkNotFound(short_code)
        if not link.can_view(phone):
            raise NotLinkOwner(short_code)

        _, new_balance = self._ledger_service.debit(
            phone,
            self._pricing.link_info_check,
            f"Link info check - {link.short_code}",
            PaymentMethod.SPEND,
            metadata={"short_code": link.short_code},
        )
        analytics = compute_analytics(self._click_repo.list_clicks(link.id))
        return LinkInfo(link=link, analytics=analytics, new_balance=new_balance)

    # --- 목록 ----------------------------------------------------------------

    def list_user_links(self, phone: str, active_only: bool = False) -> list[Link]:
        return self._link_repo.list_by_creator(normalize_phone(phone), active_only)

    def list_links_by_target(self, phone: str, target: str) -> list[Link]:
        try:
            target_phone = normalize_phone(target)
        except InvalidInputError as exc:
            raise TargetInvalid(target) from exc
        return self._link_repo.list_by_target(normalize_phone(phone), target_phone)

    def best_performing(self, phone: str, limit: int = DEFAULT_PERFORMANCE_LIMIT) -> list[Link]:
        return self._link_repo.list_by_clicks(normalize_phone(phone), limit, ascending=False)

    def lowest_performing(self, phone: str, limit: int = DEFAULT_PERFORMANCE_LIMIT) -> list[Link]:
        return self._link_repo.list_by_clicks(normalize_phone(phone), limit, ascending=True)


def get_link_repository(
    db: Database = Depends(get_database),
) -> LinkRepositoryInterface:
    """FastAPI DI용 LinkRepository 팩토리."""
    return LinkRepository(db)


def get_click_repository(
    db: Database = Depends(get_database),
) -> ClickRepositoryInterface:
    """FastAPI DI용 ClickRepository 팩토리."""
    return ClickRepository(db)


def get_link_service(
    link_repo: LinkRepositoryInterface = Depends(get_link_repository),
    click_repo: ClickRepositoryInterface = Depends(get_click_repository),
    account_service: AccountService = Depends(get_account_service),
    ledger_service: LedgerService = Depends(get_ledger_service),
    config: AppConfig = Depends(get_config),
) -> LinkService:
    """FastAPI DI용 LinkService 팩토리."""
    return LinkService(
        link_repo,
        click_repo,
        account_service,
        ledger_service,
        pricing=config.pricing,
        billing=config.billing,
        link_config=config.link,
    )
