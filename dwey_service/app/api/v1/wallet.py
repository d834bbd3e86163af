"""지갑 내부 API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from common.schemas.pagination import PaginatedResponse

from ...services.ledger_service import LedgerService, get_ledger_service
from ...utils.phone import normalize_phone
from ..schemas.wallet import (
    AdjustBalanceRequest,
    AdjustBalanceResponse,
    BalanceResponse,
    TransactionResponse,
)


router = APIRouter()


@router.get("/{phone}/balance", summary="잔액 조회")
def get_balance(
    phone: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> BalanceResponse:
    normalized = normalize_phone(phone)
    return BalanceResponse(phone=normalized, balance=ledger.get_balance(normalized))


@router.get("/{phone}/history", summary="거래 내역 조회")
def get_history(
    phone: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    page: int = Query(1, ge=1, description="조회할 페이지 (1부터 시작)"),
    page_size: int = Query(20, ge=1, le=100, description="페이지당 아이템 개수 (1~100)"),
) -> PaginatedResponse[TransactionResponse]:
    """최신 거래가 먼저 온다."""
    items, total = ledger.get_history(normalize_phone(phone), page, page_size)
    return PaginatedResponse(
        items=[TransactionResponse.from_domain(tx) for tx in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/{phone}/adjust", summary="관리자 잔액 조정")
def adjust_balance(
    phone: str,
    req: AdjustBalanceRequest,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> AdjustBalanceResponse:
    """차이만큼 adjustment 트랜잭션을 남기고 잔액을 맞춘다. 같으면 아무것도 하지 않는다."""
    tx, balance = ledger.adjust_balance(normalize_phone(phone), req.balance, req.reason)
    return AdjustBalanceResponse(
        balance=balance,
        transaction=TransactionResponse.from_domain(tx) if tx is not None else None,
    )
