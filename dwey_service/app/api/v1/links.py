"""링크 내부 API. 모든 소유자 조작은 요청한 전화번호로 소유권을 확인한다."""

from __future__ import annotations

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, status

from ...services.link_service import LinkService, get_link_service
from ...services.rate_limiter import RateLimiter, get_rate_limiter
from ..dependencies import enforce_account_rate_limit
from ..schemas.links import (
    ChargeResponse,
    CreatedLinkResponse,
    CreateLinkRequest,
    LinkInfoResponse,
    LinkResponse,
    OwnerRequest,
    TemporalTargetRequest,
)


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, summary="링크 생성")
def create_link(
    req: CreateLinkRequest,
    service: Annotated[LinkService, Depends(get_link_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> CreatedLinkResponse:
    creator = enforce_account_rate_limit(limiter, req.creator_phone, "create_link")
    created = service.create(
        creator,
        req.target,
        custom_code=req.custom_code,
        message=req.message,
        display_name=req.display_name,
    )
    return CreatedLinkResponse(
        link=LinkResponse.from_domain(created.link),
        redirect_url=created.redirect_url,
        new_balance=created.new_balance,
    )


@router.get("", summary="내 링크 목록")
def list_links(
    service: Annotated[LinkService, Depends(get_link_service)],
    phone: str = Query(..., description="링크 생성자 전화번호"),
    active_only: bool = Query(False, description="활성 링크만 조회"),
) -> list[LinkResponse]:
    return [LinkResponse.from_domain(link) for link in service.list_user_links(phone, active_only)]


@router.get("/by-target", summary="대상 번호별 링크 목록")
def list_links_by_target(
    service: Annotated[LinkService, Depends(get_link_service)],
    phone: str = Query(..., description="링크 생성자 전화번호"),
    target: str = Query(..., description="대상 전화번호 (아무 형식)"),
) -> list[LinkResponse]:
    return [
        LinkResponse.from_domain(link) for link in service.list_links_by_target(phone, target)
    ]


@router.get("/performance", summary="클릭 수 기준 링크 순위")
def link_performance(
    service: Annotated[LinkService, Depends(get_link_service)],
    phone: str = Query(..., description="링크 생성자 전화번호"),
    order: Literal["best", "lowest"] = Query("best"),
    limit: int = Query(5, ge=1, le=50),
) -> list[LinkResponse]:
    if order == "best":
        links = service.best_performing(phone, limit)
    else:
        links = service.lowest_performing(phone, limit)
    return [LinkResponse.from_domain(link) for link in links]


@router.get("/{short_code}/info", summary="링크 분석 조회 (유료)")
def link_info(
    short_code: str,
    service: Annotated[LinkService, Depends(get_link_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    phone: str = Query(..., description="조회하는 계정 전화번호"),
) -> LinkInfoResponse:
    viewer = enforce_account_rate_limit(limiter, phone, "link_info")
    info = service.get_link_info(viewer, short_code)
    return LinkInfoResponse(
        link=LinkResponse.from_domain(info.link),
        analytics=info.analytics,
        new_balance=info.new_balance,
    )


@router.post("/{short_code}/temporal-target", summary="임시 대상 설정")
def set_temporal_target(
    short_code: str,
    req: TemporalTargetRequest,
    service: Annotated[LinkService, Depends(get_link_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> ChargeResponse:
    owner = enforce_account_rate_limit(limiter, req.phone, "temporal_target")
    result = service.set_temporal_target(owner, short_code, req.target)
    return ChargeResponse(link=LinkResponse.from_domain(result.link), new_balance=result.new_balance)


@router.delete("/{short_code}/temporal-target", summary="임시 대상 해제")
def kill_temporal_target(
    short_code: str,
    service: Annotated[LinkService, Depends(get_link_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    phone: str = Query(..., description="링크 생성자 전화번호"),
) -> ChargeResponse:
    owner = enforce_account_rate_limit(limiter, phone, "temporal_target")
    result = service.kill_temporal_target(owner, short_code)
    return ChargeResponse(link=LinkResponse.from_domain(result.link), new_balance=result.new_balance)


@router.post("/{short_code}/reactivate", summary="링크 재활성화")
def reactivate_link(
    short_code: str,
    req: OwnerRequest,
    service: Annotated[LinkService, Depends(get_link_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> ChargeResponse:
    owner = enforce_account_rate_limit(limiter, req.phone, "reactivate")
    result = service.reactivate(owner, short_code)
    return ChargeResponse(link=LinkResponse.from_domain(result.link), new_balance=result.new_balance)


@router.post("/{short_code}/kill", summary="링크 종료")
def kill_link(
    short_code: str,
    req: OwnerRequest,
    service: Annotated[LinkService, Depends(get_link_service)],
) -> LinkResponse:
    return LinkResponse.from_domain(service.kill_link(req.phone, short_code))
