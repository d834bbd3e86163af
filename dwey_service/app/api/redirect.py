"""단축 링크 리다이렉트와 공개 링크 정보.

core 는 대상 URL 만 돌려주고, 상태 코드와 캐시 헤더는 여기서 정한다.
`/{short_code}` 는 모든 경로를 잡으므로 이 라우터는 앱에 마지막으로 등록해야 한다.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from common.middleware.request_trace import resolve_client_ip

from ..config import AppConfig, get_config
from ..services.link_service import LinkService, get_link_service
from ..services.rate_limiter import RateLimiter, get_rate_limiter
from ..utils.hashing import salted_hash
from .dependencies import enforce_rate_limit
from .schemas.links import PublicLinkInfoResponse


logger = logging.getLogger(__name__)

router = APIRouter()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("/api/info/{short_code}", summary="공개 링크 정보")
def public_link_info(
    short_code: str,
    service: Annotated[LinkService, Depends(get_link_service)],
) -> PublicLinkInfoResponse:
    return PublicLinkInfoResponse.from_domain(service.public_info(short_code))


@router.get("/{short_code}", summary="단축 링크 리다이렉트", include_in_schema=False)
def redirect(
    short_code: str,
    request: Request,
    service: Annotated[LinkService, Depends(get_link_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    config: Annotated[AppConfig, Depends(get_config)],
) -> RedirectResponse:
    client_ip = resolve_client_ip(request)
    enforce_rate_limit(
        limiter, salted_hash(client_ip, config.link.click_hash_salt), "redirect"
    )

    target = service.visit(short_code, client_ip, request.headers.get("user-agent"))
    if target is None:
        logger.info("redirect for unknown or inactive link", extra={"short_code": short_code})
        target = service.not_found_redirect_url(short_code)

    return RedirectResponse(url=target, status_code=302, headers=NO_CACHE_HEADERS)
