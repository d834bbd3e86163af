import hashlib
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from urllib.parse import parse_qs


REQUEST_ID_HEADER = "X-Request-Id"
SPAN_ID_HEADER = "X-Span-Id"
FORWARDED_FOR_HEADER = "X-Forwarded-For"

# 헬스체크는 로그에서 제외한다.
IGNORED_LOG_PATHS: set[str] = {"/health"}

# 서명 검증 대상 바디나 결제 정보가 로그에 남으면 안 되는 경로 접두사
BODY_REDACTED_PATH_PREFIXES: tuple[str, ...] = ("/webhook",)


def resolve_client_ip(request: Request) -> str:
    """프록시 뒤에서도 실제 클라이언트 IP 를 얻는다 (X-Forwarded-For 의 첫 번째 값)."""

    forwarded = request.headers.get(FORWARDED_FOR_HEADER, "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None:
        return request.client.host
    return "unknown"


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """Request/Span ID 전파 + 요청 로그 미들웨어.

    - X-Request-Id, X-Span-Id 를 읽고, 없으면 request_id 만 새로 생성한다.
    - request.state 에 request_id, span_id, client_ip 를 저장한다.
    - 응답 헤더에 동일한 값을 설정한다.
    - 로그에는 IP 원문 대신 해시를 남기고, 웹훅 바디는 남기지 않는다.
    """

    def __init__(self, app, logger: logging.Logger | None = None) -> None:  # type: ignore[override]
        super().__init__(app)
        self._logger = logger or logging.getLogger("request_trace")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        span_id = request.headers.get(SPAN_ID_HEADER) or "0"

        request.state.request_id = request_id
        request.state.span_id = span_id
        request.state.client_ip = resolve_client_ip(request)

        should_log = request.url.path not in IGNORED_LOG_PATHS
        start = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            if should_log:
                self._logger.exception(
                    "request failed",
                    extra=self._build_log_extra(
                        request, duration=time.monotonic() - start
                    ),
                )
            raise

        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        response.headers.setdefault(SPAN_ID_HEADER, span_id)

        if should_log:
            self._logger.info(
                "completed request",
                extra=self._build_log_extra(
                    request,
                    status=response.status_code,
                    duration=time.monotonic() - start,
                ),
            )

        return response

    def _build_log_extra(
        self,
        request: Request,
        status: int | None = None,
        duration: float | None = None,
    ) -> dict[str, object]:
        extra: dict[str, object] = {
            "request_id": request.state.request_id,
            "span_id": request.state.span_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip_hash": hashlib.sha256(
                request.state.client_ip.encode("utf-8")
            ).hexdigest()[:16],
        }

        query = request.url.query
        if query and not request.url.path.startswith(BODY_REDACTED_PATH_PREFIXES):
            parsed = parse_qs(query, keep_blank_values=True)
            if parsed:
                extra["query_params"] = {
                    key: values[0] if len(values) == 1 else values
                    for key, values in parsed.items()
                }

        if status is not None:
            extra["status"] = status

        if duration is not None:
            extra["duration"] = f"{duration * 1000:.3f}ms"

        return extra
