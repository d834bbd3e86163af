from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from common.eventbus.kafka import close_kafka_event_bus
from common.logger import setup_logger
from common.middleware.request_trace import RequestTraceMiddleware

from .api.health import router as health_router
from .api.redirect import router as redirect_router
from .api.v1 import api_router
from .api.webhook import router as webhook_router
from .exceptions import CodeUnavailable, DweyError, RateLimitedError
from .scheduler.billing_scheduler import start_billing_scheduler, stop_billing_scheduler
from .scheduler.maintenance_scheduler import (
    start_maintenance_scheduler,
    stop_maintenance_scheduler,
)


logger = logging.getLogger(__name__)

SCHEDULERS_ENABLED_ENV = "SCHEDULERS_ENABLED"
RETRY_LATER_MESSAGE = "Something went wrong on our side. Please try again in a moment."


def _schedulers_enabled() -> bool:
    return os.getenv(SCHEDULERS_ENABLED_ENV, "true").strip().lower() not in {"0", "false", "no"}


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - framework hook
    """애플리케이션 생명주기 동안 백그라운드 작업을 관리한다.

    - 일일 과금 스윕 스레드
    - pending 결제 만료 / 레이트 리미터 정리 스레드
    """

    enabled = _schedulers_enabled()
    if enabled:
        start_billing_scheduler()
        start_maintenance_scheduler()

    try:
        yield
    finally:
        if enabled:
            stop_maintenance_scheduler()
            stop_billing_scheduler()
        close_kafka_event_bus()


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DweyError)
    async def handle_dwey_error(request: Request, exc: DweyError) -> JSONResponse:
        content: dict[str, object] = {"code": exc.code, "message": exc.message}
        headers: dict[str, str] = {}
        if isinstance(exc, CodeUnavailable):
            content["suggestions"] = exc.suggestions
        if isinstance(exc, RateLimitedError):
            headers["Retry-After"] = str(exc.retry_after_seconds)
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(PyMongoError)
    async def handle_storage_error(request: Request, exc: PyMongoError) -> JSONResponse:
        logger.exception("storage error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=503,
            content={"code": "storage_unavailable", "message": RETRY_LATER_MESSAGE},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unexpected error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"code": "internal_error", "message": RETRY_LATER_MESSAGE},
        )


def create_app() -> FastAPI:
    setup_logger(name="dwey-service")
    app = FastAPI(
        title="D-Wey Link Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # 공통 Request/Span ID 로그 미들웨어
    app.add_middleware(RequestTraceMiddleware)
    _register_exception_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router, prefix="/api/v1")
    app.include_router(webhook_router, tags=["webhook"])
    # catch-all `/{short_code}` 이므로 항상 마지막에 등록한다.
    app.include_router(redirect_router, tags=["redirect"])

    return app


app = create_app()


def main() -> None:
    """명령행에서 실행할 수 있도록 uvicorn 런처를 제공한다."""

    import uvicorn

    port = int(os.getenv("DWEY_SERVICE_PORT", "3000"))
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
