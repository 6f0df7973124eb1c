from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from api.observability import monotonic_ms, new_request_id, request_log_fields
from api.routes import router
from runquest.config import get_settings
from runquest.db import create_schema
from runquest.errors import ERROR_MESSAGES, ProgressionError, localized_message
from runquest.logging_config import reset_request_id, set_request_id, setup_logging
from runquest.seed import seed_reference_data

logger = logging.getLogger(__name__)


def preferred_locale(accept_language: str, default: str) -> str:
    """First supported language in an ``Accept-Language`` header."""
    for part in (accept_language or "").split(","):
        lang = part.split(";")[0].strip().lower()[:2]
        if lang in ERROR_MESSAGES:
            return lang
    return default


def create_app(bootstrap: bool = True) -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if bootstrap:
            create_schema()
            seed_reference_data()
        yield

    app = FastAPI(title="RunQuest Progression API", version="2.0.0", lifespan=lifespan)
    app.include_router(router)

    @app.exception_handler(ProgressionError)
    async def progression_error_handler(request: Request, exc: ProgressionError) -> JSONResponse:
        lang = preferred_locale(request.headers.get("accept-language", ""), settings.default_locale)
        if exc.status_code >= 500:
            logger.error("request_failed", extra={"ctx_code": exc.code, "ctx_details": exc.details})
        body = {"success": False, **exc.to_dict(), "message": localized_message(exc.code, lang)}
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.middleware("http")
    async def request_context_and_logging(request: Request, call_next: Callable) -> Response:
        header_name = settings.request_id_header_name or "X-Request-ID"
        request_id = (request.headers.get(header_name) or "").strip() or new_request_id()
        token = set_request_id(request_id)
        started_ms = monotonic_ms()
        client_ip = getattr(request.client, "host", None)
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = monotonic_ms() - started_ms
            logger.exception(
                "http_request_error",
                extra=request_log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=500,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                ),
            )
            raise
        else:
            response.headers[header_name] = request_id
            duration_ms = monotonic_ms() - started_ms
            logger.info(
                "http_request",
                extra=request_log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                ),
            )
            return response
        finally:
            reset_request_id(token)

    return app


app = create_app()
