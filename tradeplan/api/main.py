"""
FastAPI application for trade plan generation.

Usage:
    uvicorn tradeplan.api.main:create_app --factory --port 8000
"""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tradeplan.api.deps import AppServices
from tradeplan.api.models import ErrorResponse
from tradeplan.api.routes.plans import router as plans_router
from tradeplan.api.routes.trade_state import router as trade_state_router
from tradeplan.config.settings import Settings, get_settings
from tradeplan.llm_client.base import LLMClient
from tradeplan.llm_client.openai_client import OpenAIChatClient
from tradeplan.logging import get_logger, setup_logging
from tradeplan.prompts.manager import PromptManager, PromptSet
from tradeplan.storage.job_store import JobStore, build_job_store
from tradeplan.storage.state_store import StateStore
from tradeplan.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    HTTP_STATUS_BY_CODE,
    PlanError,
)

REQUEST_ID_HEADER = "x-request-id"

logger = get_logger("api")


def create_app(
    *,
    settings: Settings | None = None,
    job_store: JobStore | None = None,
    llm_client: LLMClient | None = None,
    prompt_set: PromptSet | None = None,
    state_store: StateStore | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(getattr(logging, settings.log_level.upper(), logging.INFO))

    services = AppServices(
        settings=settings,
        job_store=job_store
        or build_job_store(
            backend=settings.job_store_backend,
            sqlite_path=settings.resolved_sqlite_path,
        ),
        llm_client=llm_client
        or OpenAIChatClient(
            call_config=settings.llm_call_config(),
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            pricing_config=settings.pricing_config,
            preview_chars=settings.preview_chars,
        ),
        prompt_set=prompt_set
        or PromptManager(settings.resolved_prompts_root).load_prompt_set(
            prompt_name=settings.prompt_name,
            version=settings.prompt_version,
        ),
        state_store=state_store,
    )

    app = FastAPI(
        title="Trade Plan API",
        description="Asynchronous LLM plan generation with idempotent job tracking",
        version="0.1.0",
        docs_url="/api/v1/docs",
        openapi_url="/api/v1/openapi.json",
    )
    app.state.services = services

    # Browsers reject wildcard origins when credentials are enabled.
    cors_origins = settings.cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    @app.middleware("http")
    async def attach_request_id(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.exception_handler(PlanError)
    async def plan_error_handler(request: Request, exc: PlanError) -> JSONResponse:
        return _error_response(request, exc.error_code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _error_response(request, "INPUT_ERROR", "Invalid JSON body")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled-error",
            exc_info=exc,
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        response = _error_response(request, "UNKNOWN_ERROR", "Server error")
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.get("/health", tags=["Health"])
    @app.get("/api/v1/health", tags=["Health"], include_in_schema=False)
    def health_check() -> dict:
        return {
            "ok": True,
            "status": "healthy",
            "environment": settings.environment,
            "prompt_version": services.prompt_set.version,
        }

    app.include_router(plans_router, prefix="/api/v1")
    app.include_router(trade_state_router, prefix="/api/v1")
    return app


def _error_response(request: Request, error_code: str, error: str) -> JSONResponse:
    status_code = HTTP_STATUS_BY_CODE.get(error_code, 500)  # type: ignore[call-overload]
    body = ErrorResponse(
        error=error,
        error_code=error_code,
        message=ERROR_FRIENDLY_MESSAGES.get(  # type: ignore[call-overload]
            error_code, ERROR_FRIENDLY_MESSAGES["UNKNOWN_ERROR"]
        ),
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())
