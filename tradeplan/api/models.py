"""Request/response models for the plan API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel


class StartPlanRequest(BaseModel):
    state: Any = None


class GeneratePlanRequest(BaseModel):
    hash: str | None = None
    state: Any = None


class StartPlanResponse(BaseModel):
    ok: bool = True
    status: Literal["ready", "running", "start"]
    hash: str
    data: dict[str, Any] | None = None
    request_id: str


class GeneratePlanResponse(BaseModel):
    ok: bool = True
    status: Literal["accepted"] = "accepted"
    hash: str
    request_id: str


class PlanStatusResponse(BaseModel):
    ok: bool = True
    status: Literal["absent", "running", "ready", "error"]
    data: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None
    preview: str | None = None
    created_at: str | None = None
    request_id: str | None = None


class TradeStateResponse(BaseModel):
    ok: bool = True
    state: dict[str, Any]


class OkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    error_code: str
    message: str
    request_id: str | None = None
