"""Plan generation routes: start, generate (background) and status."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Query, status

from tradeplan.api.deps import RequestId, Services
from tradeplan.api.models import (
    GeneratePlanRequest,
    GeneratePlanResponse,
    PlanStatusResponse,
    StartPlanRequest,
    StartPlanResponse,
)
from tradeplan.logging import get_logger
from tradeplan.pipeline.canonicalize import canonicalize_request, is_plan_key
from tradeplan.pipeline.starter import start_plan
from tradeplan.pipeline.worker import PlanWorker
from tradeplan.utils.error_taxonomy import InputError

router = APIRouter(prefix="/plans", tags=["Plans"])
logger = get_logger("api.plans")


def run_worker_background(
    worker: PlanWorker,
    plan_key: str,
    raw_state: Any,
    request_id: str,
) -> None:
    """Run the worker after the 202 response has been sent.

    Failures are logged; the worker itself records terminal errors on the job.
    """
    try:
        worker.run(plan_key, raw_state, request_id=request_id)
    except Exception:  # noqa: BLE001
        logger.exception(
            "background-generate-failed",
            extra={"fn": "planGenerate", "request_id": request_id, "plan_key": plan_key},
        )


@router.post(
    "/start",
    response_model=StartPlanResponse,
    response_model_exclude_none=True,
)
def start_plan_endpoint(
    body: StartPlanRequest,
    services: Services,
    request_id: RequestId,
) -> StartPlanResponse:
    result = start_plan(
        body.state,
        job_store=services.job_store,
        stale_after_seconds=services.settings.job_stale_after_seconds,
    )
    logger.info(
        "plan-start",
        extra={
            "fn": "planStart",
            "request_id": request_id,
            "plan_key": result.plan_key,
            "status": result.status,
        },
    )
    return StartPlanResponse(
        status=result.status,
        hash=result.plan_key,
        data=result.data,
        request_id=request_id,
    )


@router.post(
    "/generate",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=GeneratePlanResponse,
)
def generate_plan_endpoint(
    body: GeneratePlanRequest,
    background_tasks: BackgroundTasks,
    services: Services,
    request_id: RequestId,
) -> GeneratePlanResponse:
    if not body.hash or body.state is None:
        raise InputError("Missing hash/state")

    canonical = canonicalize_request(body.state)
    if canonical.plan_key != body.hash:
        raise InputError("hash does not match state")

    background_tasks.add_task(
        run_worker_background,
        services.build_worker(),
        canonical.plan_key,
        body.state,
        request_id,
    )
    logger.info(
        "plan-generate-accepted",
        extra={"fn": "planGenerate", "request_id": request_id, "plan_key": body.hash},
    )
    return GeneratePlanResponse(hash=canonical.plan_key, request_id=request_id)


@router.get(
    "/status",
    response_model=PlanStatusResponse,
    response_model_exclude_none=True,
)
def plan_status_endpoint(
    services: Services,
    hash: str | None = Query(default=None),
) -> PlanStatusResponse:
    if not hash:
        raise InputError("Missing hash")
    if not is_plan_key(hash):
        raise InputError("Invalid hash")

    record = services.job_store.get(hash)
    if record is None:
        return PlanStatusResponse(status="absent")
    return PlanStatusResponse(**record.to_status_payload())
