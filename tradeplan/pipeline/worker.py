from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal

from tradeplan.llm_client.base import LLMClient
from tradeplan.llm_client.cost import sum_costs
from tradeplan.llm_client.normalize_usage import merge_usage
from tradeplan.logging import clear_log_context, get_logger, set_log_context
from tradeplan.pipeline.canonicalize import compute_plan_key, sanitize_state
from tradeplan.pipeline.coerce import coerce_to_schema
from tradeplan.pipeline.validate_output import describe_invalid, validate_plan_shape
from tradeplan.prompts.manager import PromptSet
from tradeplan.storage.job_store import JobStore
from tradeplan.storage.models import (
    JobRecord,
    error_record,
    ready_record,
    running_record,
)
from tradeplan.utils.error_taxonomy import (
    DEFAULT_PREVIEW_CHARS,
    ConfigError,
    InputError,
    PlanError,
    PlanValidationError,
    classify_llm_error,
    is_stage_b_eligible,
    truncate_preview,
)

logger = get_logger("worker")

WorkerStatus = Literal["ready", "error", "skipped"]
StageName = Literal["A", "B"]

FALLBACK_CRITIQUE = "timeout-or-parse-failure"
RETRY_VALIDATION_MESSAGE = "Validation failed after retry"


@dataclass(frozen=True, slots=True)
class StageAttempt:
    stage: StageName
    plan: dict[str, Any] | None
    error: PlanError | None
    raw_text: str
    usage: dict[str, int | None] = field(default_factory=dict)
    cost: dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class WorkerOutcome:
    status: WorkerStatus
    plan_key: str
    request_id: str
    stage: StageName | None = None
    data: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None
    preview: str | None = None
    metrics: dict[str, Any] | None = None
    reason: str | None = None


class PlanWorker:
    """Claims a plan key, runs the two-stage generation and records the result."""

    def __init__(
        self,
        *,
        job_store: JobStore,
        llm_client: LLMClient,
        prompt_set: PromptSet,
        stage_a_timeout_seconds: float,
        stage_b_timeout_seconds: float,
        stale_after_seconds: float,
        preview_chars: int = DEFAULT_PREVIEW_CHARS,
        request_id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.job_store = job_store
        self.llm_client = llm_client
        self.prompt_set = prompt_set
        self.stage_a_timeout_seconds = stage_a_timeout_seconds
        self.stage_b_timeout_seconds = stage_b_timeout_seconds
        self.stale_after_seconds = stale_after_seconds
        self.preview_chars = preview_chars
        self._request_id_factory = request_id_factory or _new_request_id

    def run(
        self,
        plan_key: str,
        raw_state: Any,
        *,
        request_id: str | None = None,
    ) -> WorkerOutcome:
        run_request_id = request_id or self._request_id_factory()
        set_log_context(fn="planGenerate", request_id=run_request_id, plan_key=plan_key)
        try:
            return self._run(plan_key, raw_state, request_id=run_request_id)
        finally:
            clear_log_context()

    def _run(self, plan_key: str, raw_state: Any, *, request_id: str) -> WorkerOutcome:
        state = sanitize_state(raw_state)
        if compute_plan_key(state) != plan_key:
            raise InputError("hash does not match state")

        current = self.job_store.get(plan_key)
        skip_reason = self._skip_reason(current)
        if skip_reason is not None:
            logger.info(skip_reason, extra={"status": "skipped"})
            return WorkerOutcome(
                status="skipped",
                plan_key=plan_key,
                request_id=request_id,
                reason=skip_reason,
            )

        claimed = running_record(request_id=request_id)
        if not self.job_store.compare_and_set(plan_key, claimed, expected=current):
            logger.info("claim-lost", extra={"status": "skipped"})
            return WorkerOutcome(
                status="skipped",
                plan_key=plan_key,
                request_id=request_id,
                reason="claim-lost",
            )
        logger.info("claimed", extra={"status": "running"})

        started_at = time.perf_counter()
        try:
            outcome = self._generate(plan_key, state, request_id=request_id)
        except Exception as error:  # noqa: BLE001
            logger.exception("fatal", extra={"error_code": classify_llm_error(error)})
            outcome = WorkerOutcome(
                status="error",
                plan_key=plan_key,
                request_id=request_id,
                error=f"{error.__class__.__name__}: {error}",
                error_code=classify_llm_error(error),
                preview=truncate_preview(
                    getattr(error, "preview", None), limit=self.preview_chars
                ),
                metrics={"timings": {"t_total_ms": _elapsed_ms(started_at)}},
            )

        metrics = dict(outcome.metrics or {})
        timings = dict(metrics.get("timings") or {})
        timings["t_total_ms"] = _elapsed_ms(started_at)
        metrics["timings"] = timings

        if outcome.status == "ready" and outcome.data is not None:
            final = ready_record(claimed, data=outcome.data, metrics=metrics)
        else:
            final = error_record(
                claimed,
                error=outcome.error or "Upstream error",
                error_code=outcome.error_code or "UNKNOWN_ERROR",
                preview=outcome.preview,
                metrics=metrics,
            )

        if not self.job_store.compare_and_set(plan_key, final, expected=claimed):
            logger.warning("ownership-lost", extra={"status": "skipped"})
            return WorkerOutcome(
                status="skipped",
                plan_key=plan_key,
                request_id=request_id,
                stage=outcome.stage,
                metrics=metrics,
                reason="ownership-lost",
            )

        logger.info(
            "done" if final.status == "ready" else "failed",
            extra={
                "status": final.status,
                "error_code": final.error_code,
                "metrics": metrics,
                "duration_ms": round(timings["t_total_ms"], 1),
            },
        )
        return WorkerOutcome(
            status=final.status,  # type: ignore[arg-type]
            plan_key=plan_key,
            request_id=request_id,
            stage=outcome.stage,
            data=final.data,
            error=final.error,
            error_code=final.error_code,
            preview=final.preview,
            metrics=metrics,
        )

    def _skip_reason(self, current: JobRecord | None) -> str | None:
        if current is None or current.status == "error":
            return None
        if current.status == "ready":
            return "already-ready"
        now = datetime.now(tz=timezone.utc)
        if current.is_stale(now=now, stale_after_seconds=self.stale_after_seconds):
            return None
        return "already-running"

    def _generate(
        self, plan_key: str, state: dict[str, Any], *, request_id: str
    ) -> WorkerOutcome:
        attempt_a = self._attempt(
            stage="A",
            state=state,
            system_prompt=self.prompt_set.system_prompt(),
            user_content=self.prompt_set.primary_prompt(state),
            timeout_seconds=self.stage_a_timeout_seconds,
        )
        attempts = [attempt_a]

        if attempt_a.plan is not None:
            return self._success(plan_key, request_id, attempt_a, attempts)

        error_a = attempt_a.error
        if isinstance(error_a, ConfigError) or not _is_repairable(error_a):
            return self._failure(plan_key, request_id, attempt_a, attempts, error=error_a)

        critique = _critique_for(error_a)
        logger.info("stage-b", extra={"stage": "B", "preview": critique})
        attempt_b = self._attempt(
            stage="B",
            state=state,
            system_prompt=self.prompt_set.system_prompt(strict=True),
            user_content=self.prompt_set.corrective_prompt(state, critique),
            timeout_seconds=self.stage_b_timeout_seconds,
        )
        attempts.append(attempt_b)

        if attempt_b.plan is not None:
            return self._success(plan_key, request_id, attempt_b, attempts)

        error_b = attempt_b.error
        if isinstance(error_b, PlanValidationError):
            error_b = PlanValidationError(
                RETRY_VALIDATION_MESSAGE,
                missing_keys=error_b.missing_keys,
                preview=error_b.preview,
            )
        return self._failure(plan_key, request_id, attempt_b, attempts, error=error_b)

    def _attempt(
        self,
        *,
        stage: StageName,
        state: dict[str, Any],
        system_prompt: str,
        user_content: str,
        timeout_seconds: float,
    ) -> StageAttempt:
        started_at = time.perf_counter()
        try:
            result = self.llm_client.generate_json(
                system_prompt=system_prompt,
                user_content=user_content,
                timeout_seconds=timeout_seconds,
                run_meta={"stage": stage},
            )
        except PlanError as error:
            logger.warning(
                f"stage{stage}-fail",
                extra={
                    "stage": stage,
                    "error_code": error.error_code,
                    "preview": error.preview,
                },
            )
            return StageAttempt(
                stage=stage,
                plan=None,
                error=error,
                raw_text=error.preview or "",
                duration_ms=_elapsed_ms(started_at),
            )

        duration_ms = _elapsed_ms(started_at)
        coerced = coerce_to_schema(result.parsed_json, state)
        validation = validate_plan_shape(coerced)
        if validation.valid:
            return StageAttempt(
                stage=stage,
                plan=coerced,
                error=None,
                raw_text=result.raw_text,
                usage=result.usage_normalized,
                cost=result.cost,
                duration_ms=duration_ms,
            )

        critique = describe_invalid(validation)
        preview = truncate_preview(result.raw_text, limit=self.preview_chars)
        logger.warning(
            f"invalid-shape-{stage}",
            extra={"stage": stage, "preview": critique},
        )
        return StageAttempt(
            stage=stage,
            plan=None,
            error=PlanValidationError(
                critique,
                missing_keys=validation.missing_keys,
                preview=preview,
            ),
            raw_text=result.raw_text,
            usage=result.usage_normalized,
            cost=result.cost,
            duration_ms=duration_ms,
        )

    def _success(
        self,
        plan_key: str,
        request_id: str,
        attempt: StageAttempt,
        attempts: list[StageAttempt],
    ) -> WorkerOutcome:
        return WorkerOutcome(
            status="ready",
            plan_key=plan_key,
            request_id=request_id,
            stage=attempt.stage,
            data=attempt.plan,
            metrics=_collect_metrics(attempt.stage, attempts),
        )

    def _failure(
        self,
        plan_key: str,
        request_id: str,
        attempt: StageAttempt,
        attempts: list[StageAttempt],
        *,
        error: PlanError | None,
    ) -> WorkerOutcome:
        message = str(error) if error is not None else "Upstream error"
        preview = (error.preview if error is not None else None) or attempt.raw_text
        return WorkerOutcome(
            status="error",
            plan_key=plan_key,
            request_id=request_id,
            stage=attempt.stage,
            error=message,
            error_code=error.error_code if error is not None else "UNKNOWN_ERROR",
            preview=truncate_preview(preview, limit=self.preview_chars),
            metrics=_collect_metrics(attempt.stage, attempts),
        )


def _is_repairable(error: PlanError | None) -> bool:
    if error is None:
        return False
    return isinstance(error, PlanValidationError) or is_stage_b_eligible(error)


def _critique_for(error: PlanError | None) -> str:
    if error is None:
        return FALLBACK_CRITIQUE
    return str(error) or FALLBACK_CRITIQUE


def _collect_metrics(stage: StageName, attempts: list[StageAttempt]) -> dict[str, Any]:
    usage: dict[str, int | None] = {}
    for attempt in attempts:
        usage = merge_usage(usage, attempt.usage)

    timings = {
        f"t_stage_{attempt.stage.lower()}_ms": attempt.duration_ms for attempt in attempts
    }
    return {
        "stage": stage,
        "attempts": len(attempts),
        "usage_normalized": usage,
        "cost": sum_costs([attempt.cost for attempt in attempts if attempt.cost]),
        "timings": timings,
    }


def _new_request_id() -> str:
    return uuid.uuid4().hex


def _elapsed_ms(started_at: float) -> float:
    return (time.perf_counter() - started_at) * 1000
