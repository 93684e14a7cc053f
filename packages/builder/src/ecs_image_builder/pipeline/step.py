from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Optional, Protocol

from ecs_image_builder.core import (
    BuilderError,
    CleanupError,
    StepError,
    format_duration_ms,
    monotonic_ms,
    step_error_from_exc,
    utc_now_iso,
)

from .context import RunContext
from .events import EventType
from .state import CoreKey


class StepAction(StrEnum):
    CONTINUE = "continue"
    HALT = "halt"


class StepStatus(StrEnum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CLEANING_UP = "cleaning_up"
    CLEANED_UP = "cleaned_up"
    CLEANUP_FAILED = "cleanup_failed"


class Step(Protocol):
    """
    One stage of the build owning at most one remote resource.

    `run` performs the stage and returns CONTINUE or HALT; on failure it
    stores the error under state["error"] and halts instead of raising.
    `cleanup` undoes whatever `run` created; it is a no-op when nothing was
    created and must not raise.
    """

    step_id: str

    def run(self, ctx: RunContext) -> StepAction: ...

    def cleanup(self, ctx: RunContext) -> None: ...


StepFn = Callable[[RunContext], StepAction]


@dataclass(slots=True)
class FunctionStep:
    """
    Adapter that turns plain functions into a Step.
    """

    step_id: str
    fn: StepFn
    cleanup_fn: Optional[Callable[[RunContext], None]] = None

    def run(self, ctx: RunContext) -> StepAction:
        return self.fn(ctx)

    def cleanup(self, ctx: RunContext) -> None:
        if self.cleanup_fn is not None:
            self.cleanup_fn(ctx)


@dataclass(slots=True)
class StepResult:
    step: str
    status: StepStatus
    action: Optional[StepAction]
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int

    error: Optional[StepError] = None
    cleanup_duration_ms: Optional[int] = None
    outputs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "status": self.status.value,
            "action": self.action.value if self.action else None,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "cleanup_duration_ms": self.cleanup_duration_ms,
            "outputs": list(self.outputs),
            "error": self.error.to_dict() if self.error else None,
        }


def halt(ctx: RunContext, err: BaseException, message: str | None = None) -> StepAction:
    """
    Record `err` as the reason the pipeline stops and return HALT.
    """
    ctx.state.put(CoreKey.ERROR, err)
    ctx.step_logger().error(message or "Step failed", error=str(err))
    return StepAction.HALT


def run_step(
    *,
    ctx: RunContext,
    step: Step,
    index: int | None = None,
    total: int | None = None,
) -> StepResult:
    step_id = step.step_id
    ctx.current_step = step_id
    log = ctx.step_logger(step_id)

    t0 = monotonic_ms()
    started_at = utc_now_iso()
    position = f"{index}/{total}" if index is not None and total is not None else None
    keys_before = set(ctx.state.keys())

    ctx.emit(EventType.STEP_START, step=step_id)
    log.info("Step starting", position=position)

    try:
        action = step.run(ctx)
        if not isinstance(action, StepAction):
            raise TypeError(
                f"Step {step_id} returned {type(action).__name__}, expected StepAction"
            )
    except Exception as e:
        log.exception("Step raised instead of halting")
        action = halt(ctx, e)

    finished_at = utc_now_iso()
    duration = monotonic_ms() - t0
    outputs = sorted(set(ctx.state.keys()) - keys_before - {CoreKey.ERROR.value})

    if action is StepAction.CONTINUE:
        ctx.emit(EventType.STEP_SUCCESS, step=step_id, duration_ms=duration)
        log.info(
            "Step succeeded",
            position=position,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            outputs=outputs,
        )
        return StepResult(
            step=step_id,
            status=StepStatus.SUCCEEDED,
            action=action,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            outputs=outputs,
        )

    err = ctx.state.get(CoreKey.ERROR)
    if not isinstance(err, BaseException):
        err = BuilderError(f"step {step_id} halted without recording an error")
        ctx.state.put(CoreKey.ERROR, err)

    ctx.emit(
        EventType.STEP_HALTED,
        step=step_id,
        duration_ms=duration,
        exc_type=type(err).__name__,
        message=str(err),
    )
    log.error(
        "Step failed",
        position=position,
        duration_ms=duration,
        duration=format_duration_ms(duration),
        error=str(err),
    )
    return StepResult(
        step=step_id,
        status=StepStatus.FAILED,
        action=action,
        started_at_utc=started_at,
        finished_at_utc=finished_at,
        duration_ms=duration,
        outputs=outputs,
        error=step_error_from_exc(step_id, err),
    )


def cleanup_step(*, ctx: RunContext, step: Step, result: StepResult) -> StepResult:
    """
    Invoke `step.cleanup` best-effort. Anything it raises becomes a cleanup
    warning; the run's primary error is left untouched.
    """
    ctx.current_step = step.step_id
    result.status = StepStatus.CLEANING_UP
    warnings_before = len(ctx.cleanup_warnings)
    t0 = monotonic_ms()

    ctx.emit(EventType.CLEANUP_START, step=step.step_id)
    try:
        step.cleanup(ctx)
    except Exception as e:
        ctx.step_logger().exception("Cleanup raised")
        ctx.warn_cleanup(
            CleanupError(f"cleanup of {step.step_id} raised: {e}", resource=step.step_id)
        )

    result.cleanup_duration_ms = monotonic_ms() - t0
    failed = len(ctx.cleanup_warnings) > warnings_before
    result.status = StepStatus.CLEANUP_FAILED if failed else StepStatus.CLEANED_UP
    ctx.emit(
        EventType.CLEANUP_FINISH,
        step=step.step_id,
        status=result.status.value,
        duration_ms=result.cleanup_duration_ms,
    )
    return result
