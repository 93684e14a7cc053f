from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

from ecs_image_builder.core import (
    BuildCancelled,
    ILogger,
    configure_logging,
    format_duration_ms,
    get_logger,
    monotonic_ms,
    new_run_id,
    step_error_from_exc,
    utc_now_iso,
)
from ecs_image_builder.core.config import DEFAULT_POLL_INTERVAL_S

from .context import RunContext
from .events import EventSink, EventType, make_event
from .report import PipelineResult, RunStatus
from .state import CoreKey, StateBag
from .step import Step, StepAction, StepResult, cleanup_step, run_step

ArtifactCollector = Callable[[StateBag], dict[str, Any]]


@dataclass(slots=True)
class RunnerConfig:
    poll_interval_s: int = DEFAULT_POLL_INTERVAL_S
    # None sleeps on the cancel event, so cancellation wakes pending polls
    sleep: Optional[Callable[[float], Any]] = None
    run_root: Optional[Path] = None


def default_logger() -> ILogger:
    """
    Provide a structlog BoundLogger that satisfies ILogger.
    """
    configure_logging()
    return get_logger("pipeline")


class PipelineRunner:
    """
    Runs steps strictly in order on the calling thread.

    The first HALT (or a cancel observed between steps) stops the run, then
    `cleanup` is called on every step whose `run` was invoked, newest first.
    A run where every step continues triggers no cleanup at all.
    """

    def __init__(
        self,
        *,
        steps: Sequence[Step],
        cfg: RunnerConfig | None = None,
        logger: ILogger | None = None,
        state_contract: Mapping[str, type | tuple[type, ...]] | None = None,
        collect_artifacts: ArtifactCollector | None = None,
    ) -> None:
        self.steps = list(steps)
        self.cfg = cfg or RunnerConfig()
        self.logger: ILogger = logger or default_logger()
        self.state_contract = dict(state_contract or {})
        self.collect_artifacts = collect_artifacts

        ids = [s.step_id for s in self.steps]
        if len(ids) != len(set(ids)):
            dupes = sorted({x for x in ids if ids.count(x) > 1})
            raise ValueError(f"Duplicate step_id(s): {dupes}")

    def run(
        self,
        *,
        run_id: str | None = None,
        cancel: threading.Event | None = None,
        meta: dict[str, Any] | None = None,
    ) -> PipelineResult:
        meta = meta or {}
        rid = run_id or new_run_id()

        run_dir: Optional[Path] = None
        sink: Optional[EventSink] = None
        if self.cfg.run_root is not None:
            run_dir = Path(self.cfg.run_root) / rid
            run_dir.mkdir(parents=True, exist_ok=True)
            sink = EventSink(run_dir / "events.jsonl")

        ctx = RunContext(
            run_id=rid,
            logger=self.logger,
            state=StateBag(self.state_contract),
            cancel=cancel or threading.Event(),
            events=sink,
            poll_interval_s=self.cfg.poll_interval_s,
            sleep=self.cfg.sleep,
            meta=meta,
        )

        started_at = utc_now_iso()
        t0 = monotonic_ms()

        self.logger.info(
            "Pipeline starting",
            run_id=rid,
            steps=[s.step_id for s in self.steps],
            meta_keys=sorted(meta.keys()),
        )
        if sink is not None:
            sink.emit(make_event(event_type=EventType.RUN_START, run_id=rid, **meta))

        executed: list[tuple[Step, StepResult]] = []
        stopped = self._execute(ctx, executed)

        if stopped:
            self.logger.warning(
                "Build stopped, cleaning up",
                cancelled=ctx.cancelled,
                steps_to_clean=[s.step_id for s, _ in reversed(executed)],
            )
            for st, res in reversed(executed):
                cleanup_step(ctx=ctx, step=st, result=res)
        ctx.current_step = None

        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        result = self._result(
            ctx,
            executed=executed,
            stopped=stopped,
            started_at=started_at,
            finished_at=finished_at,
            duration=duration,
        )
        if run_dir is not None:
            result.events_jsonl = str(run_dir / "events.jsonl")
            result.write_json(run_dir / "run_report.json")
        if sink is not None:
            sink.emit(
                make_event(
                    event_type=EventType.RUN_FINISH,
                    run_id=rid,
                    status=result.status.value,
                    duration_ms=duration,
                )
            )

        self.logger.info(
            "Run complete",
            status=result.status.value,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            failed_step=result.failed_step,
            cleanup_warnings=len(result.cleanup_warnings),
        )
        return result

    def _execute(self, ctx: RunContext, executed: list[tuple[Step, StepResult]]) -> bool:
        """Run steps until one halts or cancel is seen; True if the run stopped early."""
        total = len(self.steps)
        for idx, st in enumerate(self.steps, start=1):
            if ctx.cancel.is_set():
                err = BuildCancelled(f"build cancelled before step {st.step_id}")
                ctx.state.put(CoreKey.ERROR, err)
                ctx.state.put(CoreKey.CANCELLED, True)
                ctx.emit(EventType.RUN_CANCELLED, step=st.step_id)
                self.logger.warning("Cancellation requested", next_step=st.step_id)
                return True

            res = run_step(ctx=ctx, step=st, index=idx, total=total)
            executed.append((st, res))

            if res.action is StepAction.HALT:
                err = ctx.state.get(CoreKey.ERROR)
                if isinstance(err, BuildCancelled):
                    ctx.state.put(CoreKey.CANCELLED, True)
                else:
                    ctx.state.put(CoreKey.HALTED, True)
                return True
        return False

    def _result(
        self,
        ctx: RunContext,
        *,
        executed: list[tuple[Step, StepResult]],
        stopped: bool,
        started_at: str,
        finished_at: str,
        duration: int,
    ) -> PipelineResult:
        steps = [res for _, res in executed]
        if not stopped:
            artifacts = self.collect_artifacts(ctx.state) if self.collect_artifacts else {}
            return PipelineResult(
                run_id=ctx.run_id,
                status=RunStatus.SUCCESS,
                started_at_utc=started_at,
                finished_at_utc=finished_at,
                duration_ms=duration,
                steps=steps,
                artifacts=artifacts,
                cleanup_warnings=list(ctx.cleanup_warnings),
                meta=ctx.meta,
            )

        exc = ctx.state.get(CoreKey.ERROR)
        error = next((r.error for r in steps if r.error is not None), None)
        if error is None:
            # cancelled between steps: no step owns the error
            error = step_error_from_exc("pipeline", exc)

        return PipelineResult(
            run_id=ctx.run_id,
            status=RunStatus.CANCELLED if ctx.cancelled else RunStatus.FAILED,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            steps=steps,
            error=error,
            cleanup_warnings=list(ctx.cleanup_warnings),
            meta=ctx.meta,
            exception=exc,
        )
