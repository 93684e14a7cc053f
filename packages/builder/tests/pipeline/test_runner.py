from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest
from ecs_image_builder.core import BuildCancelled
from ecs_image_builder.pipeline import (
    FunctionStep,
    PipelineRunner,
    RunContext,
    RunnerConfig,
    RunStatus,
    StepAction,
    StepStatus,
    halt,
)


class _Recorder:
    """Steps that 'create' a resource and log run/cleanup/delete calls."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.deleted: list[str] = []

    def creating(self, step_id: str) -> FunctionStep:
        owned: list[str] = []

        def _run(ctx: RunContext) -> StepAction:
            self.calls.append(f"run:{step_id}")
            owned.append(f"res-{step_id}")
            return StepAction.CONTINUE

        def _cleanup(ctx: RunContext) -> None:
            self.calls.append(f"cleanup:{step_id}")
            while owned:
                self.deleted.append(owned.pop())

        return FunctionStep(step_id=step_id, fn=_run, cleanup_fn=_cleanup)

    def halting(self, step_id: str, err: BaseException) -> FunctionStep:
        def _run(ctx: RunContext) -> StepAction:
            self.calls.append(f"run:{step_id}")
            return halt(ctx, err)

        def _cleanup(ctx: RunContext) -> None:
            self.calls.append(f"cleanup:{step_id}")

        return FunctionStep(step_id=step_id, fn=_run, cleanup_fn=_cleanup)


def test_success_path_never_cleans_up(runner_cfg: RunnerConfig) -> None:
    rec = _Recorder()
    steps = [rec.creating("a"), rec.creating("b"), rec.creating("c")]

    result = PipelineRunner(steps=steps, cfg=runner_cfg).run()

    assert result.status is RunStatus.SUCCESS
    assert rec.calls == ["run:a", "run:b", "run:c"]
    assert rec.deleted == []
    assert [s.status for s in result.steps] == [StepStatus.SUCCEEDED] * 3


def test_halt_cleans_up_in_reverse_order(runner_cfg: RunnerConfig) -> None:
    rec = _Recorder()
    boom = RuntimeError("quota exceeded")
    steps = [rec.creating("a"), rec.creating("b"), rec.halting("c", boom), rec.creating("d")]

    result = PipelineRunner(steps=steps, cfg=runner_cfg).run()

    assert result.status is RunStatus.FAILED
    assert rec.calls == [
        "run:a",
        "run:b",
        "run:c",
        "cleanup:c",
        "cleanup:b",
        "cleanup:a",
    ]
    assert rec.deleted == ["res-b", "res-a"]
    assert result.exception is boom
    assert result.failed_step == "c"
    assert result.error is not None and result.error.message == "quota exceeded"
    assert [s.status for s in result.steps] == [StepStatus.CLEANED_UP] * 3


def test_step_raising_is_treated_as_halt(runner_cfg: RunnerConfig) -> None:
    rec = _Recorder()

    def _explode(ctx: RunContext) -> StepAction:
        raise KeyError("instance")

    steps = [rec.creating("a"), FunctionStep(step_id="b", fn=_explode)]
    result = PipelineRunner(steps=steps, cfg=runner_cfg).run()

    assert result.status is RunStatus.FAILED
    assert isinstance(result.exception, KeyError)
    assert rec.deleted == ["res-a"]


def test_non_action_return_is_a_failure(runner_cfg: RunnerConfig) -> None:
    steps = [FunctionStep(step_id="a", fn=lambda ctx: None)]  # type: ignore[arg-type, return-value]

    result = PipelineRunner(steps=steps, cfg=runner_cfg).run()

    assert result.status is RunStatus.FAILED
    assert isinstance(result.exception, TypeError)


def test_cancel_between_steps_stops_and_cleans_up(runner_cfg: RunnerConfig) -> None:
    rec = _Recorder()
    cancel = threading.Event()

    def _cancel_after(ctx: RunContext) -> StepAction:
        rec.calls.append("run:b")
        cancel.set()
        return StepAction.CONTINUE

    steps = [rec.creating("a"), FunctionStep(step_id="b", fn=_cancel_after), rec.creating("c")]
    result = PipelineRunner(steps=steps, cfg=runner_cfg).run(cancel=cancel)

    assert result.status is RunStatus.CANCELLED
    assert "run:c" not in rec.calls
    assert rec.deleted == ["res-a"]
    assert isinstance(result.exception, BuildCancelled)
    assert result.failed_step == "pipeline"


def test_cleanup_exception_becomes_warning(runner_cfg: RunnerConfig) -> None:
    rec = _Recorder()

    def _bad_cleanup(ctx: RunContext) -> None:
        raise RuntimeError("api down")

    boom = RuntimeError("original")
    steps = [
        FunctionStep(step_id="a", fn=lambda ctx: StepAction.CONTINUE, cleanup_fn=_bad_cleanup),
        rec.halting("b", boom),
    ]
    result = PipelineRunner(steps=steps, cfg=runner_cfg).run()

    assert result.exception is boom
    assert len(result.cleanup_warnings) == 1
    assert result.cleanup_warnings[0].step == "a"
    assert result.steps[0].status is StepStatus.CLEANUP_FAILED


def test_duplicate_step_ids_rejected(runner_cfg: RunnerConfig) -> None:
    rec = _Recorder()
    with pytest.raises(ValueError, match="Duplicate step_id"):
        PipelineRunner(steps=[rec.creating("a"), rec.creating("a")], cfg=runner_cfg)


def test_run_root_gets_report_and_events(tmp_path: Path) -> None:
    rec = _Recorder()
    cfg = RunnerConfig(sleep=lambda _: None, run_root=tmp_path)

    result = PipelineRunner(
        steps=[rec.creating("a")],
        cfg=cfg,
        collect_artifacts=lambda state: {"n": len(state)},
    ).run(run_id="r1", meta={"image_name": "img"})

    run_dir = tmp_path / "r1"
    report = json.loads((run_dir / "run_report.json").read_text(encoding="utf-8"))
    assert report["status"] == "success"
    assert report["meta"]["image_name"] == "img"
    assert report["artifacts"] == {"n": 0}

    events = [
        json.loads(line)
        for line in (run_dir / "events.jsonl").read_text(encoding="utf-8").splitlines()
    ]
    types = [e["type"] for e in events]
    assert types[0] == "run.env"
    assert "step.start" in types and "step.success" in types
    assert types[-1] == "run.finish"
    assert result.events_jsonl == str(run_dir / "events.jsonl")
