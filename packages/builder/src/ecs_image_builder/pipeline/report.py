from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Optional

from ecs_image_builder.core import StepError

from .context import CleanupWarning
from .step import StepResult


class RunStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class PipelineResult:
    """
    Outcome of one pipeline run: the artifacts on success, otherwise the
    error that halted the run plus any cleanup warnings.
    """

    run_id: str
    status: RunStatus
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int

    steps: list[StepResult] = field(default_factory=list)
    artifacts: dict[str, Any] = field(default_factory=dict)
    error: Optional[StepError] = None
    cleanup_warnings: list[CleanupWarning] = field(default_factory=list)
    events_jsonl: Optional[str] = None
    meta: dict[str, Any] = field(default_factory=dict)

    # the exception behind `error`, for in-process callers
    exception: Optional[BaseException] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    @property
    def failed_step(self) -> Optional[str]:
        return self.error.step if self.error else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "steps": [s.to_dict() for s in self.steps],
            "artifacts": self.artifacts,
            "error": self.error.to_dict() if self.error else None,
            "cleanup_warnings": [w.to_dict() for w in self.cleanup_warnings],
            "events_jsonl": self.events_jsonl,
            "meta": self.meta,
        }

    def write_json(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_dict(), ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )
