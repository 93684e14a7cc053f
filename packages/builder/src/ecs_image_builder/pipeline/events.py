from __future__ import annotations

import json
import os
import socket
import threading
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ecs_image_builder.core import utc_now_iso


class EventType(str, Enum):
    RUN_ENV = "run.env"
    RUN_START = "run.start"
    RUN_FINISH = "run.finish"
    RUN_CANCELLED = "run.cancelled"

    STEP_START = "step.start"
    STEP_SUCCESS = "step.success"
    STEP_HALTED = "step.halted"

    CLEANUP_START = "cleanup.start"
    CLEANUP_FINISH = "cleanup.finish"
    CLEANUP_FAILED = "cleanup.failed"

    RESOURCE_CREATED = "resource.created"
    RESOURCE_READY = "resource.ready"
    RESOURCE_DELETED = "resource.deleted"

    VALIDATE_FINISH = "validate.finish"


@dataclass(frozen=True, slots=True)
class Event:
    """
    Structured event emitted by the pipeline.
    """

    type: str
    ts_utc: str
    run_id: str
    step: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


class EventSink:
    """Append-only events.jsonl writer, safe to share between threads."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self.emit(
            Event(
                type=EventType.RUN_ENV.value,
                ts_utc=utc_now_iso(),
                run_id="__init__",
                data={
                    "hostname": socket.gethostname(),
                    "pid": os.getpid(),
                    "cwd": str(Path.cwd()),
                },
            )
        )

    def emit(self, event: Event) -> None:
        line = json.dumps(asdict(event), ensure_ascii=False, default=str)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.write("\n")


def make_event(
    *,
    event_type: EventType | str,
    run_id: str,
    step: Optional[str] = None,
    **data: Any,
) -> Event:
    type_value = (
        event_type.value if isinstance(event_type, EventType) else str(event_type)
    )
    return Event(
        type=type_value,
        ts_utc=utc_now_iso(),
        run_id=run_id,
        step=step,
        data=dict(data),
    )
