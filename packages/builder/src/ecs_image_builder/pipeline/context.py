from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from ecs_image_builder.core import CleanupError, ILogger
from ecs_image_builder.core.config import DEFAULT_POLL_INTERVAL_S
from ecs_image_builder.polling import PollSpec

from .events import EventSink, EventType, make_event
from .state import CoreKey, StateBag

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CleanupWarning:
    step: str
    resource: str
    resource_id: Optional[str]
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "message": self.message,
        }


@dataclass(slots=True)
class RunContext:
    """
    Context shared across steps for a single pipeline run.
    """

    run_id: str
    logger: ILogger
    state: StateBag = field(default_factory=StateBag)
    cancel: threading.Event = field(default_factory=threading.Event)
    events: Optional[EventSink] = None

    poll_interval_s: int = DEFAULT_POLL_INTERVAL_S
    # None means "sleep on the cancel event"
    sleep: Optional[Callable[[float], Any]] = None

    meta: dict[str, Any] = field(default_factory=dict)
    cleanup_warnings: list[CleanupWarning] = field(default_factory=list)
    current_step: Optional[str] = None

    def step_logger(self, step: str | None = None) -> ILogger:
        return self.logger.bind(step=step or self.current_step)

    def emit(self, event: EventType | str, **kw: object) -> None:
        # Keep event chatter at debug level to leave console logs readable.
        event_value = event.value if isinstance(event, EventType) else str(event)
        step = kw.pop("step", None) or self.current_step
        self.logger.debug(event_value, event_type=event_value, step=step, **kw)
        if self.events is not None:
            self.events.emit(
                make_event(event_type=event_value, run_id=self.run_id, step=step, **kw)
            )

    def poll(self, spec: PollSpec[T], *, cancellable: bool = True) -> T:
        """
        Run one wait with this run's interval and sleep.

        Cleanup waits pass cancellable=False: they run after a cancel and
        must not be cut short by it.
        """
        return spec.wait(
            interval_s=self.poll_interval_s,
            sleep=self.sleep,
            cancel=self.cancel if cancellable else None,
            logger=self.step_logger(),
        )

    @property
    def halted(self) -> bool:
        return self.state.flag(CoreKey.HALTED)

    @property
    def cancelled(self) -> bool:
        return self.state.flag(CoreKey.CANCELLED)

    def warn_cleanup(self, err: CleanupError) -> None:
        """Record a failed compensating action without raising."""
        step = self.current_step or "?"
        w = CleanupWarning(
            step=step,
            resource=err.resource,
            resource_id=err.resource_id,
            message=str(err),
        )
        self.cleanup_warnings.append(w)
        self.emit(
            EventType.CLEANUP_FAILED,
            resource=err.resource,
            resource_id=err.resource_id,
            message=str(err),
        )
        self.step_logger().warning(
            "Cleanup failed, resource may still exist",
            resource=err.resource,
            resource_id=err.resource_id,
            error=str(err),
        )
