from .context import CleanupWarning, RunContext
from .events import Event, EventSink, EventType, make_event
from .report import PipelineResult, RunStatus
from .runner import PipelineRunner, RunnerConfig
from .state import CoreKey, StateBag
from .step import (
    FunctionStep,
    Step,
    StepAction,
    StepResult,
    StepStatus,
    cleanup_step,
    halt,
    run_step,
)

__all__ = [
    "CleanupWarning",
    "RunContext",
    "Event",
    "EventSink",
    "EventType",
    "make_event",
    "PipelineResult",
    "RunStatus",
    "PipelineRunner",
    "RunnerConfig",
    "CoreKey",
    "StateBag",
    "FunctionStep",
    "Step",
    "StepAction",
    "StepResult",
    "StepStatus",
    "cleanup_step",
    "halt",
    "run_step",
]
