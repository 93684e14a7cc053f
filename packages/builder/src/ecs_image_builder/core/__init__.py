from .config import AccessConfig, Settings, load_settings
from .errors import (
    BuildCancelled,
    BuilderError,
    CleanupError,
    ConfigurationError,
    PollEvaluationError,
    FetchError,
    StepError,
    ValidationErrors,
    WaitTimeoutError,
    step_error_from_exc,
)
from .logging import ILogger, bind, clear_bindings, configure_logging, get_logger
from .provenance import RunProvenance, new_client_token, new_run_id
from .time import format_duration_ms, monotonic_ms, utc_now_iso

__all__ = [
    "AccessConfig",
    "Settings",
    "load_settings",
    "BuildCancelled",
    "BuilderError",
    "CleanupError",
    "ConfigurationError",
    "PollEvaluationError",
    "FetchError",
    "StepError",
    "ValidationErrors",
    "WaitTimeoutError",
    "step_error_from_exc",
    "ILogger",
    "bind",
    "clear_bindings",
    "configure_logging",
    "get_logger",
    "RunProvenance",
    "new_client_token",
    "new_run_id",
    "format_duration_ms",
    "monotonic_ms",
    "utc_now_iso",
]
