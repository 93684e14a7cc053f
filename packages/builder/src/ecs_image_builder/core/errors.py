from __future__ import annotations

import traceback
from dataclasses import dataclass
from typing import Iterable, Optional


class BuilderError(RuntimeError):
    """Base error"""


@dataclass(frozen=True, slots=True)
class StepError:
    """
    A normalized error record for step failures.
    """

    step: str
    exc_type: str
    message: str
    traceback: str

    def to_dict(self) -> dict[str, str]:
        return {
            "step": self.step,
            "exc_type": self.exc_type,
            "message": self.message,
            "traceback": self.traceback,
        }


def step_error_from_exc(step: str, exc: BaseException) -> StepError:
    tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return StepError(
        step=step,
        exc_type=type(exc).__name__,
        message=str(exc),
        traceback=tb,
    )


class ConfigurationError(BuilderError):
    """
    Missing or invalid credentials, unknown region, image name collision.
    Detected before any resource is created.
    """


class ValidationErrors(ConfigurationError):
    """
    Several independent configuration problems reported together.
    """

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: tuple[BaseException, ...] = tuple(errors)
        lines = "\n".join(f"  * {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} error(s) occurred:\n{lines}")

    def __len__(self) -> int:
        return len(self.errors)


class FetchError(BuilderError):
    """A describe/list call used while waiting failed outright"""


class WaitTimeoutError(BuilderError):
    def __init__(
        self,
        *,
        what: str,
        timeout_s: int,
        attempts: int,
        last_result: object = None,
    ) -> None:
        super().__init__(
            f"Timeout waiting for {what} after {timeout_s}s (attempts={attempts})"
        )
        self.what = what
        self.timeout_s = timeout_s
        self.attempts = attempts
        self.last_result = last_result


class PollEvaluationError(BuilderError):
    """The poll predicate returned something other than a bool or PollOutcome"""


class BuildCancelled(BuilderError):
    """The build was cancelled from outside"""


class CleanupError(BuilderError):
    """
    Best-effort compensating deletion failed. Reported as a warning and never
    replaces the error that caused the cleanup.
    """

    def __init__(
        self, message: str, *, resource: str, resource_id: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id
