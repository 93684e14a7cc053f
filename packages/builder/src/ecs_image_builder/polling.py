from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable, Generic, Optional, TypeVar

import structlog
from tenacity import RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from ecs_image_builder.core.config import DEFAULT_POLL_INTERVAL_S, DEFAULT_WAIT_TIMEOUT_S
from ecs_image_builder.core.errors import (
    BuildCancelled,
    PollEvaluationError,
    FetchError,
    WaitTimeoutError,
)
from ecs_image_builder.core.logging import ILogger

T = TypeVar("T")

log = structlog.get_logger(__name__)


class OutcomeKind(StrEnum):
    READY = "ready"
    NOT_READY = "not_ready"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class PollOutcome:
    """
    Verdict of a poll predicate over one fetch result.
    """

    kind: OutcomeKind
    error: Optional[BaseException] = None


READY = PollOutcome(OutcomeKind.READY)
NOT_READY = PollOutcome(OutcomeKind.NOT_READY)


def fatal(error: BaseException) -> PollOutcome:
    return PollOutcome(OutcomeKind.FATAL, error)


Fetch = Callable[[], Optional[T]]
Predicate = Callable[[T], "PollOutcome | bool"]


def normalize_timeout(timeout_s: int) -> int:
    return timeout_s if timeout_s > 0 else DEFAULT_WAIT_TIMEOUT_S


def max_attempts_for(timeout_s: int, interval_s: int) -> int:
    return max(1, math.ceil(timeout_s / interval_s))


@dataclass(frozen=True, slots=True)
class _Pending:
    last_result: Any


def _evaluate(result: Any, is_satisfied: Callable[[Any], Any], what: str) -> PollOutcome:
    out = is_satisfied(result)
    if isinstance(out, PollOutcome):
        return out
    if isinstance(out, bool):
        return READY if out else NOT_READY
    raise PollEvaluationError(
        f"evaluator for {what} produced a non-boolean result: {out!r}"
    )


def poll_until(
    fetch: Fetch[T],
    is_satisfied: Predicate[T],
    *,
    timeout_s: int = DEFAULT_WAIT_TIMEOUT_S,
    interval_s: int = DEFAULT_POLL_INTERVAL_S,
    what: str = "condition",
    sleep: Callable[[float], Any] | None = None,
    cancel: threading.Event | None = None,
    logger: ILogger | None = None,
) -> T:
    """
    Call `fetch` until `is_satisfied` accepts its result.

    - `fetch` returning None means "not ready yet".
    - exceptions from `fetch` are not retried; they surface as FetchError.
    - `is_satisfied` returns a bool or a PollOutcome; `fatal(err)` raises err.
    - the budget allows ceil(timeout_s / interval_s) fetches, then
      WaitTimeoutError. timeout_s <= 0 means the 60 s default.
    - a set `cancel` event raises BuildCancelled before the next fetch and
      cuts the current sleep short.

    Returns the fetch result that satisfied the predicate.
    """
    timeout_s = normalize_timeout(timeout_s)
    if interval_s <= 0:
        interval_s = DEFAULT_POLL_INTERVAL_S
    attempts = max_attempts_for(timeout_s, interval_s)
    lg = logger or log

    if sleep is None:
        sleep = cancel.wait if cancel is not None else time.sleep

    def _attempt() -> Any:
        if cancel is not None and cancel.is_set():
            raise BuildCancelled(f"cancelled while waiting for {what}")

        try:
            result = fetch()
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(f"fetch for {what} failed: {e}") from e

        if result is None:
            return _Pending(None)

        outcome = _evaluate(result, is_satisfied, what)
        if outcome.kind is OutcomeKind.FATAL:
            if outcome.error is None:
                raise PollEvaluationError(f"evaluator for {what} failed without an error")
            raise outcome.error
        if outcome.kind is OutcomeKind.NOT_READY:
            return _Pending(result)
        return result

    def _before_sleep(retry_state) -> None:
        sleep_s = retry_state.next_action.sleep if retry_state.next_action else None
        lg.debug(
            "poll.not_ready",
            what=what,
            attempt=retry_state.attempt_number,
            max_attempts=attempts,
            sleep_s=sleep_s,
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(interval_s),
        retry=retry_if_result(lambda r: isinstance(r, _Pending)),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=False,
    )

    try:
        return retrying(_attempt)
    except RetryError as re:
        pending = re.last_attempt.result()
        raise WaitTimeoutError(
            what=what,
            timeout_s=timeout_s,
            attempts=re.last_attempt.attempt_number,
            last_result=pending.last_result if isinstance(pending, _Pending) else None,
        ) from None


@dataclass(frozen=True, slots=True)
class PollSpec(Generic[T]):
    """
    One wait: a fetch, a predicate over its result, and the time budget.
    """

    fetch: Fetch[T]
    is_satisfied: Predicate[T]
    timeout_s: int = DEFAULT_WAIT_TIMEOUT_S
    what: str = "condition"

    def wait(
        self,
        *,
        interval_s: int = DEFAULT_POLL_INTERVAL_S,
        sleep: Callable[[float], Any] | None = None,
        cancel: threading.Event | None = None,
        logger: ILogger | None = None,
    ) -> T:
        return poll_until(
            self.fetch,
            self.is_satisfied,
            timeout_s=self.timeout_s,
            interval_s=interval_s,
            what=self.what,
            sleep=sleep,
            cancel=cancel,
            logger=logger,
        )
