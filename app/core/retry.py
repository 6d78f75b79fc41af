from __future__ import annotations

import logging
import random
from typing import Callable, TypeVar

from tenacity import Retrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from .errors import VersionConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")
Backoff = Callable[[int], float]


def linear_jitter(base_ms: int = 25, jitter_ms: int = 25) -> Backoff:
    """
    Wait grows linearly with the attempt number, plus a random jitter so that
    two writers that collided do not collide again on the next tick.
    """
    def wait(attempt: int) -> float:
        return (attempt * base_ms + random.uniform(0, jitter_ms)) / 1000.0
    return wait


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning("retrying after conflict: attempt=%s error=%s", state.attempt_number, exc)


def with_retry(operation: Callable[[], T], max_attempts: int = 3, backoff: Backoff = None) -> T:
    """
    Run `operation` until it succeeds, retrying only on VersionConflict.
    The last VersionConflict propagates once `max_attempts` is exhausted.
    """
    backoff = backoff or linear_jitter()
    retrying = Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=lambda state: backoff(state.attempt_number),
        retry=retry_if_exception_type(VersionConflict),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(operation)
