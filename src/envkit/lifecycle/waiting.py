"""Bounded polling: fixed attempts, fixed interval, injectable sleep."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import TypeVar

import structlog
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    stop_when_event_set,
    wait_fixed,
)

from envkit.config.models import PollConfig
from envkit.errors import EnvkitError, ResourceVerificationFailed

logger = structlog.get_logger()

T = TypeVar("T")


def wait_for(
    check: Callable[[], T | None],
    *,
    poll: PollConfig,
    description: str,
    error_cls: type[EnvkitError] = ResourceVerificationFailed,
    sleep: Callable[[float], None] = time.sleep,
    stop_event: threading.Event | None = None,
) -> T:
    """Call *check* until it returns a truthy value, at most ``poll.attempts`` times.

    Exceptions raised by *check* propagate immediately. When the attempts
    run out (or *stop_event* is set) *error_cls* is raised.
    """
    stop = stop_after_attempt(poll.attempts)
    if stop_event is not None:
        stop = stop | stop_when_event_set(stop_event)

    def _log_attempt(state: RetryCallState) -> None:
        logger.debug(
            "wait.pending",
            target=description,
            attempt=state.attempt_number,
            attempts=poll.attempts,
        )

    retrying = Retrying(
        stop=stop,
        wait=wait_fixed(poll.interval_seconds),
        retry=retry_if_result(lambda result: not result),
        sleep=sleep,
        before_sleep=_log_attempt,
    )
    try:
        result = retrying(check)
    except RetryError as exc:
        if stop_event is not None and stop_event.is_set():
            msg = f"Stopped waiting for {description}"
        else:
            total = poll.attempts * poll.interval_seconds
            msg = (
                f"{description} not ready after {poll.attempts} attempts "
                f"({total:g}s)"
            )
        raise error_cls(msg) from exc
    return result  # type: ignore[return-value]
