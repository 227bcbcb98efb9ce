"""Single retry helper for HTTP calls to collaborator services.

Transient-error retry lives here and nowhere else. Job-level "is it done yet"
polling is a different policy and belongs to :mod:`summarybench.workers.poller`.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from summarybench.core.errors import TransportError


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_transport_error(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and exc.transient


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    retryable: Callable[[BaseException], bool] = field(default=is_transient_transport_error)


DEFAULT_POLICY = RetryPolicy()


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy = DEFAULT_POLICY,
    sleep: Callable[[float], None] = time.sleep,
    describe: str = "request",
) -> T:
    """Invoke ``fn`` with exponential backoff for errors ``policy`` deems retryable.

    The last exception is re-raised unchanged once the attempt cap is reached or
    a non-retryable error occurs.
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        LOGGER.warning(
            "%s failed (attempt %s/%s), retrying in %.1fs: %s",
            describe,
            state.attempt_number,
            policy.attempts,
            delay,
            exc,
        )

    retrying = Retrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception(policy.retryable),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    return retrying(fn)


__all__ = ["DEFAULT_POLICY", "RetryPolicy", "call_with_retry", "is_transient_transport_error"]
