from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from summarybench.core.errors import NonJsonResponseError, NotFoundError, TransportError
from summarybench.core.retry import RetryPolicy, call_with_retry, is_transient_transport_error


def test_transient_errors_are_retried_with_backoff():
    attempts = iter([TransportError("reset"), TransportError("busy", status_code=503), "ok"])
    sleeps: list[float] = []

    def flaky():
        step = next(attempts)
        if isinstance(step, Exception):
            raise step
        return step

    result = call_with_retry(flaky, policy=RetryPolicy(attempts=3, base_delay=1.0), sleep=sleeps.append)

    assert result == "ok"
    assert sleeps == [1.0, 2.0]


def test_last_error_is_reraised_unchanged():
    error = TransportError("still down", status_code=502)
    calls: list[int] = []

    def always_down():
        calls.append(1)
        raise error

    with pytest.raises(TransportError) as excinfo:
        call_with_retry(always_down, policy=RetryPolicy(attempts=2), sleep=lambda _: None)

    assert excinfo.value is error
    assert len(calls) == 2


def test_client_errors_are_not_retried():
    calls: list[int] = []

    def rejected():
        calls.append(1)
        raise TransportError("bad request", status_code=400)

    with pytest.raises(TransportError):
        call_with_retry(rejected, sleep=lambda _: None)
    assert len(calls) == 1


def test_transient_classification():
    assert is_transient_transport_error(TransportError("reset"))
    assert is_transient_transport_error(TransportError("slow down", status_code=429))
    assert is_transient_transport_error(NonJsonResponseError("html", status_code=200, preview="<!DOCTYPE html>"))
    assert not is_transient_transport_error(TransportError("nope", status_code=422))
    assert not is_transient_transport_error(NotFoundError("missing"))
