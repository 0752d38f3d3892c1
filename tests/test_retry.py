"""Tests de la política de retry y la clasificación de errores."""

from unittest.mock import MagicMock

import pytest
import requests

from telemetry_api.resilience.errors import (
    FatalUpstreamError,
    TransientUpstreamError,
    classify_error,
    error_for_status,
)
from telemetry_api.resilience.retry import Done, Failed, Retry, RetryConfig, RetryExecutor


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor(sleeps):
    return RetryExecutor(RetryConfig(max_retries=3, base_delay=0.5), sleep=sleeps.append)


# =============================================================================
# CLASIFICACIÓN
# =============================================================================

class TestClassification:

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504, 599])
    def test_transient_statuses(self, status):
        assert isinstance(error_for_status(status), TransientUpstreamError)

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409])
    def test_fatal_statuses(self, status):
        err = error_for_status(status)
        assert isinstance(err, FatalUpstreamError)
        assert err.status_code == status

    def test_transport_errors_are_transient(self):
        assert isinstance(classify_error(requests.Timeout("slow")), TransientUpstreamError)
        assert isinstance(classify_error(requests.ConnectionError("refused")), TransientUpstreamError)

    def test_unknown_exception_is_fatal(self):
        assert isinstance(classify_error(ValueError("boom")), FatalUpstreamError)

    def test_upstream_errors_pass_through(self):
        err = TransientUpstreamError("x", status_code=503)
        assert classify_error(err) is err


# =============================================================================
# BACKOFF
# =============================================================================

class TestBackoff:

    def test_delays_double(self):
        cfg = RetryConfig(base_delay=1.0)
        assert [cfg.calculate_delay(k) for k in range(3)] == [1.0, 2.0, 4.0]

    def test_delay_capped(self):
        cfg = RetryConfig(base_delay=10.0, max_delay=15.0)
        assert cfg.calculate_delay(3) == 15.0

    def test_no_cap_by_default(self):
        cfg = RetryConfig(base_delay=10.0)
        assert [cfg.calculate_delay(k) for k in range(3)] == [10.0, 20.0, 40.0]

    def test_default_attempts(self):
        assert RetryConfig().max_attempts == 4


# =============================================================================
# EJECUCIÓN
# =============================================================================

class TestExecute:

    def test_transient_twice_then_success(self, executor, sleeps):
        func = MagicMock(side_effect=[
            TransientUpstreamError("503", status_code=503),
            TransientUpstreamError("503", status_code=503),
            "ok",
        ])

        assert executor.execute(func) == "ok"
        assert func.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_fatal_is_not_retried(self, executor, sleeps):
        func = MagicMock(side_effect=FatalUpstreamError("not found", status_code=404))

        with pytest.raises(FatalUpstreamError):
            executor.execute(func)

        assert func.call_count == 1
        assert sleeps == []

    def test_exhausted_raises_last_error(self, executor, sleeps):
        errors = [TransientUpstreamError(f"fail {i}") for i in range(4)]
        func = MagicMock(side_effect=errors)

        with pytest.raises(TransientUpstreamError) as exc_info:
            executor.execute(func)

        assert exc_info.value is errors[-1]
        assert func.call_count == 4
        assert sleeps == [0.5, 1.0, 2.0]

    def test_raw_transport_error_is_classified(self, executor):
        func = MagicMock(side_effect=[requests.ConnectionError("refused"), "ok"])

        assert executor.execute(func) == "ok"

    def test_stats(self, executor):
        executor.execute(MagicMock(side_effect=[TransientUpstreamError("x"), "ok"]))

        stats = executor.stats
        assert stats["total_attempts"] == 2
        assert stats["total_retries"] == 1
        assert stats["total_failures"] == 0


class TestStep:
    """Resultados etiquetados de un intento."""

    def test_done(self, executor):
        outcome = executor.step(0, lambda: 42)
        assert isinstance(outcome, Done)
        assert outcome.value == 42

    def test_retry_carries_delay(self, executor):
        outcome = executor.step(1, MagicMock(side_effect=TransientUpstreamError("x")))
        assert isinstance(outcome, Retry)
        assert outcome.delay == 1.0

    def test_last_attempt_fails(self, executor):
        outcome = executor.step(3, MagicMock(side_effect=TransientUpstreamError("x")))
        assert isinstance(outcome, Failed)
        assert outcome.attempt.retryable is True

    def test_fatal_fails_as_non_retryable(self, executor):
        outcome = executor.step(0, MagicMock(side_effect=KeyError("x")))
        assert isinstance(outcome, Failed)
        assert outcome.attempt.retryable is False
        assert isinstance(outcome.error, FatalUpstreamError)
