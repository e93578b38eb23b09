"""Tests for retry helpers, health checks and structured logging."""

import asyncio
import json
import logging

import pytest

from automation_engine.core.error_recovery import HealthChecker, RetryConfig, with_retry
from automation_engine.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    StorageError,
    WorkflowValidationError,
    create_error_response,
    get_status_code_for_error,
)
from automation_engine.core.logging import (
    ExecutionContextFilter,
    StructuredFormatter,
)


NO_DELAY = RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)


class TestWithRetry:

    def test_retries_storage_errors(self):
        calls = []

        @with_retry(NO_DELAY)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise StorageError("database is locked", operation="save workflow")
            return "saved"

        assert flaky() == "saved"
        assert len(calls) == 3

    def test_gives_up_after_max_attempts(self):
        calls = []

        @with_retry(NO_DELAY)
        def broken():
            calls.append(1)
            raise StorageError("disk full")

        with pytest.raises(StorageError):
            broken()
        assert len(calls) == 3

    def test_other_errors_are_not_retried(self):
        calls = []

        @with_retry(NO_DELAY)
        def missing():
            calls.append(1)
            raise NotFoundError("Workflow 'w1' not found")

        with pytest.raises(NotFoundError):
            missing()
        assert len(calls) == 1

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False)
        assert config.get_delay(1) == 1.0
        assert config.get_delay(2) == 2.0
        assert config.get_delay(5) == 3.0


class TestHealthChecker:

    def test_all_healthy(self):
        checker = HealthChecker()
        checker.register_check("database", lambda: "Database connection OK")

        results = asyncio.run(checker.run_all_checks())

        assert results["overall_status"] == "healthy"
        assert results["checks"]["database"]["message"] == "Database connection OK"

    def test_failing_check(self):
        def broken():
            raise RuntimeError("connection refused")

        checker = HealthChecker()
        checker.register_check("database", broken)
        checker.register_check("engine", lambda: {"active": 0})

        results = asyncio.run(checker.run_all_checks())

        assert results["overall_status"] == "unhealthy"
        assert results["checks"]["database"]["status"] == "unhealthy"
        assert results["checks"]["database"]["error_type"] == "RuntimeError"
        assert results["checks"]["engine"]["active"] == 0

    def test_async_check_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        checker = HealthChecker()
        checker.register_check("slow", slow, timeout=0.01)

        result = asyncio.run(checker.run_check("slow"))

        assert result["status"] == "timeout"

    def test_unknown_check(self):
        result = asyncio.run(HealthChecker().run_check("nope"))
        assert result["status"] == "error"


class TestErrorResponses:

    @pytest.mark.parametrize("error,status_code", [
        (WorkflowValidationError("bad"), 400),
        (NotFoundError("missing"), 404),
        (StorageError("locked"), 500),
        (ConfigurationError("bad port"), 500),
    ])
    def test_status_codes(self, error, status_code):
        assert get_status_code_for_error(error) == status_code

    def test_error_response_shape(self):
        error = WorkflowValidationError(
            "Workflow validation failed",
            validation_errors=["Workflow must have at least one trigger node"],
            workflow_id="workflow_1"
        )

        response = create_error_response(error)

        assert response["error"] == "WorkflowValidationError"
        assert response["details"]["validation_errors"] == ["Workflow must have at least one trigger node"]
        assert response["details"]["category"] == "validation"
        assert response["context"] == {"workflow_id": "workflow_1"}


class TestStructuredLogging:

    def make_record(self, message="Started execution", **extra_fields):
        record = logging.LogRecord("automation_engine.core", logging.INFO, __file__, 10, message, None, None)
        if extra_fields:
            record.extra_fields = extra_fields
        return record

    def test_formats_json_with_extra_fields(self):
        record = self.make_record(execution_id="exec_1")

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "Started execution"
        assert entry["level"] == "INFO"
        assert entry["execution_id"] == "exec_1"

    def test_context_filter_adds_thread_context(self):
        context_filter = ExecutionContextFilter()
        context_filter.set_context(request_id="req-1")
        record = self.make_record(request_id="explicit")
        plain = self.make_record()

        context_filter.filter(record)
        context_filter.filter(plain)

        assert record.extra_fields["request_id"] == "explicit"
        assert plain.extra_fields == {"request_id": "req-1"}

        context_filter.clear_context()
        cleared = self.make_record()
        context_filter.filter(cleared)
        assert cleared.extra_fields == {}
