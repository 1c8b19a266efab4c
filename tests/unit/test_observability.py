"""Tests for structured logging, metrics and the timing decorator."""

from unittest.mock import Mock

import pytest

from item_images.core.observability import (
    LogContext,
    MetricsCollector,
    PerformanceMetrics,
    StructuredLogger,
    timed_operation,
)


class TestLogContext:
    """Tests for LogContext."""

    def test_correlation_ids_are_unique(self):
        """Test each context gets its own correlation id."""
        assert LogContext().correlation_id != LogContext().correlation_id

    def test_with_operation_keeps_correlation(self):
        """Test derived contexts share the correlation id."""
        context = LogContext(component="uploader", user_id="u1")

        derived = context.with_operation("upload")

        assert derived.correlation_id == context.correlation_id
        assert derived.operation == "upload"
        assert derived.user_id == "u1"
        assert context.operation == ""

    def test_with_metadata_copies(self):
        """Test metadata is merged into a copy."""
        context = LogContext(metadata={"a": 1})

        derived = context.with_metadata(b=2)

        assert derived.metadata == {"a": 1, "b": 2}
        assert context.metadata == {"a": 1}


class TestStructuredLogger:
    """Tests for StructuredLogger message formatting."""

    @pytest.fixture
    def logger(self):
        structured = StructuredLogger("test-observability")
        structured._logger = Mock()
        return structured

    def test_plain_message(self, logger):
        """Test messages without context pass through unchanged."""
        logger.info("Uploaded")

        logger.logger.info.assert_called_once_with("Uploaded")

    def test_kwargs_without_context(self, logger):
        """Test keyword details are appended."""
        logger.warning("Slow upload", seconds=3)

        logger.logger.warning.assert_called_once_with("Slow upload (seconds=3)")

    def test_context_formatting(self, logger):
        """Test operation, correlation id and metadata are rendered."""
        context = LogContext(correlation_id="abc", user_id="u1").with_operation("compress")

        logger.error("Failed", context, quality=0.5)

        logger.logger.error.assert_called_once_with(
            "[compress] [abc] Failed (quality=0.5, user_id=u1)"
        )


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_summary(self):
        """Test summary statistics over recorded stages."""
        collector = MetricsCollector()
        collector.record_metric(PerformanceMetrics("compress", 0.0, 1.0, True))
        collector.record_metric(PerformanceMetrics("compress", 1.0, 4.0, False, "boom"))
        collector.record_metric(PerformanceMetrics("upload", 0.0, 0.5, True))

        summary = collector.get_summary("compress")

        assert summary["total_operations"] == 2
        assert summary["failed_operations"] == 1
        assert summary["success_rate"] == 0.5
        assert summary["avg_duration"] == 2.0
        assert summary["max_duration"] == 3.0
        assert len(collector.get_metrics()) == 3

    def test_empty_summary(self):
        """Test an unknown operation has no summary."""
        assert MetricsCollector().get_summary("missing") == {}

    def test_duration_ms(self):
        """Test durations convert to milliseconds."""
        assert PerformanceMetrics("upload", 1.0, 1.25, True).duration_ms == 250.0


class TestTimedOperation:
    """Tests for the timed_operation decorator."""

    def test_records_success(self):
        """Test a successful call is logged at debug and recorded."""
        logger = Mock()
        collector = MetricsCollector()

        @timed_operation("process_file", logger=logger, metrics_collector=collector)
        def work(value):
            return value * 2

        assert work(21) == 42
        metric = collector.get_metrics("process_file")[0]
        assert metric.success
        logger.debug.assert_called_once()
        assert logger.debug.call_args.args[0] == "Completed process_file"

    def test_records_failure(self):
        """Test failures are logged, recorded and re-raised."""
        logger = Mock()
        collector = MetricsCollector()

        @timed_operation("process_file", logger=logger, metrics_collector=collector)
        def work():
            raise ValueError("bad image")

        with pytest.raises(ValueError, match="bad image"):
            work()

        metric = collector.get_metrics()[0]
        assert not metric.success
        assert metric.error_message == "bad image"
        assert logger.error.call_args.args[0] == "Failed process_file: bad image"

    def test_preserves_name(self):
        """Test the wrapped function keeps its name."""

        @timed_operation("noop")
        def process_file():
            return None

        assert process_file.__name__ == "process_file"
        assert process_file() is None
