import io
import json

import pytest

from logging_config import (
    LogLevel,
    MessageCode,
    LogMessage,
    StructuredLogger,
    PerformanceTimer
)


class TestLogMessage:
    """Test LogMessage Pydantic model."""

    def test_log_message_creation(self):
        """Test basic log message creation."""
        msg = LogMessage(
            level=LogLevel.INFO,
            code=MessageCode.SER001,
            message="Series started",
            context={"runs": 6}
        )
        assert msg.level == LogLevel.INFO
        assert msg.code == MessageCode.SER001
        assert msg.context == {"runs": 6}
        assert msg.duration_ms is None

    def test_log_message_to_json(self):
        """Test JSON serialization."""
        msg = LogMessage(
            level=LogLevel.ERROR,
            code=MessageCode.RUN002,
            message="Run failed",
            context={"run_id": "run_0_rep1", "exit_code": 3}
        )
        parsed = json.loads(msg.to_json())

        assert parsed["level"] == "ERROR"
        assert parsed["code"] == "RUN002"
        assert parsed["context"]["exit_code"] == 3
        assert "timestamp" in parsed

    def test_log_message_to_console(self):
        """Test console formatting shows run identity, hides other context."""
        msg = LogMessage(
            level=LogLevel.INFO,
            code=MessageCode.RUN001,
            message="Run completed",
            context={"run_id": "run_0_rep0", "exit_code": 0, "started_at": "x"}
        )
        console_str = msg.to_console()

        assert "[INFO]" in console_str
        assert "[RUN001]" in console_str
        assert "run_id=run_0_rep0" in console_str
        assert "exit_code=0" in console_str
        assert "started_at" not in console_str

    def test_log_message_console_with_duration(self):
        """Test console formatting includes duration."""
        msg = LogMessage(
            level=LogLevel.DEBUG,
            code=MessageCode.PRF001,
            message="Operation",
            duration_ms=42.5
        )
        assert "(42.50ms)" in msg.to_console()


class TestStructuredLogger:
    """Test StructuredLogger functionality."""

    def test_logger_initialization_no_file(self):
        """Test logger without file output."""
        logger = StructuredLogger(log_file=None, min_level=LogLevel.INFO)
        assert logger.log_file is None
        assert logger.sink is None

    def test_logger_level_filtering(self, tmp_path):
        """Test that log level filtering works."""
        log_file = tmp_path / "test.jsonl"
        logger = StructuredLogger(log_file=log_file, min_level=LogLevel.WARNING, console=False)

        logger.debug(MessageCode.PRF001, "Debug message")
        logger.info(MessageCode.SER001, "Info message")
        logger.warning(MessageCode.TBL002, "Warning message")
        logger.error(MessageCode.RUN002, "Error message")
        logger.close()

        lines = log_file.read_text().splitlines()
        assert [json.loads(line)["level"] for line in lines] == ["WARNING", "ERROR"]

    def test_logger_appends_to_existing_file(self, tmp_path):
        """Test that reopening a log file keeps earlier entries."""
        log_file = tmp_path / "exomat.log"
        with StructuredLogger(log_file=log_file, console=False) as logger:
            logger.info(MessageCode.SER001, "First")
        with StructuredLogger(log_file=log_file, console=False) as logger:
            logger.info(MessageCode.SER002, "Second")

        codes = [json.loads(line)["code"] for line in log_file.read_text().splitlines()]
        assert codes == ["SER001", "SER002"]

    def test_logger_stream_sink_not_closed(self):
        """Test that a caller-provided stream stays open."""
        stream = io.StringIO()
        with StructuredLogger(stream=stream, console=False) as logger:
            logger.info(MessageCode.TBL001, "Outputs collected", runs=2)

        assert not stream.closed
        entry = json.loads(stream.getvalue())
        assert entry["context"]["runs"] == 2

    def test_console_echo(self, capsys):
        """Test console output goes to stdout only when enabled."""
        StructuredLogger(console=True).info(MessageCode.SER001, "Echoed")
        StructuredLogger(console=False).info(MessageCode.SER001, "Silent")

        out = capsys.readouterr().out
        assert "Echoed" in out
        assert "Silent" not in out

    def test_logger_all_levels(self):
        """Test all logging levels."""
        stream = io.StringIO()
        logger = StructuredLogger(stream=stream, min_level=LogLevel.DEBUG, console=False)

        logger.debug(MessageCode.PRF001, "Debug")
        logger.info(MessageCode.SER001, "Info")
        logger.warning(MessageCode.TBL002, "Warning")
        logger.error(MessageCode.RUN003, "Error")
        logger.critical(MessageCode.SER003, "Critical")

        levels = [json.loads(line)["level"] for line in stream.getvalue().splitlines()]
        assert levels == ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


    def test_write_prebuilt_entry_respects_level(self):
        stream = io.StringIO()
        logger = StructuredLogger(stream=stream, min_level=LogLevel.ERROR, console=False)

        logger.write(LogMessage(level=LogLevel.INFO, code=MessageCode.RUN001, message="Run completed"))
        logger.write(LogMessage(level=LogLevel.ERROR, code=MessageCode.RUN002, message="Run failed"))

        assert [json.loads(line)["code"] for line in stream.getvalue().splitlines()] == ["RUN002"]

    def test_level_rank(self):
        assert LogLevel.DEBUG.rank < LogLevel.INFO.rank < LogLevel.CRITICAL.rank


class TestPerformanceTimer:
    """Test PerformanceTimer context manager."""

    def test_performance_timer_success(self):
        """Test timer on successful operation."""
        stream = io.StringIO()
        logger = StructuredLogger(stream=stream, min_level=LogLevel.DEBUG, console=False)

        with PerformanceTimer(logger, MessageCode.PRF001, "Planning", runs=4):
            pass

        log = json.loads(stream.getvalue())
        assert log["message"] == "Planning completed"
        assert log["context"]["runs"] == 4
        assert log["duration_ms"] >= 0

    def test_performance_timer_with_exception(self):
        """Test timer when exception occurs."""
        stream = io.StringIO()
        logger = StructuredLogger(stream=stream, min_level=LogLevel.DEBUG, console=False)

        with pytest.raises(ValueError):
            with PerformanceTimer(logger, MessageCode.PRF001, "Planning"):
                raise ValueError("Test error")

        log = json.loads(stream.getvalue())
        assert log["level"] == "ERROR"
        assert log["message"] == "Planning failed"
        assert log["context"]["error"] == "Test error"


class TestMessageCodes:
    """Test message code enum."""

    def test_message_code_families(self):
        """Verify every code belongs to a known family."""
        families = {code.value[:3] for code in MessageCode}
        assert families == {"SER", "RUN", "TBL", "PRF"}

    def test_run_codes(self):
        assert MessageCode.RUN001 == "RUN001"
        assert MessageCode.RUN002 == "RUN002"
        assert MessageCode.RUN003 == "RUN003"
