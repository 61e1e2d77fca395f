"""Unit tests for operational loggers."""

import logging

from utils.ops_logger import ContextFormatter, get_ops_logger, set_console_level


def make_record(**extra):
    record = logging.LogRecord("exomat.test", logging.INFO, __file__, 1, "Rewrote env files", None, None)
    record.__dict__.update(extra)
    return record


class TestContextFormatter:
    """Tests for ContextFormatter."""

    def test_appends_extra_fields(self):
        text = ContextFormatter("%(message)s").format(make_record(count=4, variable="SIZE"))
        assert text == "Rewrote env files count=4 variable=SIZE"

    def test_without_extra(self):
        assert ContextFormatter("%(message)s").format(make_record()) == "Rewrote env files"

    def test_private_fields_hidden(self):
        assert ContextFormatter("%(message)s").format(make_record(_internal=1)) == "Rewrote env files"


class TestGetOpsLogger:
    """Tests for logger creation."""

    def test_cached_per_component(self):
        assert get_ops_logger("test-cache") is get_ops_logger("test-cache")
        assert get_ops_logger("test-cache").name == "exomat.test-cache"

    def test_file_logging(self, tmp_path, monkeypatch):
        monkeypatch.setenv("EXOMAT_LOG_DIR", str(tmp_path / "logs"))
        logger = get_ops_logger("test-file", log_to_file=True)

        logger.debug("Written to file", extra={"run": "run_0_rep0"})
        for handler in logger.handlers:
            handler.flush()

        content = (tmp_path / "logs" / "test-file.log").read_text()
        assert "Written to file run=run_0_rep0" in content

    def test_set_console_level(self):
        logger = get_ops_logger("test-level")
        try:
            set_console_level(logging.ERROR)
            assert all(h.level == logging.ERROR for h in logger.handlers)
        finally:
            set_console_level(logging.WARNING)
