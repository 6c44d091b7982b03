"""Tests for the logging micro API."""

import io
import logging

import pytest

from .lib import ContextDefaultsFilter, get_logger, setup_logging


class TestGetLogger:
    """Tests for get_logger."""

    @pytest.mark.unit
    def test_default_name(self):
        """Unnamed logger uses the project name."""
        assert get_logger().name == "voxlayout"

    @pytest.mark.unit
    def test_custom_name(self):
        """Named logger keeps its name."""
        assert get_logger("voxlayout.pipeline").name == "voxlayout.pipeline"


class TestContextDefaultsFilter:
    """Tests for correlation field defaults."""

    @pytest.mark.unit
    def test_fills_missing_fields(self):
        """Records without correlation fields get placeholders."""
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert ContextDefaultsFilter().filter(record) is True
        assert record.session_id == "-"
        assert record.request_id == "-"

    @pytest.mark.unit
    def test_keeps_existing_fields(self):
        """Fields passed through extra are not overwritten."""
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        record.session_id = "sess-1"
        ContextDefaultsFilter().filter(record)
        assert record.session_id == "sess-1"
        assert record.request_id == "-"


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.mark.unit
    def test_formats_plain_records(self):
        """Records from third-party loggers format without correlation extras."""
        root = logging.getLogger()
        saved = root.handlers[:]
        saved_level = root.level
        root.handlers = []
        try:
            stream = io.StringIO()
            setup_logging(level=logging.INFO, stream=stream)
            logging.getLogger("thirdparty").info("hello")
            logging.getLogger("voxlayout").info(
                "attempt", extra={"session_id": "s1", "request_id": "r1"}
            )
            output = stream.getvalue()
            assert "[- -] hello" in output
            assert "[s1 r1] attempt" in output
        finally:
            root.handlers = saved
            root.setLevel(saved_level)
