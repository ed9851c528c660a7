"""Unit tests for run log capture."""

import pytest
from loguru import logger

from services.ownership.run_log import RunLogCapture


@pytest.mark.no_db
class TestRunLogCapture:

    def test_captures_lines_inside_block_only(self):
        with RunLogCapture("research limit=5") as capture:
            logger.info("[p1|Vesterbrogade 10] [1/4 OWNERSHIP] BFE 100200")
        logger.info("after the run")

        text = capture.text
        assert "=== Run started: research limit=5 ===" in text
        assert "[1/4 OWNERSHIP] BFE 100200" in text
        assert "=== Run finished: research limit=5" in text
        assert "after the run" not in text

    def test_level_filter(self):
        with RunLogCapture("quiet", level="INFO") as capture:
            logger.debug("hidden detail")
            logger.warning("visible warning")
        assert "hidden detail" not in capture.text
        assert "visible warning" in capture.text

    def test_failure_is_logged_and_propagates(self):
        capture = RunLogCapture("broken")
        with pytest.raises(RuntimeError):
            with capture:
                raise RuntimeError("registry down")
        assert "=== Run failed: broken (registry down)" in capture.text
