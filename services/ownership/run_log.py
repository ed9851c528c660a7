"""Capture the textual log of one batch run."""

import io
from datetime import datetime, timezone
from typing import Optional

from loguru import logger


class RunLogCapture:
    """
    Collects every log line emitted while a batch runs.

    Usage:
        with RunLogCapture("research") as capture:
            await workflow.process_batch(properties)
        print(capture.text)
    """

    def __init__(self, label: str, level: str = "DEBUG"):
        self.label = label
        self.level = level
        self._buffer = io.StringIO()
        self._handler_id: Optional[int] = None
        self._start_time: Optional[datetime] = None

    def __enter__(self) -> "RunLogCapture":
        self._start_time = datetime.now(timezone.utc)
        self._handler_id = logger.add(
            self._buffer,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message}",
            level=self.level,
        )
        logger.info(f"=== Run started: {self.label} ===")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = datetime.now(timezone.utc) - self._start_time
        if exc_type:
            logger.error(f"=== Run failed: {self.label} ({exc_val}) after {duration} ===")
        else:
            logger.info(f"=== Run finished: {self.label} in {duration} ===")
        if self._handler_id is not None:
            logger.remove(self._handler_id)
            self._handler_id = None
        return False

    @property
    def text(self) -> str:
        return self._buffer.getvalue()
