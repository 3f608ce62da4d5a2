"""Operator-facing progress trace.

``ProgressTrace`` keeps the ordered lines of a sync run in a buffer
and forwards each one to the ``ilios_enrol.trace`` logger, so the same
lines reach log files and callers that inspect the buffer.
"""

from __future__ import annotations

import logging

TRACE_LOGGER = "ilios_enrol.trace"


class ProgressTrace:
    """Buffered line sink.

    Args:
        logger: Logger receiving each line at INFO.  Defaults to the
            ``ilios_enrol.trace`` logger.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.lines: list[str] = []
        self._logger = logger or logging.getLogger(TRACE_LOGGER)

    def output(self, message: str) -> None:
        """Record one line and log it."""
        self.lines.append(message)
        self._logger.info(message)

    def get_buffer(self) -> str:
        return "\n".join(self.lines)

    def reset(self) -> None:
        self.lines.clear()
