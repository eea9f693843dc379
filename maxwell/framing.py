"""
Output Framer — the only writer of the primary output stream.

The host scans stdout for a start marker, reads exactly one JSON line, and
expects the end marker right after it. Anything else on stdout would be
misread, so diagnostics always go to stderr through structlog.
"""

from __future__ import annotations

import sys
from typing import Optional, TextIO

import structlog

from maxwell.config import OUTPUT_END_MARKER, OUTPUT_START_MARKER
from maxwell.models import ContainerOutput

logger = structlog.get_logger(__name__)


class OutputFramer:
    """Writes marker-delimited ContainerOutput blocks."""

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        start_marker: str = OUTPUT_START_MARKER,
        end_marker: str = OUTPUT_END_MARKER,
    ):
        self._stream = stream
        self._start_marker = start_marker
        self._end_marker = end_marker
        self._frames_written = 0

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so pytest's capsys replacement of sys.stdout is honoured.
        return self._stream if self._stream is not None else sys.stdout

    def emit(self, output: ContainerOutput) -> None:
        block = f"{self._start_marker}\n{output.to_json()}\n{self._end_marker}\n"
        stream = self.stream
        stream.write(block)
        stream.flush()
        self._frames_written += 1
        logger.debug(
            "framer.emitted",
            status=output.status,
            frame=self._frames_written,
        )

    @property
    def frames_written(self) -> int:
        return self._frames_written
