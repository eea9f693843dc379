"""Instruction assembly: persona preamble plus optional MAXWELL.md documents."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import structlog

from maxwell.config import PERSONA_PREAMBLE

logger = structlog.get_logger(__name__)

SECTION_SEPARATOR = "\n\n"


def _read_optional(path: Optional[Path]) -> Optional[str]:
    if path is None or not path.is_file():
        return None
    return path.read_text(encoding="utf-8")


def assemble_instructions(
    global_path: Optional[Path],
    group_path: Optional[Path],
    preamble: str = PERSONA_PREAMBLE,
) -> str:
    """
    Concatenate the preamble, the global document and the per-conversation
    document, in that order. Missing documents are skipped.
    """
    sections = [preamble]
    for label, path in (("global", global_path), ("group", group_path)):
        text = _read_optional(path)
        if text is None:
            continue
        sections.append(text)
        logger.debug("instructions.loaded", source=label, path=str(path), length=len(text))
    return SECTION_SEPARATOR.join(sections)
