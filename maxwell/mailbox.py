"""
Mailbox Poller — follow-up messages from the host between turns.

The host never re-invokes the runner for a follow-up message. It writes a
``*.json`` file into the IPC input directory instead, or touches the close
sentinel when the conversation is over. While the controller is idle this
module polls that directory on a fixed interval:

    while True:
        if sentinel exists: delete it, return None
        texts = drain()
        if texts: return "\n".join(texts)
        sleep(interval)

Every file the poller sees is deleted exactly once, whether or not it could
be parsed. A malformed entry is logged and discarded so it can never wedge
the session.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError

from maxwell.models import MailboxMessage

logger = structlog.get_logger(__name__)

MESSAGE_SUFFIX = ".json"


class MailboxPoller:
    """Drains the IPC input directory and watches for the close sentinel."""

    def __init__(
        self,
        input_dir: Path,
        close_sentinel: Path,
        poll_interval: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._input_dir = Path(input_dir)
        self._close_sentinel = Path(close_sentinel)
        self._poll_interval = poll_interval
        self._sleep = sleep

        self._total_drained = 0
        self._total_discarded = 0

    def check_close(self) -> bool:
        """Consume the close sentinel if present."""
        if not self._close_sentinel.exists():
            return False
        try:
            self._close_sentinel.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(
                "mailbox.sentinel_unlink_failed",
                path=str(self._close_sentinel),
                error=str(exc),
            )
        logger.info("mailbox.close_requested")
        return True

    def drain(self) -> list[str]:
        """Read and delete every pending message, oldest filename first."""
        try:
            if not self._input_dir.is_dir():
                return []
            files = sorted(
                p for p in self._input_dir.iterdir()
                if p.name.endswith(MESSAGE_SUFFIX) and p.is_file()
            )
        except OSError as exc:
            logger.error("mailbox.drain_failed", error=str(exc))
            return []

        messages: list[str] = []
        for path in files:
            try:
                message = MailboxMessage.model_validate_json(path.read_text(encoding="utf-8"))
                path.unlink()
            except (OSError, ValueError, ValidationError) as exc:
                self._total_discarded += 1
                logger.warning("mailbox.entry_failed", file=path.name, error=str(exc))
                self._discard(path)
                continue

            if message.is_deliverable:
                messages.append(message.text)
            else:
                self._total_discarded += 1
                logger.debug("mailbox.entry_ignored", file=path.name, type=message.type)

        self._total_drained += len(messages)
        return messages

    async def wait_for_next(self) -> Optional[str]:
        """
        Block until the next turn's input arrives.

        Returns the joined message texts, or None once the close sentinel
        has been seen. The sentinel wins over messages that are pending in
        the same poll cycle.
        """
        logger.info("mailbox.waiting", input_dir=str(self._input_dir))
        while True:
            if self.check_close():
                return None
            pending = self.drain()
            if pending:
                logger.info("mailbox.messages_received", count=len(pending))
                return "\n".join(pending)
            await self._sleep(self._poll_interval)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            # The host may have raced us; the next drain pass will retry.
            logger.debug("mailbox.discard_failed", file=path.name, error=str(exc))

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "drained": self._total_drained,
            "discarded": self._total_discarded,
        }
