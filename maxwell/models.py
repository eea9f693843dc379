"""
Runner Data Models — The Host/Worker Contract.

These Pydantic models define what crosses the container boundary. The host
writes a ContainerInput to stdin once, drops MailboxMessage files into the
IPC directory afterwards, and reads one ContainerOutput per turn from the
framed stdout protocol.

Field names on the wire are camelCase (the host is not a Python program);
the Python attributes are snake_case and populated through aliases.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ContainerInput(BaseModel):
    """Task description received once at process start."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    prompt: str
    session_id: Optional[str] = Field(None, alias="sessionId")
    group_folder: str = Field(alias="groupFolder")
    chat_jid: str = Field(alias="chatJid")
    is_main: bool = Field(alias="isMain")
    is_scheduled_task: bool = Field(False, alias="isScheduledTask")


class ContainerOutput(BaseModel):
    """Outcome of a single turn, framed onto stdout."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["success", "error"]
    result: Optional[str] = None
    new_session_id: Optional[str] = Field(None, alias="newSessionId")
    error: Optional[str] = None

    @classmethod
    def success(cls, result: str, session_id: str) -> "ContainerOutput":
        return cls(status="success", result=result, new_session_id=session_id)

    @classmethod
    def failure(cls, error: str) -> "ContainerOutput":
        return cls(status="error", result=None, error=error)

    def to_wire(self) -> dict[str, Any]:
        """Wire shape: ``result`` is always present, optional keys only when set."""
        payload: dict[str, Any] = {"status": self.status, "result": self.result}
        if self.new_session_id is not None:
            payload["newSessionId"] = self.new_session_id
        if self.error is not None:
            payload["error"] = self.error
        return payload

    def to_json(self) -> str:
        # A single line: json.dumps escapes embedded newlines inside strings.
        return json.dumps(self.to_wire(), ensure_ascii=False)


class MailboxMessage(BaseModel):
    """A message file dropped into the IPC input directory by the host."""

    model_config = ConfigDict(extra="ignore")

    type: str
    text: Optional[str] = None

    @property
    def is_deliverable(self) -> bool:
        return self.type == "message" and bool(self.text)
