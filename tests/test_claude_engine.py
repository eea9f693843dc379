"""
Tests for maxwell.engine.claude.ClaudeEngine.

The Anthropic client is replaced by a scripted fake so every test is
deterministic and offline: each messages.create() call pops the next
pre-built response.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from maxwell.engine.base import EngineError, EngineEvent, ReasoningEngine
from maxwell.engine.claude import ClaudeEngine
from maxwell.engine.session import InMemorySessionStore
from maxwell.tools.registry import ToolDefinition


# ---------------------------------------------------------------------------
# Mock Claude API types (stand-ins for anthropic.types.Message)
# ---------------------------------------------------------------------------

@dataclass
class MockUsage:
    input_tokens: int = 100
    output_tokens: int = 50


@dataclass
class MockTextBlock:
    type: str = "text"
    text: str = ""


@dataclass
class MockToolUseBlock:
    type: str = "tool_use"
    id: str = "tool_1"
    name: str = ""
    input: dict = field(default_factory=dict)


@dataclass
class MockMessage:
    content: list = field(default_factory=list)
    stop_reason: str = "end_turn"
    usage: MockUsage = field(default_factory=MockUsage)


class _Messages:
    def __init__(self, responses: list[Any]):
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> MockMessage:
        self.calls.append({**kwargs, "messages": list(kwargs["messages"])})
        if not self._responses:
            raise AssertionError("No scripted responses left")
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class MockClient:
    def __init__(self, responses: list[Any]):
        self.messages = _Messages(responses)


def _engine(config, responses, tools=None) -> tuple[ClaudeEngine, MockClient]:
    client = MockClient(responses)
    engine = ClaudeEngine("You are Maxwell.", config, client=client)
    engine.register_tools(tools or [])
    return engine, client


async def _collect(engine: ClaudeEngine, text: str, session_id: str = "s1") -> list[EngineEvent]:
    return [event async for event in engine.submit_turn("user@g.us", session_id, text)]


def _echo_tool(calls: list) -> ToolDefinition:
    def handler(text: str) -> dict:
        calls.append(text)
        return {"status": "success", "echo": text}

    return ToolDefinition(
        name="echo",
        description="echo",
        input_schema={"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
        handler=handler,
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

def test_satisfies_reasoning_engine_protocol(config):
    engine, _ = _engine(config, [])
    assert isinstance(engine, ReasoningEngine)


@pytest.mark.asyncio
async def test_plain_reply_single_event(config):
    engine, client = _engine(config, [MockMessage(content=[MockTextBlock(text="Hi there")])])

    events = await _collect(engine, "hello")

    assert [e.text for e in events] == ["Hi there"]
    assert events[0].actions is None
    call = client.messages.calls[0]
    assert call["system"][0]["text"] == "You are Maxwell."
    assert call["messages"] == [{"role": "user", "content": "hello"}]
    assert "tools" not in call


@pytest.mark.asyncio
async def test_tool_use_loop_executes_and_feeds_back(config):
    executed: list[str] = []
    engine, client = _engine(
        config,
        [
            MockMessage(
                content=[
                    MockTextBlock(text="Let me check. "),
                    MockToolUseBlock(id="tu_1", name="echo", input={"text": "ping"}),
                ],
                stop_reason="tool_use",
            ),
            MockMessage(content=[MockTextBlock(text="Done.")]),
        ],
        tools=[_echo_tool(executed)],
    )

    events = await _collect(engine, "do it")

    assert executed == ["ping"]
    assert "".join(e.text for e in events) == "Let me check. Done."
    assert events[0].actions == [
        {"type": "tool_call", "id": "tu_1", "name": "echo", "input": {"text": "ping"}}
    ]
    assert events[1].parts == []
    assert events[1].actions[0]["type"] == "tool_result"
    assert events[1].actions[0]["success"] is True

    second_call_messages = client.messages.calls[1]["messages"]
    tool_result = second_call_messages[-1]["content"][0]
    assert tool_result["tool_use_id"] == "tu_1"
    assert tool_result["is_error"] is False
    assert tool_result["content"] == '{"status":"success","echo":"ping"}'
    assert client.messages.calls[0]["tools"][0]["name"] == "echo"


@pytest.mark.asyncio
async def test_unknown_tool_reported_as_error_result(config):
    engine, client = _engine(
        config,
        [
            MockMessage(
                content=[MockToolUseBlock(id="tu_9", name="ghost", input={})],
                stop_reason="tool_use",
            ),
            MockMessage(content=[MockTextBlock(text="ok")]),
        ],
    )

    events = await _collect(engine, "x")

    assert events[1].actions[0]["success"] is False
    result_block = client.messages.calls[1]["messages"][-1]["content"][0]
    assert result_block["is_error"] is True
    assert result_block["content"].startswith("Error: Unknown tool")


@pytest.mark.asyncio
async def test_history_persists_across_turns_in_same_session(config):
    sessions = InMemorySessionStore()
    client = MockClient([
        MockMessage(content=[MockTextBlock(text="one")]),
        MockMessage(content=[MockTextBlock(text="two")]),
    ])
    engine = ClaudeEngine("sys", config, client=client, sessions=sessions)
    engine.register_tools([])

    await _collect(engine, "first")
    await _collect(engine, "second")

    second = client.messages.calls[1]["messages"]
    assert [m["role"] for m in second] == ["user", "assistant", "user"]
    assert second[-1]["content"] == "second"
    assert len(sessions.get_or_create("user@g.us", "s1").messages) == 4


def _unanswered_tool_uses(messages: list[dict]) -> list[str]:
    """Ids of tool_use blocks not answered by the next message's tool_results."""
    missing = []
    for index, message in enumerate(messages):
        if message["role"] != "assistant" or isinstance(message["content"], str):
            continue
        used = [block.id for block in message["content"] if block.type == "tool_use"]
        following = messages[index + 1]["content"] if index + 1 < len(messages) else []
        answered = {
            block["tool_use_id"]
            for block in (following if isinstance(following, list) else [])
            if block.get("type") == "tool_result"
        }
        missing.extend(tool_id for tool_id in used if tool_id not in answered)
    return missing


@pytest.mark.asyncio
async def test_tool_use_cut_off_at_max_tokens_is_still_answered(config):
    executed: list[str] = []
    engine, client = _engine(
        config,
        [
            MockMessage(
                content=[
                    MockTextBlock(text="Looking"),
                    MockToolUseBlock(id="tu_9", name="echo", input={"text": "late"}),
                ],
                stop_reason="max_tokens",
            ),
            MockMessage(content=[MockTextBlock(text=" done")]),
            MockMessage(content=[MockTextBlock(text="next turn")]),
        ],
        tools=[_echo_tool(executed)],
    )

    first = await _collect(engine, "first")
    second = await _collect(engine, "second")

    assert executed == ["late"]
    assert "".join(e.text for e in first) == "Looking done"
    assert second[-1].text == "next turn"
    assert _unanswered_tool_uses(client.messages.calls[-1]["messages"]) == []


@pytest.mark.asyncio
async def test_iteration_limit_wrap_up_disables_tool_use(config):
    config.max_iterations = 1
    engine, client = _engine(
        config,
        [
            MockMessage(
                content=[MockToolUseBlock(id="tu_1", name="echo", input={"text": "a"})],
                stop_reason="tool_use",
            ),
            MockMessage(content=[MockTextBlock(text="Summary so far.")]),
        ],
        tools=[_echo_tool([])],
    )

    events = await _collect(engine, "loop forever")

    assert events[-1].text == "Summary so far."
    wrap_call = client.messages.calls[-1]
    assert wrap_call["tools"][0]["name"] == "echo"
    assert wrap_call["tool_choice"] == {"type": "none"}
    assert "iteration limit" in wrap_call["system"][0]["text"]


@pytest.mark.asyncio
async def test_wrap_up_failure_falls_back_and_session_survives(config):
    config.max_iterations = 1
    engine, client = _engine(
        config,
        [
            MockMessage(
                content=[MockToolUseBlock(id="tu_1", name="echo", input={"text": "a"})],
                stop_reason="tool_use",
            ),
            RuntimeError("400: Requests which include tool_use blocks must define tools."),
            MockMessage(content=[MockTextBlock(text="back again")]),
        ],
        tools=[_echo_tool([])],
    )

    events = await _collect(engine, "loop forever")
    follow_up = await _collect(engine, "continue")

    assert "reached my iteration limit after 1 tool operations" in events[-1].text
    assert follow_up[-1].text == "back again"
    history = client.messages.calls[-1]["messages"]
    assert [m["role"] for m in history[-2:]] == ["assistant", "user"]
    assert history[-2]["content"] == events[-1].text
    assert _unanswered_tool_uses(history) == []


@pytest.mark.asyncio
async def test_submit_before_register_raises(config):
    engine = ClaudeEngine("sys", config, client=MockClient([]))
    with pytest.raises(EngineError, match="register_tools"):
        await _collect(engine, "x")


def test_register_tools_twice_raises(config):
    engine, _ = _engine(config, [])
    with pytest.raises(EngineError, match="already registered"):
        engine.register_tools([])


@pytest.mark.asyncio
async def test_non_api_errors_propagate(config):
    engine, _ = _engine(config, [ConnectionError("socket closed")])
    with pytest.raises(ConnectionError):
        await _collect(engine, "x")
