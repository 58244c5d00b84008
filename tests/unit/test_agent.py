"""Unit tests for the conversation agent."""
import json

import httpx
import openai
import pytest

from callrelay.services.agent.agent import (
    APOLOGY_MESSAGE,
    AgentEventKind,
    ConversationAgent,
)
from callrelay.services.agent.executor import ToolExecutor, ToolResultType
from tests.fakes import (
    finish_chunk,
    make_openai_client,
    text_chunk,
    text_stream,
    tool_chunk,
    tool_stream,
)


def _tools_handler(request):
    if request.url.path == "/tools/status-update":
        body = json.loads(request.content)
        return httpx.Response(200, json={"Customer Reference": body["customerReference"], "Status": body["status"]})
    return httpx.Response(500, text="tool failed")


def _agent(*responses, handler=_tools_handler) -> ConversationAgent:
    executor = ToolExecutor(
        "http://tools.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return ConversationAgent(
        client=make_openai_client(*responses),
        model="gpt-test",
        executor=executor,
        system_prompt="You are calling a pharmacy.",
        tools=[{"type": "function", "function": {"name": "end-call", "parameters": {}}}],
    )


def _events(agent):
    return agent.events.drain_nowait()


class TestTextTurns:
    """Test plain streamed replies."""

    async def test_fragments_then_last(self):
        agent = _agent(text_stream("Hello, ", "this is Ava."))

        result = await agent.generate_turn("system", "call details")
        events = _events(agent)

        assert result is None
        assert [event.token for event in events] == ["Hello, ", "this is Ava.", ""]
        assert [event.last for event in events] == [False, False, True]
        assert events[-1].full_text == "Hello, this is Ava."
        assert agent.transcript.entries[-1].role == "assistant"
        assert agent.transcript.entries[-1].content == "Hello, this is Ava."

    async def test_empty_reply_still_ends_with_last(self):
        agent = _agent([finish_chunk("stop")])

        await agent.generate_turn("user", "Hello?")
        events = _events(agent)

        assert len(events) == 1
        assert events[0].last is True

    async def test_append_system_context_does_not_generate(self):
        agent = _agent()

        agent.append_system_context("A live agent says: please hold.")

        assert agent.client.chat.completions.create.await_count == 0
        assert agent.transcript.entries[-1].role == "system"
        assert _events(agent) == []

    async def test_closed_events_drop_output(self):
        agent = _agent(text_stream("Hi"))
        agent.close()

        await agent.generate_turn("user", "Hello?")

        assert _events(agent) == []


class TestTerminalTools:
    """Test end-call, handoff and send-dtmf short-circuiting."""

    async def test_end_call(self):
        """The pharmacy confirms and the model ends the call."""
        agent = _agent(
            tool_stream("end-call", {"callSid": "CA1", "summary": "Prescription ready"}, text="Thanks, bye!")
        )

        result = await agent.generate_turn("user", "Yes it's ready, bye.")
        events = _events(agent)

        assert result.type == ToolResultType.END
        assert result.reason_code == "end-call"
        assert events[-1].kind == AgentEventKind.END
        assert events[-2].last is True
        assert events[-2].full_text == "Thanks, bye!"
        assert agent.transcript.is_paired()
        assert agent.client.chat.completions.create.await_count == 1

    async def test_live_agent_handoff(self):
        agent = _agent(tool_stream("live-agent-handoff", {"callSid": "CA1", "summary": "Wants a human"}))

        result = await agent.generate_turn("user", "Can I talk to a person?")
        events = _events(agent)

        assert result.reason_code == "live-agent-handoff"
        assert [event.kind for event in events] == [AgentEventKind.END]
        assert events[0].result.handoff_data["reason"] == "Wants a human"
        entries = agent.transcript.entries
        assert entries[-2].tool_calls[0].name == "live-agent-handoff"
        assert entries[-1].role == "tool"

    async def test_send_dtmf(self):
        agent = _agent(tool_stream("send-dtmf", {"dtmfDigit": "2"}))

        result = await agent.generate_turn("user", "Press 2 for the pharmacy.")
        events = _events(agent)

        assert result.type == ToolResultType.SEND_DIGITS
        assert events[-1].kind == AgentEventKind.SEND_DIGITS
        assert events[-1].result.digits == "2"


class TestBusinessToolTurns:
    """Test tools that resume the model."""

    async def test_tool_result_then_follow_up(self):
        agent = _agent(
            tool_stream("status-update", {"customerReference": "ref-1", "status": "ready"}),
            text_stream("Great, I've noted that."),
        )

        result = await agent.generate_turn("user", "It's ready for pickup.")
        events = _events(agent)

        assert result is None
        assert events[-1].last is True
        assert events[-1].full_text == "Great, I've noted that."
        entries = agent.transcript.entries
        assert [entry.role for entry in entries[-3:]] == ["assistant", "tool", "assistant"]
        assert json.loads(json.loads(entries[-2].content)["token"]) == {
            "Customer Reference": "ref-1",
            "Status": "ready",
        }
        assert agent.transcript.is_paired()

        # The follow-up is not offered tools
        follow_up_kwargs = agent.client.chat.completions.create.await_args_list[1].kwargs
        assert follow_up_kwargs["tools"] is openai.NOT_GIVEN

    async def test_failed_tool_is_reported_and_narrated(self):
        agent = _agent(
            tool_stream("verify-send", {"from": "+61400"}),
            text_stream("Sorry, I couldn't send that code."),
        )

        await agent.generate_turn("user", "Can you verify?")
        events = _events(agent)

        kinds = [event.kind for event in events]
        assert AgentEventKind.ERROR in kinds
        assert events[-1].full_text == "Sorry, I couldn't send that code."
        assert json.loads(agent.transcript.entries[-2].content)["type"] == "error"

    async def test_tool_call_in_follow_up_is_error(self):
        agent = _agent(
            tool_stream("status-update", {"customerReference": "ref-1", "status": "ready"}),
            tool_stream("end-call", {"callSid": "CA1", "summary": "x"}, call_id="call_2"),
        )

        await agent.generate_turn("user", "Ready.")
        events = _events(agent)

        assert events[-3].kind == AgentEventKind.ERROR
        assert events[-2].token == APOLOGY_MESSAGE
        assert events[-1].last is True
        assert events[-1].full_text == APOLOGY_MESSAGE
        assert agent.transcript.is_paired()


class TestTurnFailures:
    """Test that failures stay inside the turn."""

    async def test_malformed_arguments_recoverable(self):
        """Bad JSON yields an error, an apology, and the next turn still works."""
        agent = _agent(
            [
                tool_chunk(0, call_id="call_1", name="status-update", arguments='{"status": "rea'),
                finish_chunk("tool_calls"),
            ],
            text_stream("How can I help?"),
        )

        result = await agent.generate_turn("user", "It's ready.")
        events = _events(agent)

        assert result is None
        assert events[0].kind == AgentEventKind.ERROR
        assert events[-1].full_text == APOLOGY_MESSAGE
        assert all(entry.role != "tool" for entry in agent.transcript.entries)

        await agent.generate_turn("user", "Hello?")
        assert _events(agent)[-1].full_text == "How can I help?"

    async def test_api_error_before_text_apologises(self):
        agent = _agent(
            openai.APIConnectionError(request=httpx.Request("POST", "http://api.test")),
        )

        result = await agent.generate_turn("user", "Hello?")
        events = _events(agent)

        assert result is None
        assert events[0].kind == AgentEventKind.ERROR
        assert events[-1].full_text == APOLOGY_MESSAGE
        assert agent.transcript.entries[-1].content == APOLOGY_MESSAGE

    async def test_fragments_without_tool_finish_are_ignored(self):
        agent = _agent(
            [
                text_chunk("Sure."),
                tool_chunk(0, call_id="call_1", name="end-call", arguments="{}"),
                finish_chunk("stop"),
            ]
        )

        result = await agent.generate_turn("user", "Bye")
        events = _events(agent)

        assert result is None
        assert events[-1].full_text == "Sure."
