"""LLM turn-taking engine."""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, NOT_GIVEN, OpenAIError
from pydantic import BaseModel

from callrelay.services.agent.executor import ToolExecutor, ToolResult, ToolResultType
from callrelay.services.agent.tool_calls import (
    MalformedToolCallError,
    ToolCall,
    ToolCallAccumulator,
)
from callrelay.services.agent.transcript import ConversationTranscript, TranscriptToolCall
from callrelay.services.relay.channel import EventChannel

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = "I'm sorry, I had a problem with that. Could you say that again?"


class AgentEventKind(str, Enum):
    TEXT = "text"
    SEND_DIGITS = "sendDigits"
    END = "end"
    ERROR = "error"


class AgentEvent(BaseModel):
    """Output of the agent for one turn."""

    kind: AgentEventKind
    token: str = ""
    last: bool = False
    full_text: Optional[str] = None  # whole reply, set on the last text fragment
    result: Optional[ToolResult] = None  # set for SEND_DIGITS and END
    error: Optional[str] = None


class _StreamOutcome:
    def __init__(self):
        self.text = ""
        self.finish_reason: Optional[str] = None
        self.tool_calls = ToolCallAccumulator()


class ConversationAgent:
    """
    Owns the conversation transcript for one call and streams model turns.

    Every turn ends with a TEXT event marked ``last`` unless it ends in a
    terminal tool outcome, which is reported as a SEND_DIGITS or END event.
    Turn-scoped failures are reported as ERROR events and never raised.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        executor: ToolExecutor,
        system_prompt: str,
        tools: Optional[List[Dict[str, Any]]] = None,
        events: Optional[EventChannel[AgentEvent]] = None,
    ):
        self.client = client
        self.model = model
        self.executor = executor
        self.tools = tools or []
        self.events: EventChannel[AgentEvent] = events or EventChannel("agent")
        self.transcript = ConversationTranscript()
        self.transcript.append("system", system_prompt)

    def append_system_context(self, text: str) -> None:
        """Insert a system message without generating a reply."""
        self.transcript.append("system", text)
        logger.info(f"[AGENT] Inserted system context ({len(text)} chars)")

    def close(self) -> None:
        """Detach listeners; later events are dropped."""
        self.events.close()

    async def generate_turn(self, role: str, text: str) -> Optional[ToolResult]:
        """
        Append a message and stream the model's reply.

        Returns:
            The terminal tool result if the turn ended in one, else None
        """
        self.transcript.append(role, text)
        logger.info(f"[AGENT INPUT] {role}: '{text[:200]}'")

        outcome = _StreamOutcome()
        try:
            await self._stream(outcome, tools=self.tools)

            if outcome.finish_reason == "tool_calls" and outcome.tool_calls:
                return await self._handle_tool_calls(outcome)

            if outcome.tool_calls:
                logger.warning(
                    f"[AGENT] Tool call fragments ignored, finish_reason={outcome.finish_reason}"
                )
            self.transcript.append("assistant", outcome.text)
            self._finish_turn(outcome.text)
            return None

        except asyncio.CancelledError:
            if outcome.text:
                self.transcript.append("assistant", outcome.text)
            logger.info("[AGENT] Turn cancelled")
            raise
        except OpenAIError as e:
            logger.error(f"[AGENT] Completion failed: {type(e).__name__}: {e}", exc_info=True)
            self._fail_turn(f"Completion failed: {e}", spoken=outcome.text)
            return None

    async def _stream(
        self, outcome: _StreamOutcome, tools: List[Dict[str, Any]]
    ) -> None:
        stream = await self.client.chat.completions.create(
            model=self.model,
            messages=self.transcript.to_openai(),
            tools=tools or NOT_GIVEN,
            stream=True,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            content = getattr(delta, "content", None) if delta is not None else None
            if content:
                outcome.text += content
                self.events.publish(AgentEvent(kind=AgentEventKind.TEXT, token=content))
            tool_call_deltas = getattr(delta, "tool_calls", None) if delta is not None else None
            if tool_call_deltas:
                for tool_call_delta in tool_call_deltas:
                    outcome.tool_calls.add(tool_call_delta)
            if choice.finish_reason:
                outcome.finish_reason = choice.finish_reason

    async def _handle_tool_calls(self, outcome: _StreamOutcome) -> Optional[ToolResult]:
        try:
            calls = outcome.tool_calls.complete()
        except MalformedToolCallError as e:
            logger.error(f"[AGENT] Malformed tool call: {e}")
            self._fail_turn(str(e), spoken=outcome.text)
            return None

        spoken = outcome.text
        needs_follow_up = False
        for position, call in enumerate(calls):
            result = await self.executor.execute(call.name, call.parsed_arguments())
            self._record_tool_exchange(call, result, spoken if position == 0 else "")

            if result.is_terminal:
                logger.info(f"[AGENT] Terminal tool result from '{call.name}': {result.type.value}")
                if spoken:
                    self._finish_turn(spoken)
                kind = (
                    AgentEventKind.END
                    if result.type == ToolResultType.END
                    else AgentEventKind.SEND_DIGITS
                )
                self.events.publish(AgentEvent(kind=kind, result=result))
                return result

            if result.type == ToolResultType.ERROR:
                self.events.publish(
                    AgentEvent(kind=AgentEventKind.ERROR, error=result.token, result=result)
                )
            needs_follow_up = True

        if needs_follow_up:
            await self._follow_up(spoken)
        return None

    def _record_tool_exchange(self, call: ToolCall, result: ToolResult, content: str) -> None:
        self.transcript.append_tool_exchange(
            TranscriptToolCall(id=call.id, name=call.name, arguments=call.arguments),
            result.for_transcript(),
            content=content,
        )

    async def _follow_up(self, spoken_before: str) -> None:
        """Stream the reply to tool results. Tools are not offered again."""
        follow_up = _StreamOutcome()
        try:
            await self._stream(follow_up, tools=[])
        except asyncio.CancelledError:
            if follow_up.text:
                self.transcript.append("assistant", follow_up.text)
            raise

        if follow_up.tool_calls:
            logger.error("[AGENT] Tool call requested in follow-up reply, rejecting")
            self._fail_turn(
                "Tool calls are not allowed in a follow-up reply",
                spoken=spoken_before + follow_up.text,
                recorded=follow_up.text,
            )
            return

        self.transcript.append("assistant", follow_up.text)
        self._finish_turn(spoken_before + follow_up.text)

    def _finish_turn(self, full_text: str) -> None:
        self.events.publish(
            AgentEvent(kind=AgentEventKind.TEXT, token="", last=True, full_text=full_text)
        )
        logger.info(f"[AGENT OUTPUT] '{full_text[:200]}'")

    def _fail_turn(self, error: str, spoken: str = "", recorded: Optional[str] = None) -> None:
        """Report a turn failure. If nothing was said yet, apologise instead."""
        self.events.publish(AgentEvent(kind=AgentEventKind.ERROR, error=error))
        if spoken:
            self.transcript.append("assistant", recorded if recorded is not None else spoken)
            self._finish_turn(spoken)
            return
        self.transcript.append("assistant", APOLOGY_MESSAGE)
        self.events.publish(AgentEvent(kind=AgentEventKind.TEXT, token=APOLOGY_MESSAGE))
        self._finish_turn(APOLOGY_MESSAGE)
