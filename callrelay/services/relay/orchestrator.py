"""Per-call orchestration of relay events, the agent and the ticket."""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Set, Union

from pydantic import BaseModel

from callrelay.services.agent.agent import AgentEvent, AgentEventKind, ConversationAgent
from callrelay.services.agent.executor import LIVE_AGENT_HANDOFF_TOOL
from callrelay.services.prompts.repository import build_setup_message
from callrelay.services.relay.channel import EventChannel
from callrelay.services.relay.messages import (
    DtmfMessage,
    EndMessage,
    ErrorMessage,
    InboundMessage,
    InfoMessage,
    InterruptMessage,
    PromptMessage,
    RelayOutbound,
    SetupMessage,
    TextMessage,
    parse_inbound,
)
from callrelay.services.relay.silence import (
    UNRESPONSIVE_REASON_CODE,
    SilenceMonitor,
)
from callrelay.services.session.models import CallSession
from callrelay.services.session.registry import SessionNotFoundError, SessionRegistry
from callrelay.services.ticketing.bridge import TicketingBridge, TicketingError

logger = logging.getLogger(__name__)

SETUP_FAILED_REASON = "setup-failed"


class CallState(str, Enum):
    AWAITING_SETUP = "awaiting_setup"
    ACTIVE = "active"
    ENDED = "ended"


class OrchestratorConfig(BaseModel):
    """Per-call orchestration settings."""

    agent_author: str = "Assistant"
    callee_author: str = "Pharmacy"
    setup_wait_seconds: float = 1.0
    setup_poll_seconds: float = 0.1
    cancel_on_interrupt: bool = True
    run_silence_timer: bool = True


class CallEventKind(str, Enum):
    RESPONSE = "response"
    SILENCE = "silence"
    END = "end"
    HANDOFF = "handoff"
    DTMF = "dtmf"
    AGENT_MESSAGE = "agentMessage"
    ERROR = "error"


class CallEvent(BaseModel):
    """Something to deliver for the call. Events without a message are not sent to the relay."""

    kind: CallEventKind
    message: Optional[RelayOutbound] = None
    text: Optional[str] = None


class CallOrchestrator:
    """
    Owns one phone call from relay setup to cleanup.

    Inbound relay messages arrive through ``handle_inbound_event``. Everything
    the caller should hear is published on ``events`` in order; the socket
    handler forwards each event's message. Model turns run as background tasks
    so reading the socket never waits on a completion, and a lock keeps turns
    from interleaving in the transcript.
    """

    def __init__(
        self,
        agent: ConversationAgent,
        registry: SessionRegistry,
        ticketing: TicketingBridge,
        silence_monitor: Optional[SilenceMonitor] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.agent = agent
        self.registry = registry
        self.ticketing = ticketing
        self.silence_monitor = silence_monitor or SilenceMonitor()
        self.config = config or OrchestratorConfig()
        self.events: EventChannel[CallEvent] = EventChannel("call")
        self.state = CallState.AWAITING_SETUP
        self.session: Optional[CallSession] = None
        self.end_reason: Optional[str] = None

        self._turns: Set[asyncio.Task] = set()
        self._turn_lock = asyncio.Lock()
        self._relay_task: Optional[asyncio.Task] = None
        self._cleaned_up = False
        self._ticket_closed = False

    @property
    def correlation_token(self) -> Optional[str]:
        return self.session.correlation_token if self.session else None

    @property
    def _log_prefix(self) -> str:
        call_sid = self.session.call_sid if self.session else None
        return f"[RELAY {call_sid or '-'}]"

    async def handle_inbound_event(self, data: Union[Dict[str, Any], InboundMessage]) -> None:
        """Dispatch one message received from the relay socket."""
        message = parse_inbound(data) if isinstance(data, dict) else data

        if isinstance(message, SetupMessage):
            if self.state != CallState.AWAITING_SETUP:
                logger.error(f"{self._log_prefix} Setup received in state {self.state.value}, ignoring")
                return
            await self.setup(message)
            return

        if self.state != CallState.ACTIVE:
            logger.warning(
                f"{self._log_prefix} '{message.type}' received in state {self.state.value}, ignoring"
            )
            return

        if isinstance(message, InfoMessage):
            return

        self.silence_monitor.reset()

        if isinstance(message, PromptMessage):
            logger.info(f"{self._log_prefix} PROMPT: '{message.voice_prompt}'")
            # caller line reaches the ticket before any reply to it
            await self._write_transcript(self.config.callee_author, message.voice_prompt)
            self._start_turn("user", message.voice_prompt)
        elif isinstance(message, InterruptMessage):
            logger.info(f"{self._log_prefix} INTERRUPT: '{message.utterance_until_interrupt}'")
            if self.config.cancel_on_interrupt:
                self._cancel_turns()
        elif isinstance(message, DtmfMessage):
            logger.info(f"{self._log_prefix} DTMF: {message.digit}")
        else:
            logger.warning(f"{self._log_prefix} Unknown message type '{message.type}'")

    async def setup(self, message: SetupMessage) -> bool:
        """
        Pair the relay connection with its session and start the conversation.

        Returns:
            True if the call is now active
        """
        token = message.correlation_token
        if not token:
            await self._fail_setup("Setup message has no customerReference")
            return False

        try:
            session = await self.registry.wait_for_ticket(
                token,
                timeout=self.config.setup_wait_seconds,
                poll_interval=self.config.setup_poll_seconds,
            )
        except SessionNotFoundError as e:
            logger.error(f"[RELAY] {e}")
            await self._fail_setup(f"Unknown customer reference {token}")
            return False

        setup_data = message.model_dump(by_alias=True, exclude_none=True)
        self.session = await self.registry.update(
            token, call_sid=message.call_sid or session.call_sid, setup_data=setup_data
        )
        self.state = CallState.ACTIVE
        if not self.session.has_ticket:
            logger.warning(f"{self._log_prefix} Starting without ticket data for {token}")
        logger.info(f"{self._log_prefix} Setup complete for {token}")

        self._relay_task = asyncio.create_task(
            self._relay_agent_events(), name=f"relay-agent-{token}"
        )
        self._start_turn("system", build_setup_message(setup_data, self.session.customer_data))
        self.silence_monitor.start(self._on_silence, run_timer=self.config.run_silence_timer)
        return True

    async def inject_agent_message(self, text: str) -> bool:
        """Speak a live agent's message and add it to the conversation context."""
        if self.state != CallState.ACTIVE:
            logger.warning(f"{self._log_prefix} Agent message received while {self.state.value}")
            return False
        logger.info(f"{self._log_prefix} Agent message: '{text}'")
        self.agent.append_system_context(text)
        self.events.publish(
            CallEvent(kind=CallEventKind.AGENT_MESSAGE, message=TextMessage(token=text, last=True))
        )
        return True

    async def cleanup(self, reason: str) -> None:
        """End the call. Later calls are no-ops."""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self.state = CallState.ENDED
        self.end_reason = self.end_reason or reason
        logger.info(f"{self._log_prefix} Cleaning up, reason: {self.end_reason}")

        self.silence_monitor.stop()
        self._cancel_turns()
        self.agent.close()
        await self._close_ticket()
        self.events.close()

    async def drain(self) -> None:
        """Wait for in-flight turns and for their output to be relayed."""
        current = asyncio.current_task()
        while True:
            turns = [t for t in self._turns if t is not current and not t.done()]
            if not turns:
                break
            await asyncio.gather(*turns, return_exceptions=True)

        relay = self._relay_task
        if relay is None or relay is current:
            return
        if self.agent.events.closed:
            await asyncio.gather(relay, return_exceptions=True)
        elif not relay.done():
            await self.agent.events.join()

    def transcript_text(self) -> str:
        return self.agent.transcript.get_transcript_text()

    def _start_turn(self, role: str, text: str) -> asyncio.Task:
        task = asyncio.create_task(self._run_turn(role, text))
        self._turns.add(task)
        task.add_done_callback(self._turns.discard)
        return task

    async def _run_turn(self, role: str, text: str) -> None:
        async with self._turn_lock:
            if self.state == CallState.ENDED:
                return
            try:
                await self.agent.generate_turn(role, text)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"{self._log_prefix} Turn failed")

    def _cancel_turns(self) -> None:
        current = asyncio.current_task()
        for task in list(self._turns):
            if task is not current and not task.done():
                task.cancel()

    async def _relay_agent_events(self) -> None:
        async for event in self.agent.events:
            await self._handle_agent_event(event)

    async def _handle_agent_event(self, event: AgentEvent) -> None:
        if event.kind == AgentEventKind.TEXT:
            self.events.publish(
                CallEvent(
                    kind=CallEventKind.RESPONSE,
                    message=TextMessage(token=event.token, last=event.last),
                )
            )
            if event.last and event.full_text:
                await self._write_transcript(self.config.agent_author, event.full_text)

        elif event.kind == AgentEventKind.SEND_DIGITS:
            logger.info(f"{self._log_prefix} Sending digits {event.result.digits}")
            self.events.publish(CallEvent(kind=CallEventKind.DTMF, message=event.result.to_message()))

        elif event.kind == AgentEventKind.END:
            reason_code = event.result.reason_code or "end-call"
            kind = CallEventKind.HANDOFF if reason_code == LIVE_AGENT_HANDOFF_TOOL else CallEventKind.END
            logger.info(f"{self._log_prefix} Ending call, reason: {reason_code}")
            self.events.publish(CallEvent(kind=kind, message=event.result.to_message()))
            self.end_reason = reason_code
            await self.cleanup(reason_code)

        elif event.kind == AgentEventKind.ERROR:
            logger.error(f"{self._log_prefix} Agent error: {event.error}")
            self.events.publish(CallEvent(kind=CallEventKind.ERROR, text=event.error))

    async def _on_silence(self, message: RelayOutbound) -> None:
        if isinstance(message, EndMessage):
            logger.info(f"{self._log_prefix} Ending call after silence")
            self.events.publish(CallEvent(kind=CallEventKind.END, message=message))
            self.end_reason = UNRESPONSIVE_REASON_CODE
            await self.cleanup(UNRESPONSIVE_REASON_CODE)
            return
        logger.info(f"{self._log_prefix} Silence reminder: '{getattr(message, 'token', '')}'")
        self.events.publish(CallEvent(kind=CallEventKind.SILENCE, message=message))

    async def _fail_setup(self, description: str) -> None:
        self.events.publish(
            CallEvent(kind=CallEventKind.ERROR, message=ErrorMessage(description=description))
        )
        await self.cleanup(SETUP_FAILED_REASON)

    async def _ticket_session(self) -> Optional[CallSession]:
        """The session, re-read if its ticket data has not arrived yet."""
        if self.session is None or self.session.has_ticket:
            return self.session
        refreshed = await self.registry.get(self.session.correlation_token)
        if refreshed is not None:
            self.session = refreshed
        return self.session

    async def _write_transcript(self, author: str, body: str) -> None:
        if not body:
            return
        session = await self._ticket_session()
        if session is None or not session.has_ticket:
            logger.debug(f"{self._log_prefix} No ticket yet, transcript line not written")
            return
        try:
            await self.ticketing.post_transcript_line(session.transcript_destination, author, body)
        except TicketingError as e:
            logger.warning(f"{self._log_prefix} Transcript write failed: {e}")

    async def _close_ticket(self) -> None:
        if self._ticket_closed:
            return
        session = await self._ticket_session()
        if session is None or not session.has_ticket:
            return
        self._ticket_closed = True
        try:
            await self.ticketing.close_ticket(session.ticket_id, session.ticket_channel_id)
        except TicketingError as e:
            logger.warning(f"{self._log_prefix} Closing ticket {session.ticket_id} failed: {e}")
