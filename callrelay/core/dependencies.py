"""FastAPI dependencies and per-call builders."""
from typing import Optional

import httpx
from openai import AsyncOpenAI
from twilio.rest import Client

from callrelay.core.config import settings
from callrelay.services.agent.agent import ConversationAgent
from callrelay.services.agent.executor import ToolExecutor
from callrelay.services.prompts.file_provider import FilePromptProvider
from callrelay.services.prompts.repository import PromptRepository
from callrelay.services.relay.orchestrator import CallOrchestrator, OrchestratorConfig
from callrelay.services.relay.silence import SilenceConfig, SilenceMonitor
from callrelay.services.session.registry import InMemorySessionRegistry, SessionRegistry
from callrelay.services.telephony.twilio_service import TwilioTelephonyService
from callrelay.services.ticketing.bridge import FlexTicketingBridge, TicketingBridge
from callrelay.services.verification.store import VerificationStore

# Process-wide singletons, created on first use
_registry: Optional[SessionRegistry] = None
_twilio_client: Optional[Client] = None
_ticketing: Optional[TicketingBridge] = None
_telephony: Optional[TwilioTelephonyService] = None
_prompts: Optional[PromptRepository] = None
_verification: Optional[VerificationStore] = None
_openai_client: Optional[AsyncOpenAI] = None
_http_client: Optional[httpx.AsyncClient] = None


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = InMemorySessionRegistry(ttl_seconds=settings.session_ttl_seconds)
    return _registry


def get_twilio_client() -> Client:
    global _twilio_client
    if _twilio_client is None:
        _twilio_client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
    return _twilio_client


def get_ticketing_bridge() -> TicketingBridge:
    global _ticketing
    if _ticketing is None:
        _ticketing = FlexTicketingBridge(
            client=get_twilio_client(),
            workspace_sid=settings.flex_workspace_sid,
            workflow_sid=settings.flex_workflow_sid,
            task_queue_sid=settings.task_queue_va,
            worker_sid=settings.worker_sid_va,
        )
    return _ticketing


def get_telephony_service() -> TwilioTelephonyService:
    global _telephony
    if _telephony is None:
        _telephony = TwilioTelephonyService(
            client=get_twilio_client(),
            from_number=settings.twilio_phone_number,
            server_base_url=settings.server_base_url,
            voice=settings.relay_voice,
        )
    return _telephony


def get_prompt_repository() -> PromptRepository:
    global _prompts
    if _prompts is None:
        _prompts = PromptRepository(provider=FilePromptProvider())
    return _prompts


def get_verification_store() -> VerificationStore:
    global _verification
    if _verification is None:
        _verification = VerificationStore()
    return _verification


def get_openai_client() -> AsyncOpenAI:
    global _openai_client
    if _openai_client is None:
        _openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
    return _openai_client


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=10.0)
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def build_silence_config() -> SilenceConfig:
    return SilenceConfig(
        threshold_seconds=settings.silence_seconds_threshold,
        max_reminders=settings.silence_retry_threshold,
        tick_seconds=settings.silence_tick_seconds,
    )


def build_orchestrator_config() -> OrchestratorConfig:
    return OrchestratorConfig(
        agent_author=settings.agent_author,
        callee_author=settings.callee_author,
        setup_wait_seconds=settings.setup_wait_seconds,
        setup_poll_seconds=settings.setup_poll_seconds,
        cancel_on_interrupt=settings.cancel_on_interrupt,
    )


async def build_orchestrator(
    registry: Optional[SessionRegistry] = None,
    ticketing: Optional[TicketingBridge] = None,
    prompts: Optional[PromptRepository] = None,
) -> CallOrchestrator:
    """Build the orchestrator and agent for one relay connection."""
    prompts = prompts or get_prompt_repository()
    agent = ConversationAgent(
        client=get_openai_client(),
        model=settings.openai_model,
        executor=ToolExecutor(settings.tools_base_url, http_client=get_http_client()),
        system_prompt=await prompts.get_context(),
        tools=await prompts.get_openai_tools(),
    )
    return CallOrchestrator(
        agent=agent,
        registry=registry or get_session_registry(),
        ticketing=ticketing or get_ticketing_bridge(),
        silence_monitor=SilenceMonitor(build_silence_config()),
        config=build_orchestrator_config(),
    )
