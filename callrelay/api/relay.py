"""ConversationRelay websocket and live-agent messages."""
import asyncio
import json
import logging
from typing import Dict

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from callrelay.core.dependencies import build_orchestrator, get_session_registry
from callrelay.db.database import AsyncSessionLocal
from callrelay.services.persistence.calls import CallPersistenceService
from callrelay.services.relay.orchestrator import (
    SETUP_FAILED_REASON,
    CallOrchestrator,
    CallState,
)

router = APIRouter()
logger = logging.getLogger(__name__)

# Orchestrators of connected calls, keyed by correlation token
_active_calls: Dict[str, CallOrchestrator] = {}


def active_call_count() -> int:
    return len(_active_calls)


class AgentMessageRequest(BaseModel):
    """A live agent's message for an active call."""

    model_config = ConfigDict(populate_by_name=True)

    correlation_token: str = Field(alias="correlationToken")
    message: str


async def _forward_events(websocket: WebSocket, orchestrator: CallOrchestrator) -> None:
    async for event in orchestrator.events:
        if event.message is None:
            continue
        try:
            await websocket.send_json(event.message.to_wire())
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.warning(f"[RELAY WS] Could not send {event.kind.value}: {e}")
            return


async def _record_outcome(orchestrator: CallOrchestrator) -> None:
    session = orchestrator.session
    if session is None or not session.call_sid:
        return
    status = "failed" if orchestrator.end_reason == SETUP_FAILED_REASON else "completed"
    try:
        async with AsyncSessionLocal() as db:
            await CallPersistenceService(db).record_outcome(
                session.call_sid,
                status=status,
                end_reason=orchestrator.end_reason,
                transcript=orchestrator.transcript_text(),
            )
    except SQLAlchemyError as e:
        logger.error(f"[RELAY WS] Could not record outcome for {session.call_sid}: {e}", exc_info=True)


@router.websocket("/conversation-relay")
async def conversation_relay(websocket: WebSocket):
    """Relay socket for one call."""
    await websocket.accept()
    logger.info(
        f"[RELAY WS] Connection opened - Client: {websocket.client.host if websocket.client else 'unknown'}"
    )
    orchestrator = await build_orchestrator()
    sender = asyncio.create_task(_forward_events(websocket, orchestrator))
    reason = "disconnected"

    try:
        while orchestrator.state != CallState.ENDED:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning(f"[RELAY WS] Ignoring non-JSON message: {raw[:200]}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"[RELAY WS] Ignoring non-object message: {raw[:200]}")
                continue

            await orchestrator.handle_inbound_event(data)
            token = orchestrator.correlation_token
            if token and token not in _active_calls and orchestrator.state == CallState.ACTIVE:
                _active_calls[token] = orchestrator

    except WebSocketDisconnect:
        logger.info(f"[RELAY WS] Client disconnected ({orchestrator.correlation_token})")
    except RuntimeError as e:
        logger.error(f"[RELAY WS] Socket error: {e}", exc_info=True)
        reason = "socket-error"
    finally:
        await orchestrator.cleanup(reason)
        await orchestrator.drain()

        token = orchestrator.correlation_token
        if token:
            _active_calls.pop(token, None)
            await get_session_registry().remove(token)
        await _record_outcome(orchestrator)

        for result in await asyncio.gather(sender, return_exceptions=True):
            if isinstance(result, Exception):
                logger.error(f"[RELAY WS] Event forwarder failed: {result!r}", exc_info=result)

        try:
            await websocket.close()
        except RuntimeError:
            logger.debug("[RELAY WS] Socket already closed")
        logger.info(f"[RELAY WS] Connection closed, reason: {orchestrator.end_reason}")


@router.post("/agent-message")
async def agent_message(body: AgentMessageRequest):
    """Speak a live agent's message into an active call."""
    orchestrator = _active_calls.get(body.correlation_token)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"No active call for {body.correlation_token}")
    delivered = await orchestrator.inject_agent_message(body.message)
    if not delivered:
        raise HTTPException(status_code=409, detail="Call is not active")
    return {"success": True}
