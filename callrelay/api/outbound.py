"""Outbound call, TaskRouter assignment and TwiML endpoints."""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from callrelay.core.dependencies import (
    get_session_registry,
    get_telephony_service,
    get_ticketing_bridge,
)
from callrelay.db.database import get_db
from callrelay.services.persistence.calls import CallPersistenceService
from callrelay.services.session.models import CallSession, TicketData
from callrelay.services.session.registry import SessionNotFoundError, SessionRegistry
from callrelay.services.telephony.twilio_service import TelephonyError, TwilioTelephonyService
from callrelay.services.ticketing.bridge import (
    ReservationAssignment,
    TicketingBridge,
    TicketingError,
)

router = APIRouter()
logger = logging.getLogger(__name__)


async def _attach_ticket(registry: SessionRegistry, session: CallSession, ticket: TicketData) -> None:
    session.apply_ticket(ticket)
    await registry.update(
        session.correlation_token,
        ticket_id=session.ticket_id,
        ticket_channel_id=session.ticket_channel_id,
        transcript_destination=session.transcript_destination,
        task_id=session.task_id,
    )


class OutboundCallProperties(BaseModel):
    """Customer data for the call. Extra fields are passed to the agent."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    phone_number: str = Field(alias="phoneNumber")
    customer_reference: str = Field(alias="customerReference")


class OutboundCallRequest(BaseModel):
    properties: OutboundCallProperties


@router.post("/outbound-call")
async def outbound_call(
    body: OutboundCallRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    ticketing: TicketingBridge = Depends(get_ticketing_bridge),
    telephony: TwilioTelephonyService = Depends(get_telephony_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Start an outbound call.

    The ticket is created before dialing so the reservation callback can
    find the session; either failure returns 502.
    """
    properties = body.properties
    token = properties.customer_reference
    customer_data: Dict[str, Any] = properties.model_dump(by_alias=True)
    logger.info(f"[OUTBOUND] Call requested for {token} to {properties.phone_number}")

    session = CallSession(
        correlation_token=token,
        destination_number=properties.phone_number,
        customer_data=customer_data,
    )
    await registry.put(session)

    try:
        ticket_id = await ticketing.create_ticket(session)
        await registry.update(token, ticket_id=ticket_id)
        held = await registry.claim_ticket(ticket_id)
        if held is not None:
            await _attach_ticket(registry, session, held)
            logger.info(f"[OUTBOUND] Applied early reservation data for {ticket_id} to {token}")
        call_sid = await telephony.dial(properties.phone_number, token)
    except (TicketingError, TelephonyError) as e:
        logger.error(f"[OUTBOUND] Could not start call for {token}: {e}", exc_info=True)
        await registry.remove(token)
        raise HTTPException(status_code=502, detail=f"Could not start call: {e}")

    await registry.update(token, call_sid=call_sid)
    await CallPersistenceService(db).create_call(
        call_sid, correlation_token=token, destination_number=properties.phone_number
    )
    logger.info(f"[OUTBOUND] Call {call_sid} started for {token}")
    return {"success": True, "callSid": call_sid}


@router.post("/assignment-callback")
async def assignment_callback(
    request: Request,
    WorkspaceSid: str = Form(...),
    WorkerSid: str = Form(...),
    TaskSid: str = Form(...),
    ReservationSid: str = Form(...),
    TaskAttributes: str = Form("{}"),
    registry: SessionRegistry = Depends(get_session_registry),
    ticketing: TicketingBridge = Depends(get_ticketing_bridge),
):
    """Accept the virtual agent's reservation and attach the ticket to its session."""
    logger.info(
        f"[ASSIGNMENT] Reservation {ReservationSid} for task {TaskSid} - "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    assignment = ReservationAssignment(
        WorkspaceSid=WorkspaceSid,
        WorkerSid=WorkerSid,
        TaskSid=TaskSid,
        ReservationSid=ReservationSid,
        TaskAttributes=TaskAttributes,
    )
    try:
        ticket = await ticketing.accept_reservation(assignment)
    except TicketingError as e:
        logger.error(f"[ASSIGNMENT] Could not accept reservation {ReservationSid}: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Could not accept reservation: {e}")

    session = await registry.find_by_ticket_id(ticket.ticket_id)
    if session is None:
        # The outbound request may still be waiting on create_ticket
        logger.warning(f"[ASSIGNMENT] No session yet for interaction {ticket.ticket_id}, holding")
        await registry.hold_ticket(ticket)
        return {"success": True, "matched": False}

    try:
        await _attach_ticket(registry, session, ticket)
    except SessionNotFoundError:
        logger.warning(f"[ASSIGNMENT] Session {session.correlation_token} ended before assignment")
        return {"success": True, "matched": False}

    logger.info(f"[ASSIGNMENT] Ticket data attached to {session.correlation_token}")
    return {"success": True, "matched": True}


@router.post("/voice/connect")
async def voice_connect(
    customerReference: str = Query(...),
    telephony: TwilioTelephonyService = Depends(get_telephony_service),
):
    """TwiML connecting a call to the relay for the given reference."""
    twiml = telephony.build_connect_twiml(customerReference)
    return Response(content=twiml, media_type="application/xml")
