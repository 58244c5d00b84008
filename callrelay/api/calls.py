"""Call history API endpoints."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from callrelay.db.database import get_db
from callrelay.services.persistence.calls import CallPersistenceService

router = APIRouter()
logger = logging.getLogger(__name__)


class CallResponse(BaseModel):
    """Call response model."""
    id: int
    call_sid: str
    correlation_token: str
    destination_number: Optional[str] = None
    started_at: str
    ended_at: Optional[str] = None
    status: str
    end_reason: Optional[str] = None
    transcript: Optional[str] = None


@router.get("/api/calls/history", response_model=List[CallResponse])
async def get_call_history(
    request: Request,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    """Get recent calls, newest first."""
    logger.info(
        f"[CALLS HISTORY] Request received - limit: {limit}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    try:
        calls = await CallPersistenceService(db).list_recent_calls(limit=limit)
    except SQLAlchemyError as e:
        logger.error(
            f"[CALLS HISTORY] Error fetching call history - "
            f"limit: {limit}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True
        )
        raise HTTPException(status_code=500, detail=f"Error fetching call history: {str(e)}")

    logger.info(f"[CALLS HISTORY] Found {len(calls)} calls")
    return [
        CallResponse(
            id=call.id,
            call_sid=call.call_sid,
            correlation_token=call.correlation_token,
            destination_number=call.destination_number,
            started_at=call.started_at.isoformat() if call.started_at else "",
            ended_at=call.ended_at.isoformat() if call.ended_at else None,
            status=call.status,
            end_reason=call.end_reason,
            transcript=call.transcript,
        )
        for call in calls
    ]
