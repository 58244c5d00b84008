"""Call persistence service."""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from callrelay.db.models import Call


class CallPersistenceService:
    """Service for persisting call data."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_call(
        self,
        call_sid: str,
        correlation_token: str,
        destination_number: Optional[str] = None,
    ) -> Call:
        """Create a new call record or return existing one."""
        existing_call = await self.get_call_by_sid(call_sid)
        if existing_call:
            return existing_call

        call = Call(
            call_sid=call_sid,
            correlation_token=correlation_token,
            destination_number=destination_number,
            status="dialing",
        )
        self.db.add(call)
        await self.db.commit()
        await self.db.refresh(call)
        return call

    async def get_call_by_sid(self, call_sid: str) -> Optional[Call]:
        """Get call by Twilio call SID."""
        result = await self.db.execute(
            select(Call).where(Call.call_sid == call_sid)
        )
        return result.scalar_one_or_none()

    async def list_recent_calls(self, limit: int = 100) -> List[Call]:
        """List calls, most recent first."""
        result = await self.db.execute(
            select(Call).order_by(desc(Call.started_at)).limit(limit)
        )
        return list(result.scalars().all())

    async def record_outcome(
        self,
        call_sid: str,
        status: str,
        end_reason: Optional[str] = None,
        transcript: Optional[str] = None,
        ended_at: Optional[datetime] = None,
    ) -> Optional[Call]:
        """Record how a call ended."""
        call = await self.get_call_by_sid(call_sid)
        if call:
            call.status = status
            call.end_reason = end_reason
            call.ended_at = ended_at or datetime.utcnow()
            if transcript:
                call.transcript = transcript
            await self.db.commit()
            await self.db.refresh(call)
        return call
