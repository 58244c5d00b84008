"""Session registry pairing outbound-call requests with relay connections."""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from callrelay.services.session.models import CallSession, TicketData

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    """Raised when no session exists for a correlation token."""

    def __init__(self, correlation_token: str):
        super().__init__(f"No call session for reference {correlation_token!r}")
        self.correlation_token = correlation_token


class SessionRegistry(ABC):
    """Repository of call sessions keyed by correlation token."""

    @abstractmethod
    async def get(self, correlation_token: str) -> Optional[CallSession]:
        """Get a session, or None if unknown."""
        pass

    @abstractmethod
    async def put(self, session: CallSession) -> None:
        """Store a session, replacing any existing one with the same token."""
        pass

    @abstractmethod
    async def update(self, correlation_token: str, **changes: Any) -> CallSession:
        """Set fields on an existing session.

        Raises:
            SessionNotFoundError: if the token is unknown
        """
        pass

    @abstractmethod
    async def remove(self, correlation_token: str) -> None:
        """Forget a session. Unknown tokens are ignored."""
        pass

    @abstractmethod
    async def find_by_ticket_id(self, ticket_id: str) -> Optional[CallSession]:
        """Find the session a ticket was created for."""
        pass

    @abstractmethod
    async def hold_ticket(self, ticket: TicketData) -> None:
        """Keep reservation data that arrived before its session knew the ticket id."""
        pass

    @abstractmethod
    async def claim_ticket(self, ticket_id: str) -> Optional[TicketData]:
        """Take held reservation data for a ticket id, if any."""
        pass

    async def wait_for_ticket(
        self,
        correlation_token: str,
        timeout: float,
        poll_interval: float = 0.1,
    ) -> CallSession:
        """
        Wait a bounded time for reservation data to reach a session.

        The reservation callback races the relay connection, so the session
        may not carry ticket data yet. Returns the session either way once
        the ticket arrives or the timeout passes.

        Raises:
            SessionNotFoundError: if the token is unknown
        """
        session = await self.get(correlation_token)
        if session is None:
            raise SessionNotFoundError(correlation_token)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not session.has_ticket:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(
                    f"[REGISTRY] No ticket data for {correlation_token} after {timeout:.2f}s, "
                    f"continuing without it"
                )
                break
            await asyncio.sleep(min(poll_interval, remaining))
            session = await self.get(correlation_token)
            if session is None:
                raise SessionNotFoundError(correlation_token)
        return session


class InMemorySessionRegistry(SessionRegistry):
    """Session registry held in process memory.

    Entries older than ``ttl_seconds`` are purged whenever a new session is
    stored, bounding growth when calls never reach an explicit end. Held
    reservation data expires the same way.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, CallSession] = {}
        self._stored_at: Dict[str, float] = {}
        self._held: Dict[str, TicketData] = {}
        self._held_at: Dict[str, float] = {}

    async def get(self, correlation_token: str) -> Optional[CallSession]:
        if self._is_expired(correlation_token):
            self._drop(correlation_token)
        return self._sessions.get(correlation_token)

    async def put(self, session: CallSession) -> None:
        self.purge_expired()
        self._sessions[session.correlation_token] = session
        self._stored_at[session.correlation_token] = self._clock()
        logger.info(f"[REGISTRY] Stored session for {session.correlation_token}")

    async def update(self, correlation_token: str, **changes: Any) -> CallSession:
        session = self._sessions.get(correlation_token)
        if session is None:
            raise SessionNotFoundError(correlation_token)
        for field, value in changes.items():
            if field not in CallSession.model_fields:
                raise AttributeError(f"CallSession has no field {field!r}")
            setattr(session, field, value)
        return session

    async def remove(self, correlation_token: str) -> None:
        if correlation_token in self._sessions:
            self._drop(correlation_token)
            logger.info(f"[REGISTRY] Removed session for {correlation_token}")

    async def find_by_ticket_id(self, ticket_id: str) -> Optional[CallSession]:
        for session in self._sessions.values():
            if session.ticket_id == ticket_id:
                return session
        return None

    async def hold_ticket(self, ticket: TicketData) -> None:
        self._held[ticket.ticket_id] = ticket
        self._held_at[ticket.ticket_id] = self._clock()
        logger.info(f"[REGISTRY] Holding ticket data for {ticket.ticket_id}")

    async def claim_ticket(self, ticket_id: str) -> Optional[TicketData]:
        held_at = self._held_at.pop(ticket_id, None)
        ticket = self._held.pop(ticket_id, None)
        if ticket is not None and self._expired_since(held_at):
            return None
        return ticket

    def purge_expired(self) -> int:
        """Drop expired sessions and return how many were dropped."""
        expired = [token for token in self._sessions if self._is_expired(token)]
        for token in expired:
            self._drop(token)
        stale = [ticket_id for ticket_id, held_at in self._held_at.items() if self._expired_since(held_at)]
        for ticket_id in stale:
            self._held.pop(ticket_id, None)
            self._held_at.pop(ticket_id, None)
        if expired:
            logger.info(f"[REGISTRY] Purged {len(expired)} expired session(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_expired(self, correlation_token: str) -> bool:
        return self._expired_since(self._stored_at.get(correlation_token))

    def _expired_since(self, stored_at: Optional[float]) -> bool:
        if self.ttl_seconds is None or stored_at is None:
            return False
        return self._clock() - stored_at > self.ttl_seconds

    def _drop(self, correlation_token: str) -> None:
        self._sessions.pop(correlation_token, None)
        self._stored_at.pop(correlation_token, None)
