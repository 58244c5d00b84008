"""Call session models."""
from typing import Any, Dict, Optional
from pydantic import BaseModel


class TicketData(BaseModel):
    """Ticket details delivered when the reservation is accepted."""

    ticket_id: str  # Flex interaction SID
    channel_id: str  # Flex interaction channel SID
    transcript_destination: str  # Conversation SID transcript lines are posted to
    task_id: Optional[str] = None
    reservation_id: Optional[str] = None


class CallSession(BaseModel):
    """State for one outbound call, keyed by its correlation token."""

    correlation_token: str
    destination_number: str
    customer_data: Dict[str, Any] = {}
    call_sid: Optional[str] = None
    ticket_id: Optional[str] = None
    ticket_channel_id: Optional[str] = None
    transcript_destination: Optional[str] = None
    task_id: Optional[str] = None
    setup_data: Optional[Dict[str, Any]] = None

    @property
    def has_ticket(self) -> bool:
        """Whether reservation data has arrived."""
        return bool(self.ticket_id and self.ticket_channel_id and self.transcript_destination)

    def apply_ticket(self, ticket: TicketData) -> None:
        """Copy accepted reservation data onto the session."""
        self.ticket_id = ticket.ticket_id
        self.ticket_channel_id = ticket.channel_id
        self.transcript_destination = ticket.transcript_destination
        self.task_id = ticket.task_id
