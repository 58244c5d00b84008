"""Contact-center ticketing over Twilio Flex, TaskRouter and Conversations."""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from callrelay.services.session.models import CallSession, TicketData

logger = logging.getLogger(__name__)

AVAILABLE_ACTIVITY = "Available"


class TicketingError(Exception):
    """Raised when the ticketing platform rejects or fails a request."""


class ReservationAssignment(BaseModel):
    """Assignment callback payload posted by TaskRouter."""

    model_config = ConfigDict(populate_by_name=True)

    workspace_sid: str = Field(alias="WorkspaceSid")
    worker_sid: str = Field(alias="WorkerSid")
    task_sid: str = Field(alias="TaskSid")
    reservation_sid: str = Field(alias="ReservationSid")
    task_attributes: str = Field(default="{}", alias="TaskAttributes")

    def parsed_attributes(self) -> Dict[str, Any]:
        try:
            attributes = json.loads(self.task_attributes or "{}")
        except ValueError as e:
            raise TicketingError(f"Task attributes are not valid JSON: {e}") from e
        if not isinstance(attributes, dict):
            raise TicketingError("Task attributes must be a JSON object")
        return attributes


class TicketingBridge(ABC):
    """Interface to the contact-center ticket for a call."""

    async def initialize(self) -> None:
        """Load anything the bridge caches for its lifetime."""
        return None

    @abstractmethod
    async def create_ticket(self, session: CallSession) -> str:
        """Create a ticket for the call and return its id.

        Raises:
            TicketingError: if the ticket could not be created
        """
        pass

    @abstractmethod
    async def accept_reservation(self, assignment: ReservationAssignment) -> TicketData:
        """Accept the virtual agent's reservation and return the ticket details."""
        pass

    @abstractmethod
    async def post_transcript_line(self, destination: str, author: str, body: str) -> None:
        """Append one line to the ticket transcript."""
        pass

    @abstractmethod
    async def close_ticket(self, ticket_id: str, channel_id: str) -> None:
        """Close the ticket's channel."""
        pass


class FlexTicketingBridge(TicketingBridge):
    """
    Ticketing bridge backed by Twilio Flex.

    A ticket is a Flex chat interaction routed to the virtual agent's worker.
    TaskRouter offers the resulting task through the assignment callback; once
    the reservation is accepted the task attributes carry the interaction
    channel and the Conversation that transcript lines are written to.

    The twilio client is synchronous, so every request runs in a worker thread.
    """

    def __init__(
        self,
        client: Client,
        workspace_sid: str,
        workflow_sid: str,
        task_queue_sid: str,
        worker_sid: str,
    ):
        self.client = client
        self.workspace_sid = workspace_sid
        self.workflow_sid = workflow_sid
        self.task_queue_sid = task_queue_sid
        self.worker_sid = worker_sid
        self.available_activity_sid: Optional[str] = None

    async def initialize(self) -> None:
        """Cache the SID of the "Available" worker activity."""
        try:
            activities = await asyncio.to_thread(
                self.client.taskrouter.v1.workspaces(self.workspace_sid).activities.list
            )
        except TwilioException as e:
            raise TicketingError(f"Could not list worker activities: {e}") from e
        for activity in activities:
            if activity.friendly_name == AVAILABLE_ACTIVITY:
                self.available_activity_sid = activity.sid
                logger.info(f"[TICKETING] Available activity SID: {activity.sid}")
                return
        logger.error(f"[TICKETING] No '{AVAILABLE_ACTIVITY}' activity in workspace {self.workspace_sid}")

    async def create_ticket(self, session: CallSession) -> str:
        logger.info(f"[TICKETING] Creating interaction for {session.correlation_token}")
        try:
            interaction = await asyncio.to_thread(
                self.client.flex_api.v1.interaction.create,
                channel={
                    "type": "chat",
                    "initiated_by": "api",
                    "participants": [{"identity": session.correlation_token}],
                },
                routing={
                    "properties": {
                        "task_channel_unique_name": "chat",
                        "workspace_sid": self.workspace_sid,
                        "workflow_sid": self.workflow_sid,
                        "queue_sid": self.task_queue_sid,
                        "worker_sid": self.worker_sid,
                    }
                },
            )
        except TwilioException as e:
            logger.error(f"[TICKETING] Interaction create failed: {e}", exc_info=True)
            raise TicketingError(f"Could not create interaction: {e}") from e

        logger.info(f"[TICKETING] Created interaction {interaction.sid}")
        return interaction.sid

    async def accept_reservation(self, assignment: ReservationAssignment) -> TicketData:
        attributes = assignment.parsed_attributes()
        try:
            await self._ensure_worker_available(assignment.workspace_sid, assignment.worker_sid)
            await asyncio.to_thread(
                self.client.taskrouter.v1.workspaces(assignment.workspace_sid)
                .tasks(assignment.task_sid)
                .reservations(assignment.reservation_sid)
                .update,
                reservation_status="accepted",
            )
        except TwilioException as e:
            logger.error(f"[TICKETING] Accepting reservation failed: {e}", exc_info=True)
            raise TicketingError(f"Could not accept reservation: {e}") from e

        try:
            ticket = TicketData(
                ticket_id=attributes["flexInteractionSid"],
                channel_id=attributes["flexInteractionChannelSid"],
                transcript_destination=attributes["conversationSid"],
                task_id=assignment.task_sid,
                reservation_id=assignment.reservation_sid,
            )
        except KeyError as e:
            raise TicketingError(f"Task attributes missing {e.args[0]}") from e

        logger.info(
            f"[TICKETING] Reservation {assignment.reservation_sid} accepted for "
            f"interaction {ticket.ticket_id}"
        )
        return ticket

    async def post_transcript_line(self, destination: str, author: str, body: str) -> None:
        try:
            message = await asyncio.to_thread(
                self.client.conversations.v1.conversations(destination).messages.create,
                author=author,
                body=body,
            )
        except TwilioException as e:
            raise TicketingError(f"Could not write transcript line: {e}") from e
        logger.debug(f"[TICKETING] Wrote message {message.sid} to {destination}")

    async def close_ticket(self, ticket_id: str, channel_id: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.flex_api.v1.interaction(ticket_id).channels(channel_id).update,
                status="closed",
                routing={"status": "closed"},
            )
        except TwilioException as e:
            raise TicketingError(f"Could not close interaction {ticket_id}: {e}") from e
        logger.info(f"[TICKETING] Closed interaction {ticket_id}")

    async def _ensure_worker_available(self, workspace_sid: str, worker_sid: str) -> None:
        worker_context = self.client.taskrouter.v1.workspaces(workspace_sid).workers(worker_sid)
        worker = await asyncio.to_thread(worker_context.fetch)
        if self.available_activity_sid and worker.activity_sid != self.available_activity_sid:
            logger.info(f"[TICKETING] Worker {worker_sid} not available, updating activity")
            await asyncio.to_thread(
                worker_context.update, activity_sid=self.available_activity_sid
            )
