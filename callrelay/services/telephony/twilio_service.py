"""Outbound calls, relay TwiML and SMS over Twilio."""
import asyncio
import logging

from twilio.base.exceptions import TwilioException
from twilio.rest import Client
from twilio.twiml.voice_response import Connect, VoiceResponse

logger = logging.getLogger(__name__)

RELAY_PATH = "/conversation-relay"


class TelephonyError(Exception):
    """Raised when the telephony provider rejects a call or message."""


class TwilioTelephonyService:
    """Places calls that connect back to the relay socket and sends SMS."""

    def __init__(
        self,
        client: Client,
        from_number: str,
        server_base_url: str,
        voice: str = "en-AU-Journey-D",
    ):
        self.client = client
        self.from_number = from_number
        # host only; the relay connects over wss
        self.server_base_url = server_base_url.replace("https://", "").replace("wss://", "").rstrip("/")
        self.voice = voice

    @property
    def relay_url(self) -> str:
        return f"wss://{self.server_base_url}{RELAY_PATH}"

    def build_connect_twiml(self, correlation_token: str) -> str:
        """TwiML that connects the call to the relay, carrying the correlation token."""
        response = VoiceResponse()
        connect = Connect()
        relay = connect.conversation_relay(
            url=self.relay_url,
            voice=self.voice,
            dtmf_detection="true",
            interrupt_by_dtmf="true",
        )
        relay.parameter(name="customerReference", value=correlation_token)
        response.append(connect)
        return str(response)

    async def dial(self, to: str, correlation_token: str) -> str:
        """
        Place an outbound call.

        Returns:
            The call SID

        Raises:
            TelephonyError: if Twilio rejects the call
        """
        logger.info(f"[TELEPHONY] Dialing {to} for {correlation_token}")
        try:
            call = await asyncio.to_thread(
                self.client.calls.create,
                to=to,
                from_=self.from_number,
                twiml=self.build_connect_twiml(correlation_token),
                record=True,
            )
        except TwilioException as e:
            logger.error(f"[TELEPHONY] Dial to {to} failed: {e}", exc_info=True)
            raise TelephonyError(f"Could not place call to {to}: {e}") from e
        logger.info(f"[TELEPHONY] Call {call.sid} placed to {to}")
        return call.sid

    async def send_sms(self, to: str, body: str) -> str:
        """Send an SMS and return the message SID."""
        try:
            message = await asyncio.to_thread(
                self.client.messages.create,
                to=to,
                from_=self.from_number,
                body=body,
            )
        except TwilioException as e:
            logger.error(f"[TELEPHONY] SMS to {to} failed: {e}", exc_info=True)
            raise TelephonyError(f"Could not send SMS to {to}: {e}") from e
        logger.info(f"[TELEPHONY] SMS {message.sid} sent to {to}")
        return message.sid
