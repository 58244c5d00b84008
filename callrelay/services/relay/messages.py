"""ConversationRelay socket message models.

Inbound messages are discriminated by ``type``; unknown types parse to
``UnknownMessage`` so the orchestrator can log and carry on. Outbound messages
serialize with the field names the relay expects.
"""
import json
from typing import Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class InboundMessage(BaseModel):
    """Base class for messages received from the relay."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str


class SetupMessage(InboundMessage):
    type: Literal["setup"] = "setup"
    call_sid: Optional[str] = Field(default=None, alias="callSid")
    from_number: Optional[str] = Field(default=None, alias="from")
    to_number: Optional[str] = Field(default=None, alias="to")
    custom_parameters: Dict[str, Any] = Field(default_factory=dict, alias="customParameters")

    @property
    def correlation_token(self) -> Optional[str]:
        return self.custom_parameters.get("customerReference")


class PromptMessage(InboundMessage):
    type: Literal["prompt"] = "prompt"
    voice_prompt: str = Field(default="", alias="voicePrompt")
    last: bool = True


class InterruptMessage(InboundMessage):
    type: Literal["interrupt"] = "interrupt"
    utterance_until_interrupt: str = Field(default="", alias="utteranceUntilInterrupt")
    duration_until_interrupt_ms: Optional[int] = Field(default=None, alias="durationUntilInterruptMs")


class DtmfMessage(InboundMessage):
    type: Literal["dtmf"] = "dtmf"
    digit: str = ""


class InfoMessage(InboundMessage):
    type: Literal["info"] = "info"


class UnknownMessage(InboundMessage):
    pass


_INBOUND_TYPES = {
    "setup": SetupMessage,
    "prompt": PromptMessage,
    "interrupt": InterruptMessage,
    "dtmf": DtmfMessage,
    "info": InfoMessage,
}


def parse_inbound(data: Dict[str, Any]) -> InboundMessage:
    """Parse a decoded relay message into its model."""
    message_type = str(data.get("type", ""))
    model = _INBOUND_TYPES.get(message_type, UnknownMessage)
    return model.model_validate({**data, "type": message_type})


class OutboundMessage(BaseModel):
    """Base class for messages sent to the relay."""

    type: str

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TextMessage(OutboundMessage):
    type: Literal["text"] = "text"
    token: str
    last: bool = False


class SendDigitsMessage(OutboundMessage):
    type: Literal["sendDigits"] = "sendDigits"
    digits: str


class EndMessage(OutboundMessage):
    """Ends the relay session. The relay expects handoffData as a JSON string."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["end"] = "end"
    handoff_data: str = Field(alias="handoffData")

    @classmethod
    def from_handoff(cls, handoff: Dict[str, Any]) -> "EndMessage":
        return cls(handoff_data=json.dumps(handoff))

    @property
    def reason_code(self) -> Optional[str]:
        try:
            return json.loads(self.handoff_data).get("reasonCode")
        except (ValueError, AttributeError):
            return None


class ErrorMessage(OutboundMessage):
    type: Literal["error"] = "error"
    description: str


RelayOutbound = Union[TextMessage, SendDigitsMessage, EndMessage, ErrorMessage]
