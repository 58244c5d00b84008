"""Tool execution for model-requested actions."""
import json
import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from callrelay.services.relay.messages import EndMessage, SendDigitsMessage

logger = logging.getLogger(__name__)

END_CALL_TOOL = "end-call"
LIVE_AGENT_HANDOFF_TOOL = "live-agent-handoff"
SEND_DTMF_TOOL = "send-dtmf"


class ToolResultType(str, Enum):
    TEXT = "text"
    SEND_DIGITS = "sendDigits"
    END = "end"
    ERROR = "error"


class ToolResult(BaseModel):
    """Normalized tool outcome."""

    type: ToolResultType
    token: Optional[str] = None
    digits: Optional[str] = None
    handoff_data: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        """Whether the turn stops after this result instead of resuming the model."""
        return self.type in (ToolResultType.END, ToolResultType.SEND_DIGITS)

    @property
    def reason_code(self) -> Optional[str]:
        return (self.handoff_data or {}).get("reasonCode")

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(type=ToolResultType.ERROR, token=json.dumps({"error": message}))

    def to_message(self):
        """Relay message for a terminal result."""
        if self.type == ToolResultType.SEND_DIGITS:
            return SendDigitsMessage(digits=self.digits or "")
        if self.type == ToolResultType.END:
            return EndMessage.from_handoff(self.handoff_data or {})
        raise ValueError(f"{self.type.value} results are not sent to the relay")

    def for_transcript(self) -> str:
        """Content recorded as the tool-role transcript entry."""
        return self.model_dump_json(exclude_none=True)


class ToolExecutor:
    """Runs built-in call actions locally and business tools over HTTP."""

    def __init__(self, tools_base_url: str, http_client: Optional[httpx.AsyncClient] = None):
        self.tools_base_url = tools_base_url.rstrip("/")
        self._http_client = http_client

    async def execute(self, name: str, arguments: Dict[str, Any]) -> ToolResult:
        """Execute a validated tool call and return its envelope."""
        logger.info(f"[TOOLS] Executing tool '{name}' with args: {arguments}")

        if name == LIVE_AGENT_HANDOFF_TOOL:
            return ToolResult(
                type=ToolResultType.END,
                handoff_data={
                    "reasonCode": LIVE_AGENT_HANDOFF_TOOL,
                    "reason": arguments.get("summary") or "Caller asked for a live agent",
                },
            )

        if name == SEND_DTMF_TOOL:
            digits = str(arguments.get("dtmfDigit", "")).strip()
            if not digits:
                return ToolResult.error("send-dtmf requires dtmfDigit")
            return ToolResult(type=ToolResultType.SEND_DIGITS, digits=digits)

        if name == END_CALL_TOOL:
            return ToolResult(
                type=ToolResultType.END,
                handoff_data={
                    "reasonCode": END_CALL_TOOL,
                    "reason": "Ending the call",
                    "conversationSummary": arguments.get("summary"),
                },
            )

        return await self._call_business_tool(name, arguments)

    async def _call_business_tool(self, name: str, arguments: Dict[str, Any]) -> ToolResult:
        url = f"{self.tools_base_url}/tools/{name}"
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=arguments)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, json=arguments)
        except httpx.HTTPError as e:
            logger.error(f"[TOOLS] Tool '{name}' request failed: {type(e).__name__}: {e}")
            return ToolResult.error(f"Tool {name} is unavailable: {e}")

        if not response.is_success:
            logger.error(
                f"[TOOLS] Tool '{name}' returned {response.status_code}: {response.text[:200]}"
            )
            return ToolResult.error(
                f"API call failed with status {response.status_code}: {response.text}"
            )

        try:
            result = response.json()
        except ValueError:
            result = response.text
        logger.info(f"[TOOLS] Tool '{name}' response: {result}")
        return ToolResult(type=ToolResultType.TEXT, token=json.dumps(result))
