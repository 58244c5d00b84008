"""Conversation transcript held by the agent for one call."""
import json
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class TranscriptPairingError(ValueError):
    """Raised when a tool result does not follow its assistant tool-call entry."""


class TranscriptToolCall(BaseModel):
    """A tool call recorded on an assistant entry."""

    id: str
    name: str
    arguments: str

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class TranscriptEntry(BaseModel):
    """One role-tagged message."""

    role: str  # system, user, assistant, tool
    content: str = ""
    tool_calls: List[TranscriptToolCall] = []
    tool_call_id: Optional[str] = None

    def to_openai(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
        return message


class ConversationTranscript(BaseModel):
    """Ordered, append-only message history."""

    entries: List[TranscriptEntry] = []

    def append(self, role: str, content: str) -> TranscriptEntry:
        """Append a plain system, user or assistant message."""
        if role not in ("system", "user", "assistant"):
            raise ValueError(f"Unsupported transcript role: {role!r}")
        entry = TranscriptEntry(role=role, content=content)
        self.entries.append(entry)
        return entry

    def append_tool_exchange(
        self, call: TranscriptToolCall, result: Any, content: str = ""
    ) -> None:
        """Append an assistant tool-call entry immediately followed by its result."""
        self.entries.append(
            TranscriptEntry(role="assistant", content=content, tool_calls=[call])
        )
        self.append_tool_result(call.id, result)

    def append_tool_result(self, tool_call_id: str, result: Any) -> TranscriptEntry:
        """Append a tool result; the previous entry must be its assistant tool call."""
        previous = self.entries[-1] if self.entries else None
        if (
            previous is None
            or previous.role != "assistant"
            or tool_call_id not in {call.id for call in previous.tool_calls}
        ):
            raise TranscriptPairingError(
                f"Tool result {tool_call_id!r} must follow the assistant entry that requested it"
            )
        content = result if isinstance(result, str) else json.dumps(result)
        entry = TranscriptEntry(role="tool", content=content, tool_call_id=tool_call_id)
        self.entries.append(entry)
        return entry

    def is_paired(self) -> bool:
        """Check that every tool entry follows its assistant tool-call entry."""
        for index, entry in enumerate(self.entries):
            if entry.role != "tool":
                continue
            if index == 0:
                return False
            previous = self.entries[index - 1]
            if previous.role != "assistant" or entry.tool_call_id not in {
                call.id for call in previous.tool_calls
            }:
                return False
        return True

    def to_openai(self) -> List[Dict[str, Any]]:
        return [entry.to_openai() for entry in self.entries]

    def get_transcript_text(self) -> str:
        """Get the spoken part of the conversation as text."""
        lines = []
        for entry in self.entries:
            if entry.role == "user" and entry.content:
                lines.append(f"Callee: {entry.content}")
            elif entry.role == "assistant" and entry.content:
                lines.append(f"Agent: {entry.content}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.entries)
