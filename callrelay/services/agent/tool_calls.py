"""Accumulation of streamed tool-call fragments."""
import json
import logging
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class MalformedToolCallError(ValueError):
    """Raised when accumulated tool-call fragments do not form a usable call."""


class ToolCall(BaseModel):
    """A complete tool call requested by the model."""

    id: str
    name: str
    arguments: str

    def parsed_arguments(self) -> Dict[str, Any]:
        """Parse the argument JSON into a dict.

        Raises:
            MalformedToolCallError: if the arguments are not a JSON object
        """
        if not self.arguments.strip():
            raise MalformedToolCallError(f"Tool call {self.name!r} has no arguments")
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError as e:
            raise MalformedToolCallError(
                f"Invalid tool call arguments for {self.name!r}: {e}"
            ) from e
        if not isinstance(parsed, dict):
            raise MalformedToolCallError(
                f"Tool call arguments for {self.name!r} must be a JSON object"
            )
        return parsed


class _PendingCall:
    def __init__(self, index: int):
        self.index = index
        self.id: Optional[str] = None
        self.name = ""
        self.fragments: List[str] = []

    @property
    def arguments(self) -> str:
        return "".join(self.fragments)


class ToolCallAccumulator:
    """
    Collects tool-call deltas from a streamed completion.

    Deltas reference a call by ``index``; the call's ``id`` and ``name``
    normally arrive on the first delta and argument text arrives in pieces
    afterwards. Calls are keyed by id once it is known. A delta that carries
    the id and restates the call's whole argument text from the start is a
    resend and is ignored; any other fragment is appended even when its text
    repeats earlier text. Deltas whose id arrives after some arguments are
    folded into the same call.
    """

    def __init__(self):
        self._by_index: Dict[int, _PendingCall] = {}
        self._index_by_id: Dict[str, int] = {}

    def __bool__(self) -> bool:
        return bool(self._by_index)

    def __len__(self) -> int:
        return len(self._by_index)

    def add(self, delta: Any) -> None:
        """Add one tool-call delta (an OpenAI ``ChoiceDeltaToolCall`` or compatible)."""
        call_id = getattr(delta, "id", None)
        index = getattr(delta, "index", None)
        function = getattr(delta, "function", None)
        name = getattr(function, "name", None) if function is not None else None
        arguments = getattr(function, "arguments", None) if function is not None else None

        if call_id and call_id in self._index_by_id:
            index = self._index_by_id[call_id]
        elif index is None:
            index = len(self._by_index)

        pending = self._by_index.get(index)
        if pending is None:
            pending = _PendingCall(index)
            self._by_index[index] = pending

        if call_id:
            if pending.id is None:
                pending.id = call_id
                self._index_by_id[call_id] = index
            elif pending.id != call_id:
                logger.warning(
                    f"[TOOL CALLS] Conflicting id {call_id} for index {index} "
                    f"(already {pending.id}), keeping the first"
                )

        if name:
            pending.name = name

        if arguments:
            if call_id and pending.fragments and arguments == pending.arguments:
                logger.debug(f"[TOOL CALLS] Resent arguments for {call_id} ignored")
                return
            pending.fragments.append(arguments)

    def complete(self) -> List[ToolCall]:
        """
        Return the finished calls in index order.

        Raises:
            MalformedToolCallError: if a call has no name or unparsable arguments
        """
        calls = []
        for index in sorted(self._by_index):
            pending = self._by_index[index]
            if not pending.name:
                raise MalformedToolCallError(f"Missing function name in tool call {index}")
            call = ToolCall(
                id=pending.id or f"call_{index}_{pending.name}",
                name=pending.name,
                arguments=pending.arguments,
            )
            call.parsed_arguments()
            calls.append(call)
        return calls
