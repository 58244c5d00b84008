"""Prompt provider interface."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List
from pydantic import BaseModel


class ToolDefinition(BaseModel):
    """A tool the model may call."""

    name: str
    description: str
    parameters: Dict[str, Any] = {"type": "object", "properties": {}}

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolManifest(BaseModel):
    """Declarative list of tools exposed to the model."""

    tools: List[ToolDefinition] = []

    def names(self) -> List[str]:
        return [tool.name for tool in self.tools]

    def to_openai(self) -> List[Dict[str, Any]]:
        return [tool.to_openai() for tool in self.tools]


class PromptProvider(ABC):
    """Abstract base class for prompt providers."""

    @abstractmethod
    async def get_context(self) -> str:
        """Get the base system prompt."""
        pass

    @abstractmethod
    async def get_tool_manifest(self) -> ToolManifest:
        """Get the tool manifest."""
        pass
