"""Prompt repository."""
import json
from typing import Any, Dict, List, Optional

from callrelay.services.prompts.base import PromptProvider, ToolManifest


class PromptRepository:
    """Repository for prompt and tool manifest operations."""

    def __init__(self, provider: PromptProvider):
        self.provider = provider

    async def get_context(self) -> str:
        """Get the base system prompt."""
        return await self.provider.get_context()

    async def get_tool_manifest(self) -> ToolManifest:
        """Get the tool manifest."""
        return await self.provider.get_tool_manifest()

    async def get_openai_tools(self) -> List[Dict[str, Any]]:
        """Get the manifest in the chat completions ``tools`` format."""
        manifest = await self.get_tool_manifest()
        return manifest.to_openai()


def build_setup_message(
    setup_data: Optional[Dict[str, Any]],
    customer_data: Dict[str, Any],
) -> str:
    """Summarize call metadata and customer context for the model."""
    return (
        f"These are all the details of the call: {json.dumps(setup_data or {}, indent=4)} "
        f"and the data needed to complete your objective: {json.dumps(customer_data, indent=4)}. "
        f"Use this to complete your objective."
    )
