"""File-backed prompt provider."""
import yaml
from pathlib import Path
from typing import Optional

from callrelay.services.prompts.base import PromptProvider, ToolDefinition, ToolManifest

ASSETS_DIR = Path(__file__).resolve().parents[2] / "assets"

DEFAULT_CONTEXT = """You are calling a pharmacy on behalf of a customer to check on a prescription.
Keep responses short and natural. Use the tools available to report the status
of the prescription, send touch tones when an automated menu asks for them, hand
off to a live agent when asked, and end the call politely once you are done."""


def _default_manifest() -> ToolManifest:
    return ToolManifest(
        tools=[
            ToolDefinition(
                name="end-call",
                description="End the call once the conversation is complete.",
                parameters={
                    "type": "object",
                    "properties": {
                        "callSid": {"type": "string"},
                        "summary": {"type": "string"},
                    },
                    "required": ["callSid", "summary"],
                },
            ),
        ]
    )


class FilePromptProvider(PromptProvider):
    """Loads the system prompt from markdown and the tool manifest from YAML."""

    def __init__(
        self,
        context_file: Optional[str] = None,
        manifest_file: Optional[str] = None,
    ):
        self.context_file = Path(context_file) if context_file else ASSETS_DIR / "context.md"
        self.manifest_file = (
            Path(manifest_file) if manifest_file else ASSETS_DIR / "tool_manifest.yaml"
        )
        self._context: Optional[str] = None
        self._manifest: Optional[ToolManifest] = None

    async def get_context(self) -> str:
        """Get the base system prompt."""
        if self._context is None:
            if self.context_file.exists():
                self._context = self.context_file.read_text(encoding="utf-8")
            else:
                self._context = DEFAULT_CONTEXT
        return self._context

    async def get_tool_manifest(self) -> ToolManifest:
        """Get the tool manifest."""
        if self._manifest is None:
            if not self.manifest_file.exists():
                self._manifest = _default_manifest()
            else:
                with open(self.manifest_file, "r") as f:
                    data = yaml.safe_load(f) or {}
                    self._manifest = ToolManifest(
                        tools=[ToolDefinition(**tool) for tool in data.get("tools", [])]
                    )
        return self._manifest
