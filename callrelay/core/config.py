"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str
    openai_model: str = "gpt-4o-mini"

    # Twilio
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str
    relay_voice: str = "en-AU-Journey-D"

    # Flex / TaskRouter
    flex_workspace_sid: str
    flex_workflow_sid: str
    task_queue_va: str
    worker_sid_va: str

    # Public host the relay socket connects back to (no scheme), e.g. "relay.example.com"
    server_base_url: str
    # Base URL business tools are POSTed to as {tools_base_url}/tools/{name}
    tools_base_url: str

    # Database
    database_url: str

    # Silence handling
    silence_seconds_threshold: float = 5.0
    silence_retry_threshold: int = 3
    silence_tick_seconds: float = 1.0

    # Relay setup / orchestration
    setup_wait_seconds: float = 1.0
    setup_poll_seconds: float = 0.1
    cancel_on_interrupt: bool = True
    session_ttl_seconds: float = 3600.0

    # Authors used when writing transcript lines to the ticket
    agent_author: str = "Assistant"
    callee_author: str = "Pharmacy"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
