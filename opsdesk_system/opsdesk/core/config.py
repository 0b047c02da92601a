"""
Application configuration loader and it handles:
- Environment variables
- Reasoning service (LLM) settings
- Tool backend launch + retry budget
- Gating / context tool names
- Database configuration

And, the main purpose:
Central place for system configuration.
"""


from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./opsdesk.db"
    LOG_LEVEL: str = "INFO"

    # Reasoning service
    LLM_PROVIDER: str = "openai"  # openai | mock (no reasoning, deterministic fallbacks only)
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT: float = 40.0
    LLM_MAX_RETRIES: int = 3

    # Tool backend (stdio)
    BACKEND_COMMAND: str = "npx"
    BACKEND_ARGS: list[str] = []
    BACKEND_CWD: str | None = None
    BACKEND_ENV: dict[str, str] = {}
    BACKEND_REQUEST_TIMEOUT: float = 30.0
    BACKEND_STREAM_LIMIT: int = 16 * 1024 * 1024  # longest single message line read from the backend

    # Session retry budget
    CONNECT_MAX_ATTEMPTS: int = 3
    CONNECT_BACKOFF_STEP: float = 1.0
    CONNECT_BACKOFF_CAP: float = 3.0
    DISCOVERY_TIMEOUT: float = 5.0

    # Chain execution
    RECORD_ID_PATTERN: str = r"(?<![0-9a-fA-F])[0-9a-fA-F]{32}(?![0-9a-fA-F])"
    PENDING_POLICY: str = "reject"  # reject | supersede

    # Preferences
    PREFERENCES_KEY: str = "opsdesk-preferences"

    # Platform context tools
    SCOPE_LIST_TOOL: str = "list-application-scopes"
    SCOPE_SET_TOOL: str = "set-application-scope"
    CONTAINER_LIST_TOOL: str = "list-update-sets"
    CONTAINER_CREATE_TOOL: str = "create-update-set"
    CONTAINER_SET_TOOL: str = "set-update-set"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
