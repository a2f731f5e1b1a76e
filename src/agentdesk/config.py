"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    MODEL_PROVIDER: str = "openai"  # Options: openai, anthropic
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_SEARCH_MODEL: str = "gpt-4o-mini-search-preview"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    REPLY_MAX_TOKENS: int = 2048
    REPLY_TEMPERATURE: float = 0.7
    SELECTION_MAX_TOKENS: int = 512
    SEARCH_CONTEXT_MAX_TOKENS: int = 1024
    BODY_SYNTHESIS_MAX_TOKENS: int = 1024

    # Knowledge base configuration
    VECTOR_DB_HOST: str = "chroma"  # Service name in docker-compose
    VECTOR_DB_PORT: int = 8000
    EMBED_MODEL: str = "all-MiniLM-L6-v2"  # small; runs CPU-only
    KNOWLEDGE_MAX_RESULTS: int = 5
    KNOWLEDGE_SIMILARITY_FLOOR: float = 0.5
    KNOWLEDGE_FALLBACK_SOURCES: int = 3
    FETCH_TIMEOUT: float = 5.0
    FETCH_MAX_CHARS: int = 2000

    # External tools
    TOOL_SCHEMA_TTL: float = 3600.0  # seconds
    MCP_TIMEOUT: float = 15.0
    API_TOOL_TIMEOUT: float = 15.0
    TOOL_LOOP_MAX_ITERATIONS: int = 3

    # Conversations / agents
    HISTORY_LIMIT: int = 10
    MAX_AGENTS_PER_USER: int = 5

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
