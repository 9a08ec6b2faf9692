"""Settings and configuration."""

from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Ollama
    ollama_url: str = "http://localhost:11434"
    embed_model: str = "nomic-embed-text"
    embed_dimensions: int = 768
    embed_timeout_seconds: float = 60.0
    pull_timeout_seconds: float = 600.0
    embed_max_attempts: int = 3

    # Qdrant
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: Optional[str] = None
    qdrant_timeout_seconds: int = 30
    collection_prefix: str = "messages_account_"
    upsert_batch_size: int = 100

    # Telegram
    tg_api_id: int = 0
    tg_api_hash: str = ""
    tg_sessions_dir: str = "/sessions"

    # Tracking
    tracking_backend: str = "postgres"  # "postgres" or "json"
    database_url: Optional[str] = None
    tracking_state_path: str = "/state/rag_indexed_chats.json"

    # Chunking
    chunking_version: int = 1  # bump whenever chunk boundaries change
    chunk_gap_threshold_seconds: int = 7200
    chunk_max_messages: int = 20
    chunk_max_chars: int = 2000

    # Indexing
    dialog_fetch_limit: int = 500
    page_size: int = 50
    page_delay_seconds: float = 1.0
    page_delay_jitter_seconds: float = 1.0
    chat_delay_seconds: float = 0.5

    # Search
    search_default_limit: int = 10
    context_result_limit: int = 5
    context_query_messages: int = 5

    # Backoff
    backoff_base_ms: int = 500

    log_level: str = "INFO"


# Global settings instance
settings = Settings()


class CLIArgs(BaseModel):
    """CLI arguments."""

    command: str = "status"
    account: Optional[str] = None
    chat: Optional[str] = None
    query: Optional[str] = None
    date_from: Optional[int] = None
    date_to: Optional[int] = None
    limit: Optional[int] = None
    log_level: str = "INFO"
