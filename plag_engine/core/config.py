"""Configuration module for plag-engine."""

import os
from typing import List
from pydantic import BaseModel, Field, ConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config(BaseModel):
    """Configuration for the analysis engine and its comparison tools."""

    # Engine selection
    engines: List[str] = Field(
        default_factory=lambda: _env_list("PLAG_ENGINES", "jplag,dolos"),
        description="Ordered names of the similarity engines to run"
    )

    # JPlag settings
    jplag_command: List[str] = Field(
        default_factory=lambda: os.getenv("JPLAG_COMMAND", "java -jar jplag.jar").split(),
        description="Command prefix used to invoke JPlag"
    )
    jplag_min_tokens: int = Field(
        default_factory=lambda: int(os.getenv("JPLAG_MIN_TOKENS", "12")),
        gt=0,
        description="JPlag sensitivity (minimum matching token run)"
    )

    # Dolos settings
    dolos_command: List[str] = Field(
        default_factory=lambda: os.getenv("DOLOS_COMMAND", "dolos").split(),
        description="Command prefix used to invoke Dolos"
    )

    engine_timeout: float = Field(
        default_factory=lambda: float(os.getenv("PLAG_ENGINE_TIMEOUT", "60")),
        gt=0,
        description="Seconds an external tool may run before it is killed"
    )

    # OpenAI API settings (embedding engine)
    openai_api_key: str = Field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY", ""),
        description="API key for OpenAI or compatible service"
    )
    openai_base_url: str = Field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        description="Base URL for OpenAI-compatible API"
    )
    openai_model: str = Field(
        default_factory=lambda: os.getenv("OPENAI_DEFAULT_EMBEDDING_MODEL") or
                               os.getenv("OPENAI_MODEL", "text-embedding-3-small"),
        description="Model name for embeddings"
    )
    embedding_max_tokens: int = Field(
        default=8000,
        description="Files are truncated to this many tokens before embedding"
    )
    max_retries: int = Field(
        default=3,
        description="Maximum retries for API calls"
    )

    # Orchestration settings
    max_workers: int = Field(
        default_factory=lambda: int(os.getenv("PLAG_MAX_WORKERS", "4")),
        gt=0,
        description="Threads used to compute cache misses"
    )
    claim_wait_timeout: float = Field(
        default=600.0,
        gt=0,
        description="Seconds to wait for another caller's in-flight computation"
    )
    redis_url: str = Field(
        default_factory=lambda: os.getenv("PLAG_REDIS_URL", "redis://localhost:6379/0"),
        description="Redis server holding cached analyses and claims"
    )
    claim_expire: int = Field(
        default_factory=lambda: int(os.getenv("PLAG_CLAIM_EXPIRE", "3600")),
        gt=0,
        description="Seconds after which an abandoned claim expires"
    )

    def validate_api_key(self) -> bool:
        """Check if API key is configured."""
        return bool(self.openai_api_key)

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid"
    )
