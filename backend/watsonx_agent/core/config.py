import os
import re
from pathlib import Path

from dotenv import load_dotenv

from watsonx_agent.core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DELAY_BETWEEN_BATCHES_MS,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_WORKFLOW_NAME,
)

# Load environment variables from .env file
# .env sits next to the watsonx_agent package (in backend/)
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)

# LANGFUSE_HOST=${LANGFUSE_HOST:-https://cloud.langfuse.com}
pattern = re.compile(r'\$\{([^}:\-]+)(:-([^}]+))?\}')
def expand_env(value: str):
    if not value:
        return value
    def repl(match):
        key = match.group(1)
        default = match.group(3)
        return os.getenv(key, default if default is not None else "")
    return pattern.sub(repl, value)


def _env(key: str, default: str = "") -> str:
    return expand_env(os.getenv(key, default))


def _env_bool(key: str, default: str) -> bool:
    return _env(key, default).lower() == "true"


class Config:
    """Configuration class that loads settings from environment variables."""
    NAME = 'watsonx-agent'

    # Langfuse Configuration
    LANGFUSE_SECRET_KEY = _env("LANGFUSE_SECRET_KEY", "")
    LANGFUSE_PUBLIC_KEY = _env("LANGFUSE_PUBLIC_KEY", "")
    LANGFUSE_HOST = _env("LANGFUSE_HOST", "https://cloud.langfuse.com")
    LANGFUSE_ENABLED = _env_bool("LANGFUSE_ENABLED", "true")
    WORKFLOW_NAME = _env("WORKFLOW_NAME", DEFAULT_WORKFLOW_NAME)

    # Model Configuration (resolved by the credential provider)
    LLM_BASE_URL = _env("LLM_BASE_URL", "")
    LLM_API_KEY = _env("LLM_API_KEY", "")
    LLM_MODEL = _env("LLM_MODEL", "")
    LLM_TIMEOUT = _env("LLM_TIMEOUT", "300")
    LLM_TEMPERATURE = _env("LLM_TEMPERATURE", "0.7")
    LLM_MAX_TOKENS = _env("LLM_MAX_TOKENS", "1024")
    LLM_TOP_P = _env("LLM_TOP_P", "1.0")
    EMBEDDINGS_MODEL = _env("EMBEDDINGS_MODEL", "")

    # Agent Execution Configuration
    AGENT_MAX_ITERATIONS = _env("AGENT_MAX_ITERATIONS", str(DEFAULT_MAX_ITERATIONS))
    AGENT_BATCH_SIZE = _env("AGENT_BATCH_SIZE", str(DEFAULT_BATCH_SIZE))
    AGENT_DELAY_BETWEEN_BATCHES = _env("AGENT_DELAY_BETWEEN_BATCHES", str(DEFAULT_DELAY_BETWEEN_BATCHES_MS))

    LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()

    _INT_KEYS = ("LLM_TIMEOUT", "LLM_MAX_TOKENS", "AGENT_MAX_ITERATIONS", "AGENT_BATCH_SIZE", "AGENT_DELAY_BETWEEN_BATCHES")
    _FLOAT_KEYS = ("LLM_TEMPERATURE", "LLM_TOP_P")

    def __init__(self):
        """Initialize configuration and validate required settings."""
        self._validate_config()

    def _validate_config(self):
        """Coerce numeric settings, failing fast on malformed values."""
        for key in self._INT_KEYS:
            raw = getattr(self, key)
            try:
                setattr(self, key, int(raw))
            except (TypeError, ValueError):
                raise ValueError(f"Environment variable {key} must be an integer, got {raw!r}")
        for key in self._FLOAT_KEYS:
            raw = getattr(self, key)
            try:
                setattr(self, key, float(raw))
            except (TypeError, ValueError):
                raise ValueError(f"Environment variable {key} must be a number, got {raw!r}")

        if self.AGENT_BATCH_SIZE < 1:
            raise ValueError("AGENT_BATCH_SIZE must be at least 1")
        if self.AGENT_DELAY_BETWEEN_BATCHES < 0:
            raise ValueError("AGENT_DELAY_BETWEEN_BATCHES must not be negative")

    @property
    def langfuse_configured(self) -> bool:
        return bool(self.LANGFUSE_ENABLED and self.LANGFUSE_PUBLIC_KEY and self.LANGFUSE_SECRET_KEY)


# Create a singleton instance
conf = Config()
