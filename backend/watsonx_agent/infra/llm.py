from typing import Any, List, Optional

from langchain_core.callbacks import BaseCallbackHandler
from langchain_openai import ChatOpenAI, OpenAIEmbeddings
from pydantic import BaseModel

from watsonx_agent.common.exceptions import ConfigurationError
from watsonx_agent.core.config import conf


class ChatModelSettings(BaseModel):
    """Resolved connection and sampling settings of the chat model"""

    base_url: str
    api_key: str
    model: str
    timeout: int = 300
    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 1.0

    @classmethod
    def from_config(cls, config: Any = conf) -> "ChatModelSettings":
        """Build settings from environment variables, failing when the endpoint is incomplete"""
        if not (config.LLM_BASE_URL and config.LLM_API_KEY and config.LLM_MODEL):
            raise ConfigurationError(
                "Chat model configuration not found. "
                "Set LLM_BASE_URL, LLM_API_KEY and LLM_MODEL environment variables in .env file"
            )
        return cls(
            base_url=config.LLM_BASE_URL,
            api_key=config.LLM_API_KEY,
            model=config.LLM_MODEL,
            timeout=config.LLM_TIMEOUT,
            temperature=config.LLM_TEMPERATURE,
            max_tokens=config.LLM_MAX_TOKENS,
            top_p=config.LLM_TOP_P,
        )


def create_chat_model(
    settings: Optional[ChatModelSettings] = None,
    callbacks: Optional[List[BaseCallbackHandler]] = None,
) -> ChatOpenAI:
    """Create ChatOpenAI instance against the OpenAI-compatible endpoint"""
    settings = settings or ChatModelSettings.from_config()
    return ChatOpenAI(
        model=settings.model,
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout=settings.timeout,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        top_p=settings.top_p,
        streaming=False,
        callbacks=callbacks or [],
    )


class EmbeddingsSettings(BaseModel):
    """Resolved connection settings of the embeddings model"""

    base_url: str
    api_key: str
    model: str
    timeout: int = 300

    @classmethod
    def from_config(cls, config: Any = conf) -> "EmbeddingsSettings":
        """Build settings from environment variables, sharing the chat model endpoint"""
        if not (config.LLM_BASE_URL and config.LLM_API_KEY and config.EMBEDDINGS_MODEL):
            raise ConfigurationError(
                "Embeddings configuration not found. "
                "Set LLM_BASE_URL, LLM_API_KEY and EMBEDDINGS_MODEL environment variables in .env file"
            )
        return cls(
            base_url=config.LLM_BASE_URL,
            api_key=config.LLM_API_KEY,
            model=config.EMBEDDINGS_MODEL,
            timeout=config.LLM_TIMEOUT,
        )


def create_embeddings(settings: Optional[EmbeddingsSettings] = None) -> OpenAIEmbeddings:
    """Create OpenAIEmbeddings instance against the OpenAI-compatible endpoint"""
    settings = settings or EmbeddingsSettings.from_config()
    return OpenAIEmbeddings(
        model=settings.model,
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout=settings.timeout,
        # Non-OpenAI model ids have no tiktoken encoding, send raw text
        check_embedding_ctx_length=False,
    )


def model_display_name(model: Any) -> str:
    """Best-effort model identifier used in telemetry metadata"""
    for attr in ("model_name", "model", "model_id"):
        value = getattr(model, attr, None)
        if isinstance(value, str) and value:
            return value
    bound = getattr(model, "bound", None)
    if bound is not None and bound is not model:
        return model_display_name(bound)
    return type(model).__name__
