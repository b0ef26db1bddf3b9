from .llm import (
    ChatModelSettings,
    EmbeddingsSettings,
    create_chat_model,
    create_embeddings,
    model_display_name,
)

__all__ = [
    "ChatModelSettings",
    "EmbeddingsSettings",
    "create_chat_model",
    "create_embeddings",
    "model_display_name",
]
