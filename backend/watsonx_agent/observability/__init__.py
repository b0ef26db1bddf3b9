from .langfuse import (
    LangfuseAgentHandler,
    TracingSettings,
    create_agent_trace_handler,
    create_langfuse_client,
)
from .llm_handler import LangfuseLLMHandler, create_llm_trace_handler

__all__ = [
    "LangfuseAgentHandler",
    "LangfuseLLMHandler",
    "TracingSettings",
    "create_agent_trace_handler",
    "create_langfuse_client",
    "create_llm_trace_handler",
]
