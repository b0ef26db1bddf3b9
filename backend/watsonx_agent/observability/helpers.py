"""
Helpers shared by the Langfuse callback handlers.
"""

import asyncio
import re
from collections.abc import Mapping, MutableMapping
from typing import Any, Dict, Iterable, Optional

from langchain_core.outputs import LLMResult
from loguru import logger

from watsonx_agent.core.constants import MISSING_LLM_OUTPUT, SAFE_HEADER_PREFIX

_WHITESPACE = re.compile(r"\s+")


def slugify_workflow_name(name: str) -> str:
    return _WHITESPACE.sub("-", name.strip().lower())


def filter_safe_headers(headers: Mapping) -> Dict[str, Any]:
    return {key: value for key, value in headers.items() if str(key).startswith(SAFE_HEADER_PREFIX)}


def redact_error_headers(error: Any) -> Optional[Dict[str, Any]]:
    """Drop every response header without the safe prefix from ``error``.

    Handles exceptions exposing a ``headers`` mapping, provider errors keeping
    them on ``response.headers`` (openai ``APIStatusError``) and dict-shaped
    errors with a ``headers`` key. The error is rewritten in place so nothing
    downstream sees the removed headers. Returns the retained headers, or
    None when the error carries none.
    """
    if isinstance(error, Mapping):
        headers = error.get("headers")
    else:
        headers = getattr(error, "headers", None)
        if headers is None:
            headers = getattr(getattr(error, "response", None), "headers", None)
    if not isinstance(headers, Mapping):
        return None

    safe = filter_safe_headers(headers)
    if isinstance(headers, MutableMapping):
        for key in [k for k in headers.keys() if not str(k).startswith(SAFE_HEADER_PREFIX)]:
            del headers[key]
    elif isinstance(error, MutableMapping):
        error["headers"] = dict(safe)
    else:
        try:
            setattr(error, "headers", dict(safe))
        except (AttributeError, TypeError):
            logger.debug("[langfuse] Error headers are read-only, recording filtered copy only")
    return safe


def error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        return str(error.get("message", error))
    return str(error) or type(error).__name__


def extract_llm_text(response: Optional[LLMResult]) -> str:
    """First generation text of an LLM result."""
    if response is None or not response.generations:
        return MISSING_LLM_OUTPUT
    first = response.generations[0]
    generation = first[0] if isinstance(first, list) and first else first
    text = getattr(generation, "text", None)
    if text:
        return text
    message = getattr(generation, "message", None)
    tool_calls = getattr(message, "tool_calls", None)
    if tool_calls:
        return ", ".join(f"{call['name']}({call['args']})" for call in tool_calls)
    return MISSING_LLM_OUTPUT


def extract_token_usage(response: Optional[LLMResult]) -> Dict[str, int]:
    """Token counters of an LLM result.

    Prefers the message ``usage_metadata`` and falls back to the provider's
    ``llm_output.token_usage``. Absent counters are zero and a missing total
    is computed as input + output.
    """
    input_tokens = output_tokens = total_tokens = 0
    try:
        usage: Mapping = {}
        if response is not None and response.generations:
            first = response.generations[0]
            generation = first[0] if isinstance(first, list) and first else first
            message = getattr(generation, "message", None)
            usage = getattr(message, "usage_metadata", None) or {}
        if usage:
            input_tokens = int(usage.get("input_tokens") or 0)
            output_tokens = int(usage.get("output_tokens") or 0)
            total_tokens = int(usage.get("total_tokens") or 0)
        elif response is not None and response.llm_output:
            token_usage = response.llm_output.get("token_usage") or {}
            input_tokens = int(token_usage.get("prompt_tokens") or 0)
            output_tokens = int(token_usage.get("completion_tokens") or 0)
            total_tokens = int(token_usage.get("total_tokens") or 0)
    except (AttributeError, IndexError, TypeError, ValueError) as e:
        logger.debug(f"[langfuse] Unable to read token usage: {e}")

    return {
        "promptTokens": input_tokens,
        "completionTokens": output_tokens,
        "totalTokens": total_tokens or input_tokens + output_tokens,
    }


def end_spans(spans: Iterable[Any], log_name: str) -> int:
    """End every span, tolerating failures of individual spans. Returns the number ended."""
    ended = 0
    for span in spans:
        if span is None:
            continue
        try:
            span.end()
            ended += 1
        except Exception as e:
            logger.warning(f"[{log_name}] Failed to end span: {e}")
    return ended


async def flush_client(client: Any, log_name: str) -> None:
    """Flush the Langfuse client off the event loop. Errors are logged only."""
    logger.debug(f"[{log_name}] Flushing Langfuse...")
    try:
        await asyncio.to_thread(client.flush)
    except Exception as e:
        logger.warning(f"[{log_name}] Langfuse flush failed: {e}")
