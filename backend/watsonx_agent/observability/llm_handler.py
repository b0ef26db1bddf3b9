"""
Langfuse tracing for standalone chat model calls.

Attach `LangfuseLLMHandler` to a chat model used outside the tools agent:
every model call gets its own trace with a single LLM span, both closed and
flushed as soon as the call ends or fails.
"""

from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from langchain_core.callbacks import AsyncCallbackHandler
from langchain_core.messages import BaseMessage
from langchain_core.outputs import LLMResult
from loguru import logger

from watsonx_agent.core.constants import LANGFUSE_LLM_LOG_NAME, LANGFUSE_LLM_USER_ID
from watsonx_agent.observability.helpers import (
    end_spans,
    error_message,
    extract_llm_text,
    extract_token_usage,
    flush_client,
    redact_error_headers,
    slugify_workflow_name,
)
from watsonx_agent.observability.langfuse import (
    _HUMAN_PREFIX,
    _llm_name,
    _message_payload,
    _now_ms,
    create_langfuse_client,
    swallow_telemetry_errors,
)


class LangfuseLLMHandler(AsyncCallbackHandler):
    """One trace per model call: trace -> span-llm-<workflow>."""

    run_inline = True
    raise_error = False

    log_name = LANGFUSE_LLM_LOG_NAME

    def __init__(self, client: Any, *, model_name: str, workflow_name: str, user_id: str = LANGFUSE_LLM_USER_ID):
        self.name = "LangfuseLLMHandler"
        self.langfuse = client
        self.metadata = {"modelName": model_name, "workflowName": workflow_name}
        self.workflow_slug = slugify_workflow_name(workflow_name)
        self.user_id = user_id
        # run_id -> (trace, span, start time in ms)
        self._runs: Dict[UUID, Tuple[Any, Any, int]] = {}

    def _open(self, run_id: UUID, llm_name: str, model_input: Any) -> None:
        start_time = _now_ms()
        trace_name = f"trace-test-{self.workflow_slug}"

        logger.debug(f"[{self.log_name}] Creating trace...")
        trace = self.langfuse.start_span(name=trace_name, input=model_input)
        trace.update_trace(name=trace_name, user_id=self.user_id, input=model_input)
        trace.update(metadata={"step": "started", "startTime": start_time, **self.metadata})

        logger.debug(f"[{self.log_name}] Creating span...")
        span = trace.start_generation(
            name=f"span-llm-{self.workflow_slug}",
            model=llm_name,
            input=model_input,
            metadata={"step": "started", "startTime": start_time, **self.metadata},
        )
        self._runs[run_id] = (trace, span, start_time)

    async def _finish(self, run_id: UUID) -> None:
        trace, span, _ = self._runs.pop(run_id)
        end_spans([span, trace], self.log_name)
        await flush_client(self.langfuse, self.log_name)

    @swallow_telemetry_errors
    async def on_chat_model_start(
        self,
        serialized: Dict[str, Any],
        messages: List[List[BaseMessage]],
        *,
        run_id: UUID,
        **kwargs: Any,
    ) -> None:
        model_input = _message_payload(messages[0]) if messages else []
        self._open(run_id, _llm_name(serialized, kwargs), model_input)

    @swallow_telemetry_errors
    async def on_llm_start(self, serialized: Dict[str, Any], prompts: List[str], *, run_id: UUID, **kwargs: Any) -> None:
        raw = prompts[0] if prompts else ""
        self._open(run_id, _llm_name(serialized, kwargs), _HUMAN_PREFIX.sub("", raw))

    @swallow_telemetry_errors
    async def on_llm_end(self, response: LLMResult, *, run_id: UUID, **kwargs: Any) -> None:
        if run_id not in self._runs:
            return
        trace, span, _ = self._runs[run_id]
        text = extract_llm_text(response)
        usage = extract_token_usage(response)
        metadata = {"step": "completed", "endTime": _now_ms(), **usage, **self.metadata}

        logger.debug(f"[{self.log_name}] Updating trace and span with output and metadata...")
        trace.update(output=text, metadata=metadata)
        trace.update_trace(output=text)
        span.update(
            output=text,
            usage_details={"input": usage["promptTokens"], "output": usage["completionTokens"], "total": usage["totalTokens"]},
            metadata=metadata,
        )
        await self._finish(run_id)

    @swallow_telemetry_errors
    async def on_llm_error(self, error: BaseException, *, run_id: UUID, **kwargs: Any) -> None:
        if run_id not in self._runs:
            return
        trace, span, _ = self._runs[run_id]
        headers = redact_error_headers(error)
        message = error_message(error)
        output = f"[{self.log_name}] Error: {message}"
        metadata = {"step": "error", "endTime": _now_ms(), "headers": headers, **self.metadata}

        logger.debug(f"[{self.log_name}] Updating trace and span with LLM error...")
        trace.update(output=output, level="ERROR", status_message=message, metadata=metadata)
        trace.update_trace(output=output)
        span.update(output=output, level="ERROR", status_message=message, metadata=metadata)
        await self._finish(run_id)

    @property
    def open_runs(self) -> int:
        return len(self._runs)


def create_llm_trace_handler(settings: Optional[Any], *, model_name: str, workflow_name: str) -> Optional[LangfuseLLMHandler]:
    """Langfuse handler for standalone model calls, or None when tracing is off."""
    if settings is None or not settings.configured:
        return None
    try:
        return LangfuseLLMHandler(create_langfuse_client(settings), model_name=model_name, workflow_name=workflow_name)
    except Exception as e:
        logger.warning(f"[langfuse] Failed to create Langfuse LLM handler: {e}")
        return None
