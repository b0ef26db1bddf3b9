"""
Langfuse tracing for the tools agent.

One `LangfuseAgentHandler` is created per agent task and mirrors the step
loop as a trace hierarchy:

    trace-ai-agent-<workflow>            (root observation, trace attributes)
      span-ai-agent-<workflow>           (agent span)
        span-llm-<model>                 (one generation per model call)
        span-tool-<tool>                 (one span per tool call, keyed by run id)

Every observation opened for a task is ended exactly once: on agent finish,
on a model error, or when the task's root run ends or fails, whichever
comes first. Telemetry faults are logged and never reach the agent.
"""

import functools
import re
import time
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from langchain_core.agents import AgentAction, AgentFinish
from langchain_core.callbacks import AsyncCallbackHandler
from langchain_core.messages import BaseMessage
from langchain_core.outputs import LLMResult
from langfuse import Langfuse
from loguru import logger
from pydantic import BaseModel

from watsonx_agent.common.exceptions import TelemetryError
from watsonx_agent.core.constants import (
    DEFAULT_LLM_NAME,
    LANGFUSE_AGENT_USER_ID,
    LANGFUSE_LOG_NAME,
)
from watsonx_agent.observability.helpers import (
    end_spans,
    error_message,
    extract_llm_text,
    extract_token_usage,
    flush_client,
    redact_error_headers,
    slugify_workflow_name,
)

_HUMAN_PREFIX = re.compile(r"^Human:\s*")


def _now_ms() -> int:
    return int(time.time() * 1000)


def swallow_telemetry_errors(method: Callable) -> Callable:
    """Log and swallow any fault raised while recording telemetry."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except Exception as e:
            logger.warning(f"[{self.log_name}] {method.__name__} failed, telemetry skipped: {e}")
            return None

    return wrapper


class TracingSettings(BaseModel):
    """Connection settings of the Langfuse backend."""

    public_key: Optional[str] = None
    secret_key: Optional[str] = None
    host: Optional[str] = None
    enabled: bool = True

    @property
    def configured(self) -> bool:
        return bool(self.enabled and self.public_key and self.secret_key)

    @classmethod
    def from_config(cls, config: Any) -> "TracingSettings":
        return cls(
            public_key=config.LANGFUSE_PUBLIC_KEY or None,
            secret_key=config.LANGFUSE_SECRET_KEY or None,
            host=config.LANGFUSE_HOST or None,
            enabled=config.LANGFUSE_ENABLED,
        )


def _action_payload(action: AgentAction) -> Dict[str, Any]:
    return {
        "tool": action.tool,
        "tool_input": action.tool_input,
        "log": action.log,
        "tool_call_id": getattr(action, "tool_call_id", None),
    }


def _message_payload(messages: List[BaseMessage]) -> List[Dict[str, Any]]:
    return [{"role": message.type, "content": message.content} for message in messages]


def _llm_name(serialized: Optional[Dict[str, Any]], kwargs: Dict[str, Any]) -> str:
    invocation_params = kwargs.get("invocation_params") or {}
    name = invocation_params.get("model") or invocation_params.get("model_name")
    if not name and serialized:
        name = serialized.get("name")
        if not name and isinstance(serialized.get("id"), list) and serialized["id"]:
            name = serialized["id"][-1]
    return name or DEFAULT_LLM_NAME


class LangfuseAgentHandler(AsyncCallbackHandler):
    """
    Per-task Langfuse trace emitter for the tools agent.

    States: idle -> trace open -> agent span open -> (llm/tool spans)* -> closed.
    The trace and agent span open lazily on the first event that needs them,
    normally the first agent action; the first agent action also records
    the trace input.
    """

    run_inline = True
    raise_error = False

    log_name = LANGFUSE_LOG_NAME

    def __init__(
        self,
        client: Any,
        *,
        model_name: str,
        workflow_name: str,
        user_id: str = LANGFUSE_AGENT_USER_ID,
    ):
        self.name = "LangfuseAgentHandler"
        self.langfuse = client
        self.metadata = {"modelName": model_name, "workflowName": workflow_name}
        self.workflow_slug = slugify_workflow_name(workflow_name)
        self.user_id = user_id

        self.trace: Any = None
        self.agent_span: Any = None
        self.llm_spans: Dict[UUID, Any] = {}
        self.tool_spans: Dict[UUID, Any] = {}

        self._root_run_id: Optional[UUID] = None
        self._action_recorded = False
        self._closed = False

    @property
    def trace_name(self) -> str:
        return f"trace-ai-agent-{self.workflow_slug}"

    @property
    def closed(self) -> bool:
        return self._closed

    def _meta(self, **fields: Any) -> Dict[str, Any]:
        return {**fields, **self.metadata}

    def _ensure_trace(self) -> bool:
        """Open the trace and agent span if needed. False once the task is closed."""
        if self._closed:
            logger.debug(f"[{self.log_name}] Trace already closed, event ignored")
            return False
        if self.trace is None:
            logger.debug(f"[{self.log_name}] Creating AI Agent trace...")
            self.trace = self.langfuse.start_span(name=self.trace_name)
            self.trace.update_trace(name=self.trace_name, user_id=self.user_id)
        if self.agent_span is None:
            logger.debug(f"[{self.log_name}] Creating AI Agent span...")
            self.agent_span = self.trace.start_span(name=f"span-ai-agent-{self.workflow_slug}")
        return True

    async def _close(self) -> None:
        """End every open observation once, children before the root, then flush."""
        if self._closed:
            return
        self._closed = True
        spans = [*self.tool_spans.values(), *self.llm_spans.values(), self.agent_span, self.trace]
        self.tool_spans.clear()
        self.llm_spans.clear()
        end_spans(spans, self.log_name)
        await flush_client(self.langfuse, self.log_name)

    async def aclose(self) -> None:
        """Close any observation still open. Safe to call repeatedly."""
        try:
            await self._close()
        except Exception as e:
            logger.warning(f"[{self.log_name}] Closing trace failed: {e}")

    def _record_error(self, error: BaseException, kind: str) -> str:
        headers = redact_error_headers(error)
        message = error_message(error)
        end_time = _now_ms()
        if self.trace is not None:
            self.trace.update(
                output=f"[{self.log_name}] {kind} Error: {message}",
                level="ERROR",
                status_message=message,
                metadata=self._meta(step="error", endTime=end_time, headers=headers),
            )
            self.trace.update_trace(output=f"[{self.log_name}] {kind} Error: {message}")
        return message

    # --- Chain ---

    @swallow_telemetry_errors
    async def on_chain_start(
        self,
        serialized: Optional[Dict[str, Any]],
        inputs: Dict[str, Any],
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> None:
        if parent_run_id is None and self._root_run_id is None:
            self._root_run_id = run_id

    @swallow_telemetry_errors
    async def on_chain_end(self, outputs: Dict[str, Any], *, run_id: UUID, **kwargs: Any) -> None:
        if run_id == self._root_run_id:
            await self._close()

    @swallow_telemetry_errors
    async def on_chain_error(self, error: BaseException, *, run_id: UUID, **kwargs: Any) -> None:
        if run_id != self._root_run_id or self._closed:
            return
        if self.trace is not None:
            message = self._record_error(error, "Agent")
            if self.agent_span is not None:
                self.agent_span.update(
                    output=f"[{self.log_name}] Error: {message}",
                    level="ERROR",
                    status_message=message,
                    metadata=self._meta(step="agent_error", endTime=_now_ms()),
                )
        await self._close()

    # --- Agent ---

    @swallow_telemetry_errors
    async def on_agent_action(self, action: AgentAction, *, run_id: UUID, **kwargs: Any) -> None:
        if not self._ensure_trace():
            return
        if self._action_recorded:
            return
        self._action_recorded = True
        payload = _action_payload(action)
        start_time = _now_ms()

        logger.debug(f"[{self.log_name}] Updating trace and AI Agent span with input and metadata...")
        self.trace.update(input=payload, metadata=self._meta(step="started", startTime=start_time))
        self.trace.update_trace(input=payload)
        self.agent_span.update(input=payload, metadata=self._meta(step="agent_start", startAgentTime=start_time))

    @swallow_telemetry_errors
    async def on_agent_finish(self, finish: AgentFinish, *, run_id: UUID, **kwargs: Any) -> None:
        if not self._ensure_trace():
            return
        end_time = _now_ms()

        logger.debug(f"[{self.log_name}] Updating trace and AI Agent span with output and metadata...")
        self.trace.update(output=finish.return_values, metadata=self._meta(step="completed", endTime=end_time))
        self.trace.update_trace(output=finish.return_values)
        self.agent_span.update(
            output={"return_values": finish.return_values, "log": finish.log},
            metadata=self._meta(step="agent_completed", endTime=end_time),
        )
        await self._close()

    # --- LLM ---

    def _open_llm_span(self, run_id: UUID, name: str, model_input: Any) -> None:
        if not self._ensure_trace():
            return
        logger.debug(f"[{self.log_name}] Creating LLM span...")
        self.llm_spans[run_id] = self.agent_span.start_generation(
            name=f"span-llm-{name}",
            model=name,
            input=model_input,
            metadata=self._meta(step="started", startLlmTime=_now_ms()),
        )

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
        self._open_llm_span(run_id, _llm_name(serialized, kwargs), model_input)

    @swallow_telemetry_errors
    async def on_llm_start(
        self,
        serialized: Dict[str, Any],
        prompts: List[str],
        *,
        run_id: UUID,
        **kwargs: Any,
    ) -> None:
        raw = prompts[0] if prompts else ""
        self._open_llm_span(run_id, _llm_name(serialized, kwargs), _HUMAN_PREFIX.sub("", raw))

    @swallow_telemetry_errors
    async def on_llm_end(self, response: LLMResult, *, run_id: UUID, **kwargs: Any) -> None:
        span = self.llm_spans.get(run_id)
        if span is None:
            return
        usage = extract_token_usage(response)

        logger.debug(f"[{self.log_name}] Updating LLM span with output and metadata...")
        span.update(
            output=extract_llm_text(response),
            usage_details={
                "input": usage["promptTokens"],
                "output": usage["completionTokens"],
                "total": usage["totalTokens"],
            },
            metadata=self._meta(step="llm_completed", endLlmTime=_now_ms(), **usage),
        )

    @swallow_telemetry_errors
    async def on_llm_error(self, error: BaseException, *, run_id: UUID, **kwargs: Any) -> None:
        if self._closed:
            return
        logger.debug(f"[{self.log_name}] Updating trace and LLM span with LLM error...")
        message = self._record_error(error, "LLM")
        span = self.llm_spans.get(run_id)
        if span is not None:
            span.update(
                output=f"[{self.log_name}] Error: {message}",
                level="ERROR",
                status_message=message,
                metadata=self._meta(step="llm_error", endLlmTime=_now_ms()),
            )
        await self._close()

    # --- Tools ---

    @swallow_telemetry_errors
    async def on_tool_start(
        self,
        serialized: Dict[str, Any],
        input_str: str,
        *,
        run_id: UUID,
        metadata: Optional[Dict[str, Any]] = None,
        inputs: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        if not self._ensure_trace():
            return
        tool_name = (serialized or {}).get("name") or kwargs.get("name") or "tool"
        logger.debug(f"[{self.log_name}] Tool {tool_name} start, creating Tool span...")
        self.tool_spans[run_id] = self.agent_span.start_span(
            name=f"span-tool-{tool_name}",
            input=inputs if inputs is not None else input_str,
            metadata=self._meta(step="tool_start", toolMetadata=metadata, toolStartTime=_now_ms()),
        )

    @swallow_telemetry_errors
    async def on_tool_end(self, output: Any, *, run_id: UUID, **kwargs: Any) -> None:
        span = self.tool_spans.get(run_id)
        if span is None:
            return
        logger.debug(f"[{self.log_name}] Updating Tool span...")
        span.update(
            output=getattr(output, "content", output),
            metadata=self._meta(step="tool_completed", toolEndTime=_now_ms()),
        )

    @swallow_telemetry_errors
    async def on_tool_error(self, error: BaseException, *, run_id: UUID, **kwargs: Any) -> None:
        if self._closed:
            return
        logger.debug(f"[{self.log_name}] Updating trace and Tool span with Tool error...")
        message = self._record_error(error, "Tool")
        span = self.tool_spans.pop(run_id, None)
        if span is not None:
            span.update(
                output=f"[{self.log_name}] Error: {message}",
                level="ERROR",
                status_message=message,
                metadata=self._meta(step="tool_error", toolEndTime=_now_ms()),
            )
            end_spans([span], self.log_name)
        # The step loop keeps going after a tool error; trace and agent span
        # stay open until the finish or the root run ends.
        await flush_client(self.langfuse, self.log_name)


def create_langfuse_client(settings: TracingSettings) -> Any:
    try:
        return Langfuse(
            public_key=settings.public_key,
            secret_key=settings.secret_key,
            host=settings.host,
        )
    except Exception as e:
        raise TelemetryError(f"Cannot initialise Langfuse client: {e}", cause=e) from e


def create_agent_trace_handler(
    settings: Optional[TracingSettings],
    *,
    model_name: str,
    workflow_name: str,
    client_factory: Callable[[TracingSettings], Any] = create_langfuse_client,
) -> Optional[LangfuseAgentHandler]:
    """
    Create the Langfuse handler for one agent task.

    Returns None when tracing is disabled, not configured, or the backend
    client cannot be created; the task then runs untraced.
    """
    if settings is None or not settings.configured:
        logger.debug("[langfuse] Langfuse tracing is disabled")
        return None
    try:
        client = client_factory(settings)
        return LangfuseAgentHandler(client, model_name=model_name, workflow_name=workflow_name)
    except Exception as e:
        logger.warning(f"[langfuse] Failed to create Langfuse handler, continuing without tracing: {e}")
        return None
