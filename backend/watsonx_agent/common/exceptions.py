"""
Exception taxonomy for the agent executor.

- **Task-level errors** (`ConfigurationError`, `ToolExecutionError`, `ModelInvocationError`,
  `IterationLimitExceeded`, `ExecutionCancelledError`) are isolated per input item. The batch
  orchestrator either converts them into an error-shaped result or aborts the run with
  `NodeOperationError`.
- **`TelemetryError`** wraps tracing-backend faults. It is only ever logged.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AgentExecutorError(Exception):
    """Base class for every error raised by the executor."""

    def __init__(
        self,
        message: str,
        *,
        item_index: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.item_index = item_index
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ConfigurationError(AgentExecutorError):
    """Required input or configuration is missing. Never retried."""


class ToolExecutionError(AgentExecutorError):
    """A tool call failed. The step loop records it as an observation."""

    def __init__(self, tool_name: str, message: str, *, cause: Optional[BaseException] = None):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' failed: {message}", cause=cause)


class ModelInvocationError(AgentExecutorError):
    """The model provider failed. Surfaced as a task failure, not retried."""

    def __init__(
        self,
        message: str,
        *,
        headers: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        self.headers = headers or {}
        super().__init__(message, cause=cause)


class IterationLimitExceeded(AgentExecutorError):
    """The step loop exhausted its iteration cap without a final answer."""

    def __init__(self, max_iterations: int, message: Optional[str] = None):
        self.max_iterations = max_iterations
        super().__init__(message or f"IterationLimitExceeded: agent stopped after {max_iterations} iteration(s)")


class ExecutionCancelledError(AgentExecutorError):
    """The run-level cancel signal was observed while the task was in flight."""

    def __init__(self, message: str = "Execution was cancelled", *, item_index: Optional[int] = None):
        super().__init__(message, item_index=item_index)


class TelemetryError(AgentExecutorError):
    """Tracing backend fault. Logged and swallowed, never propagated."""


class NodeOperationError(AgentExecutorError):
    """Aborts the whole run in strict mode, pointing at the failing item."""

    def __init__(self, error: BaseException, *, item_index: int):
        super().__init__(str(error), item_index=item_index, cause=error)

    def __str__(self) -> str:
        return f"{self.message} [item {self.item_index}]"
