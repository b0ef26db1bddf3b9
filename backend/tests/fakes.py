"""
Fakes for the agent executor tests.

- ``ScriptedChatModel``: chat model whose replies come from a responder callable
- ``RecordingLangfuse``: in-memory Langfuse client counting opened/ended observations
"""

import inspect
from typing import Any, Callable, Dict, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from langchain_core.tools import tool

from watsonx_agent.core.constants import FINAL_RESPONSE_TOOL_NAME

# ---------------------------------------------------------------------------
# Chat model
# ---------------------------------------------------------------------------


class ScriptedChatModel(BaseChatModel):
    """Chat model answering with ``responder(messages)``.

    The responder may be sync or async and may return an exception instance,
    which is raised as the provider error.
    """

    responder: Callable[[List[BaseMessage]], Any]
    model_name: str = "scripted-model"
    calls: int = 0
    bound_tools: List[Any] = []

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = list(tools)
        return self

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        raise NotImplementedError("ScriptedChatModel is async only")

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        self.calls += 1
        reply = self.responder(messages)
        if inspect.isawaitable(reply):
            reply = await reply
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, str):
            reply = AIMessage(content=reply)
        return ChatResult(generations=[ChatGeneration(message=reply)])


def final_call(output: Any, call_id: str = "call_final", **kwargs) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": FINAL_RESPONSE_TOOL_NAME, "args": {"output": output}, "id": call_id}],
        **kwargs,
    )


def tool_call(name: str, args: Dict[str, Any], call_id: str = "call_1", content: str = "") -> AIMessage:
    return AIMessage(content=content, tool_calls=[{"name": name, "args": args, "id": call_id}])


def user_text(messages: List[BaseMessage]) -> str:
    """Text of the last human message (first text part for multimodal content)."""
    for message in reversed(messages):
        if isinstance(message, HumanMessage):
            if isinstance(message.content, str):
                return message.content
            return message.content[0]["text"]
    return ""


def tool_results(messages: List[BaseMessage]) -> List[ToolMessage]:
    return [message for message in messages if isinstance(message, ToolMessage)]


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@tool
def lookup(city: str) -> str:
    """Look up the weather of a city."""
    return f"sunny in {city}"


@tool
def broken(query: str) -> str:
    """A tool that always fails."""
    raise ValueError(f"backend unavailable for {query}")


# ---------------------------------------------------------------------------
# Langfuse client
# ---------------------------------------------------------------------------


class RecordingObservation:
    def __init__(self, client: "RecordingLangfuse", name: str, kind: str, parent: Optional["RecordingObservation"], fields: Dict[str, Any]):
        self.client = client
        self.name = name
        self.kind = kind
        self.parent = parent
        self.fields = fields
        self.updates: List[Dict[str, Any]] = []
        self.trace_updates: List[Dict[str, Any]] = []
        self.end_count = 0

    def update(self, **fields):
        self.updates.append(fields)
        return self

    def update_trace(self, **fields):
        self.trace_updates.append(fields)
        return self

    def start_span(self, name: str, **fields):
        return self.client._open(name, "span", self, fields)

    def start_generation(self, name: str, **fields):
        return self.client._open(name, "generation", self, fields)

    def end(self):
        self.end_count += 1

    @property
    def steps(self) -> List[str]:
        return [u["metadata"]["step"] for u in self.updates if u.get("metadata") and "step" in u["metadata"]]

    @property
    def last_update(self) -> Dict[str, Any]:
        return self.updates[-1] if self.updates else {}


class RecordingLangfuse:
    """Stands in for ``langfuse.Langfuse`` and records every call."""

    def __init__(self, fail_flush: bool = False):
        self.fail_flush = fail_flush
        self.observations: List[RecordingObservation] = []
        self.flush_count = 0

    def _open(self, name, kind, parent, fields):
        observation = RecordingObservation(self, name, kind, parent, fields)
        self.observations.append(observation)
        return observation

    def start_span(self, name: str, **fields):
        return self._open(name, "span", None, fields)

    def flush(self):
        self.flush_count += 1
        if self.fail_flush:
            raise ConnectionError("langfuse unreachable")

    def named(self, prefix: str) -> List[RecordingObservation]:
        return [o for o in self.observations if o.name.startswith(prefix)]

    @property
    def open_count(self) -> int:
        return len(self.observations)

    @property
    def close_count(self) -> int:
        return sum(o.end_count for o in self.observations)

    @property
    def all_closed_once(self) -> bool:
        return all(o.end_count == 1 for o in self.observations)


class ProviderError(Exception):
    """Model provider error carrying response headers."""

    def __init__(self, message: str, headers: Dict[str, str]):
        super().__init__(message)
        self.headers = headers
