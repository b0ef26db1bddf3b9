"""
Agent Runtime - the tools agent step loop.

Implements the loop that, for one agent task:
1. Calls the model with the prepared prompt plus the scratchpad
2. Turns tool calls into agent actions and runs the tools
3. Appends each observation to the scratchpad and asks the model again
4. Stops when the finalize-answer tool is called or the iteration cap is hit

Agent action/finish, model and tool events are reported through the LangChain
callback manager so tracing handlers see the whole run as one chain.
"""

import asyncio
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from langchain_core.agents import AgentFinish, AgentStep
from langchain_core.callbacks import AsyncCallbackManager, AsyncCallbackManagerForChainRun, Callbacks
from langchain_core.chat_history import BaseChatMessageHistory
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from langchain_core.output_parsers import BaseOutputParser
from langchain_core.tools import BaseTool
from loguru import logger

from watsonx_agent.agent_core.output import steps_to_dicts
from watsonx_agent.agent_core.types import AgentDecision, AgentTask, ToolCallAction
from watsonx_agent.common.exceptions import (
    ExecutionCancelledError,
    IterationLimitExceeded,
    ModelInvocationError,
    ToolExecutionError,
)
from watsonx_agent.core.constants import (
    FINAL_RESPONSE_TOOL_NAME,
    MAX_ITERATIONS_STOP_MESSAGE,
    OUTPUT_KEY,
)
from watsonx_agent.observability.helpers import error_message, redact_error_headers
from watsonx_agent.prompts import PreparedPrompt, prepare_messages
from watsonx_agent.tools import assemble_tools, find_tool
from watsonx_agent.tools.builtin import serialize_final_payload

RUN_NAME = "ToolsAgentExecutor"


def _content_text(content: Any) -> str:
    """Plain text of a message content (string or list of content parts)."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def _call_id(call: Dict[str, Any]) -> str:
    return call.get("id") or f"call_{uuid4().hex[:24]}"


def _tool_call_message(message: AIMessage, actions: List[ToolCallAction]) -> AIMessage:
    """Scratchpad copy of ``message`` whose tool calls carry the action ids."""
    return AIMessage(
        content=message.content,
        tool_calls=[
            {
                "name": action.tool,
                "args": action.tool_input if isinstance(action.tool_input, dict) else {},
                "id": action.tool_call_id,
            }
            for action in actions
        ],
    )


def parse_decision(message: AIMessage) -> AgentDecision:
    """Parse a model reply into tool-call actions or a finish.

    A reply without tool calls is a finish carrying the reply text; the step
    loop still routes it through the finalize-answer tool.
    """
    text = _content_text(message.content)
    actions: List[ToolCallAction] = []
    for call in message.tool_calls:
        actions.append(
            ToolCallAction(
                tool=call["name"],
                tool_input=call.get("args") or {},
                log=f"\nInvoking: `{call['name']}` with `{call.get('args')}`\n{text}\n",
                tool_call_id=_call_id(call),
            )
        )
    for call in getattr(message, "invalid_tool_calls", None) or []:
        name = call.get("name") or "invalid_tool"
        actions.append(
            ToolCallAction(
                tool=name,
                tool_input=call.get("args") or "",
                log=f"Invalid tool call: {call.get('error')}",
                tool_call_id=_call_id(call),
            )
        )
    if actions:
        return actions
    return AgentFinish(return_values={OUTPUT_KEY: text}, log=text)


class AgentRuntime:
    """
    Tools agent step loop.

    The model, tools, output parser and memory are shared by every task run
    through the same runtime and are never mutated per task; scratchpad and
    steps live on the stack of `run`.
    """

    def __init__(
        self,
        model: BaseChatModel,
        tools: Optional[Sequence[BaseTool]] = None,
        *,
        output_parser: Optional[BaseOutputParser] = None,
        memory: Optional[BaseChatMessageHistory] = None,
        early_stopping_method: str = "force",
    ):
        self.model = model
        self.tools = assemble_tools(tools)
        self.output_parser = output_parser
        self.memory = memory
        self.early_stopping_method = early_stopping_method
        self.bound_model = model.bind_tools(self.tools)

    async def run(
        self,
        task: AgentTask,
        *,
        callbacks: Callbacks = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """
        Run the step loop for one task.

        Returns the working context of the finished loop, bookkeeping keys
        included; `output.build_item_json` strips them.

        Raises:
            ConfigurationError: the task input is empty
            ModelInvocationError: the model provider failed
            IterationLimitExceeded: cap hit with early_stopping_method="raise"
            ExecutionCancelledError: the cancel signal was observed
        """
        log = logger.bind(item_index=task.item_index)
        history = await self._load_history()
        prompt = prepare_messages(task, self.output_parser, history)

        callback_manager = AsyncCallbackManager.configure(inheritable_callbacks=callbacks)
        run_manager = await callback_manager.on_chain_start(
            {"name": RUN_NAME},
            {"input": task.input},
            name=RUN_NAME,
        )
        try:
            context = await self._loop(task, prompt, run_manager, cancel_event)
        except (Exception, asyncio.CancelledError) as e:
            log.warning(f"[agent] Item {task.item_index} failed: {e}")
            await run_manager.on_chain_error(e)
            raise

        await run_manager.on_chain_end({OUTPUT_KEY: context[OUTPUT_KEY]})
        await self._save_exchange(task.input, context[OUTPUT_KEY])
        return context

    async def _loop(
        self,
        task: AgentTask,
        prompt: PreparedPrompt,
        run_manager: AsyncCallbackManagerForChainRun,
        cancel_event: Optional[asyncio.Event],
    ) -> Dict[str, Any]:
        log = logger.bind(item_index=task.item_index)
        scratchpad: List[BaseMessage] = []
        steps: List[AgentStep] = []
        last_text = ""
        finish: Optional[AgentFinish] = None

        for iteration in range(task.max_iterations):
            self._check_cancelled(cancel_event, task)
            message = await self._call_model(prompt.messages + scratchpad, run_manager, cancel_event, task)
            self._check_cancelled(cancel_event, task)

            decision = parse_decision(message)
            text = _content_text(message.content)
            if text:
                last_text = text

            if isinstance(decision, AgentFinish):
                log.debug(f"[agent] Plain reply at iteration {iteration + 1}, routing through {FINAL_RESPONSE_TOOL_NAME}")
                actions = [
                    ToolCallAction(
                        tool=FINAL_RESPONSE_TOOL_NAME,
                        tool_input={OUTPUT_KEY: decision.return_values[OUTPUT_KEY]},
                        log=decision.log,
                        tool_call_id=f"call_{uuid4().hex[:24]}",
                    )
                ]
            else:
                actions = decision

            tool_messages: List[ToolMessage] = []
            for action in actions:
                await run_manager.on_agent_action(action)
                self._check_cancelled(cancel_event, task)
                if action.tool == FINAL_RESPONSE_TOOL_NAME:
                    payload, failed = await self._finalize(action, run_manager, cancel_event, task)
                    if not failed:
                        finish = AgentFinish(return_values={OUTPUT_KEY: payload}, log=action.log)
                        break
                    observation = payload
                else:
                    observation = await self._run_tool(action, run_manager, cancel_event, task)
                steps.append(AgentStep(action=action, observation=observation))
                tool_messages.append(
                    ToolMessage(content=str(observation), tool_call_id=action.tool_call_id, name=action.tool)
                )

            if finish is not None:
                await run_manager.on_agent_finish(finish)
                log.info(f"[agent] Item {task.item_index} finished after {iteration + 1} iteration(s)")
                return self._context(task, prompt, scratchpad, steps, finish)

            # Every ToolMessage must answer a tool call of the preceding AI message
            scratchpad.append(_tool_call_message(message, actions))
            scratchpad.extend(tool_messages)

        return await self._stop_at_limit(task, prompt, scratchpad, steps, last_text, run_manager)

    async def _stop_at_limit(
        self,
        task: AgentTask,
        prompt: PreparedPrompt,
        scratchpad: List[BaseMessage],
        steps: List[AgentStep],
        last_text: str,
        run_manager: AsyncCallbackManagerForChainRun,
    ) -> Dict[str, Any]:
        if self.early_stopping_method == "raise":
            raise IterationLimitExceeded(task.max_iterations)

        logger.bind(item_index=task.item_index).warning(
            f"[agent] Item {task.item_index} stopped after {task.max_iterations} iteration(s) without a final answer"
        )
        finish = AgentFinish(
            return_values={OUTPUT_KEY: last_text or MAX_ITERATIONS_STOP_MESSAGE},
            log=MAX_ITERATIONS_STOP_MESSAGE,
        )
        await run_manager.on_agent_finish(finish)
        context = self._context(task, prompt, scratchpad, steps, finish)
        context["iteration_limit_exceeded"] = True
        return context

    def _context(
        self,
        task: AgentTask,
        prompt: PreparedPrompt,
        scratchpad: List[BaseMessage],
        steps: List[AgentStep],
        finish: AgentFinish,
    ) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "input": task.input,
            "system_message": prompt.system_message,
            "formatting_instructions": prompt.formatting_instructions,
            "chat_history": prompt.chat_history,
            "agent_scratchpad": scratchpad,
            OUTPUT_KEY: finish.return_values[OUTPUT_KEY],
        }
        if task.return_intermediate_steps:
            context["intermediate_steps"] = steps_to_dicts(steps)
        return context

    # --- Model ---

    async def _call_model(
        self,
        messages: List[BaseMessage],
        run_manager: AsyncCallbackManagerForChainRun,
        cancel_event: Optional[asyncio.Event],
        task: AgentTask,
    ) -> AIMessage:
        try:
            return await self._cancellable(
                self.bound_model.ainvoke(messages, config={"callbacks": run_manager.get_child()}),
                cancel_event,
                task,
            )
        except ExecutionCancelledError:
            raise
        except Exception as e:
            headers = redact_error_headers(e)
            raise ModelInvocationError(
                f"Model invocation failed: {error_message(e)}",
                headers=headers,
                cause=e,
            ) from e

    # --- Tools ---

    def _tool_args(self, tool: BaseTool, tool_input: Any) -> Any:
        if tool.name == FINAL_RESPONSE_TOOL_NAME and OUTPUT_KEY in tool.args:
            if not isinstance(tool_input, dict) or OUTPUT_KEY not in tool_input:
                return {OUTPUT_KEY: tool_input}
        return tool_input

    async def _invoke_tool(
        self,
        tool: BaseTool,
        action: ToolCallAction,
        run_manager: AsyncCallbackManagerForChainRun,
        cancel_event: Optional[asyncio.Event],
        task: AgentTask,
    ) -> Any:
        return await self._cancellable(
            tool.ainvoke(self._tool_args(tool, action.tool_input), config={"callbacks": run_manager.get_child()}),
            cancel_event,
            task,
        )

    async def _run_tool(
        self,
        action: ToolCallAction,
        run_manager: AsyncCallbackManagerForChainRun,
        cancel_event: Optional[asyncio.Event],
        task: AgentTask,
    ) -> str:
        """Run one tool and return its observation. Tool failures become observations."""
        log = logger.bind(item_index=task.item_index)
        tool = find_tool(self.tools, action.tool)
        if tool is None:
            names = ", ".join(t.name for t in self.tools)
            log.warning(f"[agent] Model requested unknown tool '{action.tool}'")
            return f"{action.tool} is not a valid tool, try one of [{names}]."
        try:
            result = await self._invoke_tool(tool, action, run_manager, cancel_event, task)
        except ExecutionCancelledError:
            raise
        except Exception as e:
            error = ToolExecutionError(action.tool, error_message(e), cause=e)
            log.warning(f"[agent] {error}")
            return str(error)
        return getattr(result, "content", result)

    async def _finalize(
        self,
        action: ToolCallAction,
        run_manager: AsyncCallbackManagerForChainRun,
        cancel_event: Optional[asyncio.Event],
        task: AgentTask,
    ) -> Tuple[Any, bool]:
        """Invoke the finalize-answer tool. Returns (payload or error observation, failed)."""
        tool = find_tool(self.tools, FINAL_RESPONSE_TOOL_NAME)
        try:
            result = await self._invoke_tool(tool, action, run_manager, cancel_event, task)
        except ExecutionCancelledError:
            raise
        except Exception as e:
            error = ToolExecutionError(action.tool, error_message(e), cause=e)
            logger.bind(item_index=task.item_index).warning(f"[agent] {error}")
            return str(error), True
        return serialize_final_payload(getattr(result, "content", result)), False

    # --- Cancellation ---

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event], task: AgentTask) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionCancelledError(item_index=task.item_index)

    @staticmethod
    async def _cancellable(awaitable: Awaitable, cancel_event: Optional[asyncio.Event], task: AgentTask) -> Any:
        """Await ``awaitable`` unless the cancel signal fires first."""
        if cancel_event is None:
            return await awaitable

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()

        if work in done:
            return work.result()
        await asyncio.gather(work, return_exceptions=True)
        raise ExecutionCancelledError(item_index=task.item_index)

    # --- Memory ---

    async def _load_history(self) -> List[BaseMessage]:
        if self.memory is None:
            return []
        return list(await self.memory.aget_messages())

    async def _save_exchange(self, user_input: str, output: Any) -> None:
        if self.memory is None:
            return
        await self.memory.aadd_messages(
            [HumanMessage(content=user_input), AIMessage(content=serialize_final_payload(output))]
        )
