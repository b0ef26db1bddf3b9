"""
Batch orchestrator for the tools agent.

Splits the input items into consecutive batches, runs one step loop per item
concurrently inside a batch and pauses between batches. Results keep the
input order whatever order the tasks complete in.
"""

import asyncio
from typing import Any, Callable, List, Optional, Sequence, Union

from langchain_core.chat_history import BaseChatMessageHistory
from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import BaseOutputParser
from langchain_core.tools import BaseTool
from loguru import logger

from watsonx_agent.agent_core.output import build_item_json
from watsonx_agent.agent_core.runtime import AgentRuntime
from watsonx_agent.agent_core.types import AgentNodeOptions, AgentTask, ExecutionResult, InputItem
from watsonx_agent.common.exceptions import ExecutionCancelledError, NodeOperationError
from watsonx_agent.infra.llm import model_display_name
from watsonx_agent.observability.langfuse import (
    LangfuseAgentHandler,
    TracingSettings,
    create_agent_trace_handler,
)
from watsonx_agent.prompts import resolve_prompt_input

HandlerFactory = Callable[..., Optional[LangfuseAgentHandler]]


class ToolsAgentExecutor:
    """
    Runs the tools agent over a list of input items.

    One `AgentRuntime` is shared by all items; each item gets its own task,
    scratchpad and Langfuse handler.
    """

    def __init__(
        self,
        model: BaseChatModel,
        tools: Optional[Sequence[BaseTool]] = None,
        options: Optional[AgentNodeOptions] = None,
        *,
        output_parser: Optional[BaseOutputParser] = None,
        memory: Optional[BaseChatMessageHistory] = None,
        tracing: Optional[TracingSettings] = None,
        handler_factory: HandlerFactory = create_agent_trace_handler,
    ):
        self.options = options or AgentNodeOptions()
        self.output_parser = output_parser
        self.memory = memory
        self.tracing = tracing
        self.handler_factory = handler_factory
        self.model_name = model_display_name(model)
        self.runtime = AgentRuntime(
            model,
            tools,
            output_parser=output_parser,
            memory=memory,
            early_stopping_method=self.options.early_stopping_method,
        )

    def build_task(self, item: InputItem, item_index: int) -> AgentTask:
        """Create the immutable task of one input item.

        Raises:
            ConfigurationError: the resolved input text is empty
        """
        text = resolve_prompt_input(item, self.options, item_index)
        images = list(item.binary.values()) if self.options.passthrough_binary_images else []
        return AgentTask(
            item_index=item_index,
            input=text,
            system_message=self.options.system_message,
            max_iterations=self.options.max_iterations,
            return_intermediate_steps=self.options.return_intermediate_steps,
            passthrough_binary_images=self.options.passthrough_binary_images,
            images=[image for image in images if image.is_image],
        )

    def _create_trace_handler(self) -> Optional[LangfuseAgentHandler]:
        try:
            return self.handler_factory(
                self.tracing,
                model_name=self.model_name,
                workflow_name=self.options.workflow_name,
            )
        except Exception as e:
            logger.warning(f"[langfuse] Tracing disabled for this task: {e}")
            return None

    async def run_item(
        self,
        item: InputItem,
        item_index: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> dict:
        """Run the step loop for one item and return its output JSON."""
        task = self.build_task(item, item_index)
        handler = self._create_trace_handler()
        try:
            context = await self.runtime.run(
                task,
                callbacks=[handler] if handler is not None else None,
                cancel_event=cancel_event,
            )
        finally:
            if handler is not None:
                await handler.aclose()
        return build_item_json(context, output_parser=self.output_parser, memory=self.memory)

    async def execute(
        self,
        items: Sequence[Union[InputItem, dict]],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[ExecutionResult]:
        """
        Run every item and return one result per item, in input order.

        Raises:
            NodeOperationError: an item failed and continue_on_fail is off;
                raised once the batch holding that item has settled
        """
        input_items = [item if isinstance(item, InputItem) else InputItem.model_validate(item) for item in items]
        batch_size = self.options.batch_size
        delay = self.options.delay_between_batches
        results: List[ExecutionResult] = []

        logger.info(f"[executor] Running {len(input_items)} item(s) in batches of {batch_size}")
        for start in range(0, len(input_items), batch_size):
            batch = input_items[start:start + batch_size]
            outcomes = await self._run_batch(batch, start, cancel_event)

            for offset, outcome in enumerate(outcomes):
                item_index = start + offset
                if isinstance(outcome, BaseException):
                    if not self.options.continue_on_fail:
                        logger.error(f"[executor] Item {item_index} failed, aborting run: {outcome}")
                        raise NodeOperationError(outcome, item_index=item_index) from outcome
                    logger.bind(item_index=item_index).warning(f"[executor] Item {item_index} failed: {outcome}")
                    results.append(ExecutionResult.failure(item_index, outcome))
                else:
                    results.append(ExecutionResult.success(item_index, outcome))

            if start + batch_size < len(input_items) and delay > 0:
                logger.debug(f"[executor] Waiting {delay}ms before next batch")
                await asyncio.sleep(delay / 1000)

        return results

    async def _run_batch(
        self,
        batch: List[InputItem],
        start: int,
        cancel_event: Optional[asyncio.Event],
    ) -> List[Any]:
        """Settle every task of the batch; failures are returned, not raised."""
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"[executor] Cancelled, skipping items {start}..{start + len(batch) - 1}")
            return [ExecutionCancelledError(item_index=start + offset) for offset in range(len(batch))]

        return await asyncio.gather(
            *(self.run_item(item, start + offset, cancel_event) for offset, item in enumerate(batch)),
            return_exceptions=True,
        )
