"""
Message preparation for the tools agent.

Builds the ordered message list handed to the model for one task:

1. system message (override or default) with the finalize-tool instruction
2. prior conversation history from memory
3. the user input, optionally with image attachments and, when an output
   parser is configured, its format instructions appended at the end

The scratchpad (tool calls and observations) is appended by the step loop.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_core.output_parsers import BaseOutputParser
from loguru import logger

from watsonx_agent.agent_core.types import AgentNodeOptions, AgentTask, BinaryData, InputItem
from watsonx_agent.common.exceptions import ConfigurationError
from watsonx_agent.core.constants import CHAT_INPUT_KEY
from watsonx_agent.prompts.system_prompts import (
    FORMATTING_INSTRUCTIONS,
    OUTPUT_FORMAT_PREAMBLE,
    SYSTEM_MESSAGE,
)


@dataclass(frozen=True)
class PreparedPrompt:
    """Rendered prompt for one task plus the values it was rendered from."""

    system_message: str
    formatting_instructions: str
    chat_history: List[BaseMessage] = field(default_factory=list)
    messages: List[BaseMessage] = field(default_factory=list)


def resolve_prompt_input(item: InputItem, options: AgentNodeOptions, item_index: Optional[int] = None) -> str:
    """Resolve the user input text of an item.

    ``auto`` reads the ``chatInput`` field of the item, ``define`` uses the
    configured text.
    """
    if options.prompt_type == "define":
        value: Any = options.text
    else:
        value = item.json_data.get(CHAT_INPUT_KEY)

    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError('The "text" parameter is empty.', item_index=item_index)
    return value if isinstance(value, str) else str(value)


def append_instruction(text: str, instruction: Optional[str]) -> str:
    """Append ``instruction`` to ``text`` unless it is already present."""
    if not instruction:
        return text
    if instruction in text:
        return text
    return f"{text}\n\n{instruction}" if text else instruction


def render_system_message(system_message: Optional[str], formatting_instructions: str) -> str:
    return append_instruction(system_message or SYSTEM_MESSAGE, formatting_instructions)


def output_format_instructions(output_parser: Optional[BaseOutputParser]) -> Optional[str]:
    """Format instructions of the configured output parser, if it provides any."""
    if output_parser is None:
        return None
    try:
        instructions = output_parser.get_format_instructions()
    except NotImplementedError:
        logger.warning(f"[agent] Output parser {type(output_parser).__name__} provides no format instructions")
        return None
    if not instructions:
        return None
    return f"{OUTPUT_FORMAT_PREAMBLE}\n{instructions}"


def build_image_parts(images: Sequence[BinaryData]) -> List[Dict[str, Any]]:
    """Convert image attachments into chat content parts."""
    return [
        {"type": "image_url", "image_url": {"url": image.to_data_url()}}
        for image in images
        if image.is_image
    ]


def _human_content(task: AgentTask, instructions: Optional[str]) -> Union[str, List[Union[str, Dict[str, Any]]]]:
    text = append_instruction(task.input, instructions)
    image_parts = build_image_parts(task.images) if task.passthrough_binary_images else []
    if not image_parts:
        return text
    return [{"type": "text", "text": text}, *image_parts]


def prepare_messages(
    task: AgentTask,
    output_parser: Optional[BaseOutputParser] = None,
    chat_history: Optional[Sequence[BaseMessage]] = None,
    formatting_instructions: str = FORMATTING_INSTRUCTIONS,
) -> PreparedPrompt:
    """Build the ordered message list for ``task``.

    Raises:
        ConfigurationError: the task input is empty
    """
    if task.input is None or not task.input.strip():
        raise ConfigurationError('The "text" parameter is empty.', item_index=task.item_index)

    system_message = render_system_message(task.system_message, formatting_instructions)
    history = list(chat_history or [])

    messages: List[BaseMessage] = [SystemMessage(content=system_message)]
    messages.extend(history)
    messages.append(HumanMessage(content=_human_content(task, output_format_instructions(output_parser))))

    return PreparedPrompt(
        system_message=system_message,
        formatting_instructions=formatting_instructions,
        chat_history=history,
        messages=messages,
    )
