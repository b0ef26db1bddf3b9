"""
Output normalization for the tools agent.

Turns the working context of a finished step loop into the JSON body of one
execution result.
"""

from typing import Any, Dict, List, Optional

from langchain_core.agents import AgentStep
from langchain_core.chat_history import BaseChatMessageHistory
from langchain_core.output_parsers import BaseOutputParser
from loguru import logger

from watsonx_agent.core.constants import INTERNAL_CONTEXT_KEYS, OUTPUT_KEY


def step_to_dict(step: AgentStep) -> Dict[str, Any]:
    action = step.action
    return {
        "action": {
            "tool": action.tool,
            "tool_input": action.tool_input,
            "log": action.log,
            "tool_call_id": getattr(action, "tool_call_id", None),
        },
        "observation": step.observation,
    }


def steps_to_dicts(steps: List[AgentStep]) -> List[Dict[str, Any]]:
    return [step_to_dict(step) for step in steps]


def normalize_final_output(
    payload: Any,
    output_parser: Optional[BaseOutputParser] = None,
    memory: Optional[BaseChatMessageHistory] = None,
) -> Any:
    """Final ``output`` value of an item.

    With both a memory store and an output parser the finalize payload is
    parsed and only its ``output`` field is surfaced. When parsing fails the
    raw payload is kept. In every other setup the payload passes through
    unchanged.
    """
    if output_parser is None or memory is None or not isinstance(payload, str):
        return payload
    try:
        parsed = output_parser.parse(payload)
    except Exception as e:
        logger.warning(f"[agent] Could not parse final output, keeping raw payload: {e}")
        return payload
    if isinstance(parsed, dict) and OUTPUT_KEY in parsed:
        return parsed[OUTPUT_KEY]
    return parsed


def build_item_json(
    context: Dict[str, Any],
    *,
    output_parser: Optional[BaseOutputParser] = None,
    memory: Optional[BaseChatMessageHistory] = None,
) -> Dict[str, Any]:
    """Strip bookkeeping keys from ``context`` and normalize its output."""
    data = {key: value for key, value in context.items() if key not in INTERNAL_CONTEXT_KEYS}
    if OUTPUT_KEY in data:
        data[OUTPUT_KEY] = normalize_final_output(data[OUTPUT_KEY], output_parser, memory)
    return data
