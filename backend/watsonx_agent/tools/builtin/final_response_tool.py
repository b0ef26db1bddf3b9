import json
from typing import Any, Dict, List, Union

from langchain_core.tools import tool
from loguru import logger
from pydantic import BaseModel, Field

from watsonx_agent.core.constants import FINAL_RESPONSE_TOOL_NAME


class FinalResponseInput(BaseModel):
    output: Union[str, Dict[str, Any], List[Any]] = Field(
        description="Your final answer: plain text, or a JSON object/array when a structured format is required."
    )


def serialize_final_payload(output: Any) -> str:
    """Plain strings pass through, structured payloads become a JSON string."""
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False)


@tool(FINAL_RESPONSE_TOOL_NAME, args_schema=FinalResponseInput)
def format_final_json_response(output: Union[str, Dict[str, Any], List[Any]]) -> str:
    """Formats and sends the final answer to the user. Use this tool for your final response.
    The argument must be an object with a single key "output". e.g. {"output": "your final answer here"}"""
    payload = serialize_final_payload(output)
    logger.debug(f"[agent] Final response: {payload[:200]}")
    return payload
