"""
Tool assembly for the tools agent.

The agent always receives exactly one finalize-answer tool. Callers may
supply their own implementation under the reserved name; otherwise the
default `format_final_json_response` tool is appended.
"""

from typing import Iterable, List, Optional

from langchain_core.tools import BaseTool
from loguru import logger

from watsonx_agent.core.constants import FINAL_RESPONSE_TOOL_NAME
from watsonx_agent.tools.builtin import format_final_json_response


def is_final_response_tool(tool: BaseTool) -> bool:
    return tool.name == FINAL_RESPONSE_TOOL_NAME


def assemble_tools(base_tools: Optional[Iterable[BaseTool]] = None) -> List[BaseTool]:
    """Return a new tool list that contains exactly one finalize-answer tool.

    The input list is never mutated. Tools keep their order; a caller-supplied
    finalize tool stays where it was, later tools reusing the reserved name are
    dropped.
    """
    tools: List[BaseTool] = []
    has_final_tool = False
    for tool in base_tools or []:
        if is_final_response_tool(tool):
            if has_final_tool:
                logger.warning(f"[agent] Duplicate '{FINAL_RESPONSE_TOOL_NAME}' tool ignored")
                continue
            has_final_tool = True
        tools.append(tool)

    if not has_final_tool:
        tools.append(format_final_json_response)
    return tools


def find_tool(tools: List[BaseTool], name: str) -> Optional[BaseTool]:
    """Find tool by name."""
    for tool in tools:
        if tool.name == name:
            return tool
    return None
