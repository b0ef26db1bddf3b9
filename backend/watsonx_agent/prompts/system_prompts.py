"""
Prompt texts used by the tools agent.
"""

from watsonx_agent.core.constants import FINAL_RESPONSE_TOOL_NAME

SYSTEM_MESSAGE = "You are a helpful assistant"

FORMATTING_INSTRUCTIONS = (
    f"To give your final answer, you must call the `{FINAL_RESPONSE_TOOL_NAME}` tool. "
    "Do not provide a final answer in any other way."
)

OUTPUT_FORMAT_PREAMBLE = (
    f"When calling `{FINAL_RESPONSE_TOOL_NAME}`, the value you pass must satisfy "
    "the following output format:"
)
