from .registry import assemble_tools, find_tool, is_final_response_tool

__all__ = ["assemble_tools", "find_tool", "is_final_response_tool"]
