from .messages import (
    PreparedPrompt,
    append_instruction,
    build_image_parts,
    output_format_instructions,
    prepare_messages,
    render_system_message,
    resolve_prompt_input,
)
from .system_prompts import FORMATTING_INSTRUCTIONS, SYSTEM_MESSAGE

__all__ = [
    "FORMATTING_INSTRUCTIONS",
    "SYSTEM_MESSAGE",
    "PreparedPrompt",
    "append_instruction",
    "build_image_parts",
    "output_format_instructions",
    "prepare_messages",
    "render_system_message",
    "resolve_prompt_input",
]
