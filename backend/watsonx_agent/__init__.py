"""
WatsonX tools agent executor.

Runs a tool-calling chat agent over batches of input items and mirrors every
run into Langfuse as trace -> agent span -> LLM/tool spans.
"""

__version__ = "0.1.0"
