"""
Agent Core - tools agent execution.

Exports the data model only; import the step loop from
`watsonx_agent.agent_core.runtime` and the batch orchestrator from
`watsonx_agent.agent_core.executor`.
"""

from watsonx_agent.agent_core.types import (
    AgentDecision,
    AgentNodeOptions,
    AgentTask,
    BinaryData,
    ExecutionResult,
    InputItem,
    PairedItem,
    ToolCallAction,
)

__all__ = [
    "AgentDecision",
    "AgentNodeOptions",
    "AgentTask",
    "BinaryData",
    "ExecutionResult",
    "InputItem",
    "PairedItem",
    "ToolCallAction",
]
