"""
Core type definitions for the agent executor.

Defines the records that flow through a run:
- Input items and run options
- Per-item agent tasks
- Tool-calling agent actions and intermediate steps
- Per-item execution results
"""

from typing import Any, Dict, List, Literal, Optional

from langchain_core.agents import AgentAction, AgentFinish
from pydantic import BaseModel, ConfigDict, Field, field_validator

from watsonx_agent.core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DELAY_BETWEEN_BATCHES_MS,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_WORKFLOW_NAME,
)

# ============================================================================
# Input Types
# ============================================================================


class BinaryData(BaseModel):
    """Binary attachment carried by an input item (base64 payload)."""

    mime_type: str
    data: str
    file_name: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class InputItem(BaseModel):
    """One incoming item: JSON fields plus optional binary attachments."""

    json_data: Dict[str, Any] = Field(default_factory=dict, alias="json")
    binary: Dict[str, BinaryData] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class AgentNodeOptions(BaseModel):
    """Run configuration for the tools agent."""

    prompt_type: Literal["auto", "define"] = "auto"
    text: Optional[str] = None
    system_message: Optional[str] = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    return_intermediate_steps: bool = False
    passthrough_binary_images: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    delay_between_batches: int = DEFAULT_DELAY_BETWEEN_BATCHES_MS
    """Pause between batches, in milliseconds."""
    continue_on_fail: bool = False
    early_stopping_method: Literal["force", "raise"] = "force"
    workflow_name: str = DEFAULT_WORKFLOW_NAME

    @field_validator("batch_size")
    @classmethod
    def _positive_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("batch_size must be at least 1")
        return value

    @field_validator("max_iterations")
    @classmethod
    def _positive_max_iterations(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_iterations must be at least 1")
        return value

    @field_validator("delay_between_batches")
    @classmethod
    def _non_negative_delay(cls, value: int) -> int:
        if value < 0:
            raise ValueError("delay_between_batches must not be negative")
        return value

    @classmethod
    def from_config(cls, config: Any, **overrides: Any) -> "AgentNodeOptions":
        """Build options from environment configuration, applying explicit overrides."""
        values: Dict[str, Any] = {
            "max_iterations": config.AGENT_MAX_ITERATIONS,
            "batch_size": config.AGENT_BATCH_SIZE,
            "delay_between_batches": config.AGENT_DELAY_BETWEEN_BATCHES,
            "workflow_name": config.WORKFLOW_NAME,
        }
        values.update(overrides)
        return cls(**values)


# ============================================================================
# Task Types
# ============================================================================


class AgentTask(BaseModel):
    """Execution context of one input item. Immutable once dispatched."""

    item_index: int
    input: str
    system_message: Optional[str] = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    return_intermediate_steps: bool = False
    passthrough_binary_images: bool = True
    images: List[BinaryData] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ToolCallAction(AgentAction):
    """Agent action produced from a model tool call."""

    tool_call_id: str
    """Correlation id linking the tool call to its ToolMessage."""

    type: Literal["ToolCallAction"] = "ToolCallAction"  # type: ignore[assignment]


# Model decision per iteration: either an action or a finish
AgentDecision = List[ToolCallAction] | AgentFinish


# ============================================================================
# Result Types
# ============================================================================


class PairedItem(BaseModel):
    item: int


class ExecutionResult(BaseModel):
    """One output record per input item, aligned with the input by index."""

    json_data: Dict[str, Any] = Field(default_factory=dict, alias="json")
    paired_item: PairedItem = Field(alias="pairedItem")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def success(cls, item_index: int, data: Dict[str, Any]) -> "ExecutionResult":
        return cls(json_data=data, paired_item=PairedItem(item=item_index))

    @classmethod
    def failure(cls, item_index: int, error: BaseException) -> "ExecutionResult":
        return cls(json_data={"error": str(error)}, paired_item=PairedItem(item=item_index))

    @property
    def is_error(self) -> bool:
        return "error" in self.json_data

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
