from langchain_core.agents import AgentStep
from langchain_core.chat_history import InMemoryChatMessageHistory
from langchain_core.output_parsers import JsonOutputParser

from watsonx_agent.agent_core.output import build_item_json, normalize_final_output, step_to_dict
from watsonx_agent.agent_core.types import ToolCallAction


def _context(**extra):
    context = {
        "input": "question",
        "system_message": "You are a helpful assistant",
        "formatting_instructions": "call the tool",
        "chat_history": [],
        "agent_scratchpad": [],
        "output": '{"output": "Paris"}',
    }
    context.update(extra)
    return context


def test_bookkeeping_keys_are_stripped():
    data = build_item_json(_context(intermediate_steps=[]))

    assert data == {"output": '{"output": "Paris"}', "intermediate_steps": []}


def test_parser_and_memory_surface_output_field():
    data = build_item_json(_context(), output_parser=JsonOutputParser(), memory=InMemoryChatMessageHistory())
    assert data["output"] == "Paris"


def test_parser_without_memory_passes_payload_through():
    data = build_item_json(_context(), output_parser=JsonOutputParser())
    assert data["output"] == '{"output": "Paris"}'


def test_unparseable_payload_is_kept():
    payload = "not json at all"
    assert normalize_final_output(payload, JsonOutputParser(), InMemoryChatMessageHistory()) == payload


def test_parsed_payload_without_output_field():
    parsed = normalize_final_output('{"city": "Paris"}', JsonOutputParser(), InMemoryChatMessageHistory())
    assert parsed == {"city": "Paris"}


def test_step_to_dict():
    action = ToolCallAction(tool="lookup", tool_input={"city": "Oslo"}, log="", tool_call_id="call_1")
    assert step_to_dict(AgentStep(action=action, observation="rain")) == {
        "action": {"tool": "lookup", "tool_input": {"city": "Oslo"}, "log": "", "tool_call_id": "call_1"},
        "observation": "rain",
    }
