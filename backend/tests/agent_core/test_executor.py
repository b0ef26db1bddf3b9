import asyncio
import time

import pytest
from langchain_core.output_parsers import JsonOutputParser

from fakes import ScriptedChatModel, final_call, lookup, tool_call, tool_results, user_text
from watsonx_agent.agent_core.executor import ToolsAgentExecutor
from watsonx_agent.agent_core.types import AgentNodeOptions, ExecutionResult, InputItem
from watsonx_agent.common.exceptions import NodeOperationError


def _items(*texts):
    return [InputItem(json={"chatInput": text}) for text in texts]


def _echo(messages):
    return final_call(f"answer to {user_text(messages)}")


@pytest.mark.asyncio
async def test_results_follow_input_order():
    delays = {"a": 0.06, "b": 0.0, "c": 0.03}

    async def responder(messages):
        text = user_text(messages)
        await asyncio.sleep(delays[text])
        return final_call(f"answer to {text}")

    executor = ToolsAgentExecutor(ScriptedChatModel(responder=responder), [], AgentNodeOptions(batch_size=3))
    results = await executor.execute(_items("a", "b", "c"))

    assert [r.paired_item.item for r in results] == [0, 1, 2]
    assert [r.json_data["output"] for r in results] == ["answer to a", "answer to b", "answer to c"]


@pytest.mark.asyncio
@pytest.mark.parametrize("batch_size", [1, 2, 3, 5])
async def test_one_result_per_item(batch_size):
    executor = ToolsAgentExecutor(ScriptedChatModel(responder=_echo), [], AgentNodeOptions(batch_size=batch_size))
    results = await executor.execute(_items("a", "b", "c", "d"))

    assert len(results) == 4
    assert [r.paired_item.item for r in results] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_failed_item_with_continue_on_fail_and_batch_delay():
    started = {}

    def responder(messages):
        text = user_text(messages)
        started.setdefault(text, time.monotonic())
        if text == "second":
            return RuntimeError("model exploded")
        return final_call(f"answer to {text}")

    options = AgentNodeOptions(batch_size=2, delay_between_batches=80, continue_on_fail=True)
    executor = ToolsAgentExecutor(ScriptedChatModel(responder=responder), [], options)
    results = await executor.execute(_items("first", "second", "third"))

    assert results[0].json_data == {"output": "answer to first"}
    assert "model exploded" in results[1].json_data["error"]
    assert results[1].paired_item.item == 1
    assert results[2].json_data == {"output": "answer to third"}
    assert started["third"] - started["second"] >= 0.07


@pytest.mark.asyncio
async def test_strict_mode_aborts_after_batch_settles():
    finished = []

    async def responder(messages):
        text = user_text(messages)
        if text == "second":
            return RuntimeError("model exploded")
        await asyncio.sleep(0.02)
        finished.append(text)
        return final_call(text)

    executor = ToolsAgentExecutor(ScriptedChatModel(responder=responder), [], AgentNodeOptions(batch_size=2))

    with pytest.raises(NodeOperationError) as exc:
        await executor.execute(_items("first", "second", "third"))

    assert exc.value.item_index == 1
    assert "model exploded" in str(exc.value)
    assert finished == ["first"]


@pytest.mark.asyncio
async def test_empty_input_is_item_failure():
    options = AgentNodeOptions(continue_on_fail=True)
    executor = ToolsAgentExecutor(ScriptedChatModel(responder=_echo), [], options)
    results = await executor.execute([{"json": {"chatInput": "hi"}}, {"json": {}}])

    assert results[0].json_data["output"] == "answer to hi"
    assert results[1].json_data == {"error": 'The "text" parameter is empty.'}


@pytest.mark.asyncio
async def test_iteration_limit_is_best_effort_result():
    model = ScriptedChatModel(responder=lambda messages: tool_call("lookup", {"city": "Oslo"}, content="Checking"))
    options = AgentNodeOptions(max_iterations=1, continue_on_fail=True)
    results = await ToolsAgentExecutor(model, [lookup], options).execute(_items("weather?"))

    assert results[0].json_data == {"output": "Checking", "iteration_limit_exceeded": True}


@pytest.mark.asyncio
async def test_iteration_limit_raise_mode_records_error():
    model = ScriptedChatModel(responder=lambda messages: tool_call("lookup", {"city": "Oslo"}))
    options = AgentNodeOptions(max_iterations=1, continue_on_fail=True, early_stopping_method="raise")
    results = await ToolsAgentExecutor(model, [lookup], options).execute(_items("weather?"))

    assert results[0].json_data["error"].startswith("IterationLimitExceeded")


@pytest.mark.asyncio
async def test_cancel_signal_fails_remaining_items():
    cancel = asyncio.Event()

    def responder(messages):
        cancel.set()
        return final_call("done")

    options = AgentNodeOptions(continue_on_fail=True)
    model = ScriptedChatModel(responder=responder)
    results = await ToolsAgentExecutor(model, [], options).execute(_items("a", "b", "c"), cancel_event=cancel)

    assert [r.is_error for r in results] == [True, True, True]
    assert results[2].json_data == {"error": "Execution was cancelled"}
    assert model.calls == 1


@pytest.mark.asyncio
async def test_intermediate_steps_returned_on_request():
    def responder(messages):
        results = tool_results(messages)
        if not results:
            return tool_call("lookup", {"city": "Oslo"})
        return final_call(results[-1].content)

    options = AgentNodeOptions(return_intermediate_steps=True)
    results = await ToolsAgentExecutor(ScriptedChatModel(responder=responder), [lookup], options).execute(_items("q"))

    data = results[0].json_data
    assert data["output"] == "sunny in Oslo"
    assert data["intermediate_steps"][0]["observation"] == "sunny in Oslo"
    assert set(data) == {"output", "intermediate_steps"}


@pytest.mark.asyncio
async def test_output_parser_without_memory_passes_raw_payload():
    payload = {"output": {"city": "Oslo"}}
    model = ScriptedChatModel(responder=lambda messages: final_call(payload))
    executor = ToolsAgentExecutor(model, [], output_parser=JsonOutputParser())
    results = await executor.execute(_items("q"))

    assert results[0].json_data["output"] == '{"output": {"city": "Oslo"}}'


@pytest.mark.asyncio
async def test_define_prompt_type_uses_configured_text():
    options = AgentNodeOptions(prompt_type="define", text="Fixed question")
    executor = ToolsAgentExecutor(ScriptedChatModel(responder=_echo), [], options)
    results = await executor.execute([{"json": {}}])

    assert results[0].json_data["output"] == "answer to Fixed question"


@pytest.mark.asyncio
async def test_each_item_gets_its_own_trace(trace_recorder):
    options = AgentNodeOptions(batch_size=2, workflow_name="My  Workflow")
    executor = ToolsAgentExecutor(ScriptedChatModel(responder=_echo), [], options, handler_factory=trace_recorder)
    await executor.execute(_items("a", "b"))

    assert len(trace_recorder.clients) == 2
    for client in trace_recorder.clients:
        assert [o.name for o in client.named("trace-")] == ["trace-ai-agent-my-workflow"]
        assert client.open_count == client.close_count
        assert client.all_closed_once


@pytest.mark.asyncio
async def test_telemetry_init_failure_does_not_fail_items():
    def failing_factory(settings, *, model_name, workflow_name):
        raise ConnectionError("langfuse down")

    executor = ToolsAgentExecutor(ScriptedChatModel(responder=_echo), [], handler_factory=failing_factory)
    results = await executor.execute(_items("a"))

    assert results[0].json_data == {"output": "answer to a"}


def test_execution_result_serialization():
    result = ExecutionResult.failure(3, ValueError("boom"))
    assert result.to_dict() == {"json": {"error": "boom"}, "pairedItem": {"item": 3}}
