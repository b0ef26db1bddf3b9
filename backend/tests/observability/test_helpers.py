import httpx
import openai
from langchain_core.messages import AIMessage
from langchain_core.outputs import ChatGeneration, LLMResult

from watsonx_agent.core.constants import MISSING_LLM_OUTPUT
from watsonx_agent.observability.helpers import (
    end_spans,
    extract_llm_text,
    extract_token_usage,
    filter_safe_headers,
    redact_error_headers,
    slugify_workflow_name,
)


def _result(message, llm_output=None):
    return LLMResult(generations=[[ChatGeneration(message=message)]], llm_output=llm_output)


def test_slugify_workflow_name():
    assert slugify_workflow_name("  My Support   Flow ") == "my-support-flow"
    assert slugify_workflow_name("single") == "single"


def test_filter_safe_headers():
    headers = {"x-request-id": "1", "X-Upper": "2", "authorization": "secret"}
    assert filter_safe_headers(headers) == {"x-request-id": "1"}


class TestRedactErrorHeaders:
    def test_attribute_headers_rewritten_in_place(self):
        class Err(Exception):
            headers = None

        error = Err("boom")
        error.headers = {"x-id": "1", "cookie": "c"}
        assert redact_error_headers(error) == {"x-id": "1"}
        assert error.headers == {"x-id": "1"}

    def test_mapping_error(self):
        error = {"message": "boom", "headers": {"x-id": "1", "authorization": "a"}}
        assert redact_error_headers(error) == {"x-id": "1"}
        assert error["headers"] == {"x-id": "1"}

    def test_error_without_headers(self):
        assert redact_error_headers(ValueError("boom")) is None

    def test_openai_status_error_response_headers(self):
        request = httpx.Request("POST", "https://llm.example.com/v1/chat/completions")
        response = httpx.Response(
            429,
            headers={"x-request-id": "req-1", "set-cookie": "session=1", "authorization": "Bearer secret"},
            request=request,
        )
        error = openai.RateLimitError("Rate limit reached", response=response, body=None)

        assert redact_error_headers(error) == {"x-request-id": "req-1"}
        assert "set-cookie" not in error.response.headers
        assert "authorization" not in error.response.headers
        assert error.response.headers["x-request-id"] == "req-1"


class TestTokenUsage:
    def test_usage_metadata(self):
        message = AIMessage(content="a", usage_metadata={"input_tokens": 4, "output_tokens": 6, "total_tokens": 10})
        assert extract_token_usage(_result(message)) == {"promptTokens": 4, "completionTokens": 6, "totalTokens": 10}

    def test_llm_output_fallback_computes_total(self):
        result = _result(AIMessage(content="a"), {"token_usage": {"prompt_tokens": 3, "completion_tokens": 4}})
        assert extract_token_usage(result) == {"promptTokens": 3, "completionTokens": 4, "totalTokens": 7}

    def test_missing_usage_defaults_to_zero(self):
        assert extract_token_usage(_result(AIMessage(content="a"))) == {
            "promptTokens": 0,
            "completionTokens": 0,
            "totalTokens": 0,
        }
        assert extract_token_usage(None)["totalTokens"] == 0


def test_extract_llm_text():
    assert extract_llm_text(_result(AIMessage(content="hello"))) == "hello"
    assert extract_llm_text(None) == MISSING_LLM_OUTPUT
    assert extract_llm_text(LLMResult(generations=[])) == MISSING_LLM_OUTPUT


def test_end_spans_tolerates_failures():
    class Span:
        def __init__(self, fail):
            self.fail = fail
            self.ended = False

        def end(self):
            if self.fail:
                raise RuntimeError("already ended")
            self.ended = True

    good, bad = Span(False), Span(True)
    assert end_spans([good, None, bad], "test") == 1
    assert good.ended
