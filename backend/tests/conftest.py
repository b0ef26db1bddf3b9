from typing import List

import pytest

from fakes import RecordingLangfuse
from watsonx_agent.observability.langfuse import LangfuseAgentHandler


@pytest.fixture
def trace_recorder():
    """Handler factory creating one recording Langfuse client per task."""
    clients: List[RecordingLangfuse] = []

    def factory(settings, *, model_name, workflow_name):
        client = RecordingLangfuse()
        clients.append(client)
        return LangfuseAgentHandler(client, model_name=model_name, workflow_name=workflow_name)

    factory.clients = clients
    return factory
