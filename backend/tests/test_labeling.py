import json
from types import SimpleNamespace

import pytest

from semantic_graph.core.config import Settings
from semantic_graph.services.labeling import OpenAIService


class FakeCompletions:
    def __init__(self, content: str) -> None:
        self.content = content
        self.payloads: list[dict] = []

    async def create(self, **payload):
        self.payloads.append(payload)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(content: str) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content)))


@pytest.mark.asyncio
async def test_label_group_parses_json_response():
    client = _client(json.dumps({"name": "Vector Databases", "description": "Storage for embeddings."}))
    service = OpenAIService(client=client, settings=Settings(openai_label_model="test-model"))

    label = await service.label_group(["pgvector intro", "FAISS tuning"])

    assert label.name == "Vector Databases"
    assert label.description == "Storage for embeddings."
    payload = client.chat.completions.payloads[0]
    assert payload["model"] == "test-model"
    assert "1. pgvector intro\n2. FAISS tuning" == payload["messages"][1]["content"]


@pytest.mark.asyncio
async def test_label_group_requires_configuration_and_a_name():
    unconfigured = OpenAIService(settings=Settings(openai_api_key=None))
    assert not unconfigured.is_configured
    with pytest.raises(RuntimeError):
        await unconfigured.label_group(["anything"])

    nameless = OpenAIService(client=_client(json.dumps({"description": "no name"})))
    with pytest.raises(ValueError):
        await nameless.label_group(["anything"])
