"""Tests for the OpenAI study content adapter."""

import asyncio
import json

import pytest

from study_rooms.adapters.openai_study_client import OpenAIStudyContentClient
from study_rooms.domain.errors import MalformedOracleResponse
from study_rooms.services.study_content import NOTES_SCHEMA


class _FakeResponses:
    def __init__(self, output_text: str) -> None:
        self.output_text = output_text
        self.last_payload: dict[str, object] | None = None

    async def create(self, **kwargs):  # type: ignore[no-untyped-def]
        self.last_payload = kwargs
        return type("Resp", (), {"output_text": self.output_text})()


class _FakeOpenAI:
    def __init__(self, output_text: str) -> None:
        self.responses = _FakeResponses(output_text)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _generate(client: OpenAIStudyContentClient, reasoning_effort: str | None = "low"):  # type: ignore[no-untyped-def]
    return asyncio.run(
        client.generate(
            model="gpt-5.2",
            reasoning_effort=reasoning_effort,
            store=False,
            prompt="Summarise the water cycle",
            schema=NOTES_SCHEMA,
            schema_name="study_notes",
        )
    )


def test_openai_study_client_parses_output() -> None:
    fake = _FakeOpenAI(json.dumps({"notes": ["# Water cycle"]}))
    client = OpenAIStudyContentClient(client=fake)  # type: ignore[arg-type]

    result = _generate(client)

    assert result == {"notes": ["# Water cycle"]}
    payload = fake.responses.last_payload
    assert payload is not None
    assert payload["model"] == "gpt-5.2"
    assert payload["reasoning"] == {"effort": "low"}
    assert payload["store"] is False
    text_format = payload["text"]["format"]  # type: ignore[index]
    assert text_format["name"] == "study_notes"
    assert text_format["strict"] is True
    assert text_format["schema"] is NOTES_SCHEMA


def test_openai_study_client_omits_reasoning_when_unset() -> None:
    fake = _FakeOpenAI(json.dumps({"notes": []}))
    client = OpenAIStudyContentClient(client=fake)  # type: ignore[arg-type]

    _generate(client, reasoning_effort=None)

    assert fake.responses.last_payload is not None
    assert "reasoning" not in fake.responses.last_payload


@pytest.mark.parametrize("output_text", ["", "not json", "[1, 2]"])
def test_openai_study_client_rejects_bad_output(output_text: str) -> None:
    client = OpenAIStudyContentClient(client=_FakeOpenAI(output_text))  # type: ignore[arg-type]

    with pytest.raises(MalformedOracleResponse):
        _generate(client)


def test_openai_study_client_close() -> None:
    fake = _FakeOpenAI("{}")
    client = OpenAIStudyContentClient(client=fake)  # type: ignore[arg-type]

    asyncio.run(client.close())

    assert fake.closed
