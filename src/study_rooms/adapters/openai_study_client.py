"""OpenAI Responses API client for study content generation."""

import json
from dataclasses import dataclass

from openai import AsyncOpenAI

from study_rooms.domain.errors import MalformedOracleResponse
from study_rooms.services.study_content import StudyContentClient


@dataclass
class OpenAIStudyContentClient(StudyContentClient):
    """Study content client backed by OpenAI Responses API."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str) -> "OpenAIStudyContentClient":
        """Create an OpenAI study content client."""
        return cls(client=AsyncOpenAI(api_key=api_key))

    async def generate(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        prompt: str,
        schema: dict[str, object],
        schema_name: str,
    ) -> dict[str, object]:
        """Call OpenAI Responses API with structured outputs."""
        request_payload: dict[str, object] = {
            "model": model,
            "input": [
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": prompt}],
                }
            ],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "strict": True,
                    "schema": schema,
                }
            },
            "store": store,
        }
        if reasoning_effort:
            request_payload["reasoning"] = {"effort": reasoning_effort}

        response = await self.client.responses.create(**request_payload)
        output_text = response.output_text
        if not output_text:
            raise MalformedOracleResponse("OpenAI returned an empty response")
        try:
            parsed = json.loads(output_text)
        except ValueError as exc:
            raise MalformedOracleResponse("OpenAI returned invalid JSON") from exc
        if not isinstance(parsed, dict):
            raise MalformedOracleResponse("OpenAI returned a non-object payload")
        return parsed

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.close()
