"""Study content generation using LLMs."""

import logging
from dataclasses import dataclass
from typing import Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from study_rooms.domain.errors import MalformedOracleResponse
from study_rooms.domain.sessions import Flashcard
from study_rooms.domain.study_content import GeneratedFlashcards, GeneratedNotes

NOTES_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "notes": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["notes"],
    "additionalProperties": False,
}

FLASHCARDS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "flashcards": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "question": {"type": "string"},
                    "answer": {"type": "string"},
                },
                "required": ["question", "answer"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["flashcards"],
    "additionalProperties": False,
}

_logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class StudyContentClient(Protocol):
    """Interface for structured text generation."""

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
        """Return structured data matching the schema."""


@dataclass
class StudyContentService:
    """Builds prompts for shared study content and validates the results."""

    client: StudyContentClient
    model: str
    reasoning_effort: str | None
    store: bool
    flashcard_count: int = 8

    async def generate_notes(self, source_text: str) -> list[str]:
        """Turn free text into study note lines."""
        text = _require_text(source_text)
        prompt = (
            "Write well-structured study notes for a group studying the text "
            "below. Return one Markdown line per array entry, using headings, "
            "bullet points and bold key terms.\n\n"
            f"Text:\n{text}"
        )
        raw = await self.client.generate(
            model=self.model,
            reasoning_effort=self.reasoning_effort,
            store=self.store,
            prompt=prompt,
            schema=NOTES_SCHEMA,
            schema_name="study_notes",
        )
        parsed = _validate(GeneratedNotes, raw)
        lines = [line for line in parsed.notes if line.strip()]
        if not lines:
            raise MalformedOracleResponse("Generated notes were empty")
        return lines

    async def generate_flashcards(self, source_text: str) -> list[Flashcard]:
        """Turn free text into question and answer flashcards."""
        text = _require_text(source_text)
        prompt = (
            f"Create {self.flashcard_count} flashcards from the text below. "
            "Each question should test one fact and each answer should be a "
            "short phrase that can be checked exactly.\n\n"
            f"Text:\n{text}"
        )
        raw = await self.client.generate(
            model=self.model,
            reasoning_effort=self.reasoning_effort,
            store=self.store,
            prompt=prompt,
            schema=FLASHCARDS_SCHEMA,
            schema_name="study_flashcards",
        )
        parsed = _validate(GeneratedFlashcards, raw)
        if not parsed.flashcards:
            raise MalformedOracleResponse("Generated flashcards were empty")
        return [
            Flashcard(question=card.question, answer=card.answer)
            for card in parsed.flashcards
        ]


def _require_text(source_text: str) -> str:
    text = source_text.strip()
    if not text:
        raise ValueError("Source text is empty")
    return text


def _validate(model: type[M], raw: object) -> M:
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        _logger.warning("Oracle response failed validation: %s", exc.error_count())
        raise MalformedOracleResponse(
            f"Generated content did not match {model.__name__}"
        ) from exc
