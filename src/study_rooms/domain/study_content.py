"""Models for generated study content."""

from pydantic import BaseModel, Field


class GeneratedFlashcard(BaseModel):
    """Single generated question and answer."""

    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)


class GeneratedNotes(BaseModel):
    """Structured output for note generation."""

    notes: list[str]


class GeneratedFlashcards(BaseModel):
    """Structured output for flashcard generation."""

    flashcards: list[GeneratedFlashcard]
