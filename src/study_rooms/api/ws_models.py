"""Pydantic models for client commands sent over the room WebSocket."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter


class FlashcardPayload(BaseModel):
    """Flashcard sent by a client."""

    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)


class CreateRoomCommand(BaseModel):
    type: Literal["create_room"]


class JoinRoomCommand(BaseModel):
    type: Literal["join_room"]
    code: str


class LeaveRoomCommand(BaseModel):
    type: Literal["leave_room"]


class SendChatCommand(BaseModel):
    type: Literal["send_chat"]
    text: str


class ShareNotesCommand(BaseModel):
    type: Literal["share_notes"]
    lines: list[str] = Field(min_length=1)


class ShareFlashcardsCommand(BaseModel):
    type: Literal["share_flashcards"]
    flashcards: list[FlashcardPayload] = Field(min_length=1)


class GenerateNotesCommand(BaseModel):
    type: Literal["generate_notes"]
    text: str


class GenerateFlashcardsCommand(BaseModel):
    type: Literal["generate_flashcards"]
    text: str


class SetPermissionCommand(BaseModel):
    type: Literal["set_permission"]
    participant_id: str
    can_share: bool


class TransferHostCommand(BaseModel):
    type: Literal["transfer_host"]
    participant_id: str


class StartQuizCommand(BaseModel):
    """Starts a quiz; without questions the room's shared flashcards are used."""

    type: Literal["start_quiz"]
    questions: list[FlashcardPayload] | None = None


class SubmitAnswerCommand(BaseModel):
    type: Literal["submit_answer"]
    answer: str


class RevealAnswerCommand(BaseModel):
    type: Literal["reveal_answer"]


class AdvanceQuizCommand(BaseModel):
    type: Literal["advance_quiz"]


class PingCommand(BaseModel):
    type: Literal["ping"]


ClientCommand = Annotated[
    CreateRoomCommand
    | JoinRoomCommand
    | LeaveRoomCommand
    | SendChatCommand
    | ShareNotesCommand
    | ShareFlashcardsCommand
    | GenerateNotesCommand
    | GenerateFlashcardsCommand
    | SetPermissionCommand
    | TransferHostCommand
    | StartQuizCommand
    | SubmitAnswerCommand
    | RevealAnswerCommand
    | AdvanceQuizCommand
    | PingCommand,
    Field(discriminator="type"),
]

client_command_adapter: TypeAdapter[ClientCommand] = TypeAdapter(ClientCommand)
