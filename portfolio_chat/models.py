"""Request and response models for the portfolio chat relay."""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """A single turn of the caller-managed conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Incoming chat request from the client."""

    messages: List[ChatMessage] = Field(..., description="Conversation history")


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: str
