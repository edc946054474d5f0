from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ConfigDict, Field, field_validator

from chatrelay.schemas.common import APIModel, SuccessResponse


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _ConversationFields(APIModel):
    """Fields shared by stored conversations and client payloads.

    Unknown top-level fields sent by the client are kept and written back
    verbatim.
    """

    model_config = ConfigDict(extra="allow", protected_namespaces=())

    title: Optional[str] = Field(default=None)
    created: Optional[datetime] = Field(default=None)
    updated: Optional[datetime] = Field(default=None)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    model: Optional[str] = Field(default=None)

    @field_validator("created", "updated")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Conversation(_ConversationFields):
    """One persisted conversation document."""

    id: str


class ConversationCreateRequest(_ConversationFields):
    """Payload for creating (or merging into) a conversation."""

    id: Optional[str] = Field(default=None)


class ConversationSummary(APIModel):
    """Listing entry for one conversation."""

    id: str
    title: Optional[str] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    message_count: int = Field(default=0, alias="messageCount")
    model: Optional[str] = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> ConversationSummary:
        return cls(
            id=conversation.id,
            title=conversation.title,
            created=conversation.created,
            updated=conversation.updated,
            message_count=len(conversation.messages),
            model=conversation.model,
        )


class ConversationListResponse(SuccessResponse):
    conversations: list[ConversationSummary]


class ConversationResponse(SuccessResponse):
    conversation: Conversation


class ConversationSaveResponse(SuccessResponse):
    """Outcome of a create, merge or update."""

    id: str
    duplicate: Optional[bool] = None
    merged: Optional[bool] = None
