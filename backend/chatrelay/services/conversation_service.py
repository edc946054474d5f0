from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import Request

from chatrelay.core.security import sanitize_text
from chatrelay.repos.conversation_repo import (
    ConversationNotFoundError,
    DocumentStore,
    InvalidConversationId,
)
from chatrelay.schemas.conversation import (
    Conversation,
    ConversationCreateRequest,
    ConversationSaveResponse,
    ConversationSummary,
    utc_now,
)
from chatrelay.services.conversation_matcher import match_transcript

logger = logging.getLogger(__name__)

MAX_TITLE_LEN = 200
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ConversationService:
    """Conversation CRUD with duplicate and prefix reconciliation on create."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def list_conversations(self) -> list[ConversationSummary]:
        """Return summaries, most recently updated first."""

        summaries = [
            ConversationSummary.from_conversation(item) for item in self._store.list_documents()
        ]
        summaries.sort(key=lambda item: item.updated or _EPOCH, reverse=True)
        return summaries

    def get_conversation(self, conversation_id: str) -> Conversation:
        return self._store.load(conversation_id)

    def create_or_merge(self, payload: ConversationCreateRequest) -> ConversationSaveResponse:
        """Store a transcript unless it duplicates or extends a stored one.

        An exact duplicate is left untouched. A stored transcript that is a
        prefix of the payload is overwritten with the longer transcript and
        keeps its id.
        """

        now = utc_now()
        if "messages" in payload.model_fields_set:
            match = match_transcript(payload.messages, self._store.list_documents())
            if match is not None and match.exact:
                logger.info("Conversation %s already stored; skipping write", match.conversation_id)
                return ConversationSaveResponse(id=match.conversation_id, duplicate=True)
            if match is not None:
                conversation = self._load_or_stub(match.conversation_id, now)
                conversation.messages = payload.messages
                if payload.title:
                    conversation.title = sanitize_text(payload.title, MAX_TITLE_LEN)
                if payload.model:
                    conversation.model = payload.model
                conversation.updated = now
                self._store.save(conversation)
                logger.info(
                    "Merged %s message(s) into conversation %s",
                    len(payload.messages),
                    conversation.id,
                )
                return ConversationSaveResponse(id=conversation.id, merged=True)

        data = payload.model_dump()
        data["id"] = payload.id or uuid.uuid4().hex
        data["created"] = payload.created or now
        data["updated"] = now
        if payload.title:
            data["title"] = sanitize_text(payload.title, MAX_TITLE_LEN)
        conversation = Conversation.model_validate(data)
        self._store.save(conversation)
        return ConversationSaveResponse(id=conversation.id)

    def update_conversation(
        self, conversation_id: str, payload: Conversation
    ) -> ConversationSaveResponse:
        """Overwrite a conversation with the client's full document."""

        if payload.id != conversation_id:
            raise InvalidConversationId("Conversation id in body does not match the path.")
        now = utc_now()
        try:
            created = self._store.load(conversation_id).created
        except ConversationNotFoundError:
            created = None
        conversation = payload.model_copy(
            update={
                "created": created or payload.created or now,
                "updated": now,
                "title": sanitize_text(payload.title, MAX_TITLE_LEN) if payload.title else payload.title,
            }
        )
        self._store.save(conversation)
        return ConversationSaveResponse(id=conversation_id)

    def delete_conversation(self, conversation_id: str) -> None:
        self._store.delete(conversation_id)
        logger.info("Deleted conversation %s", conversation_id)

    def _load_or_stub(self, conversation_id: str, now: datetime) -> Conversation:
        try:
            return self._store.load(conversation_id)
        except ConversationNotFoundError:
            # Removed between listing and loading.
            return Conversation(id=conversation_id, created=now, updated=now)


def get_conversation_service(request: Request) -> ConversationService:
    """Dependency to access the app conversation service."""

    return request.app.state.conversation_service
