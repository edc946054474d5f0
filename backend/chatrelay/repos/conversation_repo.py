from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from chatrelay.schemas.conversation import Conversation

logger = logging.getLogger(__name__)

CONVERSATION_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,128}")


class ConversationNotFoundError(LookupError):
    """Raised when no document exists for a conversation id."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class InvalidConversationId(ValueError):
    """Raised when an id cannot be used as a document key."""


class StoreIoError(RuntimeError):
    """Raised when a document cannot be written or removed."""


class DocumentStore(Protocol):
    """Key-value store of full conversation documents."""

    def list_documents(self) -> list[Conversation]:
        """Return every readable document in listing order."""

    def load(self, conversation_id: str) -> Conversation:
        """Return one document or raise ConversationNotFoundError."""

    def save(self, conversation: Conversation) -> None:
        """Overwrite the whole document for ``conversation.id``."""

    def delete(self, conversation_id: str) -> None:
        """Remove one document or raise ConversationNotFoundError."""


class JsonConversationRepo(DocumentStore):
    """Directory of ``<id>.json`` files, one per conversation."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def list_documents(self) -> list[Conversation]:
        items: list[Conversation] = []
        for path in sorted(self._root.glob("*.json")):
            try:
                items.append(Conversation.model_validate_json(path.read_bytes()))
            except (OSError, ValidationError) as exc:
                logger.warning("Skipping unreadable conversation file %s: %s", path.name, exc)
        return items

    def load(self, conversation_id: str) -> Conversation:
        path = self._path_for(conversation_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise ConversationNotFoundError(conversation_id) from exc
        except OSError as exc:
            raise StoreIoError(f"Failed to read conversation {conversation_id}: {exc}") from exc
        try:
            return Conversation.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreIoError(f"Conversation {conversation_id} is corrupt: {exc}") from exc

    def save(self, conversation: Conversation) -> None:
        path = self._path_for(conversation.id)
        payload = conversation.model_dump_json(indent=2)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self._root, suffix=".tmp", delete=False
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            logger.error("Error saving conversation %s: %s", conversation.id, exc)
            raise StoreIoError(f"Failed to save conversation {conversation.id}: {exc}") from exc

    def delete(self, conversation_id: str) -> None:
        path = self._path_for(conversation_id)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise ConversationNotFoundError(conversation_id) from exc
        except OSError as exc:
            raise StoreIoError(f"Failed to delete conversation {conversation_id}: {exc}") from exc

    def _path_for(self, conversation_id: str) -> Path:
        if not CONVERSATION_ID_PATTERN.fullmatch(conversation_id or ""):
            raise InvalidConversationId(f"Invalid conversation id: {conversation_id!r}")
        return self._root / f"{conversation_id}.json"
