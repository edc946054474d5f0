from __future__ import annotations

import enum
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Optional

from chatrelay.schemas.conversation import Conversation


class MatchKind(str, enum.Enum):
    EXACT = "exact"
    PREFIX = "prefix"


@dataclass(frozen=True)
class MatchResult:
    """Relationship between a candidate transcript and a stored conversation."""

    kind: MatchKind
    conversation_id: str

    @property
    def exact(self) -> bool:
        return self.kind is MatchKind.EXACT


def message_key(message: Any) -> str:
    """Serialize a message for structural comparison.

    Key order is preserved, so two messages compare equal only when their JSON
    text is identical.
    """

    return json.dumps(message, ensure_ascii=False, separators=(",", ":"))


def match_transcript(
    candidate: Sequence[Any], stored: Iterable[Conversation]
) -> Optional[MatchResult]:
    """Classify ``candidate`` against the stored conversations.

    An exact transcript match wins over any prefix match. Among prefix matches
    the longest stored transcript wins; ties keep the first in ``stored`` order.
    """

    conversations = list(stored)
    candidate_keys = [message_key(message) for message in candidate]

    for conversation in conversations:
        if len(conversation.messages) != len(candidate_keys):
            continue
        if _keys(conversation.messages) == candidate_keys:
            return MatchResult(MatchKind.EXACT, conversation.id)

    best: Optional[Conversation] = None
    for conversation in conversations:
        length = len(conversation.messages)
        if length == 0 or length > len(candidate_keys):
            continue
        if best is not None and length <= len(best.messages):
            continue
        if _keys(conversation.messages) == candidate_keys[:length]:
            best = conversation

    if best is None:
        return None
    return MatchResult(MatchKind.PREFIX, best.id)


def _keys(messages: Sequence[Any]) -> list[str]:
    return [message_key(message) for message in messages]
