from __future__ import annotations

from fastapi import APIRouter, Depends

from chatrelay.schemas.common import SuccessResponse
from chatrelay.schemas.conversation import (
    Conversation,
    ConversationCreateRequest,
    ConversationListResponse,
    ConversationResponse,
    ConversationSaveResponse,
)
from chatrelay.services.conversation_service import (
    ConversationService,
    get_conversation_service,
)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get("", response_model=ConversationListResponse)
def list_conversations(
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationListResponse:
    """List stored conversations, newest first."""

    return ConversationListResponse(conversations=service.list_conversations())


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationResponse:
    return ConversationResponse(conversation=service.get_conversation(conversation_id))


@router.post(
    "", response_model=ConversationSaveResponse, response_model_exclude_none=True
)
def create_conversation(
    payload: ConversationCreateRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationSaveResponse:
    """Create a conversation, or merge into the stored one it extends."""

    return service.create_or_merge(payload)


@router.put(
    "/{conversation_id}",
    response_model=ConversationSaveResponse,
    response_model_exclude_none=True,
)
def update_conversation(
    conversation_id: str,
    payload: Conversation,
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationSaveResponse:
    return service.update_conversation(conversation_id, payload)


@router.delete("/{conversation_id}", response_model=SuccessResponse)
def delete_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> SuccessResponse:
    service.delete_conversation(conversation_id)
    return SuccessResponse()
