from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from chatrelay.schemas.common import APIModel, SuccessResponse


class ChatRequest(APIModel):
    """Payload opening a relay session."""

    messages: list[dict[str, Any]]
    model: Optional[str] = Field(default=None)


class ModelListResponse(SuccessResponse):
    models: list[str]
    message: Optional[str] = None
