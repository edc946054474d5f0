from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    """Base model shared by request and response payloads."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class SuccessResponse(APIModel):
    """Envelope carrying only the operation outcome."""

    success: bool = True


class ErrorResponse(APIModel):
    """Standard error response payload."""

    success: bool = False
    code: str
    message: str
