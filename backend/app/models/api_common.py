# app/models/api_common.py
# Response envelope shared by every JSON endpoint.

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class ErrorDetail(BaseModel):
    message: str
    code: str


class SuccessResponse(BaseModel, Generic[DataT]):
    success: bool = True
    data: Optional[DataT] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


def success_response(data: Any = None, message: Optional[str] = None) -> dict:
    """Envelope for a successful result. `data` must already be JSON-serializable."""
    return SuccessResponse[Any](data=data, message=message).model_dump()


def error_response(message: str, code: str) -> dict:
    return ErrorResponse(error=ErrorDetail(message=message, code=code)).model_dump()
