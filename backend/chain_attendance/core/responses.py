"""Response envelope models.

Consistent response format for all API endpoints: ``{"data": ...}`` for
success and ``{"error": {...}}`` for failures.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.get("/chains/{chain_id}/history")
        async def get_history(chain_id: UUID) -> DataResponse[ChainHistoryResponse]:
            history = await manager.get_history(chain_id)
            return DataResponse(data=history)
    """

    data: T


class ListResponse(BaseModel, Generic[T]):
    """Standard response envelope for collections.

    Attributes:
        data: Items in the collection.
        total: Number of items returned.
    """

    data: list[T]
    total: int


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "TOKEN_EXPIRED").
        message: Human-readable error message.
        category: Retry category (transient, expired, rejected, not_found).
        details: Optional list of field-level errors (for validation).
    """

    code: str
    message: str
    category: str | None = None
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope.

    Usage in exception handlers:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=exc.code, message=exc.message)
            ).model_dump(),
        )
    """

    error: ErrorDetail
