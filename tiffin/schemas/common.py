from typing import Generic, TypeVar, Optional, Any, Dict, List
from pydantic import BaseModel, Field

T = TypeVar('T')


class ApiResponse(BaseModel, Generic[T]):
    """Standard API envelope"""
    success: bool = Field(description="Whether the request succeeded")
    data: Optional[T] = Field(None, description="Payload")
    message: Optional[str] = Field(None, description="Human readable message")


class ErrorResponse(BaseModel):
    """Error envelope"""
    success: bool = Field(False, description="Always false")
    message: str = Field(description="What rule was broken")
    error_code: str = Field(description="Machine readable code")
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "message": "Must skip at least 2 hours before delivery time (13:00)",
                "error_code": "CUTOFF_WINDOW_PASSED",
                "details": {"delivery_date": "2024-01-15", "delivery_time": "13:00"}
            }
        }
    }


class BulkFailure(BaseModel):
    order_id: int
    reason: str


class BulkResultResponse(BaseModel):
    """Per-item outcome of a bulk operation"""
    success: List[int] = Field(default_factory=list, description="Order ids that changed")
    failed: List[BulkFailure] = Field(default_factory=list, description="Order ids that did not, with reasons")


# OpenAPI documentation for the error envelope on every router
ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 409)}
