"""
Error envelopes shared by every endpoint.

Declared as ``responses=`` on the routes so the OpenAPI document shows the
error contract next to the success schema.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every non-validation error (404, 409, 422 business rules, 500)."""

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        ...,
        description="Human-readable error description",
        examples=["Cannot resume plan 'Monthly rentals' while it is cancelled"],
    )
    details: Optional[Any] = Field(
        default=None, description="Extra context, e.g. ``{\"field\": \"allocations\"}``"
    )


class ValidationErrorDetail(BaseModel):
    field: str = Field(..., examples=["body -> allocations -> 0 -> allocation_percent"])
    message: str = Field(..., examples=["Input should be greater than 0"])


class ValidationErrorResponse(BaseModel):
    """Body of a 422 raised by request parsing, one entry per bad field."""

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(default="Validation failed")
    details: List[ValidationErrorDetail]
