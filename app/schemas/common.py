"""
Common Schemas
==============

Shared Pydantic schemas used across the application.
"""

from typing import Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Error detail structure."""

    code: str
    message: str
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: ErrorDetail


class MessageResponse(BaseModel):
    """Bare acknowledgement, as expected by webhook senders."""

    message: str = "OK"


class ReceivedResponse(BaseModel):
    """Stripe-style webhook acknowledgement."""

    received: bool = True
