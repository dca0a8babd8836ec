"""Response envelope shared by every endpoint."""

from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard API response wrapper"""

    success: bool = Field(True, description="Whether the request succeeded")
    data: Optional[T] = Field(None, description="Response payload")
    message: Optional[str] = Field(None, description="Human readable summary")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
