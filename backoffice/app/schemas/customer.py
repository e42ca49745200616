"""
Customer Schemas.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional


class CustomerCreate(BaseModel):
    """Schema for registering a customer."""
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    email: EmailStr = Field(..., description="Unique contact email")
    company: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)


class CustomerResponse(BaseModel):
    """Schema for displaying a customer."""
    id: int
    name: str
    email: str
    company: Optional[str]
    phone: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True
