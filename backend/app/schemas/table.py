"""
Pydantic schemas for restaurant table management.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class TableCreate(BaseModel):
    table_number: int = Field(..., gt=0)
    min_capacity: int = Field(1, gt=0)
    max_capacity: int = Field(..., gt=0, le=100)
    table_type: str = Field("standard", min_length=1, max_length=30)
    section: Optional[str] = Field(None, max_length=50)
    combinable: bool = False
    combinable_with: list[int] = Field(default_factory=list)
    priority_score: float = 0.0
    active: bool = True

    @model_validator(mode="after")
    def check_capacity_range(self):
        if self.max_capacity < self.min_capacity:
            raise ValueError("max_capacity must be >= min_capacity")
        return self


class TableUpdate(BaseModel):
    min_capacity: Optional[int] = Field(None, gt=0)
    max_capacity: Optional[int] = Field(None, gt=0, le=100)
    table_type: Optional[str] = Field(None, min_length=1, max_length=30)
    section: Optional[str] = Field(None, max_length=50)
    combinable: Optional[bool] = None
    combinable_with: Optional[list[int]] = None
    priority_score: Optional[float] = None
    active: Optional[bool] = None


class TableResponse(BaseModel):
    id: int
    table_number: int
    min_capacity: int
    max_capacity: int
    table_type: str
    section: Optional[str]
    combinable: bool
    combinable_with: list[int]
    priority_score: float
    active: bool
    version: int
    created_at: datetime

    model_config = {"from_attributes": True}
