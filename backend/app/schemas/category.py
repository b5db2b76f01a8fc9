from datetime import datetime
from pydantic import BaseModel, ConfigDict, field_validator
from typing import Optional

class CategoryCreate(BaseModel):
    name: str
    description: str
    color: Optional[str] = None

    @field_validator('name', 'description')
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = (v or '').strip()
        if not v:
            raise ValueError('must not be empty')
        return v

class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None

class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    color: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class CategoryStatsOut(CategoryOut):
    email_count: int = 0
