"""
Request schemas for profile setup and editing.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from cfipros.models.enums import ProgramType, UserRole


class ProfileSetupRequest(BaseModel):
    role: UserRole
    full_name: str = Field(..., min_length=2, max_length=255)
    part_61_or_141_type: Optional[ProgramType] = None
    school_name: Optional[str] = Field(None, min_length=2, max_length=255)

    @field_validator('role', 'part_61_or_141_type', mode='before')
    @classmethod
    def normalize_enum(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode='after')
    def school_admin_needs_school(self):
        if self.role is UserRole.SCHOOL_ADMIN and not self.school_name:
            raise ValueError('School name is required')
        return self


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    part_61_or_141_type: Optional[ProgramType] = None
    preferences: Optional[Dict[str, Any]] = None

    @field_validator('part_61_or_141_type', mode='before')
    @classmethod
    def normalize_enum(cls, v):
        return v.upper() if isinstance(v, str) else v
