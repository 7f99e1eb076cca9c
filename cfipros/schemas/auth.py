# -*- coding: utf-8 -*-
"""
Request schemas for the auth API.
"""
import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from cfipros.models.enums import ProgramType, UserRole

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def check_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_RE.match(v):
        raise ValueError('Invalid email format')
    return v


def check_password_strength(v: str) -> str:
    if not re.search(r'[A-Z]', v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not re.search(r'[a-z]', v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not re.search(r'[0-9]', v):
        raise ValueError('Password must contain at least one number')
    return v


class SignUpRequest(BaseModel):
    """Email/password sign up; role-specific fields land in user metadata."""
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)
    confirm_password: str = Field(..., min_length=1)
    role: UserRole = UserRole.STUDENT
    full_name: Optional[str] = Field(None, max_length=255)
    school_name: Optional[str] = Field(None, min_length=2, max_length=255)
    part_61_or_141_type: Optional[ProgramType] = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return check_email(v)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        return check_password_strength(v)

    @field_validator('role', 'part_61_or_141_type', mode='before')
    @classmethod
    def normalize_enum(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode='after')
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError('Passwords do not match')
        return self

    def user_metadata(self) -> dict:
        data = {'role': self.role.value}
        if self.full_name:
            data['full_name'] = self.full_name
        if self.school_name:
            data['school_name'] = self.school_name
        if self.part_61_or_141_type:
            data['part_61_or_141_type'] = self.part_61_or_141_type.value
        return data


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return check_email(v)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=1)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return check_email(v)


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=8)
    confirm_password: str = Field(..., min_length=1)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        return check_password_strength(v)

    @model_validator(mode='after')
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError('Passwords do not match')
        return self
