"""Household member domain models and enums."""

import re
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


# Constants for validation
MAX_NAME_LENGTH = 50


class MemberRole(StrEnum):
    """Member role in the household."""

    PARENT = "parent"
    CHILD = "child"


class Member(BaseModel):
    """Member data transfer object."""

    id: str = Field(..., description="Unique member ID from database")
    name: str = Field(..., description="Display name of the member")
    role: MemberRole = Field(default=MemberRole.CHILD, description="Member role in household")
    points: int = Field(default=0, ge=0, description="Current point balance (never negative)")

    @field_validator("name")
    @classmethod
    def validate_name_usable(cls, v: str) -> str:
        """Validate name is usable - allows Unicode letters, spaces, hyphens, apostrophes."""
        v = v.strip()

        if not v:
            raise ValueError("Name cannot be empty")

        if len(v) > MAX_NAME_LENGTH:
            raise ValueError(f"Name too long (max {MAX_NAME_LENGTH} characters)")

        if not re.match(r"^[\w\s'-]+$", v, re.UNICODE):
            raise ValueError("Name can only contain letters, spaces, hyphens, and apostrophes")

        return v


class RedemptionStatus(StrEnum):
    """Reward redemption review status."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
