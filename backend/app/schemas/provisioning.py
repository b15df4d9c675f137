from __future__ import annotations

import re
from datetime import date
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

SLUG_REGEX = re.compile(r"^[a-z0-9-]+$")
USERNAME_REGEX = re.compile(r"^[a-z0-9._-]+$")


def _normalize_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = " ".join(value.strip().split())
    return v or None


class PersonBase(BaseModel):
    # Target school; defaults to the caller's own school
    school_id: Optional[UUID] = None

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=32)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=500)

    # Optional initial password; generated when omitted
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = _normalize_name(v)
        if not v:
            raise ValueError("must not be blank")
        return v


class StudentCreate(PersonBase):
    student_id: str = Field(min_length=1, max_length=50)
    admission_date: date

    roll_number: Optional[str] = Field(default=None, max_length=50)
    class_id: Optional[str] = Field(default=None, max_length=64)
    section: Optional[str] = Field(default=None, max_length=20)
    academic_year: Optional[str] = Field(default=None, max_length=20)
    parent_name: Optional[str] = Field(default=None, max_length=200)
    parent_phone: Optional[str] = Field(default=None, max_length=32)
    parent_email: Optional[EmailStr] = None


class TeacherCreate(PersonBase):
    employee_id: str = Field(min_length=1, max_length=50)
    hire_date: date

    # Department heads are provisioned as school admins
    role: Literal["teacher", "admin"] = "teacher"

    qualification: Optional[str] = Field(default=None, max_length=200)
    specialization: Optional[str] = Field(default=None, max_length=200)
    department: Optional[str] = Field(default=None, max_length=100)
    subjects_taught: List[str] = Field(default_factory=list)
    experience_years: Optional[int] = Field(default=None, ge=0, le=80)
    employment_type: Literal["full_time", "part_time", "contract"] = "full_time"


class StaffCreate(PersonBase):
    employee_id: str = Field(min_length=1, max_length=50)
    position: str = Field(min_length=1, max_length=100)
    hire_date: date

    department: Optional[str] = Field(default=None, max_length=100)
    employment_type: Literal["full_time", "part_time", "contract"] = "full_time"


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=2, max_length=200)
    slug: str = Field(min_length=2, max_length=100)
    owner_id: Optional[UUID] = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        v = v.strip()
        if not SLUG_REGEX.match(v):
            raise ValueError("slug may only contain lowercase letters, digits and hyphens")
        return v


class PlatformAdminCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=8, max_length=128)

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = _normalize_name(v)
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip().lower()
        if not USERNAME_REGEX.match(v):
            raise ValueError("username may only contain lowercase letters, digits, dots, underscores and hyphens")
        return v


class ProvisionedOut(BaseModel):
    success: bool = True
    user_id: UUID
    username: str
    # shown once to the admin; null when the credential already existed
    default_password: Optional[str] = None


class OrganizationOut(BaseModel):
    id: UUID
    name: str
    slug: str
    status: str

    model_config = {"from_attributes": True}


class OrganizationCreatedOut(BaseModel):
    success: bool = True
    organization: OrganizationOut
