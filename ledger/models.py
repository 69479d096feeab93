"""
Pydantic models for validation and serialization of ledger data.

Base records (``Certificate``, ``Achievement``) mirror table rows. The
``*View`` models are read projections that carry denormalized join columns
such as student or category names.
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CertificateStatus(str, Enum):
    """Certificate lifecycle status."""
    ACTIVE = "active"
    REVOKED = "revoked"


class Student(BaseModel):
    """Student profile."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    nisn: str = Field(..., description="National student number")
    full_name: str
    birth_place: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    class_name: Optional[str] = Field(None, description="Class, e.g. XII IPA 1")
    year_entry: Optional[int] = None
    year_graduate: Optional[int] = None
    photo_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Attachment(BaseModel):
    """File evidence of an achievement."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    achievement_id: uuid.UUID
    file_url: str
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    label: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class Achievement(BaseModel):
    """Competition result of a student."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    student_id: uuid.UUID
    competition_name: str
    organizer: str
    category_id: Optional[int] = None
    rank: Optional[str] = None
    level_id: Optional[int] = None
    year: int
    description: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AchievementView(Achievement):
    """Achievement with category and level names resolved."""
    category_name: Optional[str] = None
    level_name: Optional[str] = None


class AchievementDetail(AchievementView):
    """Achievement view together with its attachments."""
    attachments: List[Attachment] = Field(default_factory=list)


class Certificate(BaseModel):
    """Issued certificate record."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    student_id: uuid.UUID
    certificate_number: str = Field(..., description="Number in PREFIX/SKP/YEAR/SEQ format")
    issued_at: datetime
    issued_by: Optional[uuid.UUID] = None
    valid_until: Optional[date] = None
    qr_token: str = Field(..., description="Public verification token")
    pdf_url: Optional[str] = None
    status: CertificateStatus = CertificateStatus.ACTIVE
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_revoked(self) -> bool:
        return self.status == CertificateStatus.REVOKED


class CertificateView(Certificate):
    """Certificate with student and issuer names resolved."""
    student_name: Optional[str] = None
    student_nisn: Optional[str] = None
    issued_by_name: Optional[str] = None


class CertificateDetail(CertificateView):
    """Certificate with the student and the achievements it covers."""
    student: Student
    achievements: List[AchievementDetail] = Field(default_factory=list)


class CertificateRequest(BaseModel):
    """Request to issue a certificate."""
    student_id: str = Field(..., description="Student UUID")
    achievement_ids: List[str] = Field(default_factory=list, description="Achievements to include")
    valid_until: Optional[str] = Field(None, description="Expiry date, YYYY-MM-DD")
    notes: str = Field(default="", description="Free text notes")

    @field_validator("student_id", "valid_until")
    @classmethod
    def strip_value(cls, v):
        return v.strip() if isinstance(v, str) else v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "student_id": "0b7c4f1e-8a59-4c8e-9d9a-3f4f2b1d6a10",
                "achievement_ids": ["5a3e2c1d-7b6f-4e0a-9c8d-1e2f3a4b5c6d"],
                "valid_until": "2025-12-31",
                "notes": "Untuk pendaftaran SNBP",
            }
        }
    )


class CertificateFilter(BaseModel):
    """Listing filter."""
    student_id: Optional[str] = None
    status: Optional[CertificateStatus] = None
    page: int = 1
    per_page: int = 10

    @field_validator("page", "per_page")
    @classmethod
    def positive_or_default(cls, v, info):
        if v is None or v <= 0:
            return 1 if info.field_name == "page" else 10
        return v


class Pagination(BaseModel):
    """Pagination metadata."""
    page: int
    per_page: int
    total_items: int
    total_pages: int


class VerifyResult(BaseModel):
    """Outcome of a public verification."""
    is_valid: bool
    certificate: Optional[CertificateView] = None
    student: Optional[Student] = None
    achievements: Optional[List[AchievementView]] = None
    message: str

    def to_payload(self) -> Dict[str, Any]:
        """Serializes the result, omitting fields that the outcome does not disclose."""
        payload = self.model_dump(mode="json")
        return {key: value for key, value in payload.items() if value is not None}
