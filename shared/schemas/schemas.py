"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
JSON bodies use camelCase keys; snake_case is accepted on input too.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.models.models import (
    BloodType,
    CaseStatus,
    ContactType,
    DonorType,
    Gender,
    Organ,
    OrganStatus,
    UrgencyLevel,
    UserRole,
)
from shared.utils.storage import FileCategory
from shared.utils.text import is_valid_phone, sanitize_text


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: str
    errors: Dict[str, str] = {}


# ── Auth ──────────────────────────────────────────────────────

SIGNUP_ROLES = (UserRole.PATIENT, UserRole.DONOR, UserRole.HOSPITAL, UserRole.SPONSOR)


class SignUpRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=2, max_length=255)
    role: UserRole

    @field_validator("role")
    @classmethod
    def no_self_service_admin(cls, v):
        if UserRole(v) not in SIGNUP_ROLES:
            raise ValueError("Role must be one of: patient, donor, hospital, sponsor")
        return v

    @field_validator("name")
    @classmethod
    def clean_name(cls, v: str) -> str:
        v = sanitize_text(v)
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class SignInRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseSchema):
    refresh_token: str


class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    name: str
    role: UserRole
    approved: bool
    created_at: datetime


class TokenResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserResponse


# ── Profiles ──────────────────────────────────────────────────

class ProfileUpdateRequest(BaseSchema):
    full_name: Optional[str] = Field(None, max_length=255)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    phone: Optional[str] = Field(None, max_length=30)
    email: Optional[EmailStr] = None
    residential_address: Optional[str] = Field(None, max_length=1000)
    emergency_contact: Optional[str] = Field(None, max_length=500)
    national_id: Optional[str] = Field(None, max_length=100)
    health_insurance_number: Optional[str] = Field(None, max_length=100)

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v):
        if v is not None and not is_valid_phone(v):
            raise ValueError("Invalid phone number format")
        return v

    @field_validator("date_of_birth")
    @classmethod
    def not_in_future(cls, v):
        if v is not None and v > date.today():
            raise ValueError("Invalid date of birth")
        return v


class ProfileResponse(BaseSchema):
    user_id: uuid.UUID
    role: UserRole
    full_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    residential_address: Optional[str] = None
    emergency_contact: Optional[str] = None
    national_id: Optional[str] = None
    health_insurance_number: Optional[str] = None


# ── Cases ─────────────────────────────────────────────────────

class FileReference(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=2048)
    size: int = Field(..., ge=0)
    type: str = Field(..., max_length=255)
    path: Optional[str] = Field(None, max_length=1024)


class CaseCreateRequest(BaseSchema):
    organ_needed: str = Field(..., min_length=1, max_length=50)
    urgency_level: UrgencyLevel
    notes: Optional[str] = Field(None, max_length=5000)
    blood_type: Optional[BloodType] = None
    patient_age: Optional[int] = Field(None, ge=0, le=120)
    latest_lab_results: Optional[str] = Field(None, max_length=5000)
    chronic_illnesses: Optional[str] = Field(None, max_length=5000)
    additional_medical_info: Optional[str] = Field(None, max_length=5000)
    lab_results_files: List[FileReference] = []
    medical_info_files: List[FileReference] = []


class CaseUpdateRequest(BaseSchema):
    """Every field optional; which ones an actor may send depends on their role."""
    organ_needed: Optional[str] = Field(None, min_length=1, max_length=50)
    urgency_level: Optional[UrgencyLevel] = None
    notes: Optional[str] = Field(None, max_length=5000)
    blood_type: Optional[BloodType] = None
    patient_age: Optional[int] = Field(None, ge=0, le=120)
    latest_lab_results: Optional[str] = Field(None, max_length=5000)
    chronic_illnesses: Optional[str] = Field(None, max_length=5000)
    additional_medical_info: Optional[str] = Field(None, max_length=5000)
    status: Optional[CaseStatus] = None
    assigned_hospital_id: Optional[uuid.UUID] = None
    matched_donor_id: Optional[uuid.UUID] = None
    funding_goal: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)


class CaseFilesAttachRequest(BaseSchema):
    category: FileCategory
    files: List[FileReference] = Field(..., min_length=1)


class UploadSlotRequest(BaseSchema):
    category: FileCategory
    filename: str = Field(..., min_length=1, max_length=255)


class UploadSlotResponse(BaseSchema):
    bucket: str
    path: str


class CaseResponse(BaseSchema):
    id: uuid.UUID
    patient_id: Optional[uuid.UUID] = None
    patient_name: Optional[str] = None
    organ_needed: str
    urgency_level: UrgencyLevel
    notes: Optional[str] = None
    status: CaseStatus
    assigned_hospital_id: Optional[uuid.UUID] = None
    matched_donor_id: Optional[uuid.UUID] = None
    funding_goal: Decimal
    funding_amount: Decimal
    blood_type: Optional[BloodType] = None
    patient_age: Optional[int] = None
    latest_lab_results: Optional[str] = None
    chronic_illnesses: Optional[str] = None
    additional_medical_info: Optional[str] = None
    lab_results_files: List[FileReference] = []
    medical_info_files: List[FileReference] = []
    created_at: datetime
    updated_at: datetime


# ── Funding ───────────────────────────────────────────────────

class ContributionRequest(BaseSchema):
    case_id: uuid.UUID
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)


class ContributionResponse(BaseSchema):
    id: uuid.UUID
    case_id: uuid.UUID
    sponsor_id: Optional[uuid.UUID] = None
    amount: Decimal
    created_at: datetime


class ContributionResultResponse(BaseSchema):
    contribution: ContributionResponse
    case: CaseResponse


class SponsorContributionItem(BaseSchema):
    id: uuid.UUID
    case_id: uuid.UUID
    organ_needed: Optional[str] = None
    case_status: Optional[CaseStatus] = None
    amount: Decimal
    created_at: datetime


class SponsorStatsResponse(BaseSchema):
    total_funded: Decimal
    funded_count: int
    recent_contributions: List[SponsorContributionItem]


# ── Donors ────────────────────────────────────────────────────

class DonorProfileResponse(BaseSchema):
    user_id: uuid.UUID
    full_name: Optional[str] = None
    donor_type: Optional[DonorType] = None
    consent_given: bool
    consent_date: Optional[datetime] = None
    can_withdraw: bool


class ConsentRequest(BaseSchema):
    consent_given: bool
    donor_type: Optional[DonorType] = None


class LivingDonorRegistrationRequest(BaseSchema):
    """Loosely typed so the registration validator can report per-field errors."""
    organs: List[str] = []
    blood_type: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    medical_history: Optional[str] = None
    allergies: Optional[str] = None
    medical_conditions: Optional[str] = None
    has_recent_tests: bool = False
    recent_tests_description: Optional[str] = None
    consent: bool = False


class DeceasedDonorRegistrationRequest(BaseSchema):
    organs: List[str] = []
    blood_type: Optional[str] = None
    medical_conditions: Optional[str] = None
    allergies: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None
    emergency_contact_email: Optional[EmailStr] = None
    consent: bool = False


class OrganSelectionRequest(BaseSchema):
    organs: List[str]
    is_living_donation: Optional[bool] = None


class DonorOrganResponse(BaseSchema):
    id: uuid.UUID
    organ_name: Organ
    is_living_donation: bool
    status: OrganStatus
    notes: Optional[str] = None


class RegistrationStatusResponse(BaseSchema):
    donor_type: Optional[DonorType] = None
    consent_given: bool
    consent_date: Optional[datetime] = None
    has_medical_info: bool
    organs: List[str]
    emergency_contacts_count: int
    is_registered: bool


class RegistrationResultResponse(BaseSchema):
    profile: DonorProfileResponse
    organs: List[DonorOrganResponse]


class EmergencyContactCreate(BaseSchema):
    contact_type: ContactType = ContactType.NEXT_OF_KIN
    full_name: str = Field(..., min_length=1, max_length=255)
    relationship: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., max_length=30)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, max_length=1000)
    is_primary: bool = False

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v):
        if not is_valid_phone(v):
            raise ValueError("Phone number must have at least 10 digits")
        return v


class EmergencyContactResponse(BaseSchema):
    id: uuid.UUID
    contact_type: ContactType
    full_name: str
    relationship: Optional[str] = None
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    is_primary: bool
    created_at: datetime


class AvailableOrganResponse(BaseSchema):
    id: uuid.UUID
    donor_id: uuid.UUID
    organ_name: Organ
    is_living_donation: bool
    donor_type: Optional[DonorType] = None
    status: OrganStatus


# ── Admin ─────────────────────────────────────────────────────

class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    action: str
    role: Optional[UserRole] = None
    case_id: Optional[uuid.UUID] = None
    target_user_id: Optional[uuid.UUID] = None
    amount: Optional[Decimal] = None
    donor_type: Optional[DonorType] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class SystemStatsResponse(BaseSchema):
    total_users: int
    users_by_role: Dict[str, int]
    total_cases: int
    cases_by_status: Dict[str, int]
    donors_with_consent: int
    total_funding: Decimal
