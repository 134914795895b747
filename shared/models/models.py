"""
shared/models/models.py
All SQLAlchemy ORM models for the transplant coordination platform.
UUID primary keys throughout; enum columns store their lowercase values.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    PATIENT = "patient"
    DONOR = "donor"
    HOSPITAL = "hospital"
    SPONSOR = "sponsor"
    ADMIN = "admin"


class DonorType(str, PyEnum):
    LIVING = "living"
    DECEASED = "deceased"


class UrgencyLevel(str, PyEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CaseStatus(str, PyEnum):
    WAITING = "waiting"
    MATCHED = "matched"
    FUNDED = "funded"
    TRANSPLANTED = "transplanted"


class OrganStatus(str, PyEnum):
    AVAILABLE = "available"
    MATCHED = "matched"
    DONATED = "donated"
    UNAVAILABLE = "unavailable"


class Organ(str, PyEnum):
    KIDNEY = "kidney"
    LIVER = "liver"
    PARTIAL_LIVER = "partial_liver"
    HEART = "heart"
    LUNG = "lung"
    PANCREAS = "pancreas"
    INTESTINE = "intestine"
    BONE_MARROW = "bone_marrow"
    BLOOD = "blood"
    CORNEA = "cornea"
    SKIN = "skin"
    BONE = "bone"
    HEART_VALVES = "heart_valves"


class ContactType(str, PyEnum):
    NEXT_OF_KIN = "next_of_kin"
    EMERGENCY = "emergency"
    LEGAL_REPRESENTATIVE = "legal_representative"


class Gender(str, PyEnum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"


class BloodType(str, PyEnum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"


# Organs a living donor can give without dying
LIVING_DONOR_ORGANS = frozenset(
    {Organ.KIDNEY, Organ.PARTIAL_LIVER, Organ.BONE_MARROW, Organ.BLOOD}
)

# Roles that need an admin before they can act
APPROVAL_REQUIRED_ROLES = frozenset({UserRole.HOSPITAL, UserRole.SPONSOR})


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """Enum column type persisting member values ("waiting"), not names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class ProfileFieldsMixin:
    """Demographic/contact attributes shared by patient, donor and sponsor profiles."""
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[Gender]] = mapped_column(_enum(Gender, "gender"), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    residential_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_contact: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    national_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    health_insurance_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


# ── Identity ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Core account. Role is fixed at signup; approval is granted by an admin."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, "user_role"), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    refresh_tokens: Mapped[List["RefreshToken"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_users_role_approved", "role", "approved"),)

    @property
    def needs_approval(self) -> bool:
        return self.role in APPROVAL_REQUIRED_ROLES and not self.approved

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class RefreshToken(Base):
    """Refresh tokens stored for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


# ── Role profiles (1:1 with users) ────────────────────────────

class PatientProfile(ProfileFieldsMixin, TimestampMixin, Base):
    __tablename__ = "patient_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )


class DonorProfile(ProfileFieldsMixin, TimestampMixin, Base):
    """
    Donor consent state. consent_given may only become true once donor_type
    is set and the type-specific registration data is present.
    """
    __tablename__ = "donor_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    donor_type: Mapped[Optional[DonorType]] = mapped_column(
        _enum(DonorType, "donor_type"), nullable=True
    )
    consent_given: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consent_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    can_withdraw: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class HospitalProfile(TimestampMixin, Base):
    __tablename__ = "hospital_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )


class SponsorProfile(ProfileFieldsMixin, TimestampMixin, Base):
    """Sponsor totals are maintained by the funding ledger, never by the sponsor."""
    __tablename__ = "sponsor_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_funded: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    funded_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


# ── Donor registration ────────────────────────────────────────

class DonorMedicalInfo(TimestampMixin, Base):
    """1:1 with DonorProfile. Never exposed to hospitals or sponsors."""
    __tablename__ = "donor_medical_info"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("donor_profiles.user_id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    blood_type: Mapped[BloodType] = mapped_column(_enum(BloodType, "blood_type"), nullable=False)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gender: Mapped[Optional[Gender]] = mapped_column(_enum(Gender, "gender"), nullable=True)
    allergies: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    medical_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    medical_history: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    has_recent_tests: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recent_tests_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("age IS NULL OR (age >= 18 AND age <= 100)", name="ck_donor_age_range"),
    )


_LIVING_ORGAN_SQL = ", ".join(f"'{o.value}'" for o in sorted(LIVING_DONOR_ORGANS))


class DonorOrgan(TimestampMixin, Base):
    """Organs a donor offers. Re-registration replaces the whole set."""
    __tablename__ = "donor_organs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("donor_profiles.user_id", ondelete="CASCADE"), nullable=False
    )
    organ_name: Mapped[Organ] = mapped_column(_enum(Organ, "organ_name"), nullable=False)
    is_living_donation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[OrganStatus] = mapped_column(
        _enum(OrganStatus, "organ_status"), default=OrganStatus.AVAILABLE, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("donor_id", "organ_name", name="uq_donor_organ"),
        CheckConstraint(
            f"NOT is_living_donation OR organ_name IN ({_LIVING_ORGAN_SQL})",
            name="ck_living_donation_organs",
        ),
        Index("ix_donor_organs_donor_id", "donor_id"),
        Index("ix_donor_organs_name_status", "organ_name", "status"),
    )


class EmergencyContact(TimestampMixin, Base):
    """Next-of-kin / emergency contacts. A primary one is required for deceased consent."""
    __tablename__ = "emergency_contacts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("donor_profiles.user_id", ondelete="CASCADE"), nullable=False
    )
    contact_type: Mapped[ContactType] = mapped_column(
        _enum(ContactType, "contact_type"), default=ContactType.NEXT_OF_KIN, nullable=False
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    relationship: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[str] = mapped_column(String(30), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_emergency_contacts_donor_id", "donor_id"),)


# ── Cases & funding ───────────────────────────────────────────

class Case(TimestampMixin, Base):
    """
    A patient's transplant need.
    Status: waiting → matched → funded → transplanted (never backwards).
    funding_amount is written only by the funding ledger.
    """
    __tablename__ = "cases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    organ_needed: Mapped[str] = mapped_column(String(50), nullable=False)
    urgency_level: Mapped[UrgencyLevel] = mapped_column(
        _enum(UrgencyLevel, "urgency_level"), nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[CaseStatus] = mapped_column(
        _enum(CaseStatus, "case_status"), default=CaseStatus.WAITING, nullable=False
    )
    assigned_hospital_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    matched_donor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    funding_goal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    funding_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )

    # Medical metadata
    blood_type: Mapped[Optional[BloodType]] = mapped_column(
        _enum(BloodType, "blood_type"), nullable=True
    )
    patient_age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    latest_lab_results: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chronic_illnesses: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    additional_medical_info: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # File references: [{"name", "url", "size", "type", "path"}]
    lab_results_files: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    medical_info_files: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    contributions: Mapped[List["FundingContribution"]] = relationship(
        back_populates="case", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("funding_amount >= 0", name="ck_case_funding_amount_non_negative"),
        CheckConstraint("funding_goal >= 0", name="ck_case_funding_goal_non_negative"),
        Index("ix_cases_patient_id", "patient_id"),
        Index("ix_cases_status", "status"),
        Index("ix_cases_assigned_hospital_id", "assigned_hospital_id"),
        Index("ix_cases_urgency_level", "urgency_level"),
    )


class FundingContribution(Base):
    """Append-only sponsor contribution toward a case's funding goal."""
    __tablename__ = "funding_contributions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    sponsor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    case: Mapped["Case"] = relationship(back_populates="contributions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_contribution_amount_positive"),
        Index("ix_funding_contributions_case_id", "case_id"),
        Index("ix_funding_contributions_sponsor_id", "sponsor_id"),
    )


# ── Audit ─────────────────────────────────────────────────────

class AuditLog(Base):
    """Immutable record of every state-changing action. Admin-readable only."""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[Optional[UserRole]] = mapped_column(_enum(UserRole, "user_role"), nullable=True)
    case_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="SET NULL"), nullable=True
    )
    target_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    donor_type: Mapped[Optional[DonorType]] = mapped_column(
        _enum(DonorType, "donor_type"), nullable=True
    )
    audit_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_action", "action"),
        Index("ix_audit_logs_created_at", "created_at"),
    )
