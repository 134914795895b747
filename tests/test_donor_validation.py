"""
tests/test_donor_validation.py
Pure tests for registration form checks and consent requirements.
"""

from types import SimpleNamespace

from services.donor.validation import (
    consent_requirements,
    medical_history_advisory,
    parse_organs,
    validate_deceased_registration,
    validate_living_registration,
)
from shared.models.models import DonorType, Organ
from shared.schemas.schemas import DeceasedDonorRegistrationRequest, LivingDonorRegistrationRequest


def living_form(**overrides):
    data = {
        "organs": ["kidney"],
        "blood_type": "B-",
        "age": 40,
        "gender": "male",
        "medical_history": "Healthy, annual checkups",
        "consent": True,
    }
    data.update(overrides)
    return LivingDonorRegistrationRequest(**data)


def deceased_form(**overrides):
    data = {
        "organs": ["heart"],
        "blood_type": "AB+",
        "emergency_contact_name": "Lee",
        "emergency_contact_phone": "(555) 123-4567",
        "emergency_contact_relationship": "Spouse",
        "consent": True,
    }
    data.update(overrides)
    return DeceasedDonorRegistrationRequest(**data)


# ── parse_organs ───────────────────────────────────────────────

def test_parse_organs_normalizes_and_dedupes():
    organs, errors = parse_organs(["Kidney", " kidney", "BLOOD"], living=True)
    assert organs == [Organ.KIDNEY, Organ.BLOOD]
    assert errors == {}


def test_parse_organs_living_restriction():
    _, errors = parse_organs(["kidney", "lung"], living=True)
    assert "lung" in errors["organs"]


def test_parse_organs_deceased_allows_any_catalogue_organ():
    organs, errors = parse_organs(["heart", "heart_valves", "bone"], living=False)
    assert errors == {}
    assert len(organs) == 3


def test_parse_organs_empty():
    _, errors = parse_organs([], living=False)
    assert "organs" in errors


# ── Forms ──────────────────────────────────────────────────────

def test_valid_living_form():
    assert validate_living_registration(living_form()) == {}


def test_living_age_bounds():
    assert "age" in validate_living_registration(living_form(age=17))
    assert "age" in validate_living_registration(living_form(age=101))
    assert "age" in validate_living_registration(living_form(age=None))
    assert validate_living_registration(living_form(age=18)) == {}
    assert validate_living_registration(living_form(age=100)) == {}


def test_valid_deceased_form():
    assert validate_deceased_registration(deceased_form()) == {}


def test_deceased_phone_needs_ten_digits():
    errors = validate_deceased_registration(deceased_form(emergency_contact_phone="555-1234"))
    assert "emergencyContactPhone" in errors


def test_deceased_requires_consent():
    assert "consent" in validate_deceased_registration(deceased_form(consent=False))


def test_short_history_gets_advisory_only():
    assert validate_living_registration(living_form(medical_history="ok")) == {}
    assert medical_history_advisory("ok") is not None
    assert medical_history_advisory("A long and complete history") is None


# ── Consent requirements ───────────────────────────────────────

def test_consent_needs_type():
    assert consent_requirements(None) == {"donorType": "Donor type must be set before giving consent"}


def test_living_consent_checks_medical_info():
    info = SimpleNamespace(blood_type="A+", age=15, gender=None, medical_history="")
    errors = consent_requirements(DonorType.LIVING, info, [Organ.KIDNEY])
    assert set(errors) == {"age", "gender", "medicalHistory"}


def test_living_consent_rejects_non_living_organs():
    info = SimpleNamespace(blood_type="A+", age=30, gender="male", medical_history="fine")
    errors = consent_requirements(DonorType.LIVING, info, [Organ.KIDNEY, Organ.HEART])
    assert set(errors) == {"organs"}


def test_deceased_consent_checks_primary_contact():
    assert "emergencyContact" in consent_requirements(DonorType.DECEASED)
    weak = SimpleNamespace(full_name="Lee", phone="12345", relationship="")
    errors = consent_requirements(DonorType.DECEASED, primary_contact=weak)
    assert set(errors) == {"emergencyContactPhone", "emergencyContactRelationship"}
    good = SimpleNamespace(full_name="Lee", phone="555 123 4567", relationship="Spouse")
    assert consent_requirements(DonorType.DECEASED, primary_contact=good) == {}
