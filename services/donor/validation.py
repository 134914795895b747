"""
services/donor/validation.py
Donor registration and consent rules. Pure functions returning a
field → message map (camelCase keys, as the client forms use); an empty map
means the data is acceptable.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from shared.models.models import LIVING_DONOR_ORGANS, BloodType, DonorType, Gender, Organ
from shared.utils.text import is_valid_phone, phone_digit_count

MIN_DONOR_AGE = 18
MAX_DONOR_AGE = 100
MEDICAL_HISTORY_ADVISORY_LENGTH = 10

Errors = Dict[str, str]


def parse_organs(values: Iterable[str], living: bool) -> Tuple[List[Organ], Errors]:
    """Map names to the catalogue, dropping duplicates. Living donors get the restricted set."""
    organs: List[Organ] = []
    unknown, not_living = [], []
    for raw in values or []:
        try:
            organ = Organ(str(raw).strip().lower())
        except ValueError:
            unknown.append(str(raw))
            continue
        if living and organ not in LIVING_DONOR_ORGANS:
            not_living.append(organ.value)
        elif organ not in organs:
            organs.append(organ)

    errors: Errors = {}
    if unknown:
        errors["organs"] = f"Unknown organ: {', '.join(unknown)}"
    elif not_living:
        errors["organs"] = (
            f"Not available for living donation: {', '.join(not_living)}. "
            f"Living donors may give: {', '.join(sorted(o.value for o in LIVING_DONOR_ORGANS))}"
        )
    elif not organs:
        errors["organs"] = "Please select at least one organ to donate"
    return organs, errors


def _check_blood_type(value: Optional[str], errors: Errors) -> None:
    if not value:
        errors["bloodType"] = "Blood type is required"
        return
    try:
        BloodType(value)
    except ValueError:
        errors["bloodType"] = "Invalid blood type"


def _check_age(value: Optional[int], errors: Errors) -> None:
    if value is None or not MIN_DONOR_AGE <= value <= MAX_DONOR_AGE:
        errors["age"] = f"Age must be between {MIN_DONOR_AGE} and {MAX_DONOR_AGE}"


def _check_gender(value: Optional[str], errors: Errors) -> None:
    if not value:
        errors["gender"] = "Gender is required"
        return
    try:
        Gender(value)
    except ValueError:
        errors["gender"] = "Invalid gender"


def validate_living_registration(data) -> Errors:
    errors: Errors = {}
    _, organ_errors = parse_organs(data.organs, living=True)
    errors.update(organ_errors)
    _check_blood_type(data.blood_type, errors)
    _check_age(data.age, errors)
    _check_gender(data.gender, errors)
    if not (data.medical_history or "").strip():
        errors["medicalHistory"] = "Medical history is required"
    if not data.consent:
        errors["consent"] = "You must provide consent to donate"
    return errors


def validate_deceased_registration(data) -> Errors:
    errors: Errors = {}
    _, organ_errors = parse_organs(data.organs, living=False)
    errors.update(organ_errors)
    _check_blood_type(data.blood_type, errors)
    if not (data.emergency_contact_name or "").strip():
        errors["emergencyContactName"] = "Emergency contact name is required"
    if not data.emergency_contact_phone:
        errors["emergencyContactPhone"] = "Phone number is required"
    elif not is_valid_phone(data.emergency_contact_phone):
        errors["emergencyContactPhone"] = "Phone number must have at least 10 digits"
    if not (data.emergency_contact_relationship or "").strip():
        errors["emergencyContactRelationship"] = "Relationship is required"
    if not data.consent:
        errors["consent"] = "You must provide consent for posthumous donation"
    return errors


def medical_history_advisory(medical_history: Optional[str]) -> Optional[str]:
    """Short histories are accepted but flagged."""
    text = (medical_history or "").strip()
    if text and len(text) < MEDICAL_HISTORY_ADVISORY_LENGTH:
        return f"Medical history is shorter than {MEDICAL_HISTORY_ADVISORY_LENGTH} characters"
    return None


def consent_requirements(
    donor_type: Optional[DonorType],
    medical_info=None,
    organs: Iterable = (),
    primary_contact=None,
) -> Errors:
    """
    What is still missing before consent_given may become true.

    living   - medical info with blood type, age in range, gender and
               history; every offered organ in the living set
    deceased - a primary emergency contact with name, phone and relationship
    """
    if donor_type is None:
        return {"donorType": "Donor type must be set before giving consent"}

    errors: Errors = {}
    donor_type = DonorType(donor_type)
    if donor_type == DonorType.LIVING:
        if medical_info is None:
            errors["medicalInfo"] = "Medical information is required for living donors"
        else:
            if not medical_info.blood_type:
                errors["bloodType"] = "Blood type is required"
            _check_age(medical_info.age, errors)
            if not medical_info.gender:
                errors["gender"] = "Gender is required"
            if not (medical_info.medical_history or "").strip():
                errors["medicalHistory"] = "Medical history is required"
        not_living = sorted(
            Organ(o).value for o in organs if Organ(o) not in LIVING_DONOR_ORGANS
        )
        if not_living:
            errors["organs"] = f"Not available for living donation: {', '.join(not_living)}"
    else:
        if primary_contact is None:
            errors["emergencyContact"] = "A primary emergency contact is required"
        else:
            if not (primary_contact.full_name or "").strip():
                errors["emergencyContactName"] = "Emergency contact name is required"
            if phone_digit_count(primary_contact.phone) < 10:
                errors["emergencyContactPhone"] = "Phone number must have at least 10 digits"
            if not (primary_contact.relationship or "").strip():
                errors["emergencyContactRelationship"] = "Relationship is required"
    return errors
