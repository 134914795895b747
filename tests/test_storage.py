"""
tests/test_storage.py
Pure tests for case file keys and reference validation.
"""

import uuid

from shared.utils.storage import (
    FileCategory,
    build_storage_path,
    sanitize_filename,
    storage_prefix,
    upload_slot,
    validate_file_reference,
)
from shared.utils.text import is_valid_phone, sanitize_text

OWNER = uuid.UUID("11111111-1111-1111-1111-111111111111")
CASE = uuid.UUID("22222222-2222-2222-2222-222222222222")


def ref(**overrides):
    data = {
        "name": "report.pdf",
        "url": "https://files.example.com/report.pdf",
        "size": 4096,
        "type": "application/pdf",
        "path": f"{OWNER}/{CASE}/lab-results/1700000000000_report.pdf",
    }
    data.update(overrides)
    return data


def test_storage_path_layout():
    path = build_storage_path(OWNER, CASE, FileCategory.MEDICAL_INFO, "my scan (1).png", timestamp_ms=42)
    assert path == f"{OWNER}/{CASE}/medical-info/42_my_scan__1_.png"


def test_sanitize_filename():
    assert sanitize_filename("../../etc/passwd") == ".._.._etc_passwd"


def test_category_column():
    assert FileCategory.LAB_RESULTS.column == "lab_results_files"
    assert FileCategory("medical-info").column == "medical_info_files"


def test_prefix_narrows_with_case_and_category():
    assert storage_prefix(OWNER) == f"{OWNER}/"
    assert storage_prefix(OWNER, CASE, FileCategory.LAB_RESULTS) == f"{OWNER}/{CASE}/lab-results/"


def test_valid_reference():
    assert validate_file_reference(ref(), OWNER, CASE, FileCategory.LAB_RESULTS) == {}


def test_reference_size_limit():
    errors = validate_file_reference(ref(size=11 * 1024 * 1024), OWNER)
    assert "10MB" in errors["size"]


def test_reference_type_whitelist():
    assert "type" in validate_file_reference(ref(type="text/html"), OWNER)


def test_reference_outside_owner_prefix():
    errors = validate_file_reference(ref(path=f"{uuid.uuid4()}/x/lab-results/a.pdf"), OWNER)
    assert "path" in errors


def test_reference_path_traversal():
    errors = validate_file_reference(ref(path=f"{OWNER}/../{uuid.uuid4()}/a.pdf"), OWNER)
    assert "path" in errors


def test_reference_without_path_is_accepted():
    assert validate_file_reference(ref(path=None), OWNER, CASE, FileCategory.LAB_RESULTS) == {}


def test_sanitize_text():
    assert sanitize_text("  <b>hi</b> there ") == "hi there"
    assert sanitize_text(None) is None


def test_phone_validation():
    assert is_valid_phone("+91 98765 43210")
    assert not is_valid_phone("98765")
    assert not is_valid_phone("call me 5550001111")


def test_upload_slot_uses_configured_bucket():
    slot = upload_slot(OWNER, CASE, FileCategory.LAB_RESULTS, "cbc.pdf")
    assert slot["bucket"] == "case-files"
    assert slot["path"].startswith(storage_prefix(OWNER, CASE, FileCategory.LAB_RESULTS))
