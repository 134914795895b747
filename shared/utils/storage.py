"""
shared/utils/storage.py
Case file references. Blobs live in an external object store under
{owner_id}/{case_id}/{category}/{timestamp}_{filename}; this module only
builds keys and validates the reference tuples clients send back.
"""

import re
import time
from enum import Enum
from typing import Dict, Optional

from config.settings import settings


class FileCategory(str, Enum):
    LAB_RESULTS = "lab-results"
    MEDICAL_INFO = "medical-info"

    @property
    def column(self) -> str:
        """Case attribute holding references of this category."""
        return "lab_results_files" if self is FileCategory.LAB_RESULTS else "medical_info_files"


ALLOWED_MIME_TYPES = {
    "image/jpeg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "application/pdf": (".pdf",),
    "application/msword": (".doc",),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": (".docx",),
    "application/vnd.ms-excel": (".xls",),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": (".xlsx",),
}

_UNSAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_RE.sub("_", filename)


def build_storage_path(
    owner_id,
    case_id,
    category: FileCategory,
    filename: str,
    timestamp_ms: Optional[int] = None,
) -> str:
    """Object key for an upload. Timestamp prefix keeps repeated names distinct."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    category = FileCategory(category)
    return f"{owner_id}/{case_id}/{category.value}/{timestamp_ms}_{sanitize_filename(filename)}"


def storage_prefix(owner_id, case_id=None, category: Optional[FileCategory] = None) -> str:
    parts = [str(owner_id)]
    if case_id is not None:
        parts.append(str(case_id))
        if category is not None:
            parts.append(FileCategory(category).value)
    return "/".join(parts) + "/"


def validate_file_reference(
    ref: dict,
    owner_id,
    case_id=None,
    category: Optional[FileCategory] = None,
) -> Dict[str, str]:
    """
    Check one {name, url, size, type, path} reference.
    Returns a field → message map; empty when the reference is acceptable.
    The path must sit under the owner's prefix (and the case/category
    prefix once the case exists).
    """
    errors: Dict[str, str] = {}
    name = ref.get("name") or ""

    size = ref.get("size")
    if size is None or size < 0:
        errors["size"] = f'File "{name}" has no valid size'
    elif size > settings.MAX_CASE_FILE_BYTES:
        limit_mb = settings.MAX_CASE_FILE_BYTES // (1024 * 1024)
        errors["size"] = f'File "{name}" exceeds maximum size of {limit_mb}MB'

    if ref.get("type") not in ALLOWED_MIME_TYPES:
        errors["type"] = f'File "{name}" has unsupported type. Allowed: images, PDF, Word, Excel'

    path = ref.get("path")
    if path:
        prefix = storage_prefix(owner_id, case_id, category)
        if not path.startswith(prefix) or ".." in path.split("/"):
            errors["path"] = f'File "{name}" is not stored under {prefix}'

    return errors


def upload_slot(owner_id, case_id, category: FileCategory, filename: str) -> dict:
    """Bucket and object key a client should upload a new case file to."""
    return {
        "bucket": settings.CASE_FILES_BUCKET,
        "path": build_storage_path(owner_id, case_id, category, filename),
    }
