"""Upload validation helpers shared by submissions, personal files and chat attachments.

Everything in here runs before anything is written: a payload that fails a
check never reaches the disk or the database.
"""
import base64
import binascii
import logging
import re
import uuid
from pathlib import Path, PurePath

from werkzeug.utils import secure_filename

from college_katta.core import config
from college_katta.models.submission import DEFAULT_MATERIAL_TYPE, MATERIAL_TYPES
from college_katta.services.capabilities import KIND_PERSONAL, get_capabilities

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {
    "pdf", "doc", "docx", "ppt", "pptx", "xls", "xlsx",
    "txt", "rtf", "csv",
    "jpg", "jpeg", "png", "gif",
    "zip", "rar", "7z",
}

ALLOWED_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/rtf",
    "text/plain",
    "text/csv",
    "text/rtf",
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/zip",
    "application/x-zip-compressed",
    "application/vnd.rar",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
}

GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

YEAR_ALIASES = {
    "1st": "First Year",
    "2nd": "Second Year",
    "3rd": "Third Year",
    "4th": "Fourth Year",
}

_SIZE_PATTERN = re.compile(r"^\s*([\d.]+)\s*(bytes|b|kb|mb|gb)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"b": 1, "bytes": 1, "kb": 1024, "mb": 1024 ** 2, "gb": 1024 ** 3}
_DATA_URL_PREFIX = re.compile(r"^data:[^;,]*(;[^,]*)?;base64,", re.IGNORECASE)
_CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f]")


class UploadValidationError(Exception):
    """Raised when an upload fails a type, size or encoding check."""


def get_extension(file_name: str) -> str:
    return PurePath(file_name or "").suffix.lower().lstrip(".")


def format_size_limit(max_bytes: int) -> str:
    return f"{max_bytes // (1024 * 1024)}MB"


def validate_file_type(file_name: str, mime_type: str | None = None) -> str:
    """Check the extension (and MIME type when it is specific) against the allow-list.

    Returns the normalized extension.
    """
    if _CONTROL_CHARACTERS.search(file_name or ""):
        raise UploadValidationError("File name contains invalid characters")

    extension = get_extension(file_name)
    if extension not in ALLOWED_EXTENSIONS:
        label = f".{extension}" if extension else "without an extension"
        raise UploadValidationError(f"File type {label} is not allowed")

    normalized_mime = (mime_type or "").split(";")[0].strip().lower()
    if normalized_mime not in GENERIC_MIME_TYPES and normalized_mime not in ALLOWED_MIME_TYPES:
        raise UploadValidationError(
            "File type not allowed. Please upload a document, image, or archive file."
        )

    return extension


def validate_file_size(size: int, max_bytes: int) -> None:
    if size <= 0:
        raise UploadValidationError("File is empty")
    if size > max_bytes:
        raise UploadValidationError(f"File too large. Maximum file size is {format_size_limit(max_bytes)}.")


def decode_base64_payload(content: str) -> bytes:
    """Decode inline file content, accepting either raw base64 or a data URL."""
    if not content or not content.strip():
        raise UploadValidationError("File content is required")

    payload = "".join(_DATA_URL_PREFIX.sub("", content.strip(), count=1).split())
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UploadValidationError("File content is not valid base64") from exc


def encode_base64_payload(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def parse_declared_size(value) -> int | None:
    """Turn a client-declared size (number, "2048", "1.5 MB") into bytes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None

    match = _SIZE_PATTERN.match(str(value))
    if not match:
        return None
    try:
        amount = float(match.group(1))
    except ValueError:
        return None
    unit = (match.group(2) or "bytes").lower()
    return round(amount * _SIZE_UNITS[unit])


def normalize_material_type(value: str | None) -> str:
    if value in MATERIAL_TYPES:
        return value
    if value:
        logger.warning("Invalid material type %r, defaulting to %s", value, DEFAULT_MATERIAL_TYPE)
    return DEFAULT_MATERIAL_TYPE


def format_year(year: str | None) -> str:
    """Normalize "2nd Year" style input to "Second Year"."""
    if not year:
        return ""
    normalized = year.strip()
    for prefix in ("First", "Second", "Third", "Fourth", "Graduate"):
        if prefix in normalized:
            return normalized
    for alias, text in YEAR_ALIASES.items():
        if alias in normalized.lower():
            return text
    return normalized


def safe_file_name(file_name: str) -> str:
    name = PurePath((file_name or "").replace("\\", "/")).name.strip()
    return name or "file"


def make_storage_name(file_name: str) -> str:
    """On-disk name: a uuid prefix plus an ASCII-only version of the display name."""
    return f"{uuid.uuid4().hex}-{secure_filename(file_name or '') or 'file'}"


def personal_files_root() -> Path:
    return Path(config.UPLOAD_ROOT) / get_capabilities(KIND_PERSONAL).storage_folder


def user_upload_dir(user_id: int) -> Path:
    """Return the user's personal upload directory, creating it on first use."""
    directory = personal_files_root() / str(user_id)
    directory.mkdir(parents=True, exist_ok=True)
    return directory
