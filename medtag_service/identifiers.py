"""
Patient identifier resolution.

Turns whatever a responder scanned or pasted (a bare UUID from a card or
clipboard, a patient URL from a QR code, or an NFC NDEF record) into one
canonical patient id. Input either resolves to a valid id or is rejected
with None; there is no best-effort guessing.
"""
import re
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
PATIENT_PATH_PATTERN = re.compile(r"^/patient/([0-9a-fA-F-]{36})$")

# NDEF record types that may carry a patient id
READABLE_RECORD_TYPES = ("text", "url")


def is_valid_uuid(value: str) -> bool:
    return bool(UUID_PATTERN.fullmatch(value))


def extract_patient_id(raw: Optional[str]) -> Optional[str]:
    """Resolve raw scan/paste input into a patient id.

    Accepts a bare UUID (returned exactly as given) or an absolute URL whose
    path is /patient/<uuid>. Returns None for anything else.
    """
    if not raw:
        return None

    trimmed = raw.strip()
    if is_valid_uuid(trimmed):
        return trimmed

    try:
        parsed = urlsplit(trimmed)
    except ValueError:
        return None

    # Only absolute URLs count
    if not parsed.scheme or not parsed.netloc:
        return None

    match = PATIENT_PATH_PATTERN.fullmatch(parsed.path)
    if not match:
        return None

    candidate = match.group(1)
    return candidate if is_valid_uuid(candidate) else None


@dataclass
class NdefRecord:
    """One record read from an NFC tag."""
    record_type: str
    data: bytes
    encoding: Optional[str] = None


def extract_from_ndef_records(records: Iterable[NdefRecord]) -> Optional[str]:
    """Resolve a patient id from the records of a scanned NFC tag.

    The first text or url record decides the outcome. Tags with no such
    record, or whose record does not hold a valid id, are rejected.
    """
    for record in records:
        if record.record_type not in READABLE_RECORD_TYPES:
            continue

        encoding = record.encoding or "utf-8"
        try:
            raw = record.data.decode(encoding)
        except (LookupError, UnicodeDecodeError) as e:
            logger.warning(f"Could not decode NDEF {record.record_type} record: {e}")
            return None

        patient_id = extract_patient_id(raw)
        if patient_id is None:
            logger.info(f"NDEF {record.record_type} record holds no valid patient id")
        return patient_id

    logger.info("No text or url record found on NFC tag")
    return None


def patient_url(base_url: str, patient_id: str) -> str:
    """Build the /patient/<id> URL that gets written to tags and QR codes."""
    if not is_valid_uuid(patient_id):
        raise ValueError(f"Not a valid patient id: {patient_id!r}")
    return f"{base_url.rstrip('/')}/patient/{patient_id}"
