"""
Document filename convention: `<OWNER>_<Document Type>.<ext>`, e.g.
`DL1234_Degree-Certificate.pdf`.

The owner identifier in the filename is the only key that ties an issued
document to a later verification, so parsing is deliberately strict.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from app.docledger.errors import FormatError

# ASCII digits only; Python's `\d` would also accept other Unicode digits.
FILENAME_RE = re.compile(r"^[A-Z]{2}[0-9]{4}_[A-Za-z\s-]+\.[A-Za-z0-9]+$")
OWNER_ID_RE = re.compile(r"^[A-Z]{2}[0-9]{4}$")
DOCUMENT_TYPE_RE = re.compile(r"^[A-Za-z\s-]+$")
EXTENSION_RE = re.compile(r"^[A-Za-z0-9]+$")


@dataclass(frozen=True)
class ParsedName:
    owner_id: str
    document_type: str


def base_name(file_name: str) -> str:
    return re.split(r"[/\\]", file_name or "")[-1]


def parse_file_name(file_name: str) -> ParsedName:
    name = base_name(file_name)
    if not FILENAME_RE.fullmatch(name):
        raise FormatError(f"Invalid filename format: {name!r} (expected e.g. DL1234_Transcript.pdf)")
    stem = name.rsplit(".", 1)[0]
    parts = stem.split("_")
    if len(parts) != 2:
        raise FormatError(f"Invalid filename format: {name!r} (exactly one underscore allowed)")
    return ParsedName(owner_id=parts[0], document_type=parts[1])


def is_valid_owner_id(owner_id: str) -> bool:
    return bool(owner_id) and OWNER_ID_RE.fullmatch(owner_id) is not None


def validate_owner_id(owner_id: str) -> str:
    if not is_valid_owner_id(owner_id):
        raise FormatError(f"Invalid owner id: {owner_id!r} (expected two uppercase letters and four digits)")
    return owner_id


def validate_document_type(document_type: str) -> str:
    if not document_type or DOCUMENT_TYPE_RE.fullmatch(document_type) is None:
        raise FormatError(f"Invalid document type: {document_type!r} (letters, spaces and hyphens only)")
    return document_type


def build_file_name(owner_id: str, document_type: str, ext: str) -> str:
    validate_owner_id(owner_id)
    validate_document_type(document_type)
    if not EXTENSION_RE.fullmatch(ext or ""):
        raise FormatError(f"Invalid extension: {ext!r}")
    return f"{owner_id}_{document_type}.{ext}"
