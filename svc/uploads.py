# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.crud import get_owned_review
from database.models import ReviewFile
from utils.cleaner import file_extension, sanitize_filename
from utils.errors import Forbidden, UpstreamFailure, ValidationFailed
from utils.logger import get_logger
from utils.storage import ObjectStorage

logger = get_logger("uploads")

ALLOWED_TYPES: Dict[str, List[str]] = {
    "image/jpeg": ["jpg", "jpeg"],
    "image/png": ["png"],
    "image/gif": ["gif"],
    "image/webp": ["webp"],
    "application/pdf": ["pdf"],
    "application/msword": ["doc"],
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ["docx"],
}

# Word formats have no stable short signature and are not sniffed.
MAGIC_BYTES: Dict[str, List[bytes]] = {
    "image/jpeg": [b"\xff\xd8\xff"],
    "image/png": [b"\x89PNG"],
    "image/gif": [b"GIF8"],
    "image/webp": [b"RIFF"],
    "application/pdf": [b"%PDF"],
}


@dataclass(frozen=True)
class ValidatedUpload:
    file_name: str
    extension: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def _format_limit(max_bytes: int) -> str:
    megabytes = max_bytes / (1024 * 1024)
    return f"{megabytes:g}MB"


def matches_magic_bytes(data: bytes, mime_type: str) -> bool:
    signatures = MAGIC_BYTES.get(mime_type)
    if not signatures:
        return True
    return any(data.startswith(signature) for signature in signatures)


def validate_upload(filename: Optional[str], content_type: Optional[str], data: bytes, max_bytes: int) -> ValidatedUpload:
    """Check size, declared type, extension and content signature, in that order."""
    if len(data) > max_bytes:
        raise ValidationFailed(f"File too large. Maximum size is {_format_limit(max_bytes)}")
    if not data:
        raise ValidationFailed("File is empty")

    mime_type = (content_type or "").split(";")[0].strip().lower()
    if mime_type not in ALLOWED_TYPES:
        raise ValidationFailed(
            "File type not allowed. Allowed types: images (JPEG, PNG, GIF, WebP), PDF, Word documents"
        )

    file_name = sanitize_filename(filename or "")
    extension = file_extension(file_name)
    if not extension:
        raise ValidationFailed("File must have an extension")

    valid_extensions = ALLOWED_TYPES[mime_type]
    if extension not in valid_extensions:
        raise ValidationFailed(
            f"File extension doesn't match file type. Expected: {', '.join(valid_extensions)}"
        )

    if not matches_magic_bytes(data, mime_type):
        raise ValidationFailed("File content does not match its declared type")

    return ValidatedUpload(file_name=file_name, extension=extension, mime_type=mime_type, data=data)


def store_review_file(
    db: Session,
    storage: ObjectStorage,
    *,
    user_id: str,
    review_request_id: str,
    upload: ValidatedUpload,
) -> ReviewFile:
    if get_owned_review(db, review_request_id, user_id) is None:
        raise Forbidden("Review request not found or access denied")

    path = f"{user_id}/{review_request_id}/{uuid.uuid4()}.{upload.extension}"
    storage.upload(path, upload.data, upload.mime_type)

    record = ReviewFile(
        review_request_id=review_request_id,
        user_id=user_id,
        storage_path=path,
        file_name=upload.file_name,
        file_type=upload.mime_type,
        file_size=upload.size,
    )
    try:
        db.add(record)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to save file record for %s: %s", path, exc)
        try:
            storage.remove(path)
        except UpstreamFailure:
            logger.warning("Orphaned upload left at %s", path)
        raise UpstreamFailure("Failed to save file record", status_code=500) from exc

    logger.info("File uploaded: %s (%d bytes) by user %s", upload.file_name, upload.size, user_id)
    return record
