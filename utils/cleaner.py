import re
from typing import Any

_space_re = re.compile(r"\s+")
_email_re = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_unsafe_filename_re = re.compile(r'[/\\:*?"<>|]')


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = _space_re.sub(" ", str(value)).strip()
    return text or None


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_email_re.match(value))


def normalize_email(value: str) -> str:
    return value.strip().lower()


def sanitize_filename(filename: str) -> str:
    # Strip traversal sequences and path separators before anything touches storage.
    name = filename.replace("..", "")
    name = _unsafe_filename_re.sub("", name)
    name = _space_re.sub("_", name)
    return name[:255]


def file_extension(filename: str) -> str:
    parts = filename.split(".")
    return parts[-1].lower() if len(parts) > 1 else ""
