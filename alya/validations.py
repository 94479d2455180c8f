"""Validators for common Indian identifiers, file names and dates of birth."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date, datetime, timezone

FILE_EXT = ("doc", "docx", "png")

DATE_INPUT_FORMAT = "%Y-%m-%d"

_INDIA_ZIP_RE = re.compile(r"[1-9][0-9]{5}")
_AADHAAR_RE = re.compile(r"[1-9]{4}[ -]?[0-9]{4}[ -]?[0-9]{4}")
_PAN_RE = re.compile(r"[A-Z]{5}[0-9]{4}[A-Z]")
_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def is_valid_india_zip(val: str) -> bool:
    """Return whether ``val`` is a six-digit Indian PIN code."""
    return _INDIA_ZIP_RE.fullmatch(val) is not None


def is_file_type_allowed(val: str, allowed_exts: Iterable[str]) -> bool:
    """Return whether the file name ends in one of the allowed extensions."""
    name = val.lower()
    return any(name.endswith("." + ext.lower()) for ext in allowed_exts)


def is_valid_aadhaar_number(val: str) -> bool:
    """Return whether ``val`` has the shape of an Aadhaar number."""
    return _AADHAAR_RE.fullmatch(val) is not None


def is_valid_pan_number(val: str) -> bool:
    """Return whether ``val`` contains a PAN number."""
    return _PAN_RE.search(val) is not None


def calculate_age(birth_date: date) -> int:
    """Return the age in whole years, as of today in UTC."""
    now = datetime.now(timezone.utc)
    years = now.year - birth_date.year
    if (now.month, now.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def is_valid_date_of_birth(
    yyyymmdd_val: str, min_age: int | None, max_age: int | None
) -> bool:
    """Return whether a ``YYYY-MM-DD`` birth date gives an age within the bounds."""
    if _DATE_RE.fullmatch(yyyymmdd_val) is None:
        return False
    try:
        birth_date = datetime.strptime(yyyymmdd_val, DATE_INPUT_FORMAT).date()
    except ValueError:
        return False
    age = calculate_age(birth_date)
    if min_age is not None and age < min_age:
        return False
    if max_age is not None and age > max_age:
        return False
    return True