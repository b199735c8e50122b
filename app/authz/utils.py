from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from datetime import datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.authz.constants import WEEKDAYS, WORKTIME_FIELDS
from app.authz.errors import ErrorBag, ValidationFailed

PIC_RE = re.compile(r"^[1-6][0-9]{2}(0[1-9]|1[0-2])(0[1-9]|[1-2][0-9]|3[0-1])[0-9]{4}$")
FULL_NAME_RE = re.compile(r"^[a-zõäöüšž\-]+(\s[a-zõäöüšž\-]+)+$", re.IGNORECASE)
PHONE_RE = re.compile(r"^\+372 5\d{6,7}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d:[0-5]\d$")


def normalize_text(s: Any) -> str:
    return s.strip() if isinstance(s, str) else ""


def is_uuid(v: Any) -> bool:
    if not isinstance(v, str):
        return False
    try:
        uuid.UUID(v)
    except ValueError:
        return False
    return True


def _pic_checksum(digits: list[int], first_weight: int) -> int:
    total = sum(d * (i % 10 + i // 10) for d, i in zip(digits[:10], range(first_weight, first_weight + 10)))
    return total % 11


def is_valid_personal_identification_code(code: Any) -> bool:
    """Estonian isikukood: birth date layout plus mod-11 control digit."""
    if not isinstance(code, str) or not PIC_RE.fullmatch(code):
        return False
    digits = [int(c) for c in code]
    check = _pic_checksum(digits, 1)
    if check == 10:
        check = _pic_checksum(digits, 3)
        if check == 10:
            check = 0
    return check == digits[10]


def is_valid_full_name(name: Any) -> bool:
    return isinstance(name, str) and bool(FULL_NAME_RE.fullmatch(name.strip()))


def is_valid_phone(phone: Any) -> bool:
    return isinstance(phone, str) and bool(PHONE_RE.fullmatch(phone))


def is_valid_email(email: Any) -> bool:
    return isinstance(email, str) and len(email) <= 320 and bool(EMAIL_RE.fullmatch(email))


def split_full_name(name: str) -> tuple[str, str]:
    """The last word is the surname, everything before it the forename."""
    parts = name.split()
    return " ".join(parts[:-1]), parts[-1]


def parse_time(value: Any) -> time | None:
    if not isinstance(value, str) or not TIME_RE.fullmatch(value):
        return None
    return datetime.strptime(value, "%H:%M:%S").time()


def is_valid_timezone(name: Any) -> bool:
    if not isinstance(name, str) or not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def worktime_from_payload(payload: Mapping[str, Any], errors: ErrorBag) -> dict[str, Any] | None:
    """
    Returns parsed worktime columns, or None when the payload carries none of them.
    All fields come together; a day is either fully set or fully NULL (day off).
    """
    present = [f for f in WORKTIME_FIELDS if f in payload]
    if not present:
        return None
    missing_fields = [f for f in WORKTIME_FIELDS if f not in payload]
    for f in missing_fields:
        errors.add(f, f"The {f} field must be present when other worktime fields are present.")
    if missing_fields:
        return None

    out: dict[str, Any] = {}
    tz = payload.get("worktime_timezone")
    if not is_valid_timezone(tz):
        errors.add("worktime_timezone", "The worktime_timezone must be a valid timezone.")
    out["worktime_timezone"] = tz

    for day in WEEKDAYS:
        start_key, end_key = f"{day}_worktime_start", f"{day}_worktime_end"
        raw_start, raw_end = payload.get(start_key), payload.get(end_key)
        if raw_start is None and raw_end is None:
            out[start_key] = out[end_key] = None
            continue
        if raw_start is None or raw_end is None:
            missing = start_key if raw_start is None else end_key
            errors.add(missing, f"The {missing} field is required when the other bound of {day} is set.")
            continue
        start, end = parse_time(raw_start), parse_time(raw_end)
        if start is None:
            errors.add(start_key, f"The {start_key} must match the format H:i:s.")
        if end is None:
            errors.add(end_key, f"The {end_key} must match the format H:i:s.")
        if start is not None and end is not None and end <= start:
            errors.add(end_key, f"The {end_key} must be after {start_key}.")
        out[start_key], out[end_key] = start, end
    return out


def parse_int(s: Any) -> int | None:
    if s is None or s == "":
        return None
    try:
        return int(s)
    except (TypeError, ValueError):
        return None


def json_body() -> dict[str, Any]:
    """The request's JSON object; anything else is a validation error."""
    from flask import request

    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationFailed({"_": ["The request body must be a JSON object."]})
    return body
