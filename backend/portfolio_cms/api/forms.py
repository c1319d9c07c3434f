"""
Coercion of multipart form fields into typed values
"""

import json
from datetime import date
from typing import Any, List, Optional

from portfolio_cms.core.exceptions import ValidationException

TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off"}


def parse_bool(value: Any, field: str) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValidationException(f"{field} must be a boolean", field=field, value=value)


def parse_tags(value: Any) -> Optional[List[str]]:
    """Accepts a JSON array, a comma separated string or a single tag"""
    if value is None:
        return None
    if isinstance(value, list):
        return [str(tag).strip() for tag in value if str(tag).strip()]
    text = str(value).strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(tag).strip() for tag in parsed if str(tag).strip()]
    return [tag.strip() for tag in text.split(",") if tag.strip()]


def parse_stars(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        stars = int(value)
    except (TypeError, ValueError):
        raise ValidationException("stars must be an integer", field="stars", value=value)
    if not 0 <= stars <= 5:
        raise ValidationException("stars must be between 0 and 5", field="stars", value=value)
    return stars


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationException("date must be an ISO date (YYYY-MM-DD)", field="date", value=value)


def require_text(value: Optional[str], field: str, max_length: Optional[int] = None) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationException(f"{field} is required", field=field)
    if max_length is not None and len(text) > max_length:
        raise ValidationException(f"{field} must be at most {max_length} characters", field=field)
    return text
