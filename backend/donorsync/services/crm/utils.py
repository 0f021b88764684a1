"""Field helpers shared by the CRM adapters' mapping functions."""

import math
import re
from datetime import date, datetime
from typing import Any

from donorsync.logging_config import get_logger


logger = get_logger("crm")

_MONEY_NOISE = re.compile(r"[,$\s]")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

_REDACTIONS = [
    (re.compile(r"apikey=[^&\s]+", re.IGNORECASE), "apikey=[REDACTED]"),
    (re.compile(r"(?<!api)key=[^&\s]+", re.IGNORECASE), "key=[REDACTED]"),
    (re.compile(r"authorization:\s*(bearer\s+)?\S+", re.IGNORECASE), "Authorization: [REDACTED]"),
    (re.compile(r"x-api-key:\s*\S+", re.IGNORECASE), "X-API-Key: [REDACTED]"),
]


def safe_parse_number(value: Any) -> float | None:
    """Parse numbers and money strings like "$1,250.00"; None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = _MONEY_NOISE.sub("", str(value))
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def safe_parse_int(value: Any) -> int | None:
    number = safe_parse_number(value)
    return int(number) if number is not None else None


def safe_parse_date(value: Any) -> date | None:
    """
    Parse the date formats CRMs hand back.

    Supports ISO 8601 (date or datetime, optional 'Z') and MM/DD/YYYY.
    Anything else is logged and dropped.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass

    match = _US_DATE.match(text)
    if match:
        month, day, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            pass

    logger.warning(f"Unparseable CRM date: {text!r}")
    return None


def clean_string(value: Any) -> str | None:
    """Strip strings; empty strings become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_external_id(value: Any, label: str) -> str:
    """
    Stringify a provider id.

    Raises:
        ValueError: If the id is missing. A generated fallback id would
            change on every sync and break the merge key.
    """
    text = clean_string(value)
    if text is None:
        raise ValueError(f"{label} record has no id")
    return text


def sanitize_error_message(error: BaseException | str | None) -> str:
    """Error text safe to persist: API keys and auth headers are redacted."""
    if error is None:
        return "Sync failed"
    message = str(error) or type(error).__name__
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
