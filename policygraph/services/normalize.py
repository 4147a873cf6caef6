"""
Normalization helpers shared by the store adapters and the sync services.

Dates in the legacy dataset arrive as ISO strings, as D/M/YYYY strings or
as native dates; flags arrive as booleans or as loose strings. Everything
is normalized here, before any business comparison.
"""

from datetime import date, datetime
from typing import Any, Optional
import re

TRUTHY_TOKENS = frozenset({"true", "1", "yes", "y", "t", "si", "sí"})

# Policy statuses a claim can be filed against
CLAIM_ELIGIBLE_STATUSES = frozenset({"ACTIVE", "ACTIVA", "SUSPENDED", "SUSPENDIDA", "VIGENTE"})

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_DMY_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date in any of the accepted representations.

    Accepts ``date``/``datetime`` objects, ``YYYY-MM-DD`` strings and
    ``D/M/YYYY`` strings. Anything else (including impossible calendar
    dates such as 31/2/2025) yields None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    match = _ISO_DATE.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
    else:
        match = _DMY_DATE.match(text)
        if not match:
            return None
        day, month, year = (int(part) for part in match.groups())

    try:
        return date(year, month, day)
    except ValueError:
        return None


def is_truthy(value: Any, default: bool = False) -> bool:
    """
    Single predicate for the ``active`` and ``insured`` flags.

    Booleans are returned as-is, None falls back to ``default`` and any
    other value is matched (case-insensitively) against TRUTHY_TOKENS.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY_TOKENS


def canonical_key(value: Any) -> Optional[str]:
    """Coerce an identity key (numeric or string) to its canonical string form."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    if not text or text in ("null", "undefined", "None"):
        return None
    return text


def normalize_status(value: Any) -> Optional[str]:
    """Upper-case a free-text status for the derived layer."""
    if value is None:
        return None
    text = str(value).strip().upper()
    return text or None


def is_claim_eligible(status: Any) -> bool:
    """True when a policy in ``status`` accepts new claims."""
    return normalize_status(status) in CLAIM_ELIGIBLE_STATUSES
