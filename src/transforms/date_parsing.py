"""Free-form date parsing for occurrence and assessment dates.

This module converts the date spellings found in biodiversity exports
into canonical ``datetime.date`` values. Unknown spellings return None
so callers decide whether that is a rejection or a low tie-break rank.
"""

from __future__ import annotations

from datetime import date, datetime

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y%m%d",
)


def parse_date(raw_value: object) -> date | None:
    """Parse a free-form date value.

    Args:
        raw_value: String, ``date``, or ``datetime`` value.

    Returns:
        Parsed date, or None when the value is not a recognizable date.
    """
    if isinstance(raw_value, datetime):
        return raw_value.date()
    if isinstance(raw_value, date):
        return raw_value
    if not isinstance(raw_value, str):
        return None
    text = " ".join(raw_value.split())
    if not text:
        return None
    iso_date = _parse_iso_datetime(text)
    if iso_date is not None:
        return iso_date
    for date_format in _DATE_FORMATS:
        try:
            return datetime.strptime(text, date_format).date()
        except ValueError:
            continue
    return None


def _parse_iso_datetime(text: str) -> date | None:
    """Parse ISO-8601 timestamps such as GBIF ``eventDate`` values.

    Interval dates (``2021-05-01/2021-05-03``) resolve to their start.
    """
    candidate = text.split("/", 1)[0] if text.count("-") >= 2 else text
    candidate = candidate.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(candidate).date()
    except ValueError:
        return None
