"""Unit tests for free-form date parsing."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from transforms.date_parsing import parse_date


@pytest.mark.parametrize(
    "raw_value",
    [
        "2021-05-02",
        "2021-05-02T08:30:00Z",
        "2021-05-02/2021-05-04",
        "2021/05/02",
        "02/05/2021",
        "02-05-2021",
        "2 May 2021",
        "May 2, 2021",
        "20210502",
    ],
)
def test_parse_date_accepts_common_spellings(raw_value: str) -> None:
    """Every supported spelling should resolve to the same calendar date."""
    assert parse_date(raw_value) == date(2021, 5, 2)


def test_parse_date_passes_through_datetime_values() -> None:
    """Datetime inputs should be truncated to their date."""
    assert parse_date(datetime(2020, 1, 31, 23, 59)) == date(2020, 1, 31)


@pytest.mark.parametrize("raw_value", ["not a date", "", "2021-13-40", None, 20210502])
def test_parse_date_returns_none_for_unparseable_values(raw_value: object) -> None:
    """Unknown spellings and non-string values should not be coerced."""
    assert parse_date(raw_value) is None
