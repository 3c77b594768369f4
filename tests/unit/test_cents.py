"""Tests for am_common.cents and am_common.datetime_utils."""

from datetime import datetime, timedelta, timezone

import pytest

from src.am_common.cents import cents_to_display, validate_amount
from src.am_common.datetime_utils import parse_iso, to_iso


class TestValidateAmount:
    def test_positive_int_ok(self) -> None:
        validate_amount(1)
        validate_amount(10500)

    @pytest.mark.parametrize("bad", [0, -1, -10500])
    def test_non_positive_rejected(self, bad: int) -> None:
        with pytest.raises(ValueError, match="positive"):
            validate_amount(bad)

    @pytest.mark.parametrize("bad", [105.5, "105", True, None])
    def test_non_integer_rejected(self, bad: object) -> None:
        with pytest.raises(ValueError, match="integer"):
            validate_amount(bad)  # type: ignore[arg-type]


class TestCentsToDisplay:
    def test_basic(self) -> None:
        assert cents_to_display(10500) == "$105.00"

    def test_thousands(self) -> None:
        assert cents_to_display(123456789) == "$1,234,567.89"

    def test_negative(self) -> None:
        assert cents_to_display(-1205) == "-$12.05"

    def test_zero(self) -> None:
        assert cents_to_display(0) == "$0.00"


class TestIso:
    def test_to_iso_milliseconds_z(self) -> None:
        value = datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
        assert to_iso(value) == "2026-03-01T12:00:00.123Z"

    def test_to_iso_converts_offset(self) -> None:
        value = datetime(2026, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_iso(value) == "2026-03-01T12:00:00.000Z"

    def test_parse_iso_z(self) -> None:
        parsed = parse_iso("2026-03-01T12:00:00.000Z")
        assert parsed == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_parse_iso_naive_is_utc(self) -> None:
        assert parse_iso("2026-03-01T12:00:00").tzinfo is not None
