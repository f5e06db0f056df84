from datetime import datetime

import pytest

from stationery.time_utils import parse_backend_datetime, to_utc_z
from stationery.validation import ValidationError, coerce_int, coerce_quantity, is_valid_cart_entry


class TestCoerceInt:

    @pytest.mark.parametrize("value,expected", [(3, 3), ("12", 12), (" 4 ", 4), (2.0, 2), ("-1", -1)])
    def test_accepted(self, value, expected):
        assert coerce_int(value, "qty") == expected

    @pytest.mark.parametrize("value", [None, True, 1.5, float("nan"), float("inf"), "1e3", "2.0", "", "abc", [1]])
    def test_rejected(self, value):
        with pytest.raises(ValidationError):
            coerce_int(value, "qty")

    def test_quantity_clamps_low_values(self):
        assert coerce_quantity(-3) == 1
        assert coerce_quantity(0, minimum=2) == 2


class TestCartEntryShape:

    @pytest.mark.parametrize("qty", [1, 4.0, -2])
    def test_integral_quantities_pass(self, qty):
        assert is_valid_cart_entry({"product": {"id": 1}, "qty": qty})

    @pytest.mark.parametrize("qty", [float("nan"), float("inf"), 2.5, True, "2", None])
    def test_other_quantities_fail(self, qty):
        assert not is_valid_cart_entry({"product": {"id": 1}, "qty": qty})


class TestBackendDatetimes:

    def test_iso_strings(self):
        assert parse_backend_datetime("2026-10-19T08:30:00") == datetime(2026, 10, 19, 8, 30)
        assert parse_backend_datetime("2026-10-19T08:30:00+07:00") == datetime(2026, 10, 19, 1, 30)
        assert parse_backend_datetime("2026-10-19T08:30:00Z") == datetime(2026, 10, 19, 8, 30)

    def test_jackson_arrays(self):
        assert parse_backend_datetime([2026, 10, 19]) == datetime(2026, 10, 19)
        assert parse_backend_datetime([2026, 10, 19, 8, 30, 5, 250_000_000]) == datetime(2026, 10, 19, 8, 30, 5, 250_000)

    def test_empty_values(self):
        assert parse_backend_datetime(None) is None
        assert parse_backend_datetime("") is None
        assert parse_backend_datetime([]) is None

    def test_short_array_is_rejected(self):
        with pytest.raises(ValueError):
            parse_backend_datetime([2026, 10])

    def test_to_utc_z(self):
        assert to_utc_z(datetime(2026, 10, 19, 8, 30, 0, 123)) == "2026-10-19T08:30:00Z"
        assert to_utc_z(None) is None
