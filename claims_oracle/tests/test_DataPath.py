"""Unit tests for data-path extraction and coercion."""

import pytest

from claims_oracle.src.DataPath import ExtractionError, coerce, extract
from claims_oracle.src.LogicalQuery import QueryKind

FLIGHT = QueryKind.FLIGHT_DELAY
BAGGAGE = QueryKind.BAGGAGE_STATUS


class TestExtract:
    """Test dotted path selection."""

    def test_nested_fields(self) -> None:
        document = {"data": {"delayMinutes": 45}}
        assert extract(document, "data.delayMinutes") == 45

    def test_list_index(self) -> None:
        document = {"flights": [{"delay": 12}, {"delay": 99}]}
        assert extract(document, "flights.1.delay") == 99

    def test_single_segment(self) -> None:
        assert extract({"lost": True}, "lost") is True

    def test_missing_field(self) -> None:
        with pytest.raises(ExtractionError, match="Missing field 'delay'"):
            extract({"data": {}}, "data.delay")

    def test_bad_index(self) -> None:
        with pytest.raises(ExtractionError, match="Bad index"):
            extract({"flights": []}, "flights.0")
        with pytest.raises(ExtractionError, match="Bad index"):
            extract({"flights": [1]}, "flights.first")

    def test_select_from_scalar(self) -> None:
        with pytest.raises(ExtractionError, match="Cannot select"):
            extract({"data": 5}, "data.delay")


class TestCoerceMinutes:
    """Test delay minute coercion."""

    def test_int(self) -> None:
        assert coerce(45, FLIGHT) == 45

    def test_float_is_floored(self) -> None:
        assert coerce(45.9, FLIGHT) == 45

    def test_numeric_string(self) -> None:
        assert coerce(" 70 ", FLIGHT) == 70
        assert coerce("45.9", FLIGHT) == 45

    def test_negative(self) -> None:
        with pytest.raises(ExtractionError, match="must not be negative"):
            coerce(-5, FLIGHT)

    def test_rejected_values(self) -> None:
        """Booleans, nulls, words and non-finite numbers are not minutes."""
        for value in (True, None, "soon", float("nan"), float("inf"), {"a": 1}):
            with pytest.raises(ExtractionError):
                coerce(value, FLIGHT)


class TestCoerceBoolean:
    """Test baggage status coercion."""

    def test_bool(self) -> None:
        assert coerce(True, BAGGAGE) is True
        assert coerce(False, BAGGAGE) is False

    def test_zero_one(self) -> None:
        assert coerce(1, BAGGAGE) is True
        assert coerce(0, BAGGAGE) is False

    def test_words(self) -> None:
        assert coerce("Lost", BAGGAGE) is True
        assert coerce(" yes ", BAGGAGE) is True
        assert coerce("found", BAGGAGE) is False
        assert coerce("DELIVERED", BAGGAGE) is False

    def test_rejected_values(self) -> None:
        for value in (2, "maybe", None, 0.5):
            with pytest.raises(ExtractionError, match="Expected boolean status"):
                coerce(value, BAGGAGE)
