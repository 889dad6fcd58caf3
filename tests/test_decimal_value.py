"""Tests for the decimal value model."""

from decimal import Decimal

import pytest
from pydantic import BaseModel

from sec_metrics.decimal_value import DecimalValue, RawNumericToken, UnitScale
from sec_metrics.errors import DivideByZeroError, DivisionUndefined, ParseError


# --- Literal parsing ---


def test_parenthesized_literal_is_negative():
    assert DecimalValue.from_literal("(500.00)").amount == Decimal("-500.00")


def test_literal_with_currency_and_separators():
    assert DecimalValue.from_literal("$1,234,567.89").amount == Decimal("1234567.89")
    assert DecimalValue.from_literal("($ 42)").amount == Decimal("-42")
    assert DecimalValue.from_literal("−7.5").amount == Decimal("-7.5")


def test_literal_keeps_trailing_zeros():
    assert DecimalValue.from_literal("500.00").to_plain_string() == "500.00"


@pytest.mark.parametrize("literal", [
    "", "—", "n/a", "1.2.3", "12abc", "--5",
    "1,23", "1,2,3", ",500", "12,34.5", "1234,567", "(-500)", "(−7)",
])
def test_malformed_literals_raise(literal):
    with pytest.raises(ParseError):
        DecimalValue.from_literal(literal)


def test_parse_error_is_a_value_error():
    with pytest.raises(ValueError):
        DecimalValue.from_literal("abc")


def test_floats_are_rejected():
    with pytest.raises(TypeError):
        DecimalValue(1.5)


# --- Scaling ---


def test_scale_is_exact():
    value = DecimalValue.from_literal("1,234").scale(UnitScale.MILLION)
    assert value.amount == Decimal("1234000000")
    assert value.to_plain_string() == "1234000000"


def test_scale_exact_beyond_float_precision():
    value = DecimalValue.from_literal("9,876,543,210.123456").scale(UnitScale.BILLION)
    assert value.to_plain_string() == "9876543210123456000"


def test_unit_scale_lookup():
    assert UnitScale.from_exponent(6) is UnitScale.MILLION
    assert UnitScale.from_exponent(-2) is UnitScale.HUNDREDTH
    assert UnitScale.from_exponent(5) is None
    assert UnitScale.from_word("Millions") is UnitScale.MILLION
    assert UnitScale.from_word("bn") is UnitScale.BILLION
    assert UnitScale.from_word("000's") is UnitScale.THOUSAND
    assert UnitScale.from_word("dozens") is None


# --- Arithmetic ---


def test_add_subtract_multiply_exact():
    a = DecimalValue("0.1")
    b = DecimalValue("0.2")
    assert (a + b).amount == Decimal("0.3")
    assert (b - a).amount == Decimal("0.1")
    assert (a * 3).amount == Decimal("0.3")


def test_divide_rounds_half_up():
    assert DecimalValue("2").divide(DecimalValue("3"), 4).amount == Decimal("0.6667")
    assert DecimalValue("1").divide(DecimalValue("8"), 2).amount == Decimal("0.13")
    assert DecimalValue("-1").divide(DecimalValue("8"), 2).amount == Decimal("-0.13")


def test_divide_keeps_requested_scale():
    result = DecimalValue("20000").divide(DecimalValue("1000"), 4)
    assert result.to_plain_string() == "20.0000"


def test_divide_by_zero():
    with pytest.raises(DivisionUndefined):
        DecimalValue("1").divide(DecimalValue("0"), 4)
    with pytest.raises(ZeroDivisionError):
        DecimalValue("1").divide(DecimalValue.zero(), 4)
    assert DivideByZeroError is DivisionUndefined


def test_ordering_and_predicates():
    assert DecimalValue("-1") < DecimalValue("0") < DecimalValue("2")
    assert DecimalValue("0.00").is_zero()
    assert DecimalValue("-3").is_negative()
    assert abs(DecimalValue("-3")) == DecimalValue("3")


# --- Formatting ---


def test_format_compact():
    assert DecimalValue("1234000000").format_compact() == "$1.23B"
    assert DecimalValue("-456000000").format_compact() == "-$456.00M"
    assert DecimalValue("2500000000000").format_compact() == "$2.50T"
    assert DecimalValue("12345").format_compact() == "$12,345"


def test_format_fixed():
    assert DecimalValue("20.0000").format_fixed(2) == "20.00"
    assert DecimalValue("0.125").format_fixed(2) == "0.13"


# --- Pydantic integration ---


class _Holder(BaseModel):
    value: DecimalValue


def test_pydantic_field_accepts_strings_and_serializes_plain():
    holder = _Holder(value="1E+3")
    assert holder.value.amount == Decimal("1000")
    assert holder.model_dump()["value"] == "1000"
    assert '"value":"1000"' in holder.model_dump_json()


def test_pydantic_field_rejects_floats():
    with pytest.raises(ValueError):
        _Holder(value=1.5)


# --- Raw tokens ---


def test_raw_token_to_value():
    token = RawNumericToken(literal="1,234", scale=UnitScale.MILLION, scale_source="attribute")
    assert token.to_value().amount == Decimal("1234000000")


def test_raw_token_negative_flag():
    token = RawNumericToken(literal="500", negative=True)
    assert token.to_value().amount == Decimal("-500")
    # already negative literals are not flipped back
    token = RawNumericToken(literal="(500)", negative=True)
    assert token.to_value().amount == Decimal("-500")


def test_currency_hints():
    assert RawNumericToken.currency_for("$") == "USD"
    assert RawNumericToken.currency_for("€") == "EUR"
    assert RawNumericToken.currency_for(None) is None
