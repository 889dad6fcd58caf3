"""Exact decimal value model.

Every amount that flows through the pipeline is a ``DecimalValue``: a thin
immutable wrapper around ``decimal.Decimal`` that refuses floats, keeps
full precision through add/subtract/multiply, and only rounds when a
caller asks for a target scale (ratio output, display strings).

Rounding is always ROUND_HALF_UP.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from decimal import (
    ROUND_HALF_UP,
    Context,
    Decimal,
    DivisionByZero,
    Inexact,
    InvalidOperation,
    Overflow,
    localcontext,
)
from enum import IntEnum
from functools import total_ordering
from typing import Any

from pydantic import BaseModel

from sec_metrics.errors import DivisionUndefined, ParseError


# Arithmetic that must be exact: any rounding would raise Inexact.
_EXACT = Context(
    prec=60,
    rounding=ROUND_HALF_UP,
    traps=[InvalidOperation, DivisionByZero, Overflow, Inexact],
)
# Explicit rounding boundaries (quantize).
_ROUNDING = Context(
    prec=60,
    rounding=ROUND_HALF_UP,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)

_DIGITS_RE = re.compile(r"^(?:(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d*)?|\.\d+)$")
_CURRENCY_CHARS = "$€£¥"
_MINUS_CHARS = ("-", "−")


# ═══════════════════════════════════════════════════════════════════════════
#  Unit scale
# ═══════════════════════════════════════════════════════════════════════════

class UnitScale(IntEnum):
    """Power-of-ten multiplier applied to a literal."""
    HUNDREDTH = -2
    ONE = 0
    THOUSAND = 3
    MILLION = 6
    BILLION = 9
    TRILLION = 12

    @classmethod
    def from_exponent(cls, exponent: int) -> UnitScale | None:
        try:
            return cls(exponent)
        except ValueError:
            return None

    @classmethod
    def from_word(cls, word: str | None) -> UnitScale | None:
        """Map a magnitude word ("million", "bn", "000s") to a scale."""
        if not word:
            return None
        return _SCALE_WORDS.get(word.strip().lower().rstrip("s").rstrip("'"))

    @property
    def label(self) -> str:
        return _SCALE_LABELS[self]


_SCALE_WORDS: dict[str, UnitScale] = {
    "thousand": UnitScale.THOUSAND,
    "k": UnitScale.THOUSAND,
    "000": UnitScale.THOUSAND,
    "million": UnitScale.MILLION,
    "mn": UnitScale.MILLION,
    "mm": UnitScale.MILLION,
    "billion": UnitScale.BILLION,
    "bn": UnitScale.BILLION,
    "trillion": UnitScale.TRILLION,
    "tn": UnitScale.TRILLION,
}

_SCALE_LABELS: dict[UnitScale, str] = {
    UnitScale.HUNDREDTH: "x0.01",
    UnitScale.ONE: "x1",
    UnitScale.THOUSAND: "x1e3",
    UnitScale.MILLION: "x1e6",
    UnitScale.BILLION: "x1e9",
    UnitScale.TRILLION: "x1e12",
}


# ═══════════════════════════════════════════════════════════════════════════
#  DecimalValue
# ═══════════════════════════════════════════════════════════════════════════

@total_ordering
@dataclass(frozen=True)
class DecimalValue:
    """Arbitrary-precision signed decimal amount."""

    amount: Decimal

    def __post_init__(self) -> None:
        amount = self.amount
        if isinstance(amount, bool) or isinstance(amount, float):
            raise TypeError("DecimalValue does not accept floats")
        if isinstance(amount, int):
            amount = Decimal(amount)
        elif isinstance(amount, str):
            amount = _strict_decimal(amount)
        elif not isinstance(amount, Decimal):
            raise TypeError(f"Unsupported amount type: {type(amount).__name__}")
        if not amount.is_finite():
            raise ParseError(f"Non-finite amount: {amount}", str(amount))
        object.__setattr__(self, "amount", amount)

    # --- construction -------------------------------------------------------

    @classmethod
    def from_literal(cls, literal: str) -> DecimalValue:
        """Parse a number exactly as it appears in a filing.

        Handles ``$``, thousands separators, NBSP/thin spaces, leading
        minus signs and accounting-style parentheses: ``"(500.00)"`` is
        -500.00. Dashes and ``n/a`` are not zero; they raise ParseError.
        """
        if not isinstance(literal, str):
            raise ParseError(f"Expected a string literal, got {type(literal).__name__}")
        text = unicodedata.normalize("NFKC", literal).strip()
        for ch in _CURRENCY_CHARS:
            text = text.replace(ch, "")
        text = "".join(text.split())

        negative = False
        if text.startswith("(") and text.endswith(")"):
            negative = True
            text = text[1:-1]
        if text.startswith(_MINUS_CHARS):
            if negative:
                raise ParseError(f"Minus sign inside parentheses: {literal!r}", literal)
            negative = True
            text = text[1:]

        # Commas only as thousands separators: "1,234" yes, "1,23" no.
        if not _DIGITS_RE.match(text):
            raise ParseError(f"Malformed numeric literal: {literal!r}", literal)
        value = Decimal(text.replace(",", ""))
        return cls(-value if negative else value)

    @classmethod
    def zero(cls) -> DecimalValue:
        return cls(Decimal(0))

    # --- arithmetic ---------------------------------------------------------

    def scale(self, multiplier: UnitScale | int) -> DecimalValue:
        """Shift by a power of ten (scale=6 means x 10^6). Always exact."""
        with localcontext(_EXACT):
            return DecimalValue(self.amount.scaleb(int(multiplier)))

    def add(self, other: DecimalValue, scale: int | None = None) -> DecimalValue:
        with localcontext(_EXACT):
            result = DecimalValue(self.amount + other.amount)
        return result if scale is None else result.round(scale)

    def subtract(self, other: DecimalValue, scale: int | None = None) -> DecimalValue:
        with localcontext(_EXACT):
            result = DecimalValue(self.amount - other.amount)
        return result if scale is None else result.round(scale)

    def multiply(self, other: DecimalValue | int, scale: int | None = None) -> DecimalValue:
        factor = other.amount if isinstance(other, DecimalValue) else Decimal(other)
        with localcontext(_EXACT):
            result = DecimalValue(self.amount * factor)
        return result if scale is None else result.round(scale)

    def divide(self, other: DecimalValue, scale: int) -> DecimalValue:
        """Quotient rounded half-up to ``scale`` fractional digits.

        Computed with integer division plus an exact remainder check, so
        the rounding decision never depends on a truncated intermediate.
        """
        if other.amount.is_zero():
            raise DivisionUndefined(f"Cannot divide {self.to_plain_string()} by zero")
        with localcontext(_EXACT):
            scaled = self.amount.scaleb(scale)
            quotient, remainder = divmod(scaled, other.amount)
            if remainder and abs(remainder) * 2 >= abs(other.amount):
                same_sign = (scaled < 0) == (other.amount < 0)
                quotient += 1 if same_sign else -1
            return DecimalValue(quotient.scaleb(-scale))

    def round(self, places: int) -> DecimalValue:
        with localcontext(_ROUNDING):
            return DecimalValue(self.amount.quantize(Decimal(1).scaleb(-places)))

    def __add__(self, other: DecimalValue) -> DecimalValue:
        if not isinstance(other, DecimalValue):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: DecimalValue) -> DecimalValue:
        if not isinstance(other, DecimalValue):
            return NotImplemented
        return self.subtract(other)

    def __mul__(self, other: DecimalValue | int) -> DecimalValue:
        if not isinstance(other, (DecimalValue, int)) or isinstance(other, bool):
            return NotImplemented
        return self.multiply(other)

    def __neg__(self) -> DecimalValue:
        return DecimalValue(-self.amount)

    def __abs__(self) -> DecimalValue:
        return DecimalValue(abs(self.amount))

    def __lt__(self, other: DecimalValue) -> bool:
        if not isinstance(other, DecimalValue):
            return NotImplemented
        return self.amount < other.amount

    # --- predicates ---------------------------------------------------------

    def is_zero(self) -> bool:
        return self.amount.is_zero()

    def is_negative(self) -> bool:
        return self.amount < 0

    # --- formatting ---------------------------------------------------------

    def to_plain_string(self) -> str:
        """Full-precision string, never in exponent notation."""
        return format(self.amount, "f")

    def format_fixed(self, places: int) -> str:
        return self.round(places).to_plain_string()

    def format_compact(self) -> str:
        """Format an amount for display (e.g., $1.23B, $456.00M)."""
        sign = "-" if self.amount < 0 else ""
        av = abs(self.amount)
        for exponent, suffix in ((12, "T"), (9, "B"), (6, "M")):
            threshold = Decimal(1).scaleb(exponent)
            if av >= threshold:
                with localcontext(_ROUNDING):
                    shown = (av.scaleb(-exponent)).quantize(Decimal("0.01"))
                return f"{sign}${shown:,}{suffix}"
        with localcontext(_ROUNDING):
            shown = av.quantize(Decimal(1))
        return f"{sign}${shown:,}"

    def __str__(self) -> str:
        return self.to_plain_string()

    def __repr__(self) -> str:
        return f"DecimalValue('{self.to_plain_string()}')"

    # --- pydantic integration -----------------------------------------------

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> Any:
        from pydantic_core import core_schema

        return core_schema.no_info_plain_validator_function(
            cls._coerce,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda v: v.to_plain_string(),
            ),
        )

    @classmethod
    def _coerce(cls, value: Any) -> DecimalValue:
        if isinstance(value, DecimalValue):
            return value
        if isinstance(value, float):
            raise ValueError("floats are not accepted; pass a string or Decimal")
        if isinstance(value, (Decimal, int, str)) and not isinstance(value, bool):
            try:
                return cls(value)
            except (TypeError, ParseError) as exc:
                raise ValueError(str(exc)) from exc
        raise ValueError(f"cannot build DecimalValue from {type(value).__name__}")


def _strict_decimal(text: str) -> Decimal:
    try:
        return Decimal(text.strip())
    except InvalidOperation as exc:
        raise ParseError(f"Malformed decimal: {text!r}", text) from exc


# ═══════════════════════════════════════════════════════════════════════════
#  Raw numeric token
# ═══════════════════════════════════════════════════════════════════════════

_CURRENCY_HINTS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}


class RawNumericToken(BaseModel):
    """A numeric literal as it appeared in the source, before scaling."""
    literal: str
    negative: bool = False
    scale: UnitScale = UnitScale.ONE
    scale_source: str = "default"   # "suffix" | "header" | "attribute" | "default"
    currency: str | None = None

    model_config = {"frozen": True}

    @staticmethod
    def currency_for(symbol: str | None) -> str | None:
        if not symbol:
            return None
        return _CURRENCY_HINTS.get(symbol)

    def to_value(self) -> DecimalValue:
        """Lift to a fully scaled DecimalValue; raises ParseError."""
        value = DecimalValue.from_literal(self.literal)
        if self.negative and not value.is_negative():
            value = -value
        return value.scale(self.scale)
