"""Exceptions raised by the extraction pipeline.

Only ``UnsupportedFormatError`` ever reaches a caller of ``parse()``.
Everything else is caught inside the pipeline, turned into a
``ParseWarning`` and logged.
"""

from __future__ import annotations


class ExtractionError(Exception):
    """Base exception for all extraction errors."""


class ParseError(ExtractionError, ValueError):
    """A numeric literal could not be interpreted."""

    def __init__(self, message: str, literal: str | None = None):
        super().__init__(message)
        self.literal = literal


class NotMarkupError(ExtractionError):
    """Input could not be parsed as markup at all."""


class DivisionUndefined(ExtractionError, ZeroDivisionError):
    """Ratio denominator is zero."""


DivideByZeroError = DivisionUndefined


class UnsupportedFormatError(ExtractionError):
    """Input is neither markup, text nor PDF."""
