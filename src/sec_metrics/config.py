"""Configuration management via environment variables.

Reads from .env file (via pydantic-settings) with sensible defaults.
All values can be overridden via environment variables prefixed with
``SEC_METRICS_`` (e.g. ``SEC_METRICS_STRUCTURED_CONFIDENCE=0.95``).

The settings object is treated as read-only once created: every pipeline
function takes it by reference and never writes to it.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Confidence assigned to inline XBRL facts
    structured_confidence: Decimal = Decimal("0.97")

    # Heuristic confidence: rule confidences are clamped into this band
    heuristic_max_confidence: Decimal = Decimal("0.80")
    heuristic_min_confidence: Decimal = Decimal("0.60")
    prose_confidence_factor: Decimal = Decimal("0.90")
    ambiguous_unit_factor: Decimal = Decimal("0.75")

    # Search windows (characters)
    label_window_chars: int = 160
    unit_hint_lookback_chars: int = 400
    plain_text_hint_span_chars: int = 3000
    segment_section_chars: int = 4000
    max_fact_text_length: int = 200

    # Ratio arithmetic
    ratio_precision: int = 4
    display_precision: int = 2

    # Plausibility checks
    low_confidence_threshold: Decimal = Decimal("0.70")
    max_plausible_amount: Decimal = Decimal("10000000000000")

    # Qualitative context capture
    max_context_sentences: int = 5
    max_risk_factors: int = 10
    risk_section_chars: int = 15000

    # Batch parsing
    parse_workers: int = 4

    # Default document label when the caller gives none
    default_document_label: str = "document"

    @field_validator("default_document_label", mode="before")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().strip('"').strip("'").strip()
        return v

    model_config = {
        "env_prefix": "SEC_METRICS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "frozen": True,
        "extra": "ignore",
    }


_config: Settings | None = None


def get_config() -> Settings:
    """Get or create the shared Settings singleton."""
    global _config
    if _config is None:
        _config = Settings()
    return _config
