"""Inline XBRL fact extraction.

Walks ``ix:nonFraction`` facts, resolves each ``contextRef`` against the
``xbrli:context`` declarations (usually hidden in ``ix:header``), applies
the ``scale`` attribute as a power of ten and maps the concept through the
closed concept table. Facts whose concept is not in the table are skipped,
never emitted as ``other``.

Run this on the parsed tree *before* normalization: the normalizer strips
hidden blocks, and the context declarations live in one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date

from bs4 import BeautifulSoup, Tag

from sec_metrics.config import Settings, get_config
from sec_metrics.decimal_value import DecimalValue, RawNumericToken, UnitScale
from sec_metrics.errors import ParseError
from sec_metrics.mappings import CATEGORY_LABELS, lookup_concept
from sec_metrics.models import (
    ExtractedMetric,
    MetricCategory,
    ParseWarning,
    PeriodType,
    WarningCode,
)

log = logging.getLogger(__name__)

_CONTEXT_TAGS = ["xbrli:context", "context"]
_UNIT_TAGS = ["xbrli:unit", "unit"]
_INSTANT_TAGS = ["xbrli:instant", "instant"]
_START_TAGS = ["xbrli:startdate", "startdate"]
_END_TAGS = ["xbrli:enddate", "enddate"]
_DIMENSION_TAGS = [
    "xbrli:segment", "segment", "xbrli:scenario", "scenario",
    "xbrldi:explicitmember", "xbrldi:typedmember",
]
_MEASURE_TAGS = ["xbrli:measure", "measure"]
_ZERO_FORMATS = ("zerodash", "fixed-zero", "fixedzero", "fixed-empty")
_COMMA_DECIMAL_FORMATS = ("numcommadecimal", "num-comma-decimal", "numdotcomma")
_FOCUS_RE = re.compile(r"^Q([1-4])$", re.IGNORECASE)


# ═══════════════════════════════════════════════════════════════════════════
#  Contexts and units
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ContextPeriod:
    context_id: str
    instant: str | None = None
    start: str | None = None
    end: str | None = None
    dimensional: bool = False

    @property
    def period(self) -> str | None:
        return self.instant or self.end or self.start

    @property
    def duration_days(self) -> int | None:
        if self.instant or not (self.start and self.end):
            return None
        start, end = _to_date(self.start), _to_date(self.end)
        if start is None or end is None:
            return None
        return (end - start).days

    def period_type(self) -> PeriodType | None:
        days = self.duration_days
        if days is None:
            return None
        if 80 <= days <= 100:
            return PeriodType.QUARTERLY
        if 170 <= days <= 290:
            return PeriodType.YTD
        if 350 <= days <= 380:
            return PeriodType.ANNUAL
        return None


def _to_date(text: str) -> date | None:
    try:
        return date.fromisoformat(text.strip()[:10])
    except ValueError:
        return None


def _child_text(tag: Tag, names: list[str]) -> str | None:
    child = tag.find(names)
    if child is None:
        return None
    text = child.get_text(strip=True)
    return text or None


def index_contexts(soup: BeautifulSoup) -> dict[str, ContextPeriod]:
    """Map context id → period for every context declaration."""
    contexts: dict[str, ContextPeriod] = {}
    for tag in soup.find_all(_CONTEXT_TAGS):
        context_id = tag.get("id")
        if not context_id:
            continue
        contexts[context_id] = ContextPeriod(
            context_id=context_id,
            instant=_child_text(tag, _INSTANT_TAGS),
            start=_child_text(tag, _START_TAGS),
            end=_child_text(tag, _END_TAGS),
            dimensional=tag.find(_DIMENSION_TAGS) is not None,
        )
    return contexts


def index_units(soup: BeautifulSoup) -> dict[str, str | None]:
    """Map unit id → ISO currency code (None for shares/pure units)."""
    units: dict[str, str | None] = {}
    for tag in soup.find_all(_UNIT_TAGS):
        unit_id = tag.get("id")
        if not unit_id:
            continue
        currency = None
        for measure in tag.find_all(_MEASURE_TAGS):
            text = measure.get_text(strip=True)
            if text.lower().startswith("iso4217:"):
                currency = text.split(":", 1)[1].upper()
                break
        units[unit_id] = currency
    return units


# ═══════════════════════════════════════════════════════════════════════════
#  Extraction
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class StructuredExtraction:
    metrics: list[ExtractedMetric] = field(default_factory=list)
    warnings: list[ParseWarning] = field(default_factory=list)
    document_type: str | None = None
    fiscal_period_focus: str | None = None
    period_end: str | None = None
    dimensional_count: int = 0
    unmapped_count: int = 0

    @property
    def period_type(self) -> PeriodType | None:
        focus = (self.fiscal_period_focus or "").upper()
        if focus == "FY":
            return PeriodType.ANNUAL
        if _FOCUS_RE.match(focus):
            return PeriodType.QUARTERLY
        if focus in ("H1", "H2", "M6", "M9"):
            return PeriodType.YTD
        return None


@dataclass
class _Fact:
    concept: str
    category: MetricCategory
    context: ContextPeriod
    token: RawNumericToken
    value: DecimalValue
    unit_ref: str | None
    decimals: str | None
    scale_attr: str


def extract_structured(
    soup: BeautifulSoup,
    *,
    config: Settings | None = None,
) -> StructuredExtraction:
    """Extract typed facts from inline XBRL annotations.

    Does not modify the tree.
    """
    config = config or get_config()
    result = StructuredExtraction()
    _read_dei(soup, result)

    contexts = index_contexts(soup)
    units = index_units(soup)
    facts: list[_Fact] = []

    for tag in soup.find_all("ix:nonfraction"):
        fact = _read_fact(tag, contexts, units, result, config)
        if fact is not None:
            facts.append(fact)

    if result.dimensional_count:
        result.warnings.append(ParseWarning(
            code=WarningCode.DIMENSIONAL_FACT,
            severity="info",
            message=f"Skipped {result.dimensional_count} dimensional (segment/member) facts.",
        ))

    focus_type = result.period_type
    for fact in facts:
        prior = _find_prior(fact, facts)
        period = fact.context.period
        note = (
            f"period={period} unit={fact.unit_ref or 'none'} "
            f"decimals={fact.decimals or 'none'} scale={fact.scale_attr}"
        )
        source = f"iXBRL:{fact.concept} contextRef={fact.context.context_id}"
        if fact.unit_ref:
            source += f" unitRef={fact.unit_ref}"
        result.metrics.append(ExtractedMetric(
            name=CATEGORY_LABELS[fact.category],
            category=fact.category,
            value=fact.value,
            unit_scale_applied=fact.token.scale,
            period=period,
            period_type=fact.context.period_type() or focus_type,
            source_path=source,
            confidence=config.structured_confidence,
            context_note=note,
            currency=fact.token.currency,
            prior_value=prior.value if prior else None,
            prior_period=prior.context.period if prior else None,
        ))

    log.info(
        "Structured extraction: %d facts kept, %d unmapped, %d dimensional, %d warnings",
        len(result.metrics), result.unmapped_count, result.dimensional_count,
        len(result.warnings),
    )
    return result


def _read_fact(
    tag: Tag,
    contexts: dict[str, ContextPeriod],
    units: dict[str, str | None],
    result: StructuredExtraction,
    config: Settings,
) -> _Fact | None:
    concept = (tag.get("name") or "").strip()
    hit = lookup_concept(concept) if concept else None
    if hit is None:
        result.unmapped_count += 1
        log.debug("Skipping unmapped concept %s", concept or "<unnamed>")
        return None
    category, _entry = hit

    context_ref = tag.get("contextref")
    context = contexts.get(context_ref) if context_ref else None
    source = f"iXBRL:{concept} contextRef={context_ref}"
    if context is None or context.period is None:
        result.warnings.append(ParseWarning(
            code=WarningCode.CONTEXT_RESOLUTION,
            severity="warning",
            message=f"Fact {concept} references unresolvable context {context_ref!r}; dropped.",
            source_path=source,
        ))
        return None
    if context.dimensional:
        result.dimensional_count += 1
        return None

    text = tag.get_text("", strip=True)
    fmt = (tag.get("format") or "").lower()
    if any(z in fmt for z in _ZERO_FORMATS):
        literal = "0"
    elif len(text) > config.max_fact_text_length or not any(ch.isdigit() for ch in text):
        result.warnings.append(ParseWarning(
            code=WarningCode.PARSE_ERROR,
            severity="warning",
            message=f"Fact {concept} has no usable numeric text: {text[:40]!r}",
            source_path=source,
        ))
        return None
    elif any(f in fmt for f in _COMMA_DECIMAL_FORMATS):
        literal = text.replace(".", "").replace(" ", "").replace(",", ".")
    else:
        literal = text

    scale_attr = (tag.get("scale") or "0").strip()
    try:
        exponent = int(scale_attr)
    except ValueError:
        exponent = None
    unit_scale = UnitScale.from_exponent(exponent) if exponent is not None else None
    if unit_scale is None:
        result.warnings.append(ParseWarning(
            code=WarningCode.UNSUPPORTED_SCALE,
            severity="warning",
            message=f"Fact {concept} has unsupported scale {scale_attr!r}; dropped.",
            source_path=source,
        ))
        return None

    unit_ref = tag.get("unitref")
    token = RawNumericToken(
        literal=literal,
        negative=tag.get("sign") == "-",
        scale=unit_scale,
        scale_source="attribute",
        currency=units.get(unit_ref) if unit_ref else None,
    )
    try:
        value = token.to_value()
    except ParseError as exc:
        result.warnings.append(ParseWarning(
            code=WarningCode.PARSE_ERROR,
            severity="warning",
            message=f"Fact {concept}: {exc}",
            source_path=source,
        ))
        return None

    return _Fact(
        concept=concept,
        category=category,
        context=context,
        token=token,
        value=value,
        unit_ref=unit_ref,
        decimals=tag.get("decimals"),
        scale_attr=scale_attr,
    )


def _find_prior(fact: _Fact, facts: list[_Fact]) -> _Fact | None:
    """Latest earlier-period fact of the same concept and period shape."""
    current_end = _to_date(fact.context.period or "")
    if current_end is None:
        return None
    best: _Fact | None = None
    best_end: date | None = None
    for other in facts:
        if other.concept != fact.concept:
            continue
        if bool(other.context.instant) != bool(fact.context.instant):
            continue
        if other.context.period_type() != fact.context.period_type():
            continue
        other_end = _to_date(other.context.period or "")
        if other_end is None or other_end >= current_end:
            continue
        if best_end is None or other_end > best_end:
            best, best_end = other, other_end
    return best


def _read_dei(soup: BeautifulSoup, result: StructuredExtraction) -> None:
    for tag in soup.find_all("ix:nonnumeric"):
        name = (tag.get("name") or "").rsplit(":", 1)[-1]
        if name == "DocumentType" and result.document_type is None:
            result.document_type = tag.get_text(" ", strip=True) or None
        elif name == "DocumentFiscalPeriodFocus" and result.fiscal_period_focus is None:
            result.fiscal_period_focus = tag.get_text(strip=True) or None
        elif name == "DocumentPeriodEndDate" and result.period_end is None:
            result.period_end = tag.get_text(" ", strip=True) or None
