"""Heuristic line-item extraction from normalized text.

Used when a filing has no inline XBRL, and to fill gaps when it does.

For each label rule (most specific first), every occurrence of the label
is paired with the first acceptable number to its right:

  - in a linearized table row: the rest of the row, value cells only;
  - in a plain-text statement line with column gaps: the rest of the line;
  - in prose: the rest of the sentence, and only numbers that carry a
    currency sign or a magnitude word ("$1.2 billion").

Percentages and bare years are never values. A label span matched by one
rule is never re-matched by a later, more generic rule, so "Total revenue"
cannot also produce a plain "Revenue".

Also here: document period detection and the qualitative context
(segment revenue, management-discussion sentences, risk factors).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from sec_metrics.config import Settings, get_config
from sec_metrics.decimal_value import DecimalValue, RawNumericToken, UnitScale
from sec_metrics.errors import DivisionUndefined, ParseError
from sec_metrics.mappings import LABEL_RULES, SEGMENT_NAMES, SEGMENT_SECTION_RE, LabelRule
from sec_metrics.models import (
    ExtractedMetric,
    ManagementDiscussion,
    MetricCategory,
    ParseWarning,
    PeriodType,
    RiskCategory,
    RiskFactor,
    RiskSeverity,
    SegmentRevenue,
    WarningCode,
)
from sec_metrics.normalizer import (
    CELL_SEP,
    ROW_MARK,
    TABLE_END,
    TABLE_START,
    NormalizedDocument,
    Region,
)

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Numeric tokens
# ═══════════════════════════════════════════════════════════════════════════

NUMBER_PATTERN = re.compile(
    r"(?<![\w.,])"
    r"(?P<cur>[$€£¥])?\s*(?P<open>\()?\s*(?P<cur2>[$€£¥])?\s*(?P<minus>[-−])?\s*"
    r"(?P<digits>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?|\.\d+)"
    r"(?P<close>\s*\))?"
    r"(?:\s*(?P<suffix>thousand|million|billion|trillion|mn|bn|mm|k)s?(?![\w]))?"
    r"(?P<pct>\s*%|\s+percent(?![\w]))?",
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r"^(?:19|20)\d{2}$")
_COLUMN_GAP_RE = re.compile(r"(?: {2,}|\t|\.{3,}\s*)[$(]?\s?[\d(]")
_SENTENCE_END_RE = re.compile(r"[.!?;](?=\s|$)")
_PRIOR_CUE_RE = re.compile(r"(?:compared\s+(?:to|with)|from|versus|vs\.?)\s*$", re.IGNORECASE)
_YEAR_CELL_RE = re.compile(r"^(?:fiscal\s+(?:year\s+)?)?((?:19|20)\d{2})$", re.IGNORECASE)
_NOTE_CELL_RE = re.compile(r"^notes?(?:\s+(?:ref|reference|no)\.?)?$", re.IGNORECASE)
_CONFIDENCE_STEP = Decimal("0.01")


@dataclass(frozen=True)
class _Match:
    """A numeric token found in a window, with absolute offsets."""
    token: RawNumericToken
    start: int
    end: int
    explicit: bool          # carries a currency sign or magnitude word


def _token_from(m: re.Match[str]) -> RawNumericToken:
    currency_symbol = m.group("cur") or m.group("cur2")
    negative = bool(m.group("minus")) or bool(m.group("open") and m.group("close"))
    suffix_scale = UnitScale.from_word(m.group("suffix"))
    return RawNumericToken(
        literal=m.group("digits"),
        negative=negative,
        scale=suffix_scale or UnitScale.ONE,
        scale_source="suffix" if suffix_scale is not None else "default",
        currency=RawNumericToken.currency_for(currency_symbol),
    )


def find_numbers(text: str, start: int = 0, end: int | None = None) -> list[_Match]:
    """Every acceptable numeric token in ``text[start:end]``."""
    end = len(text) if end is None else end
    found: list[_Match] = []
    for m in NUMBER_PATTERN.finditer(text, start, end):
        if m.group("pct"):
            continue
        digits = m.group("digits")
        explicit = bool(m.group("cur") or m.group("cur2") or m.group("suffix"))
        if _YEAR_RE.match(digits) and not explicit:
            continue
        found.append(_Match(_token_from(m), m.start(), m.end(), explicit))
    return found


# ═══════════════════════════════════════════════════════════════════════════
#  Windows
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class _Window:
    start: int
    end: int
    mode: str               # "row" | "prose"
    region: Region | None


def _row_bounds(text: str, pos: int, region: Region) -> tuple[int, int]:
    row_start = text.rfind(ROW_MARK, region.start, pos + 1)
    row_start = region.start if row_start == -1 else row_start
    candidates = [
        i for i in (text.find(ROW_MARK, pos, region.end), text.find(TABLE_END, pos, region.end))
        if i != -1
    ]
    return row_start, min(candidates) if candidates else region.end


def _window_for(doc: NormalizedDocument, start: int, end: int, config: Settings) -> _Window | None:
    text = doc.text
    region = doc.region_at(start)

    if region is not None and region.kind == "table":
        _row_start, row_end = _row_bounds(text, end, region)
        value_start = text.find(CELL_SEP, end, row_end)
        if value_start == -1:
            return None
        return _Window(value_start + len(CELL_SEP), row_end, "row", region)

    if not doc.is_markup:
        line_end = text.find("\n", end)
        line_end = len(text) if line_end == -1 else line_end
        if _COLUMN_GAP_RE.search(text, end, line_end):
            return _Window(end, min(line_end, end + config.label_window_chars), "row", region)

    limit = min(len(text), end + config.label_window_chars)
    paragraph = text.find("\n\n", end, limit)
    if paragraph != -1:
        limit = paragraph
    for marker in (TABLE_START, ROW_MARK):
        i = text.find(marker, end, limit)
        if i != -1:
            limit = i
    sentence = _SENTENCE_END_RE.search(text, end, limit)
    if sentence:
        limit = sentence.start()
    return _Window(end, limit, "prose", region)


def _values_in(doc: NormalizedDocument, window: _Window) -> list[_Match]:
    matches = find_numbers(doc.text, window.start, window.end)
    if window.mode == "prose":
        matches = [m for m in matches if m.explicit]
    elif window.region is not None and window.region.kind == "table":
        note = _note_cell(doc.text, window)
        if note is not None:
            matches = [m for m in matches if not note[0] <= m.start < note[1]]
    return matches


def _note_column(text: str, region: Region) -> int | None:
    """Position, counted from the right, of a "Note" header column."""
    pos = region.start
    while True:
        row = text.find(ROW_MARK, pos, region.end)
        if row == -1:
            return None
        _start, row_end = _row_bounds(text, row + len(ROW_MARK), region)
        cells = [c.strip() for c in text[row + len(ROW_MARK):row_end].split("|")]
        cells = [c for c in cells if c]
        for i, cell in enumerate(cells):
            if _NOTE_CELL_RE.match(cell):
                return len(cells) - i
        pos = row_end


def _note_cell(text: str, window: _Window) -> tuple[int, int] | None:
    """Span of the value cell under a "Note" column, if the table has one."""
    from_right = _note_column(text, window.region)
    if from_right is None:
        return None
    spans: list[tuple[int, int]] = []
    start = window.start
    while True:
        sep = text.find(CELL_SEP, start, window.end)
        spans.append((start, window.end if sep == -1 else sep))
        if sep == -1:
            break
        start = sep + len(CELL_SEP)
    if len(spans) < from_right:
        return None
    return spans[len(spans) - from_right]


def _prior_match(doc: NormalizedDocument, window: _Window, matches: list[_Match]) -> _Match | None:
    if len(matches) < 2:
        return None
    if window.mode == "row":
        return matches[1]
    for candidate in matches[1:]:
        lead = doc.text[matches[0].end:candidate.start]
        if _PRIOR_CUE_RE.search(lead):
            return candidate
    return None


# ═══════════════════════════════════════════════════════════════════════════
#  Scale and confidence
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class _Resolved:
    token: RawNumericToken
    ambiguous: bool
    note: str


def _resolve_scale(
    match: _Match,
    region: Region | None,
    category: MetricCategory,
) -> _Resolved:
    token = match.token
    if token.scale_source == "suffix":
        return _Resolved(token, False, f"scale={token.scale.label} from suffix")
    if category.is_per_share:
        return _Resolved(token, False, "per-share amount, unscaled")
    if region is None:
        return _Resolved(token, False, "scale=x1 default")
    hint = region.hint
    if hint.scale is not None:
        scaled = token.model_copy(update={"scale": hint.scale, "scale_source": "header"})
        return _Resolved(scaled, False, f"scale={hint.scale.label} from header {hint.phrase!r}")
    if hint.ambiguous:
        return _Resolved(token, True, f"unit scale ambiguous ({hint.phrase!r}); assumed x1")
    return _Resolved(token, False, "scale=x1 default")


def _confidence(rule: LabelRule, mode: str, ambiguous: bool, config: Settings) -> Decimal:
    score = min(max(rule.confidence, config.heuristic_min_confidence),
                config.heuristic_max_confidence)
    if mode == "prose":
        score *= config.prose_confidence_factor
    if ambiguous:
        score *= config.ambiguous_unit_factor
    return score.quantize(_CONFIDENCE_STEP, rounding=ROUND_HALF_UP)


# ═══════════════════════════════════════════════════════════════════════════
#  Period detection
# ═══════════════════════════════════════════════════════════════════════════

_PERIOD_PATTERNS = (
    re.compile(
        r"(?:for\s+the\s+(?:fiscal\s+)?(?:year|quarter|period|(?:three|six|nine|twelve)\s+months)"
        r"|(?:fiscal\s+)?(?:quarter|year|period)|(?:three|six|nine|twelve)\s+months)"
        r"\s+ended\s+([A-Z][a-z]+\.?\s+\d{1,2},?\s+\d{4})",
        re.IGNORECASE,
    ),
    re.compile(r"(?<!\w)(Q[1-4]\s*(?:FY)?\s*'?\d{2,4})(?!\w)"),
    re.compile(r"(?<!\w)(FY\s*'?\d{2,4})(?!\w)"),
)

_PERIOD_TYPE_CUES: tuple[tuple[re.Pattern[str], PeriodType], ...] = (
    (re.compile(r"three\s+months\s+ended|quarterly\s+report|quarter\s+ended", re.I),
     PeriodType.QUARTERLY),
    (re.compile(r"(?:six|nine)\s+months\s+ended", re.I), PeriodType.YTD),
    (re.compile(r"trailing\s+twelve\s+months|\bTTM\b", re.I), PeriodType.TTM),
    (re.compile(r"twelve\s+months\s+ended|fiscal\s+years?\s+ended|years?\s+ended"
                r"|annual\s+report", re.I),
     PeriodType.ANNUAL),
)


def detect_period(text: str) -> str | None:
    """First fiscal-period label in the text ("September 30, 2023", "Q3 2024")."""
    for pattern in _PERIOD_PATTERNS:
        m = pattern.search(text)
        if m:
            return re.sub(r"\s+", " ", m.group(1)).strip()
    return None


def detect_period_type(text: str) -> PeriodType | None:
    """Period type of the earliest period phrase in the text."""
    best: tuple[int, PeriodType] | None = None
    for pattern, period_type in _PERIOD_TYPE_CUES:
        m = pattern.search(text)
        if m and (best is None or m.start() < best[0]):
            best = (m.start(), period_type)
    return best[1] if best else None


def _table_years(text: str, region: Region) -> list[str]:
    """Column years from the first header-like row of a linearized table."""
    pos = region.start
    while True:
        row = text.find(ROW_MARK, pos, region.end)
        if row == -1:
            return []
        _start, row_end = _row_bounds(text, row + len(ROW_MARK), region)
        cells = [c.strip() for c in text[row + len(ROW_MARK):row_end].split("|")]
        years = [m.group(1) for m in (_YEAR_CELL_RE.match(c) for c in cells) if m]
        if len(years) >= 2 or (years and len(years) == len([c for c in cells if c])):
            return years
        pos = row_end


# ═══════════════════════════════════════════════════════════════════════════
#  Line items
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class HeuristicExtraction:
    metrics: list[ExtractedMetric] = field(default_factory=list)
    warnings: list[ParseWarning] = field(default_factory=list)
    period: str | None = None
    period_type: PeriodType | None = None


def _overlaps(spans: list[tuple[int, int]], start: int, end: int) -> bool:
    return any(s < end and start < e for s, e in spans)


def extract_heuristic(
    doc: NormalizedDocument,
    *,
    rules: tuple[LabelRule, ...] = LABEL_RULES,
    config: Settings | None = None,
) -> HeuristicExtraction:
    """Pair known line-item labels with adjacent numbers."""
    config = config or get_config()
    text = doc.text
    result = HeuristicExtraction(
        period=detect_period(text),
        period_type=detect_period_type(text),
    )
    consumed: list[tuple[int, int]] = []
    found: list[tuple[int, ExtractedMetric]] = []
    years_cache: dict[int, list[str]] = {}

    for rule in rules:
        for m in rule.pattern.finditer(text):
            if _overlaps(consumed, m.start(), m.end()):
                continue
            consumed.append((m.start(), m.end()))

            window = _window_for(doc, m.start(), m.end(), config)
            if window is None:
                continue
            values = _values_in(doc, window)
            if not values:
                log.debug("Label %r at %d has no value in window", rule.label, m.start())
                continue

            metric = _build_metric(doc, rule, window, values, years_cache, result, config)
            if metric is not None:
                found.append((m.start(), metric))

    found.sort(key=lambda item: item[0])
    result.metrics = [metric for _pos, metric in found]
    log.info("Heuristic extraction: %d metrics from %d chars", len(result.metrics), len(text))
    return result


def _build_metric(
    doc: NormalizedDocument,
    rule: LabelRule,
    window: _Window,
    values: list[_Match],
    years_cache: dict[int, list[str]],
    result: HeuristicExtraction,
    config: Settings,
) -> ExtractedMetric | None:
    source = f"pattern:{rule.label}"
    first = values[0]
    resolved = _resolve_scale(first, window.region, rule.category)
    try:
        value = resolved.token.to_value()
    except ParseError as exc:
        result.warnings.append(ParseWarning(
            code=WarningCode.PARSE_ERROR, severity="warning",
            message=str(exc), source_path=source,
        ))
        return None

    if resolved.ambiguous:
        result.warnings.append(ParseWarning(
            code=WarningCode.AMBIGUOUS_UNIT,
            severity="warning",
            message=f"{rule.label}: {resolved.note}",
            source_path=source,
        ))

    prior_value = None
    prior = _prior_match(doc, window, values)
    if prior is not None:
        try:
            prior_value = _resolve_scale(prior, window.region, rule.category).token.to_value()
        except ParseError:
            prior_value = None

    period, prior_period = result.period, None
    region = window.region
    if region is not None and region.kind == "table":
        if region.index not in years_cache:
            years_cache[region.index] = _table_years(doc.text, region)
        years = years_cache[region.index]
        if years:
            period = years[0]
            prior_period = years[1] if len(years) > 1 and prior_value is not None else None

    return ExtractedMetric(
        name=rule.label,
        category=rule.category,
        value=value,
        unit_scale_applied=resolved.token.scale,
        period=period,
        period_type=result.period_type,
        source_path=source,
        confidence=_confidence(rule, window.mode, resolved.ambiguous, config),
        context_note=f"{window.mode}: {resolved.note}",
        currency=resolved.token.currency,
        prior_value=prior_value,
        prior_period=prior_period,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Segment revenue
# ═══════════════════════════════════════════════════════════════════════════

def extract_segments(
    doc: NormalizedDocument,
    total_revenue: DecimalValue | None,
    *,
    config: Settings | None = None,
) -> list[SegmentRevenue]:
    """Geographic / product revenue lines near a segment heading."""
    config = config or get_config()
    text = doc.text
    spans: list[tuple[int, int]] = []
    for m in SEGMENT_SECTION_RE.finditer(text):
        region = doc.region_at(m.start())
        if region is not None and region.kind == "table":
            spans.append((region.start, region.end))
        else:
            spans.append((m.end(), min(len(text), m.end() + config.segment_section_chars)))
    # Tables are moved ahead of the prose, so also look at their captions.
    for region in doc.regions:
        if region.kind == "table" and SEGMENT_SECTION_RE.search(region.caption):
            spans.append((region.start, region.end))
    spans = sorted(set(spans))

    segments: list[SegmentRevenue] = []
    seen: set[str] = set()
    for name, kind in SEGMENT_NAMES:
        pattern = re.compile(r"(?<!\w)" + re.escape(name) + r"(?!\w)")
        for span_start, span_end in spans:
            if name in seen:
                break
            for m in pattern.finditer(text, span_start, span_end):
                window = _window_for(doc, m.start(), m.end(), config)
                if window is None:
                    continue
                values = _values_in(doc, window)
                if not values:
                    continue
                resolved = _resolve_scale(values[0], window.region, MetricCategory.REVENUE)
                try:
                    value = resolved.token.to_value()
                except ParseError:
                    continue
                segments.append(SegmentRevenue(
                    name=name,
                    kind=kind,
                    value=value,
                    percent_of_total=_percent_of(value, total_revenue, config),
                    source_path=f"segment:{name}",
                ))
                seen.add(name)
                break

    log.debug("Segment scan found %d segments in %d spans", len(segments), len(spans))
    return segments


def _percent_of(
    value: DecimalValue,
    total: DecimalValue | None,
    config: Settings,
) -> DecimalValue | None:
    if total is None:
        return None
    try:
        return value.multiply(100).divide(total, config.ratio_precision)
    except DivisionUndefined:
        return None


# ═══════════════════════════════════════════════════════════════════════════
#  Management discussion
# ═══════════════════════════════════════════════════════════════════════════

_MDA_HEADING_RE = re.compile(
    r"management[’']?s\s+discussion\s+and\s+analysis|\bMD&A\b", re.IGNORECASE,
)
_MDA_END_RE = re.compile(
    r"quantitative\s+and\s+qualitative\s+disclosures?\s+about\s+market\s+risk"
    r"|financial\s+statements\s+and\s+supplementary\s+data",
    re.IGNORECASE,
)
_TOC_ITEM_RE = re.compile(r"\bitem\s+\d+[a-z]?\b", re.IGNORECASE)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")

DRIVER_PATTERNS = (
    re.compile(r"(?:revenue|sales)\s+(?:increased|decreased|grew|declined)\s+(?:by\s+)?"
               r"[\d.]+\s*%", re.IGNORECASE),
    re.compile(r"driven\s+(?:primarily\s+)?by\s+[^.]{10,100}", re.IGNORECASE),
    re.compile(r"primarily\s+(?:due\s+to|attributable\s+to|driven\s+by)\s+[^.]{10,100}",
               re.IGNORECASE),
)
OUTLOOK_PATTERNS = (
    re.compile(r"\b(?:outlook|expect|expects|anticipate|anticipates|forecast)\b\s+[^.]{20,200}",
               re.IGNORECASE),
    re.compile(r"looking\s+forward\s*,?\s*[^.]{20,200}", re.IGNORECASE),
)
MARKET_PATTERNS = (
    re.compile(r"market\s+conditions\s*:?\s*[^.]{20,200}", re.IGNORECASE),
    re.compile(r"economic\s+(?:environment|conditions)\s*:?\s*[^.]{20,200}", re.IGNORECASE),
)


def _heading_end(text: str, heading_re: re.Pattern[str], start: int = 0) -> int | None:
    """End of the first heading that is not a table-of-contents entry."""
    headings = list(heading_re.finditer(text, start))
    if not headings:
        return None
    for m in headings:
        # Table-of-contents entries are followed closely by the next "Item N".
        if not _TOC_ITEM_RE.search(text, m.end(), m.end() + 200):
            return m.end()
    return headings[-1].end()


def _mda_section(doc: NormalizedDocument) -> str:
    text = doc.text
    prose_start = max((r.end for r in doc.regions if r.kind == "table"), default=0)
    start = _heading_end(text, _MDA_HEADING_RE, prose_start)
    if start is None:
        start = prose_start
    end = _MDA_END_RE.search(text, start)
    return text[start:end.start() if end else len(text)]


def extract_management_discussion(
    doc: NormalizedDocument,
    *,
    config: Settings | None = None,
) -> ManagementDiscussion:
    """Growth drivers, outlook and market-condition sentences."""
    config = config or get_config()
    section = _mda_section(doc)
    limit = config.max_context_sentences
    buckets: dict[str, list[str]] = {"drivers": [], "outlook": [], "market": []}
    groups = (
        ("drivers", DRIVER_PATTERNS),
        ("outlook", OUTLOOK_PATTERNS),
        ("market", MARKET_PATTERNS),
    )

    for sentence in _SENTENCE_SPLIT_RE.split(section):
        sentence = " ".join(sentence.split())
        if not sentence or ROW_MARK in sentence or TABLE_START in sentence:
            continue
        if len(sentence) > 400:
            sentence = sentence[:397].rstrip() + "..."
        for key, patterns in groups:
            bucket = buckets[key]
            if len(bucket) >= limit or sentence in bucket:
                continue
            if any(p.search(sentence) for p in patterns):
                bucket.append(sentence)

    return ManagementDiscussion(
        growth_drivers=buckets["drivers"],
        outlook=buckets["outlook"],
        market_conditions=buckets["market"],
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Risk factors
# ═══════════════════════════════════════════════════════════════════════════

_RISK_HEADING_RE = re.compile(r"\bitem\s+1a\s*[.:\-–]?\s*risk\s+factors\b", re.IGNORECASE)
_RISK_CAPS_HEADING_RE = re.compile(r"\bRISK FACTORS\b")
_RISK_END_RE = re.compile(
    r"\bitem\s+(?:1b|1c|2)\b|unresolved\s+staff\s+comments", re.IGNORECASE,
)
_BULLET_SPLIT_RE = re.compile(r"\s*[•●▪]\s*")
_RISK_CUE_RE = re.compile(
    r"adversely\s+(?:affect|impact)|material(?:ly)?\s+adverse|(?:could|may)\s+harm"
    r"|negatively\s+(?:affect|impact)|significant\s+risk|subject\s+to\s+risks?"
    r"|going\s+concern",
    re.IGNORECASE,
)
# Phrases nearly every risk factor repeats; they say nothing about the kind of risk.
_RISK_BOILERPLATE_RE = re.compile(
    r"results\s+of\s+operations|operating\s+results"
    r"|financial\s+(?:condition|results|performance|position)",
    re.IGNORECASE,
)

# First match wins.
RISK_CATEGORY_PATTERNS: tuple[tuple[RiskCategory, re.Pattern[str]], ...] = (
    (RiskCategory.MARKET, re.compile(r"\bmarket|\beconom", re.IGNORECASE)),
    (RiskCategory.OPERATIONAL, re.compile(r"\boperation|supply\s+chain", re.IGNORECASE)),
    (RiskCategory.FINANCIAL,
     re.compile(r"\bdebt\b|\bcredit\b|\bfinancial|\bliquidity\b|indebtedness", re.IGNORECASE)),
    (RiskCategory.REGULATORY, re.compile(r"regulat|compliance", re.IGNORECASE)),
    (RiskCategory.COMPETITIVE, re.compile(r"competi", re.IGNORECASE)),
    (RiskCategory.TECHNOLOGY, re.compile(r"technolog|cyber|data\s+breach", re.IGNORECASE)),
    (RiskCategory.LEGAL, re.compile(r"\blegal\b|litigation|lawsuit", re.IGNORECASE)),
    (RiskCategory.ENVIRONMENTAL, re.compile(r"environment|climate", re.IGNORECASE)),
    (RiskCategory.GEOPOLITICAL, re.compile(r"geopolit|international|tariff", re.IGNORECASE)),
)

RISK_SEVERITY_PATTERNS: tuple[tuple[RiskSeverity, re.Pattern[str]], ...] = (
    (RiskSeverity.CRITICAL, re.compile(r"going\s+concern|substantial\s+doubt", re.IGNORECASE)),
    (RiskSeverity.HIGH, re.compile(r"material(?:ly)?\s+adverse|significant\s+risk", re.IGNORECASE)),
    (RiskSeverity.MEDIUM, re.compile(r"(?:may|could)\s+(?:adversely|harm)", re.IGNORECASE)),
    (RiskSeverity.LOW, re.compile(r"\bminor\b|limited\s+impact", re.IGNORECASE)),
)


def categorize_risk(text: str) -> RiskCategory:
    text = _RISK_BOILERPLATE_RE.sub(" ", text)
    for category, pattern in RISK_CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return RiskCategory.OTHER


def assess_risk_severity(text: str) -> RiskSeverity:
    for severity, pattern in RISK_SEVERITY_PATTERNS:
        if pattern.search(text):
            return severity
    return RiskSeverity.MEDIUM


def _risk_section(doc: NormalizedDocument, limit: int) -> str:
    text = doc.text
    start = _heading_end(text, _RISK_HEADING_RE)
    if start is None:
        start = _heading_end(text, _RISK_CAPS_HEADING_RE)
    if start is None:
        return ""
    end = _RISK_END_RE.search(text, start, start + limit)
    return text[start:end.start() if end else start + limit]


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3].rstrip() + "..."


def extract_risk_factors(
    doc: NormalizedDocument,
    *,
    config: Settings | None = None,
) -> list[RiskFactor]:
    """Headline risks from Item 1A, in document order.

    A headline is a sentence (or bullet) that states an adverse outcome;
    up to two plain sentences after it (stopping at the next headline) are
    its summary.
    """
    config = config or get_config()
    section = _risk_section(doc, config.risk_section_chars)
    if not section.strip():
        return []

    sentences: list[str] = []
    for chunk in _BULLET_SPLIT_RE.split(section):
        for sentence in _SENTENCE_SPLIT_RE.split(chunk):
            sentence = " ".join(sentence.split())
            if sentence and ROW_MARK not in sentence and TABLE_START not in sentence:
                sentences.append(sentence)

    risks: list[RiskFactor] = []
    seen: set[str] = set()
    for i, sentence in enumerate(sentences):
        if len(risks) >= config.max_risk_factors:
            break
        if not 20 <= len(sentence) <= 300 or not _RISK_CUE_RE.search(sentence):
            continue
        title = _clip(sentence.rstrip("."), 100)
        if title.casefold() in seen:
            continue
        seen.add(title.casefold())

        body: list[str] = []
        for following in sentences[i + 1:i + 3]:
            if _RISK_CUE_RE.search(following):
                break
            body.append(following)
        summary = _clip(" ".join(body), 300)

        risks.append(RiskFactor(
            title=title,
            summary=summary,
            category=categorize_risk(f"{sentence} {summary}"),
            severity=assess_risk_severity(f"{sentence} {summary}"),
        ))

    log.debug("Extracted %d risk factors from %d sentences", len(risks), len(sentences))
    return risks
