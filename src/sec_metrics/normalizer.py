"""Markup and plain-text normalization.

Turns a filing into one whitespace-collapsed text blob that the heuristic
extractor can scan, while keeping table rows and cells adjacent:

    [TABLE] [ROW] Total revenue | $1,000 | $900 [ROW] Net income | 200 | 150 [/TABLE]

Financial tables come first, in document order, followed by the visible
prose of the rest of the document. Each linearized table remembers the
unit scale announced in its caption or header rows ("in millions") so
the extractor can scale bare cell values.

Plain-text filings skip the tree entirely: they get light cleanup
(line endings, separator lines, SEC envelope markers) and keep their
line structure, because column gaps are the only table signal they have.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup, NavigableString, Tag, UnicodeDammit
from bs4.element import PreformattedString

from sec_metrics.config import Settings, get_config
from sec_metrics.decimal_value import UnitScale
from sec_metrics.errors import NotMarkupError
from sec_metrics.mappings import (
    FINANCIAL_KEYWORDS,
    PER_SHARE_EXCEPTION_RE,
    THOUSANDS_SHORT_RE,
    UNIT_PARENTHETICAL_RE,
    UNIT_PHRASE_RE,
    UNIT_PHRASES_WITHOUT_SCALE,
)
from sec_metrics.models import ParseWarning, WarningCode

log = logging.getLogger(__name__)

TABLE_START = "[TABLE]"
TABLE_END = "[/TABLE]"
ROW_MARK = "[ROW]"
CELL_SEP = " | "

_NOISE_TAGS = [
    "script", "style", "noscript", "iframe", "head", "nav", "header", "footer",
    "sec-header", "ims-header", "ix:header",
]
_HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.I)
_BLOCK_TAGS = frozenset([
    "p", "div", "br", "h1", "h2", "h3", "h4", "h5", "h6",
    "li", "ol", "ul", "blockquote", "pre", "hr",
    "section", "article", "tr", "table", "thead", "tbody", "tfoot",
    "dt", "dd", "dl", "figcaption", "figure", "caption", "center",
])
_WS_RE = re.compile(r"\s+")
_META_CHARSET_RE = re.compile(
    r"<meta[^>]+charset\s*=\s*[\"']?\s*([A-Za-z0-9_\-:.]+)", re.IGNORECASE,
)
_ENVELOPE_TYPE_RE = re.compile(r"^\s*<TYPE>\s*([^\s<]+)", re.MULTILINE)
_SEC_HEADER_BLOCK_RE = re.compile(
    r"<(SEC-HEADER|IMS-HEADER)>.*?</\1>", re.DOTALL | re.IGNORECASE,
)
_ENVELOPE_LINE_RE = re.compile(
    r"^[ \t]*</?(?:SEC-DOCUMENT|DOCUMENT|TEXT|PDF|XBRL|XML)>[^\n]*$"
    r"|^[ \t]*<(?:TYPE|SEQUENCE|FILENAME|DESCRIPTION)>[^\n]*$",
    re.MULTILINE | re.IGNORECASE,
)
_HEADER_FIELD_RE = re.compile(
    r"^[ \t]*(?:ACCESSION NUMBER|CONFORMED SUBMISSION TYPE|PUBLIC DOCUMENT COUNT"
    r"|CONFORMED PERIOD OF REPORT|FILED AS OF DATE|DATE AS OF CHANGE"
    r"|SECURITIES AND EXCHANGE COMMISSION)\b[^\n]*$",
    re.MULTILINE,
)
_SEPARATOR_LINE_RE = re.compile(r"^[ \t]*[-=_]{3,}[ \t]*$", re.MULTILINE)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0e-\x1f]")
_GLUE_FORWARD = frozenset(["$", "€", "£", "¥", "(", "$(", "($"])
_GLUE_BACKWARD = frozenset([")", "%", ")%", "%)"])


# ═══════════════════════════════════════════════════════════════════════════
#  Result types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UnitHint:
    """Unit scale announced by a table caption or statement header."""
    scale: UnitScale | None = None
    ambiguous: bool = False
    per_share_exempt: bool = False
    phrase: str = ""


@dataclass(frozen=True)
class Region:
    """A span of normalized text that shares one unit hint.

    ``kind`` is "table" for a linearized markup table and "text" for a
    plain-text block that follows a unit phrase.
    """
    start: int
    end: int
    hint: UnitHint
    kind: str = "table"
    index: int = 0
    caption: str = ""

    def contains(self, pos: int) -> bool:
        return self.start <= pos < self.end


@dataclass
class NormalizedDocument:
    text: str
    is_markup: bool
    regions: list[Region] = field(default_factory=list)
    table_count: int = 0
    has_structured_tags: bool = False
    has_financial_tables: bool = False
    detected_encoding: str = "utf-8"
    warnings: list[ParseWarning] = field(default_factory=list)

    def region_at(self, pos: int) -> Region | None:
        for region in self.regions:
            if region.contains(pos):
                return region
        return None


# ═══════════════════════════════════════════════════════════════════════════
#  Encoding
# ═══════════════════════════════════════════════════════════════════════════

def decode_content(content: str | bytes) -> tuple[str, str]:
    """Return (text, encoding name).

    Bytes go through bs4's UnicodeDammit (BOM, declared charset, then
    detection). For str input the declared ``<meta charset>`` is reported,
    defaulting to utf-8.
    """
    if isinstance(content, str):
        return content, detect_declared_encoding(content)
    dammit = UnicodeDammit(content, is_html=True)
    if dammit.unicode_markup is None:
        log.warning("Could not decode %d bytes, falling back to utf-8 with replacement",
                    len(content))
        return content.decode("utf-8", errors="replace"), "utf-8"
    return dammit.unicode_markup, (dammit.original_encoding or "utf-8").lower()


def detect_declared_encoding(text: str) -> str:
    m = _META_CHARSET_RE.search(text[:4096])
    if m:
        return m.group(1).lower()
    return "utf-8"


def looks_binary(text: str) -> bool:
    """NUL bytes or a high share of control characters: not a document."""
    sample = text[:4096]
    if not sample:
        return False
    if "\x00" in sample:
        return True
    return len(_CONTROL_RE.findall(sample)) / len(sample) > 0.1


# ═══════════════════════════════════════════════════════════════════════════
#  Unit hints
# ═══════════════════════════════════════════════════════════════════════════

def resolve_unit_hint(text: str) -> UnitHint:
    """Read "(in millions, except per share data)"-style phrases."""
    scales: list[UnitScale] = []
    phrases: list[str] = []
    for m in UNIT_PHRASE_RE.finditer(text):
        scale = UnitScale.from_word(m.group(1))
        if scale is not None and scale not in scales:
            scales.append(scale)
            phrases.append(m.group(0))
    for m in THOUSANDS_SHORT_RE.finditer(text):
        if UnitScale.THOUSAND not in scales:
            scales.append(UnitScale.THOUSAND)
            phrases.append(m.group(0))

    per_share_exempt = bool(PER_SHARE_EXCEPTION_RE.search(text))
    if len(scales) > 1:
        return UnitHint(None, True, per_share_exempt, "; ".join(phrases))
    if scales:
        return UnitHint(scales[0], False, per_share_exempt, phrases[0])

    for m in UNIT_PARENTHETICAL_RE.finditer(text):
        content = _WS_RE.sub(" ", m.group(1)).strip().lower().rstrip(".")
        if any(ch.isdigit() for ch in content):
            continue
        if content in UNIT_PHRASES_WITHOUT_SCALE:
            return UnitHint(UnitScale.ONE, False, per_share_exempt, m.group(0))
        return UnitHint(None, True, per_share_exempt, m.group(0))
    return UnitHint(per_share_exempt=per_share_exempt)


# ═══════════════════════════════════════════════════════════════════════════
#  Markup
# ═══════════════════════════════════════════════════════════════════════════

def load_markup(text: str) -> BeautifulSoup:
    """Parse markup tolerantly; raise NotMarkupError for garbage."""
    if looks_binary(text):
        raise NotMarkupError("content contains binary data")
    soup = BeautifulSoup(text, "html.parser")
    if soup.find(True) is None:
        raise NotMarkupError("no elements found")
    return soup


def has_structured_tags(soup: BeautifulSoup) -> bool:
    def _is_fact(tag: Tag) -> bool:
        name = tag.name or ""
        return name.startswith("ix:") or tag.has_attr("contextref")
    return soup.find(_is_fact) is not None


def check_balance(text: str) -> list[ParseWarning]:
    """Flag unclosed table structure; html.parser repairs it silently."""
    warnings: list[ParseWarning] = []
    for tag in ("table", "tr", "td"):
        opened = len(re.findall(rf"<{tag}[\s>/]", text, re.IGNORECASE))
        closed = len(re.findall(rf"</{tag}\s*>", text, re.IGNORECASE))
        if opened != closed:
            warnings.append(ParseWarning(
                code=WarningCode.MARKUP_UNBALANCED,
                severity="warning",
                message=f"<{tag}> opened {opened} times but closed {closed} times; "
                        f"table structure was repaired by the parser.",
            ))
    return warnings


def normalize_markup(
    markup: str | BeautifulSoup,
    *,
    encoding: str = "utf-8",
    config: Settings | None = None,
) -> NormalizedDocument:
    """Normalize markup into linearized tables followed by prose.

    Mutates a passed-in soup (noise and financial tables are removed from
    it), so run the structured extractor on the tree first.
    """
    config = config or get_config()
    warnings: list[ParseWarning] = []
    if isinstance(markup, str):
        warnings.extend(check_balance(markup))
        soup = load_markup(markup)
    else:
        soup = markup

    structured = has_structured_tags(soup)
    _remove_noise(soup)

    pieces: list[str] = []
    regions: list[Region] = []
    offset = 0
    table_count = 0

    for table in soup.find_all("table"):
        if table.find_parent("table") is not None:
            continue
        flat = _collapse(table.get_text(" ")).lower()
        if not any(kw in flat for kw in FINANCIAL_KEYWORDS):
            continue
        rows = _linearize_rows(table)
        if not rows:
            continue

        caption = _preceding_text(table, config.unit_hint_lookback_chars)
        hint = resolve_unit_hint(caption + " " + " ".join(rows[:3]))

        block = " ".join([TABLE_START] + [f"{ROW_MARK} {row}" for row in rows] + [TABLE_END])
        if pieces:
            offset += 1
        regions.append(Region(offset, offset + len(block), hint, "table", table_count, caption))
        pieces.append(block)
        offset += len(block)
        table_count += 1
        table.decompose()

    prose = _collapse(_visible_text(soup))
    if prose:
        pieces.append(prose)
    text = _collapse(" ".join(pieces))

    log.debug("Normalized markup: %d financial tables, %d chars, structured=%s",
              table_count, len(text), structured)
    return NormalizedDocument(
        text=text,
        is_markup=True,
        regions=regions,
        table_count=table_count,
        has_structured_tags=structured,
        has_financial_tables=table_count > 0,
        detected_encoding=encoding,
        warnings=warnings,
    )


def _remove_noise(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(_NOISE_TAGS):
        tag.decompose()
    for tag in soup.find_all(attrs={"style": _HIDDEN_STYLE_RE}):
        tag.decompose()


def _linearize_rows(table: Tag) -> list[str]:
    rows: list[str] = []
    for tr in table.find_all("tr"):
        raw_cells = [_collapse(td.get_text(" ")) for td in tr.find_all(["td", "th"])]
        cells = _glue_cells([c for c in raw_cells if c])
        if cells:
            rows.append(CELL_SEP.join(cells))
    return rows


def _glue_cells(cells: list[str]) -> list[str]:
    """Join "$" / ")" / "%" fragments to the cell they belong to."""
    glued: list[str] = []
    pending = ""
    for cell in cells:
        if cell in _GLUE_FORWARD:
            pending += cell
            continue
        if cell in _GLUE_BACKWARD and glued:
            glued[-1] += cell
            continue
        glued.append(pending + cell)
        pending = ""
    if pending:
        glued.append(pending)
    return glued


def _preceding_text(table: Tag, limit: int) -> str:
    parts: list[str] = []
    total = 0
    for node in table.previous_elements:
        if not isinstance(node, NavigableString) or isinstance(node, PreformattedString):
            continue
        text = node.strip()
        if not text:
            continue
        parts.append(text)
        total += len(text)
        if total >= limit:
            break
    return " ".join(reversed(parts))[-limit:]


def _visible_text(soup: BeautifulSoup) -> str:
    """Flatten the tree, separating block elements but not inline ones.

    (e.g., <span>B</span><span>USINESS</span> → "BUSINESS", not "B USINESS")
    """
    parts: list[str] = []

    def _walk(node: Tag | NavigableString) -> None:
        if isinstance(node, NavigableString):
            if not isinstance(node, PreformattedString):
                parts.append(str(node))
            return
        if not isinstance(node, Tag):
            return
        tag_name = node.name.lower() if node.name else ""
        is_block = tag_name in _BLOCK_TAGS or tag_name in ("td", "th")
        if is_block:
            parts.append(" ")
        for child in node.children:
            _walk(child)
        if is_block:
            parts.append(" ")

    _walk(soup)
    return "".join(parts)


def _collapse(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


# ═══════════════════════════════════════════════════════════════════════════
#  Plain text
# ═══════════════════════════════════════════════════════════════════════════

def envelope_document_types(text: str) -> list[str]:
    """``<TYPE>`` values from an SEC submission envelope, in order."""
    return [m.group(1).strip() for m in _ENVELOPE_TYPE_RE.finditer(text)]


def clean_plain_text(text: str) -> str:
    """Light cleanup: line endings, envelope markers, separator lines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\f", "\n\n")
    text = _SEC_HEADER_BLOCK_RE.sub("", text)
    text = _ENVELOPE_LINE_RE.sub("", text)
    text = _HEADER_FIELD_RE.sub("", text)
    text = _SEPARATOR_LINE_RE.sub("", text)
    text = text.replace("\u00a0", " ")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def strip_residual_markup(text: str) -> str:
    """Drop any tags left in PDF-derived text."""
    if not re.search(r"<[A-Za-z/!]", text):
        return text
    return BeautifulSoup(text, "html.parser").get_text("\n")


def normalize_plain_text(
    text: str,
    *,
    encoding: str = "utf-8",
    config: Settings | None = None,
) -> NormalizedDocument:
    """Clean plain text and mark the blocks that follow unit phrases."""
    config = config or get_config()
    cleaned = clean_plain_text(text)
    regions = _unit_regions(cleaned, config.plain_text_hint_span_chars)
    return NormalizedDocument(
        text=cleaned,
        is_markup=False,
        regions=regions,
        detected_encoding=encoding,
    )


def _unit_regions(text: str, span: int) -> list[Region]:
    starts: list[int] = []
    for pattern in (UNIT_PHRASE_RE, THOUSANDS_SHORT_RE, UNIT_PARENTHETICAL_RE):
        starts.extend(m.start() for m in pattern.finditer(text))
    line_starts = sorted({text.rfind("\n", 0, s) + 1 for s in starts})

    regions: list[Region] = []
    for i, start in enumerate(line_starts):
        line_end = text.find("\n", start)
        line = text[start:] if line_end == -1 else text[start:line_end]
        hint = resolve_unit_hint(line)
        if hint.scale is None and not hint.ambiguous:
            continue
        end = min(start + span, len(text))
        if i + 1 < len(line_starts):
            end = min(end, line_starts[i + 1])
        regions.append(Region(start, end, hint, "text", i))
    return regions
