"""Format detection and the parse entry points.

Pipeline per document:
  1. classify()           → markup, plain text or PDF-derived text
  2. extract_structured() → inline XBRL facts (markup only, before normalization)
  3. normalize_*()        → linearized text with unit-hint regions
  4. extract_heuristic()  → label/number pairs
  5. merge_metrics()      → one winner per metric name
  6. segments, MD&A, risk factors → qualitative context

``parse`` is stateless: the same input always yields the same result.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Union

import fitz  # PyMuPDF

from sec_metrics.config import Settings, get_config
from sec_metrics.errors import NotMarkupError, UnsupportedFormatError
from sec_metrics.heuristic import (
    extract_heuristic,
    extract_management_discussion,
    extract_risk_factors,
    extract_segments,
)
from sec_metrics.merge import merge_metrics
from sec_metrics.models import (
    FilingAnalysis,
    FormatKind,
    MetricCategory,
    MetricSet,
    ParseDiagnostics,
    ParseResult,
    ParseWarning,
    WarningCode,
)
from sec_metrics.normalizer import (
    NormalizedDocument,
    check_balance,
    decode_content,
    envelope_document_types,
    has_structured_tags,
    load_markup,
    looks_binary,
    normalize_markup,
    normalize_plain_text,
    strip_residual_markup,
)
from sec_metrics.ratios import check_plausibility, compute_ratios
from sec_metrics.structured import StructuredExtraction, extract_structured

log = logging.getLogger(__name__)

Content = Union[str, bytes]

FORMAT_HINTS = MappingProxyType({
    "html": FormatKind.MARKUP,
    "htm": FormatKind.MARKUP,
    "xhtml": FormatKind.MARKUP,
    "xml": FormatKind.MARKUP,
    "txt": FormatKind.PLAIN_TEXT,
    "pdf": FormatKind.PDF_TEXT,
})

_PDF_SIGNATURE = "%PDF"
_PDF_VIEWER_MARKER = "sec.gov/cgi-bin/viewer"
_SNIFF_CHARS = 4096


# ═══════════════════════════════════════════════════════════════════════════
#  Classification
# ═══════════════════════════════════════════════════════════════════════════

def classify_text(text: str) -> FormatKind:
    """Content-based classification of decoded text."""
    head = text[:_SNIFF_CHARS].lstrip("\ufeff \t\r\n")
    lowered = head.lower()
    if head.startswith(_PDF_SIGNATURE) or _PDF_VIEWER_MARKER in lowered:
        return FormatKind.PDF_TEXT
    if head.startswith("<") or "<!doctype" in lowered or "<html" in lowered:
        return FormatKind.MARKUP
    return FormatKind.PLAIN_TEXT


def hint_from_label(label: str) -> str | None:
    """File extension of a document label, if it is a known format hint."""
    if "." not in label:
        return None
    extension = label.rsplit(".", 1)[-1].strip().lower()
    return extension if extension in FORMAT_HINTS else None


def classify(
    text: str,
    format_hint: str | None = None,
) -> tuple[FormatKind, list[ParseWarning]]:
    """Pick the format path: an explicit hint first, then the content.

    Unknown hints, and hints the content plainly contradicts, are ignored
    with a ``format_hint_ignored`` warning.
    """
    detected = classify_text(text)
    if not format_hint:
        return detected, []

    hint = format_hint.strip().lower().lstrip(".")
    hinted = FORMAT_HINTS.get(hint)
    if hinted is None:
        reason = f"Unknown format hint {format_hint!r}"
    elif _hint_fits(hinted, detected, text):
        return hinted, []
    else:
        reason = f"Format hint {format_hint!r} contradicts {detected.value} content"

    warning = ParseWarning(
        code=WarningCode.FORMAT_HINT_IGNORED,
        severity="info",
        message=f"{reason}; using content detection ({detected.value}).",
    )
    log.info("%s", warning.message)
    return detected, [warning]


def _hint_fits(hinted: FormatKind, detected: FormatKind, text: str) -> bool:
    if hinted is FormatKind.MARKUP:
        return "<" in text[:_SNIFF_CHARS]
    if hinted is FormatKind.PLAIN_TEXT:
        return detected is not FormatKind.MARKUP
    return detected is FormatKind.PDF_TEXT


# ═══════════════════════════════════════════════════════════════════════════
#  PDF
# ═══════════════════════════════════════════════════════════════════════════

def extract_pdf_text(data: bytes) -> str:
    """Text of every page, joined with blank lines."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise UnsupportedFormatError(f"Unreadable PDF: {exc}") from exc
    try:
        pages = [page.get_text() for page in doc]
    finally:
        doc.close()
    log.debug("Extracted text from %d PDF pages", len(pages))
    return "\n\n".join(pages)


# ═══════════════════════════════════════════════════════════════════════════
#  Parse
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class _Run:
    """Intermediate artifacts of one parse invocation."""
    label: str
    kind: FormatKind
    encoding: str
    warnings: list[ParseWarning] = field(default_factory=list)
    structured: StructuredExtraction = field(default_factory=StructuredExtraction)
    document_types: list[str] = field(default_factory=list)


def parse(
    content: Content,
    document_label: str = "",
    format_hint: str | None = None,
    *,
    config: Settings | None = None,
) -> ParseResult:
    """Extract a MetricSet and diagnostics from one filing.

    Args:
        content: The document, as text or raw bytes.
        document_label: Name used in diagnostics and logs. A known file
            extension on it ("report.htm") serves as the format hint when
            none is given.
        format_hint: Optional extension-style hint: html, htm, xhtml, xml,
            txt or pdf.

    Raises:
        UnsupportedFormatError: content is neither a PDF nor decodable text.
    """
    config = config or get_config()
    label = document_label.strip() or config.default_document_label
    if format_hint is None:
        format_hint = hint_from_label(label)

    from_pdf = isinstance(content, bytes) and content.lstrip()[:4] == _PDF_SIGNATURE.encode()
    if from_pdf:
        text, encoding = extract_pdf_text(content), "binary"
    else:
        text, encoding = decode_content(content)
        if looks_binary(text):
            raise UnsupportedFormatError(f"{label}: content is binary and not a PDF")

    if not text.strip():
        return _empty_result(label, encoding)

    if from_pdf:
        kind, warnings = FormatKind.PDF_TEXT, []
    else:
        kind, warnings = classify(text, format_hint)
    run = _Run(label=label, kind=kind, encoding=encoding, warnings=warnings)

    doc = _FORMAT_PATHS[kind](run, text, config)
    return _finish(run, doc, config)


def _run_markup(run: _Run, text: str, config: Settings) -> NormalizedDocument:
    run.warnings.extend(check_balance(text))
    try:
        soup = load_markup(text)
    except NotMarkupError as exc:
        log.warning("%s: not parseable as markup (%s), treating as plain text", run.label, exc)
        run.warnings.append(ParseWarning(
            code=WarningCode.NOT_MARKUP,
            severity="warning",
            message=f"Content is not parseable markup ({exc}); parsed as plain text.",
        ))
        return normalize_plain_text(text, encoding=run.encoding, config=config)

    run.document_types = envelope_document_types(text)
    if has_structured_tags(soup):
        run.structured = extract_structured(soup, config=config)
    return normalize_markup(soup, encoding=run.encoding, config=config)


def _run_plain_text(run: _Run, text: str, config: Settings) -> NormalizedDocument:
    run.document_types = envelope_document_types(text)
    return normalize_plain_text(text, encoding=run.encoding, config=config)


def _run_pdf_text(run: _Run, text: str, config: Settings) -> NormalizedDocument:
    if text.lstrip().startswith(_PDF_SIGNATURE):
        raise UnsupportedFormatError(f"{run.label}: raw PDF data must be passed as bytes")
    text = strip_residual_markup(text)
    return normalize_plain_text(text, encoding=run.encoding, config=config)


_FORMAT_PATHS = MappingProxyType({
    FormatKind.MARKUP: _run_markup,
    FormatKind.PLAIN_TEXT: _run_plain_text,
    FormatKind.PDF_TEXT: _run_pdf_text,
})


def _finish(run: _Run, doc: NormalizedDocument, config: Settings) -> ParseResult:
    heuristic = extract_heuristic(doc, config=config)
    metrics = merge_metrics(run.structured.metrics, heuristic.metrics)

    warnings = run.warnings + doc.warnings + run.structured.warnings + heuristic.warnings
    if len(metrics) == 0:
        warnings.append(ParseWarning(
            code=WarningCode.NO_METRICS,
            severity="warning",
            message="No financial metrics could be extracted.",
        ))

    segments = extract_segments(doc, metrics.value_of(MetricCategory.REVENUE), config=config)
    discussion = extract_management_discussion(doc, config=config)
    risks = extract_risk_factors(doc, config=config)

    diagnostics = ParseDiagnostics(
        document_label=run.label,
        format_kind=run.kind,
        table_count=doc.table_count,
        has_structured_tags=doc.has_structured_tags,
        has_financial_tables=doc.has_financial_tables,
        detected_encoding=doc.detected_encoding,
        warnings=warnings,
        structured_fact_count=len(run.structured.metrics),
        heuristic_fact_count=len(heuristic.metrics),
        document_type=run.structured.document_type or next(iter(run.document_types), None),
        fiscal_period=run.structured.period_end or heuristic.period,
        period_type=run.structured.period_type or heuristic.period_type,
    )
    log.info(
        "Parsed %s (%s): %d metrics (%d structured, %d heuristic), %d warnings",
        run.label, run.kind.value, len(metrics), diagnostics.structured_fact_count,
        diagnostics.heuristic_fact_count, len(warnings),
    )
    return ParseResult(
        metrics=metrics,
        diagnostics=diagnostics,
        segments=segments,
        management_discussion=discussion,
        risk_factors=risks,
    )


def _empty_result(label: str, encoding: str) -> ParseResult:
    log.info("%s: empty document", label)
    warning = ParseWarning(
        code=WarningCode.EMPTY_DOCUMENT,
        severity="warning",
        message="Document is empty.",
    )
    return ParseResult(
        metrics=MetricSet(),
        diagnostics=ParseDiagnostics(
            document_label=label,
            format_kind=FormatKind.PLAIN_TEXT,
            detected_encoding=encoding,
            warnings=[warning],
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Batch and analysis
# ═══════════════════════════════════════════════════════════════════════════

def parse_many(
    documents: Iterable[Content | tuple[str, Content]],
    max_workers: int | None = None,
    *,
    config: Settings | None = None,
) -> list[ParseResult]:
    """Parse several documents in parallel, results in input order.

    Each document is either raw content or a ``(label, content)`` pair.
    Invocations share nothing but the read-only settings.
    """
    config = config or get_config()
    jobs: list[tuple[str, Content]] = []
    for i, item in enumerate(documents):
        if isinstance(item, tuple):
            jobs.append(item)
        else:
            jobs.append((f"{config.default_document_label}-{i + 1}", item))
    if not jobs:
        return []

    workers = max_workers or config.parse_workers
    log.info("Parsing %d documents with %d workers", len(jobs), workers)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(
            lambda job: parse(job[1], job[0], config=config),
            jobs,
        ))


def analyze(
    content: Content,
    document_label: str = "",
    format_hint: str | None = None,
    *,
    config: Settings | None = None,
) -> FilingAnalysis:
    """Parse, then derive ratios and run the plausibility checks."""
    config = config or get_config()
    result = parse(content, document_label, format_hint, config=config)
    return FilingAnalysis(
        result=result,
        ratios=compute_ratios(result.metrics, config=config),
        validation=check_plausibility(result.metrics, config=config),
    )
