"""End-to-end tests for format dispatch, parse, parse_many and analyze."""

from decimal import Decimal

import fitz
import pytest

from sec_metrics.config import get_config
from sec_metrics.dispatcher import (
    _FORMAT_PATHS,
    _Run,
    analyze,
    classify,
    classify_text,
    hint_from_label,
    parse,
    parse_many,
)
from sec_metrics.errors import UnsupportedFormatError
from sec_metrics.merge import STRUCTURED_PRECEDENCE
from sec_metrics.models import (
    FormatKind,
    MetricCategory,
    PeriodType,
    RiskCategory,
    StatementType,
    WarningCode,
)
from sec_metrics.normalizer import NormalizedDocument


REVENUE_TABLE = "<table><tr><td>Total Revenue</td><td>$1,000</td><td>$900</td></tr></table>"

INLINE_XBRL = """
<html><body>
<div style="display:none"><ix:header><ix:resources>
<xbrli:context id="FY2023">
  <xbrli:entity><xbrli:identifier scheme="http://www.sec.gov/CIK">0000320193</xbrli:identifier></xbrli:entity>
  <xbrli:period><xbrli:startDate>2022-09-25</xbrli:startDate><xbrli:endDate>2023-09-30</xbrli:endDate></xbrli:period>
</xbrli:context>
<xbrli:unit id="usd"><xbrli:measure>iso4217:USD</xbrli:measure></xbrli:unit>
</ix:resources></ix:header></div>
<p>CONSOLIDATED STATEMENTS OF OPERATIONS (In millions)</p>
<table>
  <tr><td>Net income</td><td>$</td><td><ix:nonFraction name="us-gaap:NetIncomeLoss"
      contextRef="FY2023" unitRef="usd" scale="6" decimals="-6">96,995</ix:nonFraction></td></tr>
</table>
</body></html>
"""


def _codes(result):
    return [w.code for w in result.diagnostics.warnings]


# --- Classification ---


def test_classify_text():
    assert classify_text("\ufeff  <html><body></body></html>") is FormatKind.MARKUP
    assert classify_text("%PDF-1.7 ...") is FormatKind.PDF_TEXT
    assert classify_text("ANNUAL REPORT\nTotal revenue") is FormatKind.PLAIN_TEXT


def test_hint_from_label():
    assert hint_from_label("aapl-20230930.htm") == "htm"
    assert hint_from_label("report.DOCX") is None
    assert hint_from_label("no-extension") is None


def test_unknown_hint_is_ignored():
    kind, warnings = classify("Total revenue was $5 million.", "docx")
    assert kind is FormatKind.PLAIN_TEXT
    assert [w.code for w in warnings] == [WarningCode.FORMAT_HINT_IGNORED]


def test_contradicting_hint_is_ignored():
    kind, warnings = classify("Total revenue was $5 million.", "pdf")
    assert kind is FormatKind.PLAIN_TEXT
    assert [w.code for w in warnings] == [WarningCode.FORMAT_HINT_IGNORED]


def test_matching_hint_is_used():
    assert classify("Total revenue was $5 million.", "txt") == (FormatKind.PLAIN_TEXT, [])
    assert classify("<p>x</p>", ".HTML") == (FormatKind.MARKUP, [])


# --- Markup ---


def test_parse_markup_table():
    result = parse(REVENUE_TABLE, "filing.htm")
    revenue = result.metrics.by_category(MetricCategory.REVENUE)
    assert len(revenue) == 1
    assert revenue[0].value.amount == Decimal("1000")
    diagnostics = result.diagnostics
    assert diagnostics.document_label == "filing.htm"
    assert diagnostics.format_kind is FormatKind.MARKUP
    assert diagnostics.table_count == 1
    assert diagnostics.has_financial_tables
    assert diagnostics.detected_encoding == "utf-8"
    assert diagnostics.heuristic_fact_count == 1
    assert diagnostics.warnings == []


def test_parse_is_idempotent():
    first = parse(INLINE_XBRL, "aapl.htm")
    second = parse(INLINE_XBRL, "aapl.htm")
    assert first.model_dump() == second.model_dump()


def test_inline_xbrl_wins_over_table_text():
    result = parse(INLINE_XBRL, "aapl.htm")
    winner = result.metrics.get("Net Income")
    assert winner.value.amount == Decimal("96995000000")
    assert winner.is_structured
    assert winner.period_type is PeriodType.ANNUAL

    [loser] = result.metrics.losers
    assert loser.reason == STRUCTURED_PRECEDENCE
    assert loser.metric.source_path == "pattern:Net Income"
    assert loser.metric.value.amount == Decimal("96995000000")

    diagnostics = result.diagnostics
    assert diagnostics.has_structured_tags
    assert diagnostics.structured_fact_count == 1


def test_malformed_markup_degrades_gracefully():
    result = parse("<table><tr><td>Incomplete")
    codes = _codes(result)
    assert codes.count(WarningCode.MARKUP_UNBALANCED) == 3
    assert WarningCode.NO_METRICS in codes
    assert len(result.metrics) == 0


def test_unparseable_markup_falls_back_to_plain_text():
    result = parse("<5% of total revenue was from services.")
    assert WarningCode.NOT_MARKUP in _codes(result)


@pytest.mark.parametrize("kind, text", [
    (FormatKind.MARKUP, REVENUE_TABLE),
    (FormatKind.MARKUP, "<5% of total revenue was from services."),
    (FormatKind.PLAIN_TEXT, "Total revenue was $5 million."),
    (FormatKind.PDF_TEXT, "Total revenue was $5 million."),
])
def test_every_format_path_returns_a_document(kind, text):
    run = _Run(label="doc", kind=kind, encoding="utf-8")
    doc = _FORMAT_PATHS[kind](run, text, get_config())
    assert isinstance(doc, NormalizedDocument)
    assert doc.text


def test_every_format_kind_has_a_path():
    assert set(_FORMAT_PATHS) == set(FormatKind)


def test_envelope_document_type():
    filing = (
        "<SEC-DOCUMENT>0000320193-23-000106.txt\n"
        "<DOCUMENT>\n<TYPE>10-K\n<SEQUENCE>1\n"
        "<p>Total revenue was $12.0 billion.</p>\n"
        "</DOCUMENT>\n"
    )
    assert parse(filing).diagnostics.document_type == "10-K"


# --- Plain text ---


def test_parse_plain_text():
    result = parse(
        "ANNUAL REPORT\nFor the fiscal year ended December 31, 2023\n"
        "Net income was $5.2 million for the year.",
        "report.txt",
    )
    assert result.diagnostics.format_kind is FormatKind.PLAIN_TEXT
    assert result.diagnostics.fiscal_period == "December 31, 2023"
    assert result.diagnostics.period_type is PeriodType.ANNUAL
    assert result.metrics.value_of(MetricCategory.NET_INCOME).amount == Decimal("5200000")


def test_empty_document():
    result = parse("   \n  ", "blank.txt")
    assert _codes(result) == [WarningCode.EMPTY_DOCUMENT]
    assert len(result.metrics) == 0


def test_default_label():
    assert parse("").diagnostics.document_label == "document"


# --- Unsupported content ---


def test_binary_text_is_rejected():
    with pytest.raises(UnsupportedFormatError):
        parse("\x00\x01 binary \x02\x03")


def test_raw_pdf_string_is_rejected():
    with pytest.raises(UnsupportedFormatError):
        parse("%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj")


# --- PDF ---


def _pdf_bytes(line: str) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), line)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.mark.integration
def test_parse_pdf_bytes():
    result = parse(_pdf_bytes("Total revenue $1,000"), "report.pdf")
    assert result.diagnostics.format_kind is FormatKind.PDF_TEXT
    assert result.metrics.value_of(MetricCategory.REVENUE).amount == Decimal("1000")


# --- Batch and analysis ---


def test_parse_many_preserves_order():
    results = parse_many(
        [
            REVENUE_TABLE,
            ("q1.txt", "Net income was $5.2 million for the quarter."),
            "",
        ],
        max_workers=2,
    )
    assert [r.diagnostics.document_label for r in results] == [
        "document-1", "q1.txt", "document-3",
    ]
    assert results[0].metrics.value_of(MetricCategory.REVENUE).amount == Decimal("1000")
    assert results[1].metrics.value_of(MetricCategory.NET_INCOME).amount == Decimal("5200000")
    assert _codes(results[2]) == [WarningCode.EMPTY_DOCUMENT]


def test_parse_many_empty():
    assert parse_many([]) == []


def test_analyze_derives_ratios():
    analysis = analyze(
        "<table><tr><td>Total revenue</td><td>$1,000</td></tr>"
        "<tr><td>Net income</td><td>$200</td></tr></table>"
    )
    ratios = {r.name: r for r in analysis.ratios}
    assert ratios["Net Margin"].value.amount == Decimal("20")
    assert ratios["Net Margin"].formatted_value == "20.00%"
    assert len(analysis.metrics) == 2
    assert WarningCode.NET_INCOME_EXCEEDS_REVENUE not in [w.code for w in analysis.validation]


@pytest.mark.slow
def test_parse_many_matches_sequential_parse():
    documents = [(f"filing-{i}.htm", INLINE_XBRL) for i in range(24)]
    batch = parse_many(documents, max_workers=8)
    sequential = [parse(content, label) for label, content in documents]
    assert [r.model_dump() for r in batch] == [r.model_dump() for r in sequential]


def test_analysis_groups_metrics_by_statement():
    analysis = analyze(
        "<table><tr><td>Total revenue</td><td>$1,000</td></tr>"
        "<tr><td>Total assets</td><td>$5,000</td></tr></table>"
    )
    assert list(analysis.statements) == [
        StatementType.INCOME_STATEMENT,
        StatementType.BALANCE_SHEET,
    ]


# --- Qualitative context ---


def test_parse_collects_risk_factors():
    result = parse(
        "Item 1A. Risk Factors\n"
        "Rising interest rates could adversely affect our ability to refinance debt.\n"
        "Item 1B. Unresolved Staff Comments\n",
        "10-k.txt",
    )
    assert [r.category for r in result.risk_factors] == [RiskCategory.FINANCIAL]


def test_filing_without_risk_section_has_no_risk_factors():
    assert parse(REVENUE_TABLE).risk_factors == []
