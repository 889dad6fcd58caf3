"""Tests for heuristic line-item extraction."""

from decimal import Decimal

from sec_metrics.decimal_value import DecimalValue
from sec_metrics.heuristic import (
    assess_risk_severity,
    categorize_risk,
    detect_period,
    detect_period_type,
    extract_heuristic,
    extract_management_discussion,
    extract_risk_factors,
    extract_segments,
    find_numbers,
)
from sec_metrics.models import (
    MetricCategory,
    PeriodType,
    RiskCategory,
    RiskSeverity,
    SegmentKind,
    WarningCode,
)
from sec_metrics.normalizer import normalize_markup, normalize_plain_text


def _by_name(result):
    return {m.name: m for m in result.metrics}


# --- Numeric tokens ---


def test_find_numbers_skips_percentages_and_years():
    matches = find_numbers("Revenue grew 15% in 2023 to $4.5 billion.")
    assert len(matches) == 1
    assert matches[0].explicit
    assert matches[0].token.to_value().amount == Decimal("4500000000")


def test_find_numbers_parentheses_are_negative():
    matches = find_numbers("Net loss | (1,250) | $(300)")
    assert [m.token.to_value().amount for m in matches] == [Decimal("-1250"), Decimal("-300")]


# --- Tables ---


def test_total_revenue_row():
    doc = normalize_markup(
        "<table><tr><td>Total Revenue</td><td>$1,000</td><td>$900</td></tr></table>"
    )
    result = extract_heuristic(doc)
    revenue = [m for m in result.metrics if m.category is MetricCategory.REVENUE]
    assert len(revenue) == 1
    assert revenue[0].value.amount == Decimal("1000")
    assert revenue[0].source_path == "pattern:Total Revenue"
    assert revenue[0].prior_value.amount == Decimal("900")


INCOME_STATEMENT = """
<p>CONSOLIDATED STATEMENTS OF OPERATIONS (In millions, except per share amounts)</p>
<table>
  <tr><td></td><td>2023</td><td>2022</td></tr>
  <tr><td>Total net sales</td><td>$</td><td>383,285</td><td>$</td><td>394,328</td></tr>
  <tr><td>Net income</td><td>$</td><td>96,995</td><td>$</td><td>99,803</td></tr>
  <tr><td>Diluted earnings per share</td><td>$</td><td>6.13</td><td>$</td><td>6.11</td></tr>
</table>
"""


def test_header_scale_applies_to_table_cells():
    metrics = _by_name(extract_heuristic(normalize_markup(INCOME_STATEMENT)))
    sales = metrics["Total Net Sales"]
    assert sales.value.amount == Decimal("383285000000")
    assert sales.period == "2023"
    assert sales.prior_period == "2022"
    assert sales.prior_value.amount == Decimal("394328000000")
    assert metrics["Net Income"].value.amount == Decimal("96995000000")


def test_per_share_values_are_not_scaled():
    metrics = _by_name(extract_heuristic(normalize_markup(INCOME_STATEMENT)))
    eps = metrics["Diluted EPS"]
    assert eps.category is MetricCategory.EPS_DILUTED
    assert eps.value.amount == Decimal("6.13")
    # the per-share row must not also produce a net income or generic EPS metric
    assert "Earnings Per Share" not in metrics
    assert len([m for m in metrics.values() if m.category is MetricCategory.NET_INCOME]) == 1


def test_note_reference_column_is_not_a_value():
    doc = normalize_markup(
        "<p>Consolidated statements of income (in millions)</p>"
        "<table>"
        "<tr><td></td><td>Note</td><td>2023</td><td>2022</td></tr>"
        "<tr><td>Total revenue</td><td>3</td><td>1,000</td><td>900</td></tr>"
        "</table>"
    )
    revenue = _by_name(extract_heuristic(doc))["Total Revenue"]
    assert revenue.value.amount == Decimal("1000000000")
    assert revenue.prior_value.amount == Decimal("900000000")
    assert revenue.period == "2023"


def test_specific_label_wins_over_generic():
    doc = normalize_markup(
        "<table><tr><td>Total revenues</td><td>500</td></tr>"
        "<tr><td>Cost of revenues</td><td>300</td></tr></table>"
    )
    metrics = _by_name(extract_heuristic(doc))
    assert set(metrics) == {"Total Revenue", "Cost of Revenue"}
    assert metrics["Cost of Revenue"].category is MetricCategory.COST_OF_REVENUE


def test_ambiguous_unit_lowers_confidence():
    doc = normalize_markup(
        "<p>Balance sheet (Amounts in local currency)</p>"
        "<table><tr><td>Total assets</td><td>7,500</td></tr></table>"
    )
    result = extract_heuristic(doc)
    metric = _by_name(result)["Total Assets"]
    assert metric.value.amount == Decimal("7500")
    assert metric.confidence == Decimal("0.60")
    assert [w.code for w in result.warnings] == [WarningCode.AMBIGUOUS_UNIT]


def test_table_confidence_is_capped():
    doc = normalize_markup("<table><tr><td>Total assets</td><td>7,500</td></tr></table>")
    metric = _by_name(extract_heuristic(doc))["Total Assets"]
    assert metric.confidence == Decimal("0.80")


def test_label_without_value_is_skipped():
    doc = normalize_markup("<table><tr><td>Total revenue</td><td>n/a</td></tr></table>")
    assert extract_heuristic(doc).metrics == []


# --- Plain text ---


PLAIN_STATEMENT = """CONSOLIDATED STATEMENTS OF INCOME
(in thousands)

                                   2023          2022
Net sales                     $ 52,100      $ 48,300
Cost of sales                   30,200        28,100
Net income                       5,400         4,900
"""


def test_plain_text_columns_use_unit_region():
    metrics = _by_name(extract_heuristic(normalize_plain_text(PLAIN_STATEMENT)))
    assert metrics["Net Sales"].value.amount == Decimal("52100000")
    assert metrics["Cost of Revenue"].value.amount == Decimal("30200000")
    net_income = metrics["Net Income"]
    assert net_income.value.amount == Decimal("5400000")
    assert net_income.prior_value.amount == Decimal("4900000")


def test_prose_requires_explicit_amount():
    doc = normalize_plain_text(
        "Net income was $5.2 million for the quarter ended March 31, 2024. "
        "Revenue rose in 31 markets."
    )
    result = extract_heuristic(doc)
    metrics = _by_name(result)
    assert set(metrics) == {"Net Income"}
    metric = metrics["Net Income"]
    assert metric.value.amount == Decimal("5200000")
    assert metric.confidence == Decimal("0.68")
    assert metric.period == "March 31, 2024"
    assert metric.period_type is PeriodType.QUARTERLY


def test_prose_prior_value_needs_cue():
    doc = normalize_plain_text("Total revenue was $12.0 billion compared to $10.5 billion.")
    metric = _by_name(extract_heuristic(doc))["Total Revenue"]
    assert metric.value.amount == Decimal("12000000000")
    assert metric.prior_value.amount == Decimal("10500000000")


# --- Periods ---


def test_detect_period():
    assert detect_period("For the fiscal year ended September 30, 2023") == "September 30, 2023"
    assert detect_period("Results for Q3 2024 were strong") == "Q3 2024"
    assert detect_period("Nothing here") is None


def test_detect_period_type_uses_earliest_cue():
    assert detect_period_type("Three months ended June 30 ... nine months ended") \
        is PeriodType.QUARTERLY
    assert detect_period_type("For the fiscal year ended") is PeriodType.ANNUAL
    assert detect_period_type("no cue") is None


# --- Segments ---


def test_segments_from_captioned_table():
    doc = normalize_markup(
        "<p>Revenue by geographic area (in millions)</p>"
        "<table>"
        "<tr><td>United States</td><td>$</td><td>600</td></tr>"
        "<tr><td>Europe</td><td>$</td><td>400</td></tr>"
        "<tr><td>Total revenue</td><td>$</td><td>1,000</td></tr>"
        "</table>"
    )
    total = DecimalValue("1000000000")
    segments = extract_segments(doc, total)
    assert [s.name for s in segments] == ["United States", "Europe"]
    assert segments[0].kind is SegmentKind.GEOGRAPHIC
    assert segments[0].value.amount == Decimal("600000000")
    assert segments[0].percent_of_total.amount == Decimal("60")
    assert segments[1].percent_of_total.amount == Decimal("40")


def test_segments_without_total():
    doc = normalize_markup(
        "<p>Segment information</p>"
        "<table><tr><td>Services revenue</td><td>250</td></tr></table>"
    )
    segments = extract_segments(doc, None)
    assert [(s.name, s.kind) for s in segments] == [("Services", SegmentKind.PRODUCT)]
    assert segments[0].percent_of_total is None


# --- Management discussion ---


MDA = (
    "Item 7. Management's Discussion and Analysis of Financial Condition and Results "
    "of Operations\n"
    "Revenue increased 12% compared to the prior year, driven primarily by strong demand "
    "for our cloud services across all regions. "
    "We expect continued growth in subscription revenue next year as customers migrate. "
    "Market conditions remained challenging across consumer hardware segments this year. "
    "Our headcount was broadly unchanged during the period under review.\n"
    "Item 7A. Quantitative and Qualitative Disclosures About Market Risk\n"
    "We expect nothing from this section to be captured."
)


def test_management_discussion_buckets():
    discussion = extract_management_discussion(normalize_plain_text(MDA))
    assert len(discussion.growth_drivers) == 1
    assert "increased 12%" in discussion.growth_drivers[0]
    assert discussion.outlook == [
        "We expect continued growth in subscription revenue next year as customers migrate.",
    ]
    assert len(discussion.market_conditions) == 1
    assert discussion.market_conditions[0].startswith("Market conditions remained")
    assert not discussion.is_empty


def test_management_discussion_empty():
    discussion = extract_management_discussion(normalize_plain_text("Nothing to see."))
    assert discussion.is_empty


# --- Risk factors ---


RISKS = (
    "Table of Contents\n"
    "Item 1A. Risk Factors 12\n"
    "Item 1B. Unresolved Staff Comments 25\n\n"
    "Item 1. Business\n"
    "We design and sell consumer electronics.\n\n"
    "Item 1A. Risk Factors\n"
    "Global economic conditions could materially adversely affect our revenue. "
    "Demand for our products depends on consumer spending in our key regions.\n"
    "We face intense competition, which may adversely affect our margins. "
    "Competitors may introduce lower priced products.\n"
    "A cyber attack could harm our reputation and disrupt our systems.\n\n"
    "Item 1B. Unresolved Staff Comments\n"
    "None. A later change could adversely affect nothing in this section.\n"
)


def test_risk_factors_from_item_1a():
    risks = extract_risk_factors(normalize_plain_text(RISKS))
    assert [r.title for r in risks] == [
        "Global economic conditions could materially adversely affect our revenue",
        "We face intense competition, which may adversely affect our margins",
        "A cyber attack could harm our reputation and disrupt our systems",
    ]
    assert [r.category for r in risks] == [
        RiskCategory.MARKET, RiskCategory.COMPETITIVE, RiskCategory.TECHNOLOGY,
    ]
    assert [r.severity for r in risks] == [
        RiskSeverity.HIGH, RiskSeverity.MEDIUM, RiskSeverity.MEDIUM,
    ]
    assert risks[0].summary == (
        "Demand for our products depends on consumer spending in our key regions."
    )
    assert risks[2].summary == ""


def test_risk_factor_bullets_in_markup():
    doc = normalize_markup(
        "<p>Item 1A. Risk Factors</p>"
        "<ul><li>• Rising interest rates could adversely affect our ability to "
        "refinance debt.</li></ul>"
        "<p>Item 2. Properties</p>"
    )
    risks = extract_risk_factors(doc)
    assert len(risks) == 1
    assert risks[0].category is RiskCategory.FINANCIAL
    assert risks[0].severity is RiskSeverity.MEDIUM


def test_risk_factors_are_capped():
    body = " ".join(f"Risk number {i} could harm our business badly." for i in range(15))
    risks = extract_risk_factors(normalize_plain_text(f"Item 1A. Risk Factors\n{body}\n"))
    assert len(risks) == 10


def test_no_risk_section():
    assert extract_risk_factors(normalize_plain_text("Revenue grew strongly.")) == []


def test_risk_category_ignores_boilerplate():
    text = "New regulations could adversely affect our results of operations."
    assert categorize_risk(text) is RiskCategory.REGULATORY
    assert categorize_risk("Weather could delay shipments.") is RiskCategory.OTHER


def test_risk_severity_levels():
    assert assess_risk_severity(
        "There is substantial doubt about our ability to continue as a going concern."
    ) is RiskSeverity.CRITICAL
    assert assess_risk_severity("This is a significant risk to us.") is RiskSeverity.HIGH
    assert assess_risk_severity("The change should have limited impact.") is RiskSeverity.LOW
    assert assess_risk_severity("Prices fluctuate.") is RiskSeverity.MEDIUM
