"""Tests for derived ratios and plausibility checks."""

from decimal import Decimal

from sec_metrics.decimal_value import DecimalValue
from sec_metrics.merge import merge_metrics
from sec_metrics.models import (
    AnomalySeverity,
    ExtractedMetric,
    HealthStatus,
    MetricCategory,
    RatioCategory,
    StatementType,
    TrendDirection,
    WarningCode,
)
from sec_metrics.ratios import (
    check_plausibility,
    compound_growth,
    compute_ratios,
    detect_anomaly,
    free_cash_flow,
    margin_trend,
)

C = MetricCategory


def _set(values, confidence="0.97", priors=None):
    priors = priors or {}
    metrics = [
        ExtractedMetric(
            name=category.value,
            category=category,
            value=DecimalValue(amount),
            source_path=f"iXBRL:test:{category.value} contextRef=c1",
            confidence=Decimal(confidence),
            prior_value=DecimalValue(priors[category]) if category in priors else None,
        )
        for category, amount in values.items()
    ]
    return merge_metrics(metrics, [])


def _ratios(metric_set):
    return {r.name: r for r in compute_ratios(metric_set)}


# --- Ratios ---


def test_net_margin_is_exact():
    ratio = _ratios(_set({C.REVENUE: "1000", C.NET_INCOME: "200"}))["Net Margin"]
    assert ratio.value.amount == Decimal("20.00")
    assert ratio.value.to_plain_string() == "20.0000"
    assert ratio.formatted_value == "20.00%"
    assert ratio.unit == "%"
    assert ratio.category is RatioCategory.PROFITABILITY
    assert ratio.health is HealthStatus.GOOD
    assert ratio.interpretation == "high profitability"


def test_no_roe_without_equity():
    ratios = _ratios(_set({C.REVENUE: "1000", C.NET_INCOME: "200"}))
    assert "Return on Equity" not in ratios
    assert "Debt-to-Equity" not in ratios


def test_zero_denominator_omits_ratio():
    ratios = _ratios(_set({C.NET_INCOME: "200", C.TOTAL_EQUITY: "0"}))
    assert "Return on Equity" not in ratios


def test_liquidity_ratios():
    ratios = _ratios(_set({
        C.CURRENT_ASSETS: "3000",
        C.CURRENT_LIABILITIES: "1500",
        C.INVENTORY: "600",
        C.CASH_AND_EQUIVALENTS: "300",
    }))
    assert ratios["Current Ratio"].value.amount == Decimal("2")
    assert ratios["Current Ratio"].formatted_value == "2.00x"
    assert ratios["Current Ratio"].health is HealthStatus.GOOD
    assert ratios["Quick Ratio"].value.amount == Decimal("1.6")
    assert ratios["Cash Ratio"].value.amount == Decimal("0.2")
    assert ratios["Cash Ratio"].health is HealthStatus.NEUTRAL
    working_capital = ratios["Working Capital"]
    assert working_capital.value.amount == Decimal("1500")
    assert working_capital.unit == "USD"
    assert working_capital.formatted_value == "$1,500"


def test_quick_ratio_needs_inventory():
    ratios = _ratios(_set({C.CURRENT_ASSETS: "3000", C.CURRENT_LIABILITIES: "1500"}))
    assert "Quick Ratio" not in ratios


def test_debt_to_equity_lower_is_better():
    ratios = _ratios(_set({
        C.TOTAL_LIABILITIES: "2500",
        C.TOTAL_EQUITY: "1000",
        C.TOTAL_ASSETS: "3500",
    }))
    de = ratios["Debt-to-Equity"]
    assert de.value.amount == Decimal("250")
    assert de.health is HealthStatus.CAUTION
    assert de.interpretation == "elevated leverage"
    assert ratios["Debt Ratio"].value.amount == Decimal("71.4286")
    assert ratios["Debt Ratio"].health is HealthStatus.CAUTION


def test_interest_coverage_uses_absolute_expense():
    ratios = _ratios(_set({C.OPERATING_INCOME: "1200", C.INTEREST_EXPENSE: "-100"}))
    coverage = ratios["Interest Coverage"]
    assert coverage.value.amount == Decimal("12")
    assert coverage.health is HealthStatus.EXCELLENT


def test_free_cash_flow_from_components():
    metric_set = _set({C.OPERATING_CASH_FLOW: "5000", C.CAPITAL_EXPENDITURES: "-1200"})
    assert free_cash_flow(metric_set) == DecimalValue("3800")
    fcf = _ratios(metric_set)["Free Cash Flow"]
    assert fcf.value.amount == Decimal("3800")
    assert fcf.health is HealthStatus.GOOD


def test_reported_free_cash_flow_wins():
    metric_set = _set({
        C.OPERATING_CASH_FLOW: "5000",
        C.CAPITAL_EXPENDITURES: "1200",
        C.FREE_CASH_FLOW: "3700",
    })
    assert free_cash_flow(metric_set) == DecimalValue("3700")


def test_gross_margin_from_cost_of_revenue():
    ratios = _ratios(_set({C.REVENUE: "1000", C.COST_OF_REVENUE: "400"}))
    assert ratios["Gross Margin"].value.amount == Decimal("60")
    assert ratios["Gross Margin"].health is HealthStatus.GOOD


def test_negative_margin_is_warning():
    ratio = _ratios(_set({C.REVENUE: "1000", C.NET_INCOME: "-50"}))["Net Margin"]
    assert ratio.value.amount == Decimal("-5")
    assert ratio.health is HealthStatus.WARNING
    assert ratio.interpretation == "loss-making"


def test_year_over_year_growth():
    metric_set = _set(
        {C.REVENUE: "1100", C.NET_INCOME: "90", C.COST_OF_REVENUE: "500"},
        priors={C.REVENUE: "1000", C.NET_INCOME: "-100", C.COST_OF_REVENUE: "400"},
    )
    growth = {r.name: r for r in compute_ratios(metric_set)
              if r.category is RatioCategory.GROWTH}
    assert growth["revenue YoY Change"].value.amount == Decimal("10")
    assert growth["revenue YoY Change"].health is HealthStatus.GOOD
    # prior loss of 100, now profit of 90: +190% against |prior|
    assert growth["net_income YoY Change"].value.amount == Decimal("190")
    assert growth["cost_of_revenue YoY Change"].health is HealthStatus.NEUTRAL


def test_zero_prior_omits_growth():
    metric_set = _set({C.REVENUE: "1100"}, priors={C.REVENUE: "0"})
    assert not [r for r in compute_ratios(metric_set) if r.category is RatioCategory.GROWTH]


def test_ratios_are_deterministic():
    metric_set = _set({C.REVENUE: "1000", C.NET_INCOME: "200", C.TOTAL_ASSETS: "3000"})
    first = [r.model_dump() for r in compute_ratios(metric_set)]
    second = [r.model_dump() for r in compute_ratios(metric_set)]
    assert first == second


# --- Plausibility ---


def _codes(warnings):
    return [w.code for w in warnings]


def test_clean_metrics_have_no_warnings():
    assert check_plausibility(_set({C.REVENUE: "1000", C.NET_INCOME: "200"})) == []


def test_net_income_exceeding_revenue():
    codes = _codes(check_plausibility(_set({C.REVENUE: "100", C.NET_INCOME: "250"})))
    assert WarningCode.NET_INCOME_EXCEEDS_REVENUE in codes
    assert WarningCode.NET_MARGIN_EXTREME in codes


def test_missing_critical_metrics():
    codes = _codes(check_plausibility(_set({C.TOTAL_ASSETS: "100"})))
    assert codes == [WarningCode.REVENUE_MISSING, WarningCode.NET_INCOME_MISSING]


def test_gross_margin_out_of_range():
    codes = _codes(check_plausibility(_set({
        C.REVENUE: "100", C.NET_INCOME: "10", C.GROSS_PROFIT: "150",
    })))
    assert WarningCode.GROSS_MARGIN_RANGE in codes


def test_low_confidence_critical_metrics():
    warnings = check_plausibility(
        _set({C.REVENUE: "1000", C.NET_INCOME: "200"}, confidence="0.60"),
    )
    assert _codes(warnings) == [WarningCode.LOW_CONFIDENCE, WarningCode.LOW_CONFIDENCE]


def test_implausible_magnitude():
    codes = _codes(check_plausibility(_set({
        C.REVENUE: "50000000000000", C.NET_INCOME: "200",
    })))
    assert WarningCode.IMPLAUSIBLE_MAGNITUDE in codes


# --- Statements ---


def test_metrics_group_by_statement():
    statements = _set({
        C.REVENUE: "1000", C.NET_INCOME: "200", C.TOTAL_ASSETS: "5000",
        C.OPERATING_CASH_FLOW: "300", C.OTHER: "7",
    }).by_statement()
    assert list(statements) == [
        StatementType.INCOME_STATEMENT,
        StatementType.BALANCE_SHEET,
        StatementType.CASH_FLOW_STATEMENT,
    ]
    assert [m.category for m in statements[StatementType.INCOME_STATEMENT]] == [
        C.REVENUE, C.NET_INCOME,
    ]
    assert C.OTHER.statement is None


def test_statement_without_metrics_is_absent():
    statements = _set({C.TOTAL_ASSETS: "5000"}).by_statement()
    assert list(statements) == [StatementType.BALANCE_SHEET]


# --- Trends ---


def _values(*amounts):
    return [DecimalValue(a) for a in amounts]


def test_compound_growth():
    cagr = compound_growth(DecimalValue("100"), DecimalValue("133.1"), 3, name="Revenue")
    assert cagr.name == "Revenue CAGR (3Y)"
    assert cagr.value.amount == Decimal("10.0000")
    assert cagr.formatted_value == "10.00%"
    assert cagr.category is RatioCategory.GROWTH
    assert cagr.health is HealthStatus.GOOD


def test_compound_growth_decline():
    cagr = compound_growth(DecimalValue("400"), DecimalValue("100"), 2)
    assert cagr.name == "CAGR (2Y)"
    assert cagr.value.amount == Decimal("-50")
    assert cagr.health is HealthStatus.WARNING


def test_compound_growth_undefined():
    assert compound_growth(DecimalValue("0"), DecimalValue("100"), 3) is None
    assert compound_growth(DecimalValue("-50"), DecimalValue("100"), 3) is None
    assert compound_growth(DecimalValue("100"), DecimalValue("-5"), 3) is None
    assert compound_growth(DecimalValue("100"), DecimalValue("120"), 0) is None


def test_margin_trend_improving():
    trend = margin_trend(_values("1000", "1000", "1000"), _values("700", "650", "600"))
    assert [m.amount for m in trend.margins] == [Decimal("30"), Decimal("35"), Decimal("40")]
    assert trend.direction is TrendDirection.IMPROVING
    assert trend.period_change.amount == Decimal("10")
    assert trend.volatility.amount == Decimal("5")
    assert trend.interpretation == "Margin is excellent (40.00%) and improving (+10.00pp)"


def test_margin_trend_declining():
    trend = margin_trend(_values("500", "400"), _values("250", "300"))
    assert trend.direction is TrendDirection.DECLINING
    assert trend.interpretation == "Margin is strong (25.00%) but declining (-25.00pp)"


def test_margin_trend_small_change_is_stable():
    trend = margin_trend(_values("1000", "1000"), _values("600", "590"))
    assert trend.direction is TrendDirection.STABLE


def test_margin_trend_needs_two_usable_periods():
    assert margin_trend(_values("1000"), _values("600")) is None
    assert margin_trend(_values("1000", "1000"), _values("600")) is None
    assert margin_trend(_values("0", "1000"), _values("10", "600")) is None


def test_anomaly_severity_by_z_score():
    history = _values("90", "100", "110")
    assert detect_anomaly("Revenue", DecimalValue("105"), history).severity is AnomalySeverity.NONE
    assert detect_anomaly("Revenue", DecimalValue("115"), history).severity is AnomalySeverity.MEDIUM
    assert detect_anomaly("Revenue", DecimalValue("120"), history).severity is AnomalySeverity.HIGH

    check = detect_anomaly("Revenue", DecimalValue("130"), history)
    assert check.is_anomaly
    assert check.severity is AnomalySeverity.CRITICAL
    assert check.historical_mean.amount == Decimal("100")
    assert check.standard_deviation.amount == Decimal("8.1650")
    assert "higher than its historical mean" in check.description


def test_anomaly_below_mean():
    check = detect_anomaly("Net income", DecimalValue("70"), _values("90", "100", "110"))
    assert check.z_score.is_negative()
    assert "lower" in check.description


def test_anomaly_needs_history():
    check = detect_anomaly("Revenue", DecimalValue("500"), _values("100", "110"))
    assert not check.is_anomaly
    assert check.severity is AnomalySeverity.NONE
    assert check.z_score is None


def test_flat_history_is_never_anomalous():
    check = detect_anomaly("Revenue", DecimalValue("500"), _values("100", "100", "100"))
    assert check.severity is AnomalySeverity.NONE
    assert check.z_score.is_zero()
