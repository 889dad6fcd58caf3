"""Derived ratios and plausibility checks over a MetricSet.

Every ratio is computed with DecimalValue arithmetic: exact operands, one
half-up rounding at the division, 4 fractional digits. A ratio whose
operand is missing or whose denominator is zero is simply not produced.

Multi-period helpers (CAGR, margin trend, anomaly z-scores) take values
from several filings, oldest first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal, localcontext
from typing import Callable, Sequence

from sec_metrics.config import Settings, get_config
from sec_metrics.decimal_value import DecimalValue
from sec_metrics.errors import DivisionUndefined
from sec_metrics.models import (
    AnomalyCheck,
    AnomalySeverity,
    DerivedRatio,
    HealthStatus,
    MarginTrend,
    MetricCategory,
    MetricSet,
    ParseWarning,
    RatioCategory,
    TrendDirection,
    WarningCode,
)

log = logging.getLogger(__name__)

C = MetricCategory
Operand = Callable[[MetricSet], "DecimalValue | None"]


# ═══════════════════════════════════════════════════════════════════════════
#  Operands
# ═══════════════════════════════════════════════════════════════════════════

def _metric(category: MetricCategory) -> Operand:
    return lambda ms: ms.value_of(category)


def _gross_profit(ms: MetricSet) -> DecimalValue | None:
    gp = ms.value_of(C.GROSS_PROFIT)
    if gp is not None:
        return gp
    rev, cost = ms.value_of(C.REVENUE), ms.value_of(C.COST_OF_REVENUE)
    if rev is None or cost is None:
        return None
    return rev - abs(cost)


def _quick_assets(ms: MetricSet) -> DecimalValue | None:
    ca, inv = ms.value_of(C.CURRENT_ASSETS), ms.value_of(C.INVENTORY)
    if ca is None or inv is None:
        return None
    return ca - inv


def _working_capital(ms: MetricSet) -> DecimalValue | None:
    ca, cl = ms.value_of(C.CURRENT_ASSETS), ms.value_of(C.CURRENT_LIABILITIES)
    if ca is None or cl is None:
        return None
    return ca - cl


def free_cash_flow(ms: MetricSet) -> DecimalValue | None:
    """Reported free cash flow, else operating cash flow − |capex|."""
    fcf = ms.value_of(C.FREE_CASH_FLOW)
    if fcf is not None:
        return fcf
    ocf, capex = ms.value_of(C.OPERATING_CASH_FLOW), ms.value_of(C.CAPITAL_EXPENDITURES)
    if ocf is None or capex is None:
        return None
    return ocf - abs(capex)


def _abs_of(operand: Operand) -> Operand:
    def _inner(ms: MetricSet) -> DecimalValue | None:
        value = operand(ms)
        return abs(value) if value is not None else None
    return _inner


# ═══════════════════════════════════════════════════════════════════════════
#  Health classification
# ═══════════════════════════════════════════════════════════════════════════

_BANDS = (HealthStatus.WARNING, HealthStatus.CAUTION, HealthStatus.NEUTRAL,
          HealthStatus.GOOD, HealthStatus.EXCELLENT)


def _d(*values: str) -> tuple[Decimal, ...]:
    return tuple(Decimal(v) for v in values)


def higher_is_better(cuts: tuple[Decimal, ...]) -> Callable[[Decimal], HealthStatus]:
    """Ascending cut points: >= cuts[3] excellent ... < cuts[0] warning."""
    def _classify(value: Decimal) -> HealthStatus:
        passed = sum(1 for cut in cuts if value >= cut)
        return _BANDS[passed]
    return _classify


def lower_is_better(cuts: tuple[Decimal, ...]) -> Callable[[Decimal], HealthStatus]:
    """Ascending cut points: <= cuts[0] excellent ... > cuts[3] warning."""
    def _classify(value: Decimal) -> HealthStatus:
        exceeded = sum(1 for cut in cuts if value > cut)
        return _BANDS[len(_BANDS) - 1 - exceeded]
    return _classify


def two_level(caution: str, good: str) -> Callable[[Decimal], HealthStatus]:
    """Caution/good thresholds; excellent at 1.5× good, warning below zero."""
    c, g = Decimal(caution), Decimal(good)
    return higher_is_better((Decimal(0), c, g, g * Decimal("1.5")))


def _by_sign(value: Decimal) -> HealthStatus:
    if value > 0:
        return HealthStatus.GOOD
    if value == 0:
        return HealthStatus.NEUTRAL
    return HealthStatus.WARNING


_INTERPRETATIONS: dict[RatioCategory, dict[HealthStatus, str]] = {
    RatioCategory.PROFITABILITY: {
        HealthStatus.EXCELLENT: "exceptional profitability",
        HealthStatus.GOOD: "high profitability",
        HealthStatus.NEUTRAL: "moderate profitability",
        HealthStatus.CAUTION: "thin profitability",
        HealthStatus.WARNING: "loss-making",
    },
    RatioCategory.LIQUIDITY: {
        HealthStatus.EXCELLENT: "very strong liquidity",
        HealthStatus.GOOD: "healthy liquidity",
        HealthStatus.NEUTRAL: "adequate liquidity",
        HealthStatus.CAUTION: "tight liquidity",
        HealthStatus.WARNING: "potential liquidity issue",
    },
    RatioCategory.SOLVENCY: {
        HealthStatus.EXCELLENT: "very conservative leverage",
        HealthStatus.GOOD: "healthy leverage",
        HealthStatus.NEUTRAL: "moderate leverage",
        HealthStatus.CAUTION: "elevated leverage",
        HealthStatus.WARNING: "high leverage",
    },
    RatioCategory.EFFICIENCY: {
        HealthStatus.EXCELLENT: "highly efficient",
        HealthStatus.GOOD: "efficient",
        HealthStatus.NEUTRAL: "average efficiency",
        HealthStatus.CAUTION: "inefficient",
        HealthStatus.WARNING: "very inefficient",
    },
    RatioCategory.CASH_FLOW: {
        HealthStatus.EXCELLENT: "strong cash generation",
        HealthStatus.GOOD: "positive cash generation",
        HealthStatus.NEUTRAL: "break-even cash flow",
        HealthStatus.CAUTION: "weak cash generation",
        HealthStatus.WARNING: "cash burn",
    },
    RatioCategory.GROWTH: {
        HealthStatus.EXCELLENT: "strong growth",
        HealthStatus.GOOD: "growth",
        HealthStatus.NEUTRAL: "flat",
        HealthStatus.CAUTION: "decline",
        HealthStatus.WARNING: "sharp decline",
    },
}


# ═══════════════════════════════════════════════════════════════════════════
#  Ratio definitions
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RatioDefinition:
    name: str
    category: RatioCategory
    numerator: Operand
    denominator: Operand | None
    classify: Callable[[Decimal], HealthStatus]
    unit: str = "%"              # "%" | "x" | "USD"
    description: str = ""

    @property
    def multiplier(self) -> int:
        return 100 if self.unit == "%" else 1


RATIO_DEFINITIONS: tuple[RatioDefinition, ...] = (
    # Profitability
    RatioDefinition("Gross Margin", RatioCategory.PROFITABILITY,
                    _gross_profit, _metric(C.REVENUE), two_level("30", "50"),
                    description="Gross profit as % of revenue"),
    RatioDefinition("Operating Margin", RatioCategory.PROFITABILITY,
                    _metric(C.OPERATING_INCOME), _metric(C.REVENUE), two_level("10", "20"),
                    description="Operating income as % of revenue"),
    RatioDefinition("Net Margin", RatioCategory.PROFITABILITY,
                    _metric(C.NET_INCOME), _metric(C.REVENUE), two_level("5", "15"),
                    description="Net income as % of revenue"),
    RatioDefinition("Return on Assets", RatioCategory.PROFITABILITY,
                    _metric(C.NET_INCOME), _metric(C.TOTAL_ASSETS), two_level("2", "8"),
                    description="Net income / total assets"),
    RatioDefinition("Return on Equity", RatioCategory.PROFITABILITY,
                    _metric(C.NET_INCOME), _metric(C.TOTAL_EQUITY), two_level("10", "20"),
                    description="Net income / total equity"),
    # Liquidity
    RatioDefinition("Current Ratio", RatioCategory.LIQUIDITY,
                    _metric(C.CURRENT_ASSETS), _metric(C.CURRENT_LIABILITIES),
                    two_level("1.0", "2.0"), unit="x",
                    description="Current assets / current liabilities"),
    RatioDefinition("Quick Ratio", RatioCategory.LIQUIDITY,
                    _quick_assets, _metric(C.CURRENT_LIABILITIES),
                    two_level("0.8", "1.5"), unit="x",
                    description="(Current assets − inventory) / current liabilities"),
    RatioDefinition("Cash Ratio", RatioCategory.LIQUIDITY,
                    _metric(C.CASH_AND_EQUIVALENTS), _metric(C.CURRENT_LIABILITIES),
                    two_level("0.2", "0.5"), unit="x",
                    description="Cash and equivalents / current liabilities"),
    RatioDefinition("Working Capital", RatioCategory.LIQUIDITY,
                    _working_capital, None, _by_sign, unit="USD",
                    description="Current assets − current liabilities"),
    # Solvency
    RatioDefinition("Debt-to-Equity", RatioCategory.SOLVENCY,
                    _metric(C.TOTAL_LIABILITIES), _metric(C.TOTAL_EQUITY),
                    lower_is_better(_d("50", "100", "200", "300")),
                    description="Total liabilities as % of total equity"),
    RatioDefinition("Debt Ratio", RatioCategory.SOLVENCY,
                    _metric(C.TOTAL_LIABILITIES), _metric(C.TOTAL_ASSETS),
                    lower_is_better(_d("30", "50", "70", "85")),
                    description="Total liabilities as % of total assets"),
    RatioDefinition("Equity Ratio", RatioCategory.SOLVENCY,
                    _metric(C.TOTAL_EQUITY), _metric(C.TOTAL_ASSETS), two_level("30", "50"),
                    description="Total equity as % of total assets"),
    RatioDefinition("Interest Coverage", RatioCategory.SOLVENCY,
                    _metric(C.OPERATING_INCOME), _abs_of(_metric(C.INTEREST_EXPENSE)),
                    higher_is_better(_d("1.5", "2.5", "5", "10")), unit="x",
                    description="Operating income / interest expense"),
    # Efficiency
    RatioDefinition("Asset Turnover", RatioCategory.EFFICIENCY,
                    _metric(C.REVENUE), _metric(C.TOTAL_ASSETS), two_level("0.5", "1.5"),
                    unit="x", description="Revenue / total assets"),
    RatioDefinition("Receivables Turnover", RatioCategory.EFFICIENCY,
                    _metric(C.REVENUE), _metric(C.ACCOUNTS_RECEIVABLE), two_level("4", "8"),
                    unit="x", description="Revenue / accounts receivable"),
    RatioDefinition("Inventory Turnover", RatioCategory.EFFICIENCY,
                    _abs_of(_metric(C.COST_OF_REVENUE)), _metric(C.INVENTORY),
                    two_level("3", "7"), unit="x",
                    description="Cost of revenue / inventory"),
    # Cash flow
    RatioDefinition("Free Cash Flow", RatioCategory.CASH_FLOW,
                    free_cash_flow, None, _by_sign, unit="USD",
                    description="Operating cash flow − capital expenditures"),
    RatioDefinition("Operating Cash Flow Margin", RatioCategory.CASH_FLOW,
                    _metric(C.OPERATING_CASH_FLOW), _metric(C.REVENUE), two_level("5", "15"),
                    description="Operating cash flow as % of revenue"),
)

# Categories where a rise is not good news on its own.
_COST_CATEGORIES = frozenset([
    C.COST_OF_REVENUE, C.TOTAL_LIABILITIES, C.CURRENT_LIABILITIES,
    C.INTEREST_EXPENSE, C.LONG_TERM_DEBT, C.CAPITAL_EXPENDITURES,
])
_GROWTH_HEALTH = higher_is_better(_d("-10", "0", "5", "20"))


# ═══════════════════════════════════════════════════════════════════════════
#  Computation
# ═══════════════════════════════════════════════════════════════════════════

def _format(value: DecimalValue, unit: str, config: Settings) -> str:
    if unit == "USD":
        return value.format_compact()
    if unit == "x":
        return f"{value.format_fixed(config.display_precision)}x"
    return f"{value.format_fixed(config.display_precision)}%"


def _evaluate(
    definition: RatioDefinition,
    metric_set: MetricSet,
    config: Settings,
) -> DerivedRatio | None:
    numerator = definition.numerator(metric_set)
    if numerator is None:
        return None
    if definition.denominator is None:
        value = numerator.round(config.ratio_precision)
    else:
        denominator = definition.denominator(metric_set)
        if denominator is None:
            return None
        try:
            value = numerator.multiply(definition.multiplier).divide(
                denominator, config.ratio_precision,
            )
        except DivisionUndefined:
            log.debug("%s omitted: zero denominator", definition.name)
            return None

    health = definition.classify(value.amount)
    return DerivedRatio(
        name=definition.name,
        value=value,
        category=definition.category,
        unit=definition.unit,
        interpretation=_INTERPRETATIONS[definition.category][health],
        health=health,
        formatted_value=_format(value, definition.unit, config),
        description=definition.description,
    )


def growth_ratios(metric_set: MetricSet, *, config: Settings | None = None) -> list[DerivedRatio]:
    """Year-over-year change for every metric that carries a prior value."""
    config = config or get_config()
    ratios: list[DerivedRatio] = []
    for metric in metric_set:
        prior = metric.prior_value
        if prior is None:
            continue
        try:
            value = metric.value.subtract(prior).multiply(100).divide(
                abs(prior), config.ratio_precision,
            )
        except DivisionUndefined:
            log.debug("%s YoY omitted: prior value is zero", metric.name)
            continue
        if metric.category in _COST_CATEGORIES:
            health = HealthStatus.NEUTRAL
            interpretation = "increased" if value.amount > 0 else "decreased or flat"
        else:
            health = _GROWTH_HEALTH(value.amount)
            interpretation = _INTERPRETATIONS[RatioCategory.GROWTH][health]
        since = f" vs {metric.prior_period}" if metric.prior_period else ""
        ratios.append(DerivedRatio(
            name=f"{metric.name} YoY Change",
            value=value,
            category=RatioCategory.GROWTH,
            unit="%",
            interpretation=interpretation,
            health=health,
            formatted_value=_format(value, "%", config),
            description=f"Change in {metric.name}{since}",
        ))
    return ratios


def compute_ratios(
    metric_set: MetricSet,
    *,
    config: Settings | None = None,
) -> list[DerivedRatio]:
    """Derive every ratio whose operands are present, then YoY deltas."""
    config = config or get_config()
    ratios = [
        ratio for ratio in (_evaluate(d, metric_set, config) for d in RATIO_DEFINITIONS)
        if ratio is not None
    ]
    ratios.extend(growth_ratios(metric_set, config=config))
    log.debug("Computed %d ratios from %d metrics", len(ratios), len(metric_set))
    return ratios


# ═══════════════════════════════════════════════════════════════════════════
#  Multi-period trends
# ═══════════════════════════════════════════════════════════════════════════

# Roots and square roots are irrational: compute generously, round once.
_IRRATIONAL = Context(prec=34, rounding=ROUND_HALF_UP)

_CAGR_HEALTH = higher_is_better(_d("-5", "0", "5", "15"))
_MARGIN_SHIFT = Decimal("2")          # percentage points
_MARGIN_LEVELS = (
    (Decimal("30"), "excellent"),
    (Decimal("20"), "strong"),
    (Decimal("10"), "moderate"),
    (Decimal("5"), "weak"),
)
_ANOMALY_CUTS = (
    (Decimal("3"), AnomalySeverity.CRITICAL),
    (Decimal("2"), AnomalySeverity.HIGH),
    (Decimal("1.5"), AnomalySeverity.MEDIUM),
)


def compound_growth(
    begin: DecimalValue,
    end: DecimalValue,
    years: int,
    *,
    name: str = "",
    config: Settings | None = None,
) -> DerivedRatio | None:
    """Compound annual growth rate from ``begin`` to ``end`` over ``years``.

    Undefined (None) unless the starting value is positive, the end value
    is not negative and at least one year separates them.
    """
    config = config or get_config()
    if years <= 0 or begin.amount <= 0 or end.amount < 0:
        return None
    with localcontext(_IRRATIONAL):
        factor = (end.amount / begin.amount) ** (Decimal(1) / years)
        rate = (factor - 1) * 100
    value = DecimalValue(rate).round(config.ratio_precision)
    health = _CAGR_HEALTH(value.amount)
    label = f"{name} CAGR" if name else "CAGR"
    return DerivedRatio(
        name=f"{label} ({years}Y)",
        value=value,
        category=RatioCategory.GROWTH,
        unit="%",
        interpretation=_INTERPRETATIONS[RatioCategory.GROWTH][health],
        health=health,
        formatted_value=_format(value, "%", config),
        description=f"Compound annual growth over {years} years",
    )


def margin_trend(
    revenues: Sequence[DecimalValue],
    costs: Sequence[DecimalValue],
    *,
    config: Settings | None = None,
) -> MarginTrend | None:
    """Gross margin per period (oldest first) and where it is heading.

    Periods with non-positive revenue are skipped; fewer than two usable
    periods gives None.
    """
    config = config or get_config()
    if len(revenues) != len(costs) or len(revenues) < 2:
        return None
    zero = DecimalValue.zero()
    margins = [
        rev.subtract(abs(cost)).multiply(100).divide(rev, config.ratio_precision)
        for rev, cost in zip(revenues, costs)
        if rev > zero
    ]
    if len(margins) < 2:
        return None

    current = margins[-1]
    change = current - margins[0]
    if change.amount > _MARGIN_SHIFT:
        direction = TrendDirection.IMPROVING
    elif change.amount < -_MARGIN_SHIFT:
        direction = TrendDirection.DECLINING
    else:
        direction = TrendDirection.STABLE

    steps = [abs(b - a) for a, b in zip(margins, margins[1:])]
    volatility = sum(steps, zero).divide(DecimalValue(len(steps)), config.ratio_precision)

    level = next((word for cut, word in _MARGIN_LEVELS if current.amount > cut), "concerning")
    joiner = {
        TrendDirection.IMPROVING: "and improving",
        TrendDirection.DECLINING: "but declining",
        TrendDirection.STABLE: "and stable",
    }[direction]
    sign = "+" if change >= zero else ""
    places = config.display_precision
    return MarginTrend(
        margins=margins,
        current_margin=current,
        period_change=change,
        direction=direction,
        volatility=volatility,
        interpretation=(
            f"Margin is {level} ({current.format_fixed(places)}%) {joiner} "
            f"({sign}{change.format_fixed(places)}pp)"
        ),
    )


def detect_anomaly(
    metric_name: str,
    current: DecimalValue,
    history: Sequence[DecimalValue],
    *,
    config: Settings | None = None,
) -> AnomalyCheck:
    """Z-score of ``current`` against the population of ``history``."""
    config = config or get_config()
    if len(history) < 3:
        return AnomalyCheck(
            metric_name=metric_name,
            is_anomaly=False,
            severity=AnomalySeverity.NONE,
            description="Insufficient historical data for anomaly detection",
        )

    places = config.ratio_precision
    count = DecimalValue(len(history))
    zero = DecimalValue.zero()
    mean = sum(history, zero).divide(count, places)
    variance = sum(((v - mean) * (v - mean) for v in history), zero).divide(count, places)
    with localcontext(_IRRATIONAL):
        root = variance.amount.sqrt()
    std_dev = DecimalValue(root).round(places)

    if std_dev.is_zero():
        z_score = DecimalValue.zero()
    else:
        z_score = current.subtract(mean).divide(std_dev, places)
    severity = next(
        (sev for cut, sev in _ANOMALY_CUTS if abs(z_score.amount) > cut),
        AnomalySeverity.NONE,
    )

    is_anomaly = severity is not AnomalySeverity.NONE
    if is_anomaly:
        direction = "higher" if z_score > zero else "lower"
        description = (
            f"{metric_name} is {abs(z_score).format_fixed(2)} standard deviations "
            f"{direction} than its historical mean ({mean.format_fixed(2)})"
        )
        log.debug("Anomaly in %s: z=%s", metric_name, z_score)
    else:
        description = f"{metric_name} is within its normal range"
    return AnomalyCheck(
        metric_name=metric_name,
        is_anomaly=is_anomaly,
        severity=severity,
        description=description,
        z_score=z_score,
        historical_mean=mean,
        standard_deviation=std_dev,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Plausibility
# ═══════════════════════════════════════════════════════════════════════════

_CRITICAL = ((C.REVENUE, "Revenue"), (C.NET_INCOME, "Net income"))


def check_plausibility(
    metric_set: MetricSet,
    *,
    config: Settings | None = None,
) -> list[ParseWarning]:
    """Flag data-quality problems in extracted metrics."""
    config = config or get_config()
    warnings: list[ParseWarning] = []
    rev = metric_set.value_of(C.REVENUE)
    ni = metric_set.value_of(C.NET_INCOME)
    gp = _gross_profit(metric_set)
    zero = DecimalValue.zero()

    # Rule 1: net income should not exceed revenue for profitable companies
    if rev is not None and ni is not None and rev > zero and ni > zero and ni > rev:
        warnings.append(ParseWarning(
            code=WarningCode.NET_INCOME_EXCEEDS_REVENUE,
            severity="error",
            message=(
                f"Net income ({ni.format_compact()}) exceeds revenue "
                f"({rev.format_compact()}). Revenue may be a segment, not the total."
            ),
        ))

    # Rule 2: gross margin within 0-100%
    if gp is not None and rev is not None and rev > zero:
        gm = gp.multiply(100).divide(rev, config.display_precision)
        if gm < zero or gm.amount > 100:
            warnings.append(ParseWarning(
                code=WarningCode.GROSS_MARGIN_RANGE,
                severity="warning",
                message=f"Gross margin {gm}% outside 0-100% range.",
            ))

    # Rules 3-4: critical metrics missing
    if rev is None:
        warnings.append(ParseWarning(
            code=WarningCode.REVENUE_MISSING,
            severity="warning",
            message="Could not resolve total revenue.",
        ))
    if ni is None:
        warnings.append(ParseWarning(
            code=WarningCode.NET_INCOME_MISSING,
            severity="warning",
            message="Could not resolve net income.",
        ))

    # Rule 5: low confidence on critical metrics
    for category, label in _CRITICAL:
        metric = metric_set.first(category)
        if metric is not None and metric.confidence < config.low_confidence_threshold:
            warnings.append(ParseWarning(
                code=WarningCode.LOW_CONFIDENCE,
                severity="warning",
                message=(
                    f"{label} resolved with low confidence ({metric.confidence}). "
                    f"Value may be unreliable."
                ),
                source_path=metric.source_path,
            ))

    # Rule 6: magnitudes beyond any real filer
    for metric in metric_set:
        if metric.category is C.SHARES_OUTSTANDING:
            continue
        if abs(metric.value.amount) > config.max_plausible_amount:
            warnings.append(ParseWarning(
                code=WarningCode.IMPLAUSIBLE_MAGNITUDE,
                severity="warning",
                message=(
                    f"{metric.name} is {metric.value.format_compact()}; "
                    f"check the unit scale."
                ),
                source_path=metric.source_path,
            ))

    # Rule 7: net margin beyond ±100%
    if rev is not None and ni is not None and rev > zero:
        margin = ni.multiply(100).divide(rev, 0)
        if abs(margin.amount) > 100:
            warnings.append(ParseWarning(
                code=WarningCode.NET_MARGIN_EXTREME,
                severity="warning",
                message=(
                    f"Net margin is {margin}%, outside normal range. Verify revenue "
                    f"({rev.format_compact()}) and net income ({ni.format_compact()})."
                ),
            ))

    return warnings
