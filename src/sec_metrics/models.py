"""Pydantic models for extraction inputs and outputs."""

from __future__ import annotations

import re
from decimal import Decimal
from enum import Enum
from typing import Iterator

import pandas as pd
from pydantic import BaseModel, Field

from sec_metrics.decimal_value import DecimalValue, RawNumericToken, UnitScale

__all__ = [
    "CATEGORY_SCHEMA_VERSION",
    "AnomalyCheck",
    "AnomalySeverity",
    "DecimalValue",
    "DerivedRatio",
    "ExtractedMetric",
    "FilingAnalysis",
    "FormatKind",
    "HealthStatus",
    "ManagementDiscussion",
    "MarginTrend",
    "MergeLoser",
    "MetricCategory",
    "MetricSet",
    "ParseDiagnostics",
    "ParseResult",
    "ParseWarning",
    "PeriodType",
    "RatioCategory",
    "RawNumericToken",
    "RiskCategory",
    "RiskFactor",
    "RiskSeverity",
    "SegmentKind",
    "SegmentRevenue",
    "StatementType",
    "TrendDirection",
    "UnitScale",
    "WarningCode",
    "normalize_name",
]


# Bumped whenever MetricCategory gains or loses a member.
CATEGORY_SCHEMA_VERSION = 2


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class MetricCategory(str, Enum):
    REVENUE = "revenue"
    COST_OF_REVENUE = "cost_of_revenue"
    GROSS_PROFIT = "gross_profit"
    OPERATING_INCOME = "operating_income"
    NET_INCOME = "net_income"
    TOTAL_ASSETS = "total_assets"
    CURRENT_ASSETS = "current_assets"
    CASH_AND_EQUIVALENTS = "cash_and_equivalents"
    TOTAL_LIABILITIES = "total_liabilities"
    CURRENT_LIABILITIES = "current_liabilities"
    TOTAL_EQUITY = "total_equity"
    OPERATING_CASH_FLOW = "operating_cash_flow"
    CAPITAL_EXPENDITURES = "capital_expenditures"
    FREE_CASH_FLOW = "free_cash_flow"
    EPS_BASIC = "eps_basic"
    EPS_DILUTED = "eps_diluted"
    SHARES_OUTSTANDING = "shares_outstanding"
    OTHER = "other"
    # schema version 2
    INTEREST_EXPENSE = "interest_expense"
    INVENTORY = "inventory"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    LONG_TERM_DEBT = "long_term_debt"
    RETAINED_EARNINGS = "retained_earnings"
    INVESTING_CASH_FLOW = "investing_cash_flow"
    FINANCING_CASH_FLOW = "financing_cash_flow"

    @property
    def is_per_share(self) -> bool:
        return self in (MetricCategory.EPS_BASIC, MetricCategory.EPS_DILUTED)

    @property
    def statement(self) -> StatementType | None:
        """The primary statement this line item is reported on."""
        return _STATEMENT_OF.get(self)


class StatementType(str, Enum):
    INCOME_STATEMENT = "income_statement"
    BALANCE_SHEET = "balance_sheet"
    CASH_FLOW_STATEMENT = "cash_flow_statement"


_STATEMENT_OF: dict[MetricCategory, StatementType] = {
    **dict.fromkeys((
        MetricCategory.REVENUE, MetricCategory.COST_OF_REVENUE,
        MetricCategory.GROSS_PROFIT, MetricCategory.OPERATING_INCOME,
        MetricCategory.NET_INCOME, MetricCategory.EPS_BASIC,
        MetricCategory.EPS_DILUTED, MetricCategory.INTEREST_EXPENSE,
    ), StatementType.INCOME_STATEMENT),
    **dict.fromkeys((
        MetricCategory.TOTAL_ASSETS, MetricCategory.CURRENT_ASSETS,
        MetricCategory.CASH_AND_EQUIVALENTS, MetricCategory.TOTAL_LIABILITIES,
        MetricCategory.CURRENT_LIABILITIES, MetricCategory.TOTAL_EQUITY,
        MetricCategory.SHARES_OUTSTANDING, MetricCategory.INVENTORY,
        MetricCategory.ACCOUNTS_RECEIVABLE, MetricCategory.LONG_TERM_DEBT,
        MetricCategory.RETAINED_EARNINGS,
    ), StatementType.BALANCE_SHEET),
    **dict.fromkeys((
        MetricCategory.OPERATING_CASH_FLOW, MetricCategory.CAPITAL_EXPENDITURES,
        MetricCategory.FREE_CASH_FLOW, MetricCategory.INVESTING_CASH_FLOW,
        MetricCategory.FINANCING_CASH_FLOW,
    ), StatementType.CASH_FLOW_STATEMENT),
}


class PeriodType(str, Enum):
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    YTD = "ytd"
    TTM = "ttm"


class FormatKind(str, Enum):
    MARKUP = "markup"
    PLAIN_TEXT = "plain_text"
    PDF_TEXT = "pdf_text"


class WarningCode(str, Enum):
    PARSE_ERROR = "parse_error"
    CONTEXT_RESOLUTION = "context_resolution"
    AMBIGUOUS_UNIT = "ambiguous_unit"
    NOT_MARKUP = "not_markup"
    UNSUPPORTED_SCALE = "unsupported_scale"
    DIMENSIONAL_FACT = "dimensional_fact"
    MARKUP_UNBALANCED = "markup_unbalanced"
    FORMAT_HINT_IGNORED = "format_hint_ignored"
    EMPTY_DOCUMENT = "empty_document"
    NO_METRICS = "no_metrics"
    # plausibility checks
    NET_INCOME_EXCEEDS_REVENUE = "net_income_exceeds_revenue"
    GROSS_MARGIN_RANGE = "gross_margin_range"
    REVENUE_MISSING = "revenue_missing"
    NET_INCOME_MISSING = "net_income_missing"
    LOW_CONFIDENCE = "low_confidence"
    IMPLAUSIBLE_MAGNITUDE = "implausible_magnitude"
    NET_MARGIN_EXTREME = "net_margin_extreme"


class RatioCategory(str, Enum):
    PROFITABILITY = "profitability"
    LIQUIDITY = "liquidity"
    SOLVENCY = "solvency"
    EFFICIENCY = "efficiency"
    CASH_FLOW = "cash_flow"
    GROWTH = "growth"


class HealthStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NEUTRAL = "neutral"
    CAUTION = "caution"
    WARNING = "warning"


class SegmentKind(str, Enum):
    GEOGRAPHIC = "geographic"
    PRODUCT = "product"


class RiskCategory(str, Enum):
    MARKET = "market"
    OPERATIONAL = "operational"
    FINANCIAL = "financial"
    REGULATORY = "regulatory"
    COMPETITIVE = "competitive"
    TECHNOLOGY = "technology"
    LEGAL = "legal"
    ENVIRONMENTAL = "environmental"
    GEOPOLITICAL = "geopolitical"
    OTHER = "other"


class RiskSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class AnomalySeverity(str, Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------

class ParseWarning(BaseModel):
    """One recovered problem or data-quality flag."""
    code: WarningCode
    severity: str                # "error" | "warning" | "info"
    message: str
    source_path: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Extracted metrics
# ---------------------------------------------------------------------------

_WS_RE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Case-fold, trim and collapse whitespace: the MetricSet key."""
    return _WS_RE.sub(" ", name).strip().casefold()


class ExtractedMetric(BaseModel):
    name: str
    category: MetricCategory
    value: DecimalValue                      # always fully scaled
    unit_scale_applied: UnitScale = UnitScale.ONE
    period: str | None = None
    period_type: PeriodType | None = None
    source_path: str
    confidence: Decimal = Field(ge=0, le=1)
    context_note: str = ""
    currency: str | None = None
    prior_value: DecimalValue | None = None
    prior_period: str | None = None

    model_config = {"frozen": True}

    @property
    def is_structured(self) -> bool:
        return not self.source_path.startswith("pattern:")


class MergeLoser(BaseModel):
    """A metric discarded by the merge resolver, kept for audit."""
    normalized_name: str
    metric: ExtractedMetric
    winner_source_path: str
    reason: str                  # "structured_precedence" | "document_order"

    model_config = {"frozen": True}


class MetricSet(BaseModel):
    """Deduplicated metrics for one document: one winner per normalized name."""
    winners: dict[str, ExtractedMetric] = Field(default_factory=dict)
    losers: list[MergeLoser] = Field(default_factory=list)

    model_config = {"frozen": True}

    def __len__(self) -> int:
        return len(self.winners)

    def __iter__(self) -> Iterator[ExtractedMetric]:  # type: ignore[override]
        return iter(self.winners.values())

    def __contains__(self, name: str) -> bool:
        return normalize_name(name) in self.winners

    def get(self, name: str) -> ExtractedMetric | None:
        return self.winners.get(normalize_name(name))

    def names(self) -> list[str]:
        return list(self.winners)

    def by_category(self, category: MetricCategory) -> list[ExtractedMetric]:
        return [m for m in self.winners.values() if m.category == category]

    def first(self, category: MetricCategory) -> ExtractedMetric | None:
        """First inserted winner of a category (structured facts go in first)."""
        for metric in self.winners.values():
            if metric.category == category:
                return metric
        return None

    def value_of(self, category: MetricCategory) -> DecimalValue | None:
        metric = self.first(category)
        return metric.value if metric is not None else None

    def by_statement(self) -> dict[StatementType, list[ExtractedMetric]]:
        """Winners grouped into income statement, balance sheet and cash flow.

        Only statements with at least one metric appear; categories without
        a primary statement (OTHER) are left out.
        """
        grouped: dict[StatementType, list[ExtractedMetric]] = {}
        for statement in StatementType:
            members = [m for m in self.winners.values() if m.category.statement is statement]
            if members:
                grouped[statement] = members
        return grouped

    def to_dataframe(self) -> pd.DataFrame:
        """Audit view of winners and losers; values stay Decimal objects."""
        rows = []
        for key, metric in self.winners.items():
            rows.append(_frame_row(key, metric, "winner"))
        for loser in self.losers:
            rows.append(_frame_row(loser.normalized_name, loser.metric, "loser"))
        columns = [
            "key", "status", "name", "category", "value", "period",
            "period_type", "source_path", "confidence",
        ]
        df = pd.DataFrame(rows, columns=columns)
        df["value"] = df["value"].astype(object)
        df["confidence"] = df["confidence"].astype(object)
        return df


def _frame_row(key: str, metric: ExtractedMetric, status: str) -> dict:
    return {
        "key": key,
        "status": status,
        "name": metric.name,
        "category": metric.category.value,
        "value": metric.value.amount,
        "period": metric.period,
        "period_type": metric.period_type.value if metric.period_type else None,
        "source_path": metric.source_path,
        "confidence": metric.confidence,
    }


# ---------------------------------------------------------------------------
# Derived ratios
# ---------------------------------------------------------------------------

class DerivedRatio(BaseModel):
    name: str
    value: DecimalValue
    category: RatioCategory
    unit: str                    # "%" | "x" | "USD"
    interpretation: str
    health: HealthStatus
    formatted_value: str
    description: str = ""

    model_config = {"frozen": True}


class MarginTrend(BaseModel):
    """Gross margin across an ordered series of periods (oldest first)."""
    margins: list[DecimalValue]
    current_margin: DecimalValue
    period_change: DecimalValue              # percentage points, first to last
    direction: TrendDirection
    volatility: DecimalValue                 # mean absolute period-to-period change
    interpretation: str

    model_config = {"frozen": True}


class AnomalyCheck(BaseModel):
    metric_name: str
    is_anomaly: bool
    severity: AnomalySeverity
    description: str
    z_score: DecimalValue | None = None
    historical_mean: DecimalValue | None = None
    standard_deviation: DecimalValue | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Qualitative context
# ---------------------------------------------------------------------------

class SegmentRevenue(BaseModel):
    name: str
    kind: SegmentKind
    value: DecimalValue
    percent_of_total: DecimalValue | None = None
    source_path: str

    model_config = {"frozen": True}


class ManagementDiscussion(BaseModel):
    growth_drivers: list[str] = Field(default_factory=list)
    outlook: list[str] = Field(default_factory=list)
    market_conditions: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.growth_drivers or self.outlook or self.market_conditions)


class RiskFactor(BaseModel):
    """One headline risk from the Risk Factors section."""
    title: str
    summary: str = ""
    category: RiskCategory = RiskCategory.OTHER
    severity: RiskSeverity = RiskSeverity.MEDIUM

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Parse results
# ---------------------------------------------------------------------------

class ParseDiagnostics(BaseModel):
    document_label: str
    format_kind: FormatKind
    table_count: int = 0
    has_structured_tags: bool = False
    has_financial_tables: bool = False
    detected_encoding: str = "utf-8"
    warnings: list[ParseWarning] = Field(default_factory=list)
    structured_fact_count: int = 0
    heuristic_fact_count: int = 0
    document_type: str | None = None
    fiscal_period: str | None = None
    period_type: PeriodType | None = None


class ParseResult(BaseModel):
    metrics: MetricSet
    diagnostics: ParseDiagnostics
    segments: list[SegmentRevenue] = Field(default_factory=list)
    management_discussion: ManagementDiscussion = Field(
        default_factory=ManagementDiscussion,
    )
    risk_factors: list[RiskFactor] = Field(default_factory=list)


class FilingAnalysis(BaseModel):
    """Everything a downstream consumer needs: metrics, ratios, checks."""
    result: ParseResult
    ratios: list[DerivedRatio]
    validation: list[ParseWarning]

    @property
    def metrics(self) -> MetricSet:
        return self.result.metrics

    @property
    def statements(self) -> dict[StatementType, list[ExtractedMetric]]:
        return self.result.metrics.by_statement()
