"""Closed lookup tables: XBRL concepts, line-item labels, unit phrases.

Three tables drive extraction:
  Table 1: Concept map      (XBRL concept → MetricCategory), structured path
  Table 2: Label rules      (ordered regex → MetricCategory), heuristic path
  Table 3: Vocabulary       (table keywords, unit phrases, segment names)

Everything here is built once at import time and never mutated. Tuples
and ``MappingProxyType`` keep it that way; pipeline functions receive
these objects by reference.

Unmapped concepts are deliberately skipped rather than emitted as
``other``: a short, trusted list beats a long noisy one.
"""

from __future__ import annotations

import re
from decimal import Decimal
from types import MappingProxyType
from typing import NamedTuple

from sec_metrics.models import MetricCategory, SegmentKind


# ═══════════════════════════════════════════════════════════════════════════
#  Canonical names
# ═══════════════════════════════════════════════════════════════════════════

CATEGORY_LABELS: MappingProxyType[MetricCategory, str] = MappingProxyType({
    MetricCategory.REVENUE: "Revenue",
    MetricCategory.COST_OF_REVENUE: "Cost of Revenue",
    MetricCategory.GROSS_PROFIT: "Gross Profit",
    MetricCategory.OPERATING_INCOME: "Operating Income",
    MetricCategory.NET_INCOME: "Net Income",
    MetricCategory.TOTAL_ASSETS: "Total Assets",
    MetricCategory.CURRENT_ASSETS: "Current Assets",
    MetricCategory.CASH_AND_EQUIVALENTS: "Cash and Cash Equivalents",
    MetricCategory.TOTAL_LIABILITIES: "Total Liabilities",
    MetricCategory.CURRENT_LIABILITIES: "Current Liabilities",
    MetricCategory.TOTAL_EQUITY: "Total Equity",
    MetricCategory.OPERATING_CASH_FLOW: "Operating Cash Flow",
    MetricCategory.CAPITAL_EXPENDITURES: "Capital Expenditures",
    MetricCategory.FREE_CASH_FLOW: "Free Cash Flow",
    MetricCategory.EPS_BASIC: "EPS (Basic)",
    MetricCategory.EPS_DILUTED: "EPS (Diluted)",
    MetricCategory.SHARES_OUTSTANDING: "Shares Outstanding",
    MetricCategory.OTHER: "Other",
    MetricCategory.INTEREST_EXPENSE: "Interest Expense",
    MetricCategory.INVENTORY: "Inventory",
    MetricCategory.ACCOUNTS_RECEIVABLE: "Accounts Receivable",
    MetricCategory.LONG_TERM_DEBT: "Long-Term Debt",
    MetricCategory.RETAINED_EARNINGS: "Retained Earnings",
    MetricCategory.INVESTING_CASH_FLOW: "Investing Cash Flow",
    MetricCategory.FINANCING_CASH_FLOW: "Financing Cash Flow",
})


# ═══════════════════════════════════════════════════════════════════════════
#  Table 1: XBRL concepts (us-gaap / ifrs-full / dei local names)
# ═══════════════════════════════════════════════════════════════════════════

class ConceptEntry(NamedTuple):
    xbrl_concept: str       # tag name without namespace prefix
    display_name: str       # human label, used in context notes


REVENUE: tuple[ConceptEntry, ...] = (
    ConceptEntry("Revenues", "Total Revenue"),
    ConceptEntry("Revenue", "Revenue"),
    ConceptEntry("SalesRevenueNet", "Net Sales Revenue"),
    ConceptEntry("RevenueFromContractWithCustomerExcludingAssessedTax",
                 "Revenue from Contract with Customer"),
    ConceptEntry("RevenueFromContractWithCustomerIncludingAssessedTax",
                 "Revenue from Contract with Customer (incl. tax)"),
    ConceptEntry("TotalRevenues", "Total Revenues"),
    ConceptEntry("NetRevenues", "Net Revenues"),
    ConceptEntry("OperatingRevenue", "Operating Revenue"),
    # IFRS
    ConceptEntry("RevenueFromContractsWithCustomers", "IFRS Revenue"),
)

COST_OF_REVENUE: tuple[ConceptEntry, ...] = (
    ConceptEntry("CostOfRevenue", "Cost of Revenue"),
    ConceptEntry("CostOfGoodsAndServicesSold", "Cost of Goods and Services Sold"),
    ConceptEntry("CostOfGoodsSold", "Cost of Goods Sold"),
    ConceptEntry("CostOfSales", "IFRS Cost of Sales"),
)

GROSS_PROFIT: tuple[ConceptEntry, ...] = (
    ConceptEntry("GrossProfit", "Gross Profit"),
)

OPERATING_INCOME: tuple[ConceptEntry, ...] = (
    ConceptEntry("OperatingIncomeLoss", "Operating Income (Loss)"),
    ConceptEntry("ProfitLossFromOperatingActivities", "IFRS Operating Profit"),
)

NET_INCOME: tuple[ConceptEntry, ...] = (
    ConceptEntry("NetIncomeLoss", "Net Income (Loss)"),
    ConceptEntry("ProfitLoss", "Profit (Loss)"),
    ConceptEntry("NetIncomeLossAvailableToCommonStockholdersBasic",
                 "Net Income Available to Common (Basic)"),
    ConceptEntry("ProfitLossAttributableToOwnersOfParent",
                 "IFRS Profit Attributable to Parent"),
)

INTEREST_EXPENSE: tuple[ConceptEntry, ...] = (
    ConceptEntry("InterestExpense", "Interest Expense"),
    ConceptEntry("InterestExpenseDebt", "Interest Expense on Debt"),
    ConceptEntry("InterestExpenseNonoperating", "Nonoperating Interest Expense"),
)

TOTAL_ASSETS: tuple[ConceptEntry, ...] = (
    ConceptEntry("Assets", "Total Assets"),
)

CURRENT_ASSETS: tuple[ConceptEntry, ...] = (
    ConceptEntry("AssetsCurrent", "Current Assets"),
    ConceptEntry("CurrentAssets", "IFRS Current Assets"),
)

CASH_AND_EQUIVALENTS: tuple[ConceptEntry, ...] = (
    ConceptEntry("CashAndCashEquivalentsAtCarryingValue", "Cash and Cash Equivalents"),
    ConceptEntry("CashAndCashEquivalents", "IFRS Cash and Equivalents"),
    ConceptEntry("Cash", "Cash"),
)

INVENTORY: tuple[ConceptEntry, ...] = (
    ConceptEntry("InventoryNet", "Inventory, Net"),
    ConceptEntry("Inventories", "IFRS Inventories"),
)

ACCOUNTS_RECEIVABLE: tuple[ConceptEntry, ...] = (
    ConceptEntry("AccountsReceivableNetCurrent", "Accounts Receivable, Net"),
    ConceptEntry("TradeAndOtherCurrentReceivables", "IFRS Trade Receivables"),
)

TOTAL_LIABILITIES: tuple[ConceptEntry, ...] = (
    ConceptEntry("Liabilities", "Total Liabilities"),
)

CURRENT_LIABILITIES: tuple[ConceptEntry, ...] = (
    ConceptEntry("LiabilitiesCurrent", "Current Liabilities"),
    ConceptEntry("CurrentLiabilities", "IFRS Current Liabilities"),
)

LONG_TERM_DEBT: tuple[ConceptEntry, ...] = (
    ConceptEntry("LongTermDebtNoncurrent", "Long-Term Debt (Noncurrent)"),
    ConceptEntry("LongTermDebt", "Long-Term Debt"),
    ConceptEntry("NoncurrentPortionOfNoncurrentBorrowings", "IFRS Long-Term Borrowings"),
)

TOTAL_EQUITY: tuple[ConceptEntry, ...] = (
    ConceptEntry("StockholdersEquity", "Stockholders' Equity"),
    ConceptEntry("StockholdersEquityIncludingPortionAttributableToNoncontrollingInterest",
                 "Total Equity (incl. NCI)"),
    ConceptEntry("EquityAttributableToOwnersOfParent", "IFRS Equity Attributable to Parent"),
)

RETAINED_EARNINGS: tuple[ConceptEntry, ...] = (
    ConceptEntry("RetainedEarningsAccumulatedDeficit", "Retained Earnings (Deficit)"),
    ConceptEntry("RetainedEarnings", "IFRS Retained Earnings"),
)

OPERATING_CASH_FLOW: tuple[ConceptEntry, ...] = (
    ConceptEntry("NetCashProvidedByUsedInOperatingActivities", "Operating Cash Flow"),
    ConceptEntry("NetCashProvidedByOperatingActivities", "Operating Cash Flow (alt)"),
    ConceptEntry("CashFlowsFromUsedInOperatingActivities", "IFRS Operating Cash Flow"),
)

INVESTING_CASH_FLOW: tuple[ConceptEntry, ...] = (
    ConceptEntry("NetCashProvidedByUsedInInvestingActivities", "Investing Cash Flow"),
    ConceptEntry("CashFlowsFromUsedInInvestingActivities", "IFRS Investing Cash Flow"),
)

FINANCING_CASH_FLOW: tuple[ConceptEntry, ...] = (
    ConceptEntry("NetCashProvidedByUsedInFinancingActivities", "Financing Cash Flow"),
    ConceptEntry("CashFlowsFromUsedInFinancingActivities", "IFRS Financing Cash Flow"),
)

CAPITAL_EXPENDITURES: tuple[ConceptEntry, ...] = (
    ConceptEntry("PaymentsToAcquirePropertyPlantAndEquipment", "Capital Expenditures"),
    ConceptEntry("PaymentsToAcquireProductiveAssets", "Payments to Acquire Assets"),
    ConceptEntry("PurchaseOfPropertyPlantAndEquipmentClassifiedAsInvestingActivities",
                 "IFRS CapEx"),
)

EPS_BASIC: tuple[ConceptEntry, ...] = (
    ConceptEntry("EarningsPerShareBasic", "EPS (Basic)"),
    ConceptEntry("BasicEarningsLossPerShare", "IFRS EPS (Basic)"),
)

EPS_DILUTED: tuple[ConceptEntry, ...] = (
    ConceptEntry("EarningsPerShareDiluted", "EPS (Diluted)"),
    ConceptEntry("DilutedEarningsLossPerShare", "IFRS EPS (Diluted)"),
)

SHARES_OUTSTANDING: tuple[ConceptEntry, ...] = (
    ConceptEntry("EntityCommonStockSharesOutstanding", "Common Shares Outstanding (cover)"),
    ConceptEntry("CommonStockSharesOutstanding", "Common Shares Outstanding"),
)


CONCEPT_MAP: MappingProxyType[MetricCategory, tuple[ConceptEntry, ...]] = MappingProxyType({
    MetricCategory.REVENUE: REVENUE,
    MetricCategory.COST_OF_REVENUE: COST_OF_REVENUE,
    MetricCategory.GROSS_PROFIT: GROSS_PROFIT,
    MetricCategory.OPERATING_INCOME: OPERATING_INCOME,
    MetricCategory.NET_INCOME: NET_INCOME,
    MetricCategory.INTEREST_EXPENSE: INTEREST_EXPENSE,
    MetricCategory.TOTAL_ASSETS: TOTAL_ASSETS,
    MetricCategory.CURRENT_ASSETS: CURRENT_ASSETS,
    MetricCategory.CASH_AND_EQUIVALENTS: CASH_AND_EQUIVALENTS,
    MetricCategory.INVENTORY: INVENTORY,
    MetricCategory.ACCOUNTS_RECEIVABLE: ACCOUNTS_RECEIVABLE,
    MetricCategory.TOTAL_LIABILITIES: TOTAL_LIABILITIES,
    MetricCategory.CURRENT_LIABILITIES: CURRENT_LIABILITIES,
    MetricCategory.LONG_TERM_DEBT: LONG_TERM_DEBT,
    MetricCategory.TOTAL_EQUITY: TOTAL_EQUITY,
    MetricCategory.RETAINED_EARNINGS: RETAINED_EARNINGS,
    MetricCategory.OPERATING_CASH_FLOW: OPERATING_CASH_FLOW,
    MetricCategory.INVESTING_CASH_FLOW: INVESTING_CASH_FLOW,
    MetricCategory.FINANCING_CASH_FLOW: FINANCING_CASH_FLOW,
    MetricCategory.CAPITAL_EXPENDITURES: CAPITAL_EXPENDITURES,
    MetricCategory.EPS_BASIC: EPS_BASIC,
    MetricCategory.EPS_DILUTED: EPS_DILUTED,
    MetricCategory.SHARES_OUTSTANDING: SHARES_OUTSTANDING,
})


def _build_concept_index() -> MappingProxyType[str, tuple[MetricCategory, ConceptEntry]]:
    index: dict[str, tuple[MetricCategory, ConceptEntry]] = {}
    for category, entries in CONCEPT_MAP.items():
        for entry in entries:
            index.setdefault(entry.xbrl_concept.lower(), (category, entry))
    return MappingProxyType(index)


# lowercased local concept name → (category, entry)
CONCEPT_INDEX = _build_concept_index()


def lookup_concept(concept: str) -> tuple[MetricCategory, ConceptEntry] | None:
    """Resolve ``us-gaap:Revenues`` (or a bare ``Revenues``) to its category."""
    local = concept.rsplit(":", 1)[-1].strip().lower()
    return CONCEPT_INDEX.get(local)


# ═══════════════════════════════════════════════════════════════════════════
#  Table 2: Heuristic label rules, most specific first
# ═══════════════════════════════════════════════════════════════════════════

class LabelRule(NamedTuple):
    label: str                  # canonical label; becomes name and "pattern:<label>"
    pattern: re.Pattern[str]
    category: MetricCategory
    confidence: Decimal
    generic: bool = False       # generic labels get the lower confidence band


def _rule(
    label: str,
    pattern: str,
    category: MetricCategory,
    confidence: str,
    generic: bool = False,
) -> LabelRule:
    compiled = re.compile(r"(?<!\w)(?:" + pattern + r")(?!\w)", re.IGNORECASE)
    return LabelRule(label, compiled, category, Decimal(confidence), generic)


_APOS = "[’']?"
_SHARE = r"per\s+(?:common\s+)?share"

LABEL_RULES: tuple[LabelRule, ...] = (
    # Per-share lines mention "net income", so they go first.
    _rule("Diluted EPS",
          r"diluted\s+(?:net\s+)?(?:earnings|income|loss)(?:\s*\(loss\))?\s+" + _SHARE
          + r"|(?:earnings|net\s+income|income)\s+" + _SHARE + r"\s*[-–—:,]?\s*diluted"
          + r"|diluted\s+eps",
          MetricCategory.EPS_DILUTED, "0.80"),
    _rule("Basic EPS",
          r"basic\s+(?:net\s+)?(?:earnings|income|loss)(?:\s*\(loss\))?\s+" + _SHARE
          + r"|(?:earnings|net\s+income|income)\s+" + _SHARE + r"\s*[-–—:,]?\s*basic"
          + r"|basic\s+eps",
          MetricCategory.EPS_BASIC, "0.80"),
    # Cash-flow subtotals mention "operating"/"investing" before the income lines.
    _rule("Net Cash from Operating Activities",
          r"net\s+cash\s+(?:provided\s+by|generated\s+(?:by|from)|from)"
          r"(?:\s*\(used\s+(?:in|for)\))?\s+operating\s+activities"
          r"|cash\s+flows?\s+from\s+operating\s+activities|operating\s+cash\s+flows?",
          MetricCategory.OPERATING_CASH_FLOW, "0.80"),
    _rule("Net Cash from Investing Activities",
          r"net\s+cash\s+(?:provided\s+by\s*)?\(?(?:used\s+(?:in|for)|provided\s+by)\)?"
          r"\s+investing\s+activities",
          MetricCategory.INVESTING_CASH_FLOW, "0.75"),
    _rule("Net Cash from Financing Activities",
          r"net\s+cash\s+(?:provided\s+by\s*)?\(?(?:used\s+(?:in|for)|provided\s+by)\)?"
          r"\s+financing\s+activities",
          MetricCategory.FINANCING_CASH_FLOW, "0.75"),
    _rule("Free Cash Flow", r"free\s+cash\s+flows?", MetricCategory.FREE_CASH_FLOW, "0.70"),
    _rule("Capital Expenditures",
          r"capital\s+expenditures"
          r"|(?:purchases?|payments\s+for\s+(?:the\s+)?(?:acquisition|purchase)s?)\s+of\s+"
          r"property,?\s+(?:plant\s*,?\s+)?and\s+equipment",
          MetricCategory.CAPITAL_EXPENDITURES, "0.75"),
    _rule("Cost of Revenue",
          r"(?:total\s+)?cost\s+of\s+(?:net\s+)?(?:revenues?|sales|goods\s+sold)",
          MetricCategory.COST_OF_REVENUE, "0.75"),
    _rule("Total Revenue", r"total\s+(?:net\s+)?revenues?",
          MetricCategory.REVENUE, "0.80"),
    _rule("Total Net Sales", r"total\s+net\s+sales",
          MetricCategory.REVENUE, "0.80"),
    _rule("Total Current Assets", r"total\s+current\s+assets",
          MetricCategory.CURRENT_ASSETS, "0.80"),
    _rule("Total Current Liabilities", r"total\s+current\s+liabilities",
          MetricCategory.CURRENT_LIABILITIES, "0.80"),
    _rule("Total Assets", r"total\s+assets",
          MetricCategory.TOTAL_ASSETS, "0.80"),
    _rule("Total Liabilities", r"total\s+liabilities(?!\s+and)",
          MetricCategory.TOTAL_LIABILITIES, "0.80"),
    _rule("Total Stockholders' Equity",
          r"total\s+(?:stockholders|shareholders)" + _APOS + r"\s+equity(?!\s+and)"
          r"|total\s+equity(?!\s+and)",
          MetricCategory.TOTAL_EQUITY, "0.80"),
    _rule("Net Revenue", r"net\s+revenues?", MetricCategory.REVENUE, "0.75"),
    _rule("Net Sales", r"net\s+sales", MetricCategory.REVENUE, "0.75"),
    _rule("Gross Profit", r"gross\s+profit", MetricCategory.GROSS_PROFIT, "0.75"),
    _rule("Operating Income",
          r"(?:total\s+)?operating\s+income(?:\s*\(loss\))?|income\s+from\s+operations"
          r"|operating\s+profit",
          MetricCategory.OPERATING_INCOME, "0.75"),
    _rule("Net Income",
          r"net\s+(?:income|earnings)(?!(?:\s*\(loss\))?\s+per\b)(?:\s*\(loss\))?"
          r"(?!\s+attributable\s+to\s+non)",
          MetricCategory.NET_INCOME, "0.75"),
    _rule("Net Loss", r"net\s+loss(?!\s+per\b)", MetricCategory.NET_INCOME, "0.70"),
    _rule("Interest Expense", r"interest\s+expense(?:,\s+net)?",
          MetricCategory.INTEREST_EXPENSE, "0.70"),
    _rule("Long-Term Debt",
          r"(?<!of\s)long[-\s]term\s+debt(?:,\s+(?:net|less\s+current\s+portion))?",
          MetricCategory.LONG_TERM_DEBT, "0.70"),
    _rule("Retained Earnings", r"retained\s+earnings(?:\s*\(accumulated\s+deficit\))?"
          r"|accumulated\s+deficit",
          MetricCategory.RETAINED_EARNINGS, "0.75"),
    _rule("Accounts Receivable", r"accounts\s+receivable(?:,\s+net)?|trade\s+receivables",
          MetricCategory.ACCOUNTS_RECEIVABLE, "0.70"),
    _rule("Cash and Cash Equivalents",
          r"cash\s+and\s+cash\s+equivalents(?!,?\s+(?:at\s+)?(?:the\s+)?beginning)",
          MetricCategory.CASH_AND_EQUIVALENTS, "0.75"),
    _rule("Shares Outstanding",
          r"(?:weighted[-\s]average\s+)?(?:common\s+)?shares\s+outstanding",
          MetricCategory.SHARES_OUTSTANDING, "0.65"),
    # Generic labels, lowest confidence.
    _rule("Inventories", r"inventor(?:y|ies)", MetricCategory.INVENTORY, "0.65", True),
    _rule("Current Assets", r"current\s+assets", MetricCategory.CURRENT_ASSETS, "0.65", True),
    _rule("Current Liabilities", r"current\s+liabilities",
          MetricCategory.CURRENT_LIABILITIES, "0.65", True),
    _rule("Stockholders' Equity",
          r"(?<!and\s)(?:stockholders|shareholders)" + _APOS + r"\s+equity",
          MetricCategory.TOTAL_EQUITY, "0.65", True),
    _rule("Earnings Per Share", r"(?:earnings|net\s+income)\s+" + _SHARE,
          MetricCategory.EPS_BASIC, "0.60", True),
    _rule("Revenue",
          r"(?<!cost\sof\s)(?<!deferred\s)(?<!unearned\s)revenues?",
          MetricCategory.REVENUE, "0.60", True),
    _rule("Sales",
          r"(?<!cost\sof\s)sales(?!\s+(?:and|&)\s+marketing)(?!\s+tax)",
          MetricCategory.REVENUE, "0.60", True),
)


# ═══════════════════════════════════════════════════════════════════════════
#  Table 3: Vocabulary
# ═══════════════════════════════════════════════════════════════════════════

# A table is "financially relevant" if its text contains any of these.
FINANCIAL_KEYWORDS: tuple[str, ...] = (
    "revenue", "income", "asset", "liability", "liabilities", "equity", "cash",
    "operating", "balance", "consolidated", "statement", "fiscal", "earnings",
)

# "(in millions)", "($ in thousands)", "(Dollars in billions)"
UNIT_PHRASE_RE = re.compile(
    r"\bin\s+(?:u\.?s\.?\s+)?(?:dollars\s+)?(?:\$\s*)?"
    r"(thousands|millions|billions|000s|000's)\b",
    re.IGNORECASE,
)
# "($000)", "(000s)"
THOUSANDS_SHORT_RE = re.compile(r"\(\s*\$?\s*000'?s?\s*\)")
# Any parenthetical that announces a unit: "(in ...)", "(amounts in ...)"
UNIT_PARENTHETICAL_RE = re.compile(
    r"\(\s*(?:\$\s*)?(?:(?:amounts|dollars|figures)\s+)?in\s+([^()]{1,40})\)",
    re.IGNORECASE,
)
# Parentheticals that mention units but carry no magnitude
UNIT_PHRASES_WITHOUT_SCALE: frozenset[str] = frozenset({
    "dollars", "u.s. dollars", "us dollars", "usd", "percent", "percentages",
    "shares", "units", "years", "days", "months",
})
PER_SHARE_EXCEPTION_RE = re.compile(r"except\s+(?:for\s+)?(?:per[-\s]share|share\s+and\s+per)",
                                    re.IGNORECASE)


# Segment vocabulary
SEGMENT_SECTION_RE = re.compile(
    r"(?:geographic|segment|regional)\s+information"
    r"|revenues?\s+by\s+(?:segment|region|geography|geographic\s+area|product)"
    r"|segment\s+(?:revenues?|results)"
    r"|disaggregation\s+of\s+revenues?",
    re.IGNORECASE,
)

SEGMENT_NAMES: tuple[tuple[str, SegmentKind], ...] = (
    ("United States", SegmentKind.GEOGRAPHIC),
    ("North America", SegmentKind.GEOGRAPHIC),
    ("Americas", SegmentKind.GEOGRAPHIC),
    ("EMEA", SegmentKind.GEOGRAPHIC),
    ("Europe", SegmentKind.GEOGRAPHIC),
    ("Asia Pacific", SegmentKind.GEOGRAPHIC),
    ("APAC", SegmentKind.GEOGRAPHIC),
    ("Greater China", SegmentKind.GEOGRAPHIC),
    ("China", SegmentKind.GEOGRAPHIC),
    ("Japan", SegmentKind.GEOGRAPHIC),
    ("Rest of World", SegmentKind.GEOGRAPHIC),
    ("Other Countries", SegmentKind.GEOGRAPHIC),
    ("International", SegmentKind.GEOGRAPHIC),
    ("Domestic", SegmentKind.GEOGRAPHIC),
    ("Products", SegmentKind.PRODUCT),
    ("Services", SegmentKind.PRODUCT),
    ("Software", SegmentKind.PRODUCT),
    ("Hardware", SegmentKind.PRODUCT),
    ("Subscription", SegmentKind.PRODUCT),
    ("Licenses", SegmentKind.PRODUCT),
)
