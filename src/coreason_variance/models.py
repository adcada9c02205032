# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from coreason_variance.exceptions import InvalidThresholdError

ZERO = Decimal("0")


class AccountType(str, Enum):
    """Economic type of an account, which decides what a favorable variance is."""

    REVENUE = "revenue"
    EXPENSE = "expense"
    COST_OF_GOODS_SOLD = "cost_of_goods_sold"
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    OTHER = "other"


class Severity(str, Enum):
    """
    Severity tier of a variance.
    NORMAL/WARNING/CRITICAL belong to the standard profile,
    LOW/MEDIUM/HIGH/CRITICAL to the detailed profile.
    """

    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Direction(str, Enum):
    """Economic direction of a variance."""

    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"
    NEUTRAL = "neutral"


class Trend(str, Enum):
    """Movement of a variance against the previous period."""

    IMPROVING = "improving"
    WORSENING = "worsening"
    STABLE = "stable"


class InsightType(str, Enum):
    """Category of a generated insight."""

    VARIANCE = "variance"
    TREND = "trend"
    ANOMALY = "anomaly"
    RECOMMENDATION = "recommendation"


class MatchMethod(str, Enum):
    """Key that associated a budget item with its actual."""

    CODE = "code"
    NAME = "name"
    NONE = "none"


class SeverityProfileName(str, Enum):
    """Named severity classification profiles."""

    STANDARD = "standard"
    DETAILED = "detailed"


class BudgetItem(BaseModel):
    """
    A planned amount for one account in one period, as supplied by the budget source.
    """

    id: str = Field(..., description="Unique identifier of the budget line item", min_length=1)
    account_code: Optional[str] = Field(None, description="Chart-of-accounts code, if the source carries one")
    account_name: str = Field(..., description="Human readable account name")
    account_type: AccountType = Field(AccountType.EXPENSE, description="Economic type of the account")
    amount: Decimal = Field(..., description="Planned amount in period currency", allow_inf_nan=False)
    period: str = Field(..., description="Period label, e.g. '2024-01'", min_length=1)
    period_start: Optional[date] = Field(None, description="First day of the period")
    period_end: Optional[date] = Field(None, description="Last day of the period")
    parent_id: Optional[str] = Field(None, description="Identifier of the parent budget item, for rollups")
    category: Optional[str] = Field(None, description="Optional category tag")
    department: Optional[str] = Field(None, description="Optional department tag")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_period_bounds(self) -> "BudgetItem":
        if self.period_start is not None and self.period_end is not None and self.period_start > self.period_end:
            raise ValueError(f"period_start {self.period_start} is after period_end {self.period_end}")
        return self


class ActualItem(BaseModel):
    """
    A realized amount for one account in one period, as supplied by the accounting system.
    Expenses are positive as spent, revenue positive as earned.
    """

    id: str = Field(..., description="Unique identifier of the actual record", min_length=1)
    account_code: Optional[str] = Field(None, description="Chart-of-accounts code or account id")
    account_name: str = Field(..., description="Human readable account name")
    account_type: AccountType = Field(AccountType.EXPENSE, description="Economic type of the account")
    amount: Decimal = Field(..., description="Realized amount in period currency", allow_inf_nan=False)
    period: str = Field(..., description="Period label, e.g. '2024-01'", min_length=1)
    transaction_count: int = Field(0, description="Number of transactions behind the amount", ge=0)

    model_config = ConfigDict(frozen=True)


class MatchedPair(BaseModel):
    """
    A budget item and the actual it was matched to, if any.
    """

    budget: BudgetItem = Field(..., description="The budget line item")
    actual: Optional[ActualItem] = Field(None, description="The matched actual, None when unmatched")
    method: MatchMethod = Field(MatchMethod.NONE, description="How the actual was found")

    model_config = ConfigDict(frozen=True)

    @property
    def actual_amount(self) -> Decimal:
        """A missing actual counts as zero."""
        return self.actual.amount if self.actual is not None else ZERO


class MatchResult(BaseModel):
    """
    Output of the account matcher for a full item set.
    """

    pairs: List[MatchedPair] = Field(..., description="One pair per budget item, in budget input order")
    unmatched_actual_ids: List[str] = Field(
        default_factory=list, description="Actual items no budget item claimed, in input order"
    )

    model_config = ConfigDict(frozen=True)

    @property
    def unmatched_budget_count(self) -> int:
        return sum(1 for pair in self.pairs if pair.actual is None)


class VarianceFigures(BaseModel):
    """
    Signed deviation and direction for one budget/actual pair.
    """

    variance: Decimal = Field(..., description="Actual - Budget")
    variance_percent: Decimal = Field(..., description="Variance / Budget * 100, 0 when budget is 0")
    direction: Direction = Field(..., description="Economic direction for the account type")

    model_config = ConfigDict(frozen=True)


class ThresholdConfig(BaseModel):
    """
    Organization-level severity thresholds, in percent.
    """

    warning_percent: Decimal = Field(
        Decimal("10"), description="Absolute deviation above which a variance is a warning", ge=0, allow_inf_nan=False
    )
    critical_percent: Decimal = Field(
        Decimal("15"), description="Absolute deviation above which a variance is critical", ge=0, allow_inf_nan=False
    )
    favorable_percent: Decimal = Field(
        Decimal("-5"), description="Deviation at or below which a favorable variance is exceptional", le=0
    )
    profile: SeverityProfileName = Field(SeverityProfileName.STANDARD, description="Severity profile to classify with")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_ordering(self) -> "ThresholdConfig":
        self.ensure_valid()
        return self

    def ensure_valid(self) -> None:
        """
        Raises InvalidThresholdError unless warning < critical.
        """
        if self.warning_percent >= self.critical_percent:
            raise InvalidThresholdError(
                f"Warning threshold {self.warning_percent}% must be below critical threshold {self.critical_percent}%",
                warning_percent=self.warning_percent,
                critical_percent=self.critical_percent,
            )


class VarianceRecord(BaseModel):
    """
    The computed variance for one matched pair, or a synthetic rollup of child accounts.
    """

    budget_item_id: str = Field(..., description="Budget item the record belongs to")
    account_code: Optional[str] = Field(None, description="Account code")
    account_name: str = Field(..., description="Account name")
    account_type: AccountType = Field(..., description="Account type")
    period: str = Field(..., description="Period label")
    parent_id: Optional[str] = Field(None, description="Parent budget item, if any")
    budget: Decimal = Field(..., description="Budgeted amount")
    actual: Decimal = Field(..., description="Actual amount (0 when unmatched)")
    variance: Decimal = Field(..., description="Actual - Budget")
    variance_percent: Decimal = Field(..., description="Variance / Budget * 100, 0 when budget is 0")
    severity: Severity = Field(..., description="Severity tier")
    direction: Direction = Field(..., description="Economic direction")
    level: int = Field(0, description="0 for source rows, 1 + deepest child for rollups", ge=0)
    is_rollup: bool = Field(False, description="True for synthetic parent-level rows")
    match_method: MatchMethod = Field(MatchMethod.NONE, description="How the actual was found")
    trend: Optional[Trend] = Field(None, description="Movement against the previous period")
    previous_variance_percent: Optional[Decimal] = Field(None, description="Variance percent in the previous period")

    model_config = ConfigDict(frozen=True)

    @property
    def account_key(self) -> str:
        """Identity used to line records up across periods."""
        if self.account_code:
            return f"code:{self.account_code}"
        return f"name:{self.account_name.strip().casefold()}"


class HistoricalVariance(BaseModel):
    """
    One account's variance in one past period.
    """

    period: str = Field(..., description="Period label, e.g. '2024-01'", min_length=1)
    budget: Decimal = Field(..., description="Budgeted amount", allow_inf_nan=False)
    actual: Decimal = Field(..., description="Actual amount", allow_inf_nan=False)
    variance: Decimal = Field(..., description="Actual - Budget", allow_inf_nan=False)
    variance_percent: Decimal = Field(..., description="Variance / Budget * 100", allow_inf_nan=False)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_record(cls, record: VarianceRecord) -> "HistoricalVariance":
        return cls(
            period=record.period,
            budget=record.budget,
            actual=record.actual,
            variance=record.variance,
            variance_percent=record.variance_percent,
        )


class VarianceTrend(BaseModel):
    """
    Movement of one account's variance percent across several periods.
    """

    periods: List[HistoricalVariance] = Field(..., description="The series, oldest period first")
    direction: Trend = Field(..., description="Sign of the regression slope, stable when it is small")
    slope: Decimal = Field(..., description="Least-squares slope of variance percent per period")
    average_variance_percent: Decimal = Field(..., description="Mean variance percent over the series")
    volatility: Decimal = Field(..., description="Population standard deviation of variance percent", ge=0)

    model_config = ConfigDict(frozen=True)


class RecordReference(BaseModel):
    """Pointer from an insight back to the record that triggered it."""

    budget_item_id: str
    account_name: str
    level: int = 0
    is_rollup: bool = False

    model_config = ConfigDict(frozen=True)


class VarianceInsightMetadata(BaseModel):
    kind: Literal["variance"] = "variance"
    variance_percent: Decimal
    direction: Direction
    trend: Optional[Trend] = None

    model_config = ConfigDict(frozen=True)


class AggregateInsightMetadata(BaseModel):
    kind: Literal["aggregate"] = "aggregate"
    total_variance_percent: Decimal
    threshold_percent: Decimal

    model_config = ConfigDict(frozen=True)


class AnomalyInsightMetadata(BaseModel):
    kind: Literal["anomaly"] = "anomaly"
    account_names: List[str]
    count: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)


class NetImpactInsightMetadata(BaseModel):
    kind: Literal["net_impact"] = "net_impact"
    revenue_variance: Decimal
    expense_variance: Decimal
    net_impact: Decimal

    model_config = ConfigDict(frozen=True)


InsightMetadata = Annotated[
    Union[VarianceInsightMetadata, AggregateInsightMetadata, AnomalyInsightMetadata, NetImpactInsightMetadata],
    Field(discriminator="kind"),
]


class Insight(BaseModel):
    """
    A generated finding with optional recommended action items.
    Confidence is a fixed constant per generation rule, not a statistical estimate.
    """

    type: InsightType = Field(..., description="Category of the finding")
    severity: Severity = Field(..., description="Severity of the finding")
    message: str = Field(..., description="Rendered message")
    confidence: float = Field(..., description="Heuristic confidence of the rule (0.0 to 1.0)", ge=0.0, le=1.0)
    priority: int = Field(..., description="Ranking score, higher first", ge=0)
    impact: Decimal = Field(ZERO, description="Absolute currency impact, used to break ranking ties", ge=0)
    actionable: bool = Field(False, description="True when the insight calls for action")
    action_items: List[str] = Field(default_factory=list, description="Recommended actions, most urgent first")
    record: Optional[RecordReference] = Field(None, description="Triggering record, None for aggregate insights")
    metadata: Optional[InsightMetadata] = Field(None, description="Typed details for the generating rule")

    model_config = ConfigDict(frozen=True)


class AnalysisSummary(BaseModel):
    """
    Totals and counts over the source (level 0) records of a run.
    """

    total_budget: Decimal = Field(ZERO, description="Sum of budgeted amounts")
    total_actual: Decimal = Field(ZERO, description="Sum of matched actual amounts")
    total_variance: Decimal = Field(ZERO, description="Total Actual - Total Budget")
    total_variance_percent: Decimal = Field(ZERO, description="Total variance / Total budget * 100")
    severity_counts: Dict[Severity, int] = Field(default_factory=dict, description="Record count per severity tier")
    favorable_count: int = Field(0, ge=0)
    unfavorable_count: int = Field(0, ge=0)
    exceptionally_favorable_count: int = Field(0, ge=0)
    record_count: int = Field(0, description="Number of source records", ge=0)
    rollup_count: int = Field(0, description="Number of synthetic rollup records", ge=0)
    unmatched_budget_count: int = Field(0, ge=0)
    unmatched_actual_count: int = Field(0, ge=0)

    model_config = ConfigDict(frozen=True)

    @computed_field(return_type=int)  # type: ignore[misc]
    @property
    def critical_count(self) -> int:
        return self.severity_counts.get(Severity.CRITICAL, 0)

    @computed_field(return_type=int)  # type: ignore[misc]
    @property
    def warning_count(self) -> int:
        return self.severity_counts.get(Severity.WARNING, 0)

    @computed_field(return_type=int)  # type: ignore[misc]
    @property
    def normal_count(self) -> int:
        return self.severity_counts.get(Severity.NORMAL, 0)


class AnalysisResult(BaseModel):
    """
    The complete output of one reconciliation run. Immutable once returned.
    """

    period: Optional[str] = Field(None, description="Period label when all items share one")
    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig, description="Thresholds the run used")
    records: List[VarianceRecord] = Field(default_factory=list, description="Source records, then rollups")
    insights: List[Insight] = Field(default_factory=list, description="Insights, highest priority first")
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary, description="Totals and counts")

    model_config = ConfigDict(frozen=True)

    @property
    def source_records(self) -> List[VarianceRecord]:
        return [record for record in self.records if not record.is_rollup]

    @property
    def rollup_records(self) -> List[VarianceRecord]:
        return [record for record in self.records if record.is_rollup]


class AnalyzeRequest(BaseModel):
    """Payload for a reconciliation run."""

    organization_id: str = Field(..., description="Organization the run belongs to", min_length=1)
    board_id: str = Field(..., description="Budget board the items came from", min_length=1)
    period: str = Field(..., description="Period label of the run", min_length=1)
    budget_items: List[BudgetItem] = Field(default_factory=list, description="Budget line items")
    actual_items: List[ActualItem] = Field(default_factory=list, description="Actual records")
    thresholds: Optional[ThresholdConfig] = Field(None, description="Organization thresholds, defaults if omitted")
    use_cache: bool = Field(True, description="Serve a cached result when one exists")
    persist: bool = Field(True, description="Store the result for later trend comparison")


class CalculateRequest(BaseModel):
    """Payload for a single variance calculation."""

    budget: Decimal = Field(..., description="Budgeted amount", allow_inf_nan=False)
    actual: Decimal = Field(..., description="Actual amount", allow_inf_nan=False)
    account_type: AccountType = Field(AccountType.EXPENSE, description="Account type")
    thresholds: Optional[ThresholdConfig] = Field(None, description="Thresholds, defaults if omitted")


class CalculateResponse(BaseModel):
    """Response for a single variance calculation."""

    variance: Decimal
    variance_percent: Decimal
    direction: Direction
    severity: Severity


class ErrorResponse(BaseModel):
    """Body returned when an analysis run fails."""

    code: str
    message: str
    item_id: Optional[str] = None
    field: Optional[str] = None
