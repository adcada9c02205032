# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from coreason_variance.calculator import DECIMAL_CONTEXT, EXPENSE_TYPES, ZERO
from coreason_variance.classifier import SeverityClassifier
from coreason_variance.models import (
    AccountType,
    AggregateInsightMetadata,
    AnomalyInsightMetadata,
    Direction,
    HistoricalVariance,
    Insight,
    InsightType,
    NetImpactInsightMetadata,
    RecordReference,
    Severity,
    Trend,
    VarianceInsightMetadata,
    VarianceRecord,
    VarianceTrend,
)

# Ranking scores per rule, higher first
PRIORITY_CRITICAL_UNFAVORABLE = 100
PRIORITY_AGGREGATE_TREND = 90
PRIORITY_SYSTEMATIC = 80
PRIORITY_CRITICAL_FAVORABLE = 60
PRIORITY_UNBUDGETED = 50
PRIORITY_NET_IMPACT = 40

# Heuristic confidence per rule. These are constants, not probabilities.
CONFIDENCE_CRITICAL_UNFAVORABLE = 0.95
CONFIDENCE_AGGREGATE_TREND = 0.99
CONFIDENCE_SYSTEMATIC = 0.97
CONFIDENCE_CRITICAL_FAVORABLE = 0.96
CONFIDENCE_UNBUDGETED = 0.98
CONFIDENCE_NET_IMPACT = 0.95

IMPROVING_FACTOR = Decimal("0.9")
WORSENING_FACTOR = Decimal("1.1")

# Slope, in percentage points per period, below which a series is stable
STABLE_SLOPE = Decimal("0.5")

NET_IMPACT_CRITICAL = Decimal("50000")

WORSENING_ACTION_ITEMS = [
    "Trend analysis shows deteriorating performance",
    "Implement preventive measures to stop further variance",
]


def format_currency(amount: Decimal) -> str:
    return f"${abs(amount):,.2f}"


def format_percent(percent: Decimal) -> str:
    return f"{abs(percent):.1f}%"


def format_bound(bound: Decimal) -> str:
    return f"{bound.normalize():f}"


def classify_trend(current_percent: Decimal, previous_percent: Decimal) -> Trend:
    """
    Compares the magnitude of this period's variance percent with the previous one.
    A move of less than 10% either way is stable.
    """
    current = abs(current_percent)
    previous = abs(previous_percent)
    if current < DECIMAL_CONTEXT.multiply(previous, IMPROVING_FACTOR):
        return Trend.IMPROVING
    if current > DECIMAL_CONTEXT.multiply(previous, WORSENING_FACTOR):
        return Trend.WORSENING
    return Trend.STABLE


def apply_trends(
    records: Sequence[VarianceRecord], previous_records: Sequence[VarianceRecord]
) -> List[VarianceRecord]:
    """
    Attaches a trend to every record that has a counterpart in the previous period.
    Counterparts share the account key, the rollup flag and the level.
    """
    previous_by_key: Dict[Tuple[str, bool, int], VarianceRecord] = {}
    for previous in previous_records:
        previous_by_key.setdefault((previous.account_key, previous.is_rollup, previous.level), previous)

    trended: List[VarianceRecord] = []
    for record in records:
        counterpart = previous_by_key.get((record.account_key, record.is_rollup, record.level))
        if counterpart is None:
            trended.append(record)
            continue
        trended.append(
            record.model_copy(
                update={
                    "trend": classify_trend(record.variance_percent, counterpart.variance_percent),
                    "previous_variance_percent": counterpart.variance_percent,
                }
            )
        )
    return trended


def calculate_historical_trend(history: Sequence[HistoricalVariance]) -> Optional[VarianceTrend]:
    """
    Summarizes an account's variance percent over several periods.

    The series is ordered by period label. The direction comes from the least-squares
    slope of variance percent against period index (1, 2, ..., n): a falling variance
    is improving, a rising one worsening, and a slope under 0.5 points per period in
    magnitude is stable.

    Args:
        history: Past variances of one account, in any order.

    Returns:
        VarianceTrend, or None when fewer than two periods are given.
    """
    if len(history) < 2:
        return None

    ordered = sorted(history, key=lambda point: point.period)
    count = Decimal(len(ordered))

    sum_y = ZERO
    sum_xy = ZERO
    for index, point in enumerate(ordered, start=1):
        sum_y = DECIMAL_CONTEXT.add(sum_y, point.variance_percent)
        sum_xy = DECIMAL_CONTEXT.add(sum_xy, DECIMAL_CONTEXT.multiply(Decimal(index), point.variance_percent))
    average = DECIMAL_CONTEXT.divide(sum_y, count)

    squared = ZERO
    for point in ordered:
        deviation = DECIMAL_CONTEXT.subtract(point.variance_percent, average)
        squared = DECIMAL_CONTEXT.add(squared, DECIMAL_CONTEXT.multiply(deviation, deviation))
    volatility = DECIMAL_CONTEXT.sqrt(DECIMAL_CONTEXT.divide(squared, count))

    n = len(ordered)
    sum_x = Decimal(n * (n + 1) // 2)
    sum_x2 = Decimal(n * (n + 1) * (2 * n + 1) // 6)
    numerator = DECIMAL_CONTEXT.subtract(
        DECIMAL_CONTEXT.multiply(count, sum_xy), DECIMAL_CONTEXT.multiply(sum_x, sum_y)
    )
    # Positive for n >= 2
    denominator = DECIMAL_CONTEXT.subtract(
        DECIMAL_CONTEXT.multiply(count, sum_x2), DECIMAL_CONTEXT.multiply(sum_x, sum_x)
    )
    slope = DECIMAL_CONTEXT.divide(numerator, denominator)

    if abs(slope) < STABLE_SLOPE:
        direction = Trend.STABLE
    elif slope < ZERO:
        direction = Trend.IMPROVING
    else:
        direction = Trend.WORSENING

    return VarianceTrend(
        periods=ordered,
        direction=direction,
        slope=slope,
        average_variance_percent=average,
        volatility=volatility,
    )


class InsightGenerator:
    """
    The Analyst: Turns classified variance records into ranked findings with action items.

    Per-record rules run on every record, source and rollup alike. Portfolio rules
    (systematic variance, unbudgeted activity, net impact) only look at source records
    so rollups are not counted twice.
    """

    def __init__(self, net_impact_threshold: Decimal = Decimal("1000"), systematic_count: int = 3) -> None:
        """
        Initialize the Insight Generator.

        Args:
            net_impact_threshold: Absolute net variance above which a net impact
                                  recommendation is raised. Default is 1000.
            systematic_count: Number of critical accounts that indicates a systematic issue.
                              Default is 3.
        """
        self.net_impact_threshold = net_impact_threshold
        self.systematic_count = systematic_count

    def _reference(self, record: VarianceRecord) -> RecordReference:
        return RecordReference(
            budget_item_id=record.budget_item_id,
            account_name=record.account_name,
            level=record.level,
            is_rollup=record.is_rollup,
        )

    def _describe(self, record: VarianceRecord) -> str:
        """
        Renders '<account> is <pct> <over|under|above|below> budget (<amount> <label>).'
        """
        amount = format_currency(record.variance)
        percent = format_percent(record.variance_percent)
        if record.account_type == AccountType.REVENUE:
            if record.variance < ZERO:
                return f"{record.account_name} is {percent} below budget ({amount} shortfall)."
            return f"{record.account_name} is {percent} above budget ({amount} surplus)."
        if record.variance > ZERO:
            return f"{record.account_name} is {percent} over budget ({amount} overspend)."
        return f"{record.account_name} is {percent} under budget ({amount} savings)."

    def _urgent_action_items(self, record: VarianceRecord, bound: Decimal) -> List[str]:
        """
        More items as the deviation grows: 3 at the critical bound, one more at twice
        the bound and another at four times the bound.
        """
        magnitude = abs(record.variance_percent)
        items = [
            f"Immediate review required - variance exceeds {format_bound(bound)}%",
            "Investigate root causes and implement corrective actions",
            "Update forecast and budget if necessary",
        ]
        if magnitude >= DECIMAL_CONTEXT.multiply(bound, Decimal("2")):
            items.append("Escalate to the budget owner and finance leadership")
        if magnitude >= DECIMAL_CONTEXT.multiply(bound, Decimal("4")):
            if record.account_type == AccountType.REVENUE:
                items.append("Revisit pipeline, pricing and sales assumptions before the next period")
            else:
                items.append("Freeze discretionary spending on this account until the review completes")
        return items

    def _verification_action_items(self, record: VarianceRecord) -> List[str]:
        items = ["Verify actual amounts for accuracy"]
        if record.account_type == AccountType.REVENUE:
            items.append("Confirm the surplus is recurring before raising targets")
        else:
            items.append("Consider reallocating savings to other initiatives")
        items.append("Update forecast to reflect new spending patterns")
        return items

    def _record_insight(self, record: VarianceRecord, bound: Decimal) -> Optional[Insight]:
        """
        Critical unfavorable records get an urgent insight, critical favorable ones
        a verification prompt. Anything else gets none.
        """
        if record.severity != Severity.CRITICAL or record.direction == Direction.NEUTRAL:
            return None

        metadata = VarianceInsightMetadata(
            variance_percent=record.variance_percent, direction=record.direction, trend=record.trend
        )
        if record.direction == Direction.UNFAVORABLE:
            action_items = self._urgent_action_items(record, bound)
            message = self._describe(record)
            priority = PRIORITY_CRITICAL_UNFAVORABLE
            confidence = CONFIDENCE_CRITICAL_UNFAVORABLE
            actionable = True
        else:
            action_items = self._verification_action_items(record)
            message = f"{self._describe(record)} Extreme favorable variances can indicate data errors."
            priority = PRIORITY_CRITICAL_FAVORABLE
            confidence = CONFIDENCE_CRITICAL_FAVORABLE
            actionable = False

        if record.trend == Trend.WORSENING:
            action_items = action_items + WORSENING_ACTION_ITEMS
            actionable = True

        return Insight(
            type=InsightType.VARIANCE,
            severity=record.severity,
            message=message,
            confidence=confidence,
            priority=priority,
            impact=abs(record.variance),
            actionable=actionable,
            action_items=action_items,
            record=self._reference(record),
            metadata=metadata,
        )

    def _top_accounts(self, records: Sequence[VarianceRecord], count: int = 3) -> List[str]:
        ranked = sorted(records, key=lambda record: -abs(record.variance))
        return [record.account_name for record in ranked[:count]]

    def _aggregate_insight(
        self,
        sources: Sequence[VarianceRecord],
        total_variance: Decimal,
        total_variance_percent: Decimal,
        bound: Decimal,
    ) -> Optional[Insight]:
        if abs(total_variance_percent) <= bound:
            return None
        position = "above" if total_variance_percent > ZERO else "below"
        return Insight(
            type=InsightType.TREND,
            severity=Severity.CRITICAL,
            message=(
                f"Overall actuals are {format_percent(total_variance_percent)} {position} budget "
                f"({format_currency(total_variance)}), beyond the {format_bound(bound)}% critical threshold."
            ),
            confidence=CONFIDENCE_AGGREGATE_TREND,
            priority=PRIORITY_AGGREGATE_TREND,
            impact=abs(total_variance),
            actionable=True,
            action_items=[
                "Review overall budget assumptions for the period",
                f"Start with the largest variances: {', '.join(self._top_accounts(sources))}",
            ],
            metadata=AggregateInsightMetadata(total_variance_percent=total_variance_percent, threshold_percent=bound),
        )

    def _systematic_insight(self, sources: Sequence[VarianceRecord]) -> Optional[Insight]:
        critical = [record for record in sources if record.severity == Severity.CRITICAL]
        if len(critical) < self.systematic_count:
            return None
        impact = ZERO
        for record in critical:
            impact = DECIMAL_CONTEXT.add(impact, abs(record.variance))
        return Insight(
            type=InsightType.ANOMALY,
            severity=Severity.CRITICAL,
            message=(
                f"{len(critical)} accounts show critical variances, "
                "suggesting systematic budgeting or operational issues."
            ),
            confidence=CONFIDENCE_SYSTEMATIC,
            priority=PRIORITY_SYSTEMATIC,
            impact=impact,
            actionable=True,
            action_items=[
                "Conduct comprehensive budget review",
                "Evaluate forecasting methodology and underlying business assumptions",
            ],
            metadata=AnomalyInsightMetadata(
                account_names=[record.account_name for record in critical], count=len(critical)
            ),
        )

    def _unbudgeted_insights(self, sources: Sequence[VarianceRecord]) -> List[Insight]:
        """
        Zero-budget records keep a 0% variance and normal severity. This rule is the
        only place their absolute amount surfaces.
        """
        insights: List[Insight] = []
        for record in sources:
            if record.budget != ZERO or record.actual == ZERO:
                continue
            insights.append(
                Insight(
                    type=InsightType.ANOMALY,
                    severity=Severity.WARNING,
                    message=(
                        f"{record.account_name} has {format_currency(record.actual)} of activity "
                        "with no budget set."
                    ),
                    confidence=CONFIDENCE_UNBUDGETED,
                    priority=PRIORITY_UNBUDGETED,
                    impact=abs(record.actual),
                    actionable=True,
                    action_items=["Confirm the activity was authorized", "Add a budget line for this account"],
                    record=self._reference(record),
                    metadata=AnomalyInsightMetadata(account_names=[record.account_name], count=1),
                )
            )
        return insights

    def _net_impact_insight(self, sources: Sequence[VarianceRecord]) -> Optional[Insight]:
        revenue_variance = ZERO
        expense_variance = ZERO
        for record in sources:
            if record.account_type == AccountType.REVENUE:
                revenue_variance = DECIMAL_CONTEXT.add(revenue_variance, record.variance)
            elif record.account_type in EXPENSE_TYPES:
                expense_variance = DECIMAL_CONTEXT.add(expense_variance, record.variance)

        net_impact = DECIMAL_CONTEXT.subtract(revenue_variance, expense_variance)
        if abs(net_impact) <= self.net_impact_threshold:
            return None

        if net_impact > ZERO:
            wording = "favorable"
            action_items = ["Consider reinvesting the surplus or adjusting future budgets"]
        else:
            wording = "unfavorable"
            action_items = [f"Priority areas: {', '.join(self._top_accounts(sources))}"]

        return Insight(
            type=InsightType.RECOMMENDATION,
            severity=Severity.CRITICAL if abs(net_impact) > NET_IMPACT_CRITICAL else Severity.WARNING,
            message=f"Net financial variance is {format_currency(net_impact)} {wording}.",
            confidence=CONFIDENCE_NET_IMPACT,
            priority=PRIORITY_NET_IMPACT,
            impact=abs(net_impact),
            actionable=net_impact < ZERO,
            action_items=action_items,
            metadata=NetImpactInsightMetadata(
                revenue_variance=revenue_variance, expense_variance=expense_variance, net_impact=net_impact
            ),
        )

    def generate(
        self,
        records: Sequence[VarianceRecord],
        classifier: SeverityClassifier,
        total_variance: Decimal = ZERO,
        total_variance_percent: Decimal = ZERO,
    ) -> List[Insight]:
        """
        Runs every rule and ranks the findings.

        Args:
            records: Classified records, source and rollup, with trends already applied.
            classifier: The run's classifier, whose critical bound drives urgency and the aggregate rule.
            total_variance: Total actual - total budget over source records.
            total_variance_percent: Total variance relative to total budget.

        Returns:
            Insights by descending priority, then descending impact. Remaining ties keep
            generation order, which follows record order.
        """
        bound = classifier.critical_bound
        sources = [record for record in records if not record.is_rollup]

        insights: List[Insight] = []
        for record in records:
            insight = self._record_insight(record, bound)
            if insight is not None:
                insights.append(insight)

        aggregate = self._aggregate_insight(sources, total_variance, total_variance_percent, bound)
        if aggregate is not None:
            insights.append(aggregate)

        systematic = self._systematic_insight(sources)
        if systematic is not None:
            insights.append(systematic)

        insights.extend(self._unbudgeted_insights(sources))

        net_impact = self._net_impact_insight(sources)
        if net_impact is not None:
            insights.append(net_impact)

        # Stable sort keeps generation order for equal keys
        insights.sort(key=lambda insight: (-insight.priority, -insight.impact))
        return insights
