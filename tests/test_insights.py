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
from typing import Optional

import pytest
from coreason_variance.calculator import calculate_variance
from coreason_variance.classifier import SeverityClassifier
from coreason_variance.insights import (
    PRIORITY_AGGREGATE_TREND,
    PRIORITY_CRITICAL_FAVORABLE,
    PRIORITY_CRITICAL_UNFAVORABLE,
    PRIORITY_NET_IMPACT,
    PRIORITY_SYSTEMATIC,
    PRIORITY_UNBUDGETED,
    InsightGenerator,
    apply_trends,
    calculate_historical_trend,
    classify_trend,
)
from coreason_variance.models import (
    AccountType,
    AggregateInsightMetadata,
    AnomalyInsightMetadata,
    HistoricalVariance,
    InsightType,
    NetImpactInsightMetadata,
    Severity,
    Trend,
    VarianceInsightMetadata,
    VarianceRecord,
)

CLASSIFIER = SeverityClassifier()


def record(
    item_id: str,
    budget: str,
    actual: str,
    account_type: AccountType = AccountType.EXPENSE,
    name: Optional[str] = None,
    trend: Optional[Trend] = None,
) -> VarianceRecord:
    figures = calculate_variance(Decimal(budget), Decimal(actual), account_type)
    return VarianceRecord(
        budget_item_id=item_id,
        account_name=name or f"Account {item_id}",
        account_type=account_type,
        period="2024-01",
        budget=Decimal(budget),
        actual=Decimal(actual),
        variance=figures.variance,
        variance_percent=figures.variance_percent,
        severity=CLASSIFIER.classify(figures.variance_percent),
        direction=figures.direction,
        trend=trend,
    )


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (Decimal("10"), Decimal("20"), Trend.IMPROVING),
        (Decimal("-25"), Decimal("20"), Trend.WORSENING),
        (Decimal("21"), Decimal("20"), Trend.STABLE),
        (Decimal("18"), Decimal("20"), Trend.STABLE),
        (Decimal("22"), Decimal("20"), Trend.STABLE),
        (Decimal("5"), Decimal("0"), Trend.WORSENING),
        (Decimal("0"), Decimal("0"), Trend.STABLE),
    ],
)
def test_classify_trend(current: Decimal, previous: Decimal, expected: Trend) -> None:
    """Test the 0.9x / 1.1x bands on magnitudes."""
    assert classify_trend(current, previous) == expected


def test_apply_trends_matches_by_account_key() -> None:
    current = [record("b1", "100", "130", name="Travel"), record("b2", "100", "100", name="Rent")]
    previous = [record("old", "100", "110", name="travel ")]

    trended = apply_trends(current, previous)

    assert trended[0].trend == Trend.WORSENING
    assert trended[0].previous_variance_percent == Decimal("10")
    assert trended[1].trend is None
    assert current[0].trend is None


def test_apply_trends_does_not_cross_rollup_levels() -> None:
    current = [record("b1", "100", "130", name="Travel").model_copy(update={"is_rollup": True, "level": 1})]
    previous = [record("old", "100", "110", name="Travel")]
    assert apply_trends(current, previous)[0].trend is None


def test_critical_unfavorable_insight() -> None:
    """Test a critical overspend yields an actionable variance insight with base action items."""
    insights = InsightGenerator().generate([record("b1", "1000", "1200", name="Marketing")], CLASSIFIER)
    variance = [i for i in insights if i.type == InsightType.VARIANCE]

    assert len(variance) == 1
    insight = variance[0]
    assert insight.priority == PRIORITY_CRITICAL_UNFAVORABLE
    assert insight.severity == Severity.CRITICAL
    assert insight.actionable is True
    assert insight.confidence == 0.95
    assert insight.impact == Decimal("200")
    assert insight.message == "Marketing is 20.0% over budget ($200.00 overspend)."
    assert len(insight.action_items) == 3
    assert insight.action_items[0] == "Immediate review required - variance exceeds 15%"
    assert insight.record is not None and insight.record.budget_item_id == "b1"
    assert isinstance(insight.metadata, VarianceInsightMetadata)


@pytest.mark.parametrize(
    "actual, expected_items",
    [("1299", 3), ("1300", 4), ("1599", 4), ("1600", 5)],
)
def test_urgency_scales_with_magnitude(actual: str, expected_items: int) -> None:
    """Test one more action item at twice and four times the critical bound."""
    insights = InsightGenerator().generate([record("b1", "1000", actual)], CLASSIFIER)
    variance = [i for i in insights if i.type == InsightType.VARIANCE][0]
    assert len(variance.action_items) == expected_items


def test_revenue_shortfall_wording() -> None:
    insights = InsightGenerator().generate(
        [record("r1", "10000", "8000", account_type=AccountType.REVENUE, name="Product Sales")], CLASSIFIER
    )
    variance = [i for i in insights if i.type == InsightType.VARIANCE][0]
    assert variance.message == "Product Sales is 20.0% below budget ($2,000.00 shortfall)."


def test_critical_favorable_insight_is_lower_priority() -> None:
    """Test favorable extremes prompt verification instead of action."""
    insights = InsightGenerator().generate([record("b1", "1000", "700")], CLASSIFIER)
    variance = [i for i in insights if i.type == InsightType.VARIANCE][0]

    assert variance.priority == PRIORITY_CRITICAL_FAVORABLE
    assert variance.actionable is False
    assert "data errors" in variance.message
    assert variance.action_items[0] == "Verify actual amounts for accuracy"


def test_warning_records_produce_no_record_insight() -> None:
    insights = InsightGenerator().generate([record("b1", "1000", "1120")], CLASSIFIER)
    assert [i for i in insights if i.type == InsightType.VARIANCE] == []


def test_neutral_critical_records_produce_no_record_insight() -> None:
    insights = InsightGenerator().generate([record("b1", "1000", "2000", account_type=AccountType.ASSET)], CLASSIFIER)
    assert [i for i in insights if i.type == InsightType.VARIANCE] == []


def test_worsening_trend_appends_action_items() -> None:
    plain = InsightGenerator().generate([record("b1", "1000", "1200")], CLASSIFIER)[0]
    worsening = InsightGenerator().generate([record("b1", "1000", "1200", trend=Trend.WORSENING)], CLASSIFIER)[0]

    assert len(worsening.action_items) == len(plain.action_items) + 2
    assert worsening.action_items[-2] == "Trend analysis shows deteriorating performance"
    assert isinstance(worsening.metadata, VarianceInsightMetadata)
    assert worsening.metadata.trend == Trend.WORSENING


def test_aggregate_trend_insight() -> None:
    """Test the analysis-level insight fires only strictly above the critical bound."""
    records = [record("b1", "1000", "1200")]
    insights = InsightGenerator().generate(
        records, CLASSIFIER, total_variance=Decimal("200"), total_variance_percent=Decimal("20")
    )
    aggregate = [i for i in insights if i.type == InsightType.TREND]
    assert len(aggregate) == 1
    assert aggregate[0].priority == PRIORITY_AGGREGATE_TREND
    assert aggregate[0].record is None
    assert isinstance(aggregate[0].metadata, AggregateInsightMetadata)
    assert aggregate[0].message.startswith("Overall actuals are 20.0% above budget")

    on_bound = InsightGenerator().generate(
        records, CLASSIFIER, total_variance=Decimal("150"), total_variance_percent=Decimal("15")
    )
    assert [i for i in on_bound if i.type == InsightType.TREND] == []


def test_systematic_variance_insight() -> None:
    records = [record("a", "100", "150"), record("b", "100", "160"), record("c", "100", "170")]
    insights = InsightGenerator().generate(records, CLASSIFIER)
    anomaly = [i for i in insights if i.priority == PRIORITY_SYSTEMATIC]

    assert len(anomaly) == 1
    assert anomaly[0].type == InsightType.ANOMALY
    assert anomaly[0].impact == Decimal("180")
    assert isinstance(anomaly[0].metadata, AnomalyInsightMetadata)
    assert anomaly[0].metadata.count == 3


def test_systematic_ignores_rollups() -> None:
    records = [
        record("a", "100", "150"),
        record("b", "100", "160"),
        record("p", "200", "310").model_copy(update={"is_rollup": True, "level": 1}),
    ]
    insights = InsightGenerator().generate(records, CLASSIFIER)
    assert [i for i in insights if i.priority == PRIORITY_SYSTEMATIC] == []


def test_unbudgeted_activity_insight() -> None:
    """Test zero-budget activity surfaces as an anomaly while its severity stays normal."""
    zero_budget = record("b1", "0", "500", name="Consulting")
    assert zero_budget.severity == Severity.NORMAL

    insights = InsightGenerator().generate([zero_budget], CLASSIFIER)

    assert len(insights) == 1
    assert insights[0].type == InsightType.ANOMALY
    assert insights[0].priority == PRIORITY_UNBUDGETED
    assert insights[0].severity == Severity.WARNING
    assert insights[0].impact == Decimal("500")
    assert insights[0].message == "Consulting has $500.00 of activity with no budget set."


def test_net_impact_recommendation() -> None:
    records = [
        record("r1", "10000", "9000", account_type=AccountType.REVENUE),
        record("e1", "5000", "5500", account_type=AccountType.EXPENSE),
    ]
    insights = InsightGenerator().generate(records, CLASSIFIER)
    net = [i for i in insights if i.type == InsightType.RECOMMENDATION]

    assert len(net) == 1
    assert net[0].priority == PRIORITY_NET_IMPACT
    assert net[0].severity == Severity.WARNING
    assert net[0].actionable is True
    assert isinstance(net[0].metadata, NetImpactInsightMetadata)
    assert net[0].metadata.net_impact == Decimal("-1500")
    assert net[0].message == "Net financial variance is $1,500.00 unfavorable."


def test_net_impact_threshold_is_configurable() -> None:
    records = [record("r1", "10000", "9000", account_type=AccountType.REVENUE)]
    assert [i for i in InsightGenerator().generate(records, CLASSIFIER) if i.type == InsightType.RECOMMENDATION] == []

    generator = InsightGenerator(net_impact_threshold=Decimal("500"))
    assert len([i for i in generator.generate(records, CLASSIFIER) if i.type == InsightType.RECOMMENDATION]) == 1


def test_ranking_by_priority_then_impact() -> None:
    """Test the larger of two critical overspends ranks first."""
    records = [
        record("small", "1000", "1200"),
        record("large", "10000", "12000"),
        record("saving", "1000", "500"),
    ]
    insights = InsightGenerator(net_impact_threshold=Decimal("1000000")).generate(records, CLASSIFIER)

    assert [i.priority for i in insights] == sorted((i.priority for i in insights), reverse=True)
    variance = [i for i in insights if i.priority == PRIORITY_CRITICAL_UNFAVORABLE]
    assert [i.record.budget_item_id for i in variance if i.record] == ["large", "small"]
    assert insights[-1].priority == PRIORITY_CRITICAL_FAVORABLE


def point(period: str, percent: str) -> HistoricalVariance:
    variance = Decimal(percent) * 10
    return HistoricalVariance(
        period=period,
        budget=Decimal("1000"),
        actual=Decimal("1000") + variance,
        variance=variance,
        variance_percent=Decimal(percent),
    )


def test_historical_trend_needs_two_periods() -> None:
    assert calculate_historical_trend([]) is None
    assert calculate_historical_trend([point("2024-01", "12")]) is None


def test_historical_trend_two_periods() -> None:
    """Test slope, mean and population standard deviation for a rising pair."""
    trend = calculate_historical_trend([point("2024-01", "10"), point("2024-02", "20")])
    assert trend is not None
    assert trend.slope == Decimal("10")
    assert trend.average_variance_percent == Decimal("15")
    assert trend.volatility == Decimal("5")
    assert trend.direction == Trend.WORSENING


def test_historical_trend_orders_by_period() -> None:
    """Test an unordered series is sorted before the slope is taken."""
    trend = calculate_historical_trend([point("2024-03", "10"), point("2024-01", "30"), point("2024-02", "20")])
    assert trend is not None
    assert [p.period for p in trend.periods] == ["2024-01", "2024-02", "2024-03"]
    assert trend.slope == Decimal("-10")
    assert trend.direction == Trend.IMPROVING
    assert trend.average_variance_percent == Decimal("20")
    assert float(trend.volatility) == pytest.approx(8.1649658, rel=1e-6)


@pytest.mark.parametrize(
    "second, expected",
    [
        ("10.4", Trend.STABLE),
        ("9.6", Trend.STABLE),
        ("10.5", Trend.WORSENING),
        ("9.5", Trend.IMPROVING),
    ],
)
def test_historical_trend_stable_band(second: str, expected: Trend) -> None:
    """Test a slope under 0.5 points per period in magnitude is stable."""
    trend = calculate_historical_trend([point("2024-01", "10"), point("2024-02", second)])
    assert trend is not None
    assert trend.direction == expected


def test_historical_variance_from_record() -> None:
    source = record("b1", "1000", "1200")
    history = HistoricalVariance.from_record(source)
    assert history.period == "2024-01"
    assert history.variance == Decimal("200")
    assert history.variance_percent == Decimal("20")
