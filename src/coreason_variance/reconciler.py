# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence, Union

from coreason_variance.calculator import DECIMAL_CONTEXT, ZERO, calculate_variance, calculate_variance_percent
from coreason_variance.classifier import SeverityClassifier
from coreason_variance.exceptions import DuplicateItemError, InvalidAmountError, InvalidPeriodError
from coreason_variance.hierarchy import HierarchyAggregator
from coreason_variance.insights import InsightGenerator, apply_trends
from coreason_variance.matcher import AccountMatcher
from coreason_variance.models import (
    ActualItem,
    AnalysisResult,
    AnalysisSummary,
    BudgetItem,
    Direction,
    MatchResult,
    Severity,
    ThresholdConfig,
    VarianceRecord,
)
from coreason_variance.utils.logger import logger


def _is_finite(value: Union[Decimal, float, int]) -> bool:
    try:
        return Decimal(value).is_finite()
    except (TypeError, ValueError, InvalidOperation):
        return False


class VarianceReconciler:
    """
    The Reconciler: Single entry point of the variance engine.
    Composes the matcher, calculator, classifier, aggregator and insight generator
    over one organization's budget and actual items for one period.

    Holds no mutable state, so one instance can serve concurrent runs.
    """

    def __init__(
        self,
        matcher: Optional[AccountMatcher] = None,
        aggregator: Optional[HierarchyAggregator] = None,
        insight_generator: Optional[InsightGenerator] = None,
        include_zero_variances: bool = True,
    ) -> None:
        """
        Initialize the Reconciler.

        Args:
            matcher: Instance of AccountMatcher. If None, creates a default one.
            aggregator: Instance of HierarchyAggregator. If None, creates a default one.
            insight_generator: Instance of InsightGenerator. If None, creates a default one.
            include_zero_variances: Keep accounts whose budget and actual are both zero.
                                    Default is True. Accounts referenced as a parent are always kept.
        """
        self.matcher = matcher if matcher is not None else AccountMatcher()
        self.aggregator = aggregator if aggregator is not None else HierarchyAggregator()
        self.insight_generator = insight_generator if insight_generator is not None else InsightGenerator()
        self.include_zero_variances = include_zero_variances

    def _validate_inputs(self, budget_items: Sequence[BudgetItem], actual_items: Sequence[ActualItem]) -> None:
        """
        Re-checks what model validation enforces, for items built without validation,
        and rejects duplicate budget identifiers.
        """
        seen: set[str] = set()
        for budget in budget_items:
            if not _is_finite(budget.amount):
                raise InvalidAmountError(
                    f"Budget item {budget.id} has a non-finite amount: {budget.amount}",
                    item_id=budget.id,
                    field="amount",
                )
            if budget.period_start is not None and budget.period_end is not None:
                if budget.period_start > budget.period_end:
                    raise InvalidPeriodError(
                        f"Budget item {budget.id} starts after it ends: {budget.period_start} > {budget.period_end}",
                        item_id=budget.id,
                        field="period_start",
                    )
            if budget.id in seen:
                raise DuplicateItemError(f"Duplicate budget item id: {budget.id}", item_id=budget.id, field="id")
            seen.add(budget.id)

        for actual in actual_items:
            if not _is_finite(actual.amount):
                raise InvalidAmountError(
                    f"Actual item {actual.id} has a non-finite amount: {actual.amount}",
                    item_id=actual.id,
                    field="amount",
                )

    def _build_records(self, match_result: MatchResult, classifier: SeverityClassifier) -> List[VarianceRecord]:
        parent_ids = {pair.budget.parent_id for pair in match_result.pairs if pair.budget.parent_id}
        records: List[VarianceRecord] = []
        skipped = 0
        for pair in match_result.pairs:
            budget = pair.budget
            if (
                not self.include_zero_variances
                and budget.amount == ZERO
                and pair.actual_amount == ZERO
                and budget.id not in parent_ids
            ):
                skipped += 1
                continue
            figures = calculate_variance(budget.amount, pair.actual_amount, budget.account_type)
            records.append(
                VarianceRecord(
                    budget_item_id=budget.id,
                    account_code=budget.account_code,
                    account_name=budget.account_name,
                    account_type=budget.account_type,
                    period=budget.period,
                    parent_id=budget.parent_id,
                    budget=budget.amount,
                    actual=pair.actual_amount,
                    variance=figures.variance,
                    variance_percent=figures.variance_percent,
                    severity=classifier.classify(figures.variance_percent),
                    direction=figures.direction,
                    match_method=pair.method,
                )
            )
        if skipped:
            logger.debug(f"Skipped {skipped} account(s) with zero budget and zero actual.")
        return records

    def _summarize(
        self,
        records: Sequence[VarianceRecord],
        classifier: SeverityClassifier,
        match_result: MatchResult,
    ) -> AnalysisSummary:
        """
        Totals and counts over source records only, so rollups are never counted twice.
        """
        sources = [record for record in records if not record.is_rollup]

        total_budget = ZERO
        total_actual = ZERO
        severity_counts: Dict[Severity, int] = {tier: 0 for tier in classifier.profile.tiers}
        favorable = unfavorable = exceptional = 0
        for record in sources:
            total_budget = DECIMAL_CONTEXT.add(total_budget, record.budget)
            total_actual = DECIMAL_CONTEXT.add(total_actual, record.actual)
            severity_counts[record.severity] = severity_counts.get(record.severity, 0) + 1
            if record.direction == Direction.FAVORABLE:
                favorable += 1
            elif record.direction == Direction.UNFAVORABLE:
                unfavorable += 1
            if classifier.is_exceptionally_favorable(record.variance_percent, record.direction):
                exceptional += 1

        total_variance = DECIMAL_CONTEXT.subtract(total_actual, total_budget)
        return AnalysisSummary(
            total_budget=total_budget,
            total_actual=total_actual,
            total_variance=total_variance,
            total_variance_percent=calculate_variance_percent(total_variance, total_budget),
            severity_counts=severity_counts,
            favorable_count=favorable,
            unfavorable_count=unfavorable,
            exceptionally_favorable_count=exceptional,
            record_count=len(sources),
            rollup_count=len(records) - len(sources),
            unmatched_budget_count=match_result.unmatched_budget_count,
            unmatched_actual_count=len(match_result.unmatched_actual_ids),
        )

    def analyze(
        self,
        budget_items: Sequence[BudgetItem],
        actual_items: Sequence[ActualItem],
        config: Optional[ThresholdConfig] = None,
        previous_result: Optional[AnalysisResult] = None,
    ) -> AnalysisResult:
        """
        Reconciles budget against actuals and returns the complete analysis.

        1. Validates inputs (fails the whole run on non-finite amounts, inverted
           periods, duplicate ids, inverted thresholds or cyclic hierarchies).
        2. Matches each budget item to its actual.
        3. Calculates and classifies each variance.
        4. Rolls up parent accounts when budget items reference parents.
        5. Attaches trends against the previous result, if given.
        6. Generates ranked insights and summary totals.

        Args:
            budget_items: Budget line items for one organization, board and period.
            actual_items: Actual records for the same organization and period.
            config: Organization thresholds. If None, uses the defaults.
            previous_result: Result of the previous period, for trend comparison.

        Returns:
            AnalysisResult. An empty budget yields an empty result with zero totals.
        """
        config = config if config is not None else ThresholdConfig()
        classifier = SeverityClassifier(config)
        self._validate_inputs(budget_items, actual_items)

        logger.info(f"Analyzing {len(budget_items)} budget item(s) against {len(actual_items)} actual item(s).")

        match_result = self.matcher.match(budget_items, actual_items)
        records = self._build_records(match_result, classifier)
        records = self.aggregator.aggregate(records, classifier)
        if previous_result is not None:
            records = apply_trends(records, previous_result.records)

        summary = self._summarize(records, classifier, match_result)
        insights = self.insight_generator.generate(
            records,
            classifier,
            total_variance=summary.total_variance,
            total_variance_percent=summary.total_variance_percent,
        )

        periods = {budget.period for budget in budget_items}
        result = AnalysisResult(
            period=periods.pop() if len(periods) == 1 else None,
            thresholds=config,
            records=records,
            insights=insights,
            summary=summary,
        )

        logger.info(
            f"Analysis complete: {summary.record_count} record(s), {summary.rollup_count} rollup(s), "
            f"{summary.critical_count} critical, {len(insights)} insight(s)."
        )
        return result


def analyze(
    budget_items: Sequence[BudgetItem],
    actual_items: Sequence[ActualItem],
    config: Optional[ThresholdConfig] = None,
    previous_result: Optional[AnalysisResult] = None,
) -> AnalysisResult:
    """
    Runs one analysis with a default VarianceReconciler.
    """
    return VarianceReconciler().analyze(budget_items, actual_items, config=config, previous_result=previous_result)
