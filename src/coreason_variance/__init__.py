# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

from coreason_variance.adapters import (
    board_items_to_budget_items,
    flatten_profit_and_loss,
    parse_account_type,
    period_bounds,
)
from coreason_variance.cache import AnalysisCache, InMemoryAnalysisCache, generate_cache_key
from coreason_variance.calculator import calculate_variance, calculate_variance_percent, determine_direction
from coreason_variance.classifier import SeverityClassifier
from coreason_variance.exceptions import (
    DuplicateItemError,
    HierarchyCycleError,
    InvalidAmountError,
    InvalidPeriodError,
    InvalidThresholdError,
    VarianceAnalysisError,
)
from coreason_variance.hierarchy import HierarchyAggregator
from coreason_variance.insights import InsightGenerator, apply_trends, calculate_historical_trend
from coreason_variance.matcher import AccountMatcher
from coreason_variance.models import (
    AccountType,
    ActualItem,
    AnalysisResult,
    AnalysisSummary,
    BudgetItem,
    Direction,
    HistoricalVariance,
    Insight,
    InsightType,
    MatchMethod,
    MatchResult,
    Severity,
    SeverityProfileName,
    ThresholdConfig,
    Trend,
    VarianceRecord,
    VarianceTrend,
)
from coreason_variance.profiles import SeverityProfile, resolve_profile
from coreason_variance.reconciler import VarianceReconciler, analyze

__all__ = [
    "VarianceReconciler",
    "analyze",
    "AccountMatcher",
    "SeverityClassifier",
    "HierarchyAggregator",
    "InsightGenerator",
    "apply_trends",
    "calculate_historical_trend",
    "calculate_variance",
    "calculate_variance_percent",
    "determine_direction",
    "SeverityProfile",
    "resolve_profile",
    "AnalysisCache",
    "InMemoryAnalysisCache",
    "generate_cache_key",
    "flatten_profit_and_loss",
    "board_items_to_budget_items",
    "period_bounds",
    "parse_account_type",
    "AccountType",
    "ActualItem",
    "AnalysisResult",
    "AnalysisSummary",
    "BudgetItem",
    "Direction",
    "HistoricalVariance",
    "Insight",
    "InsightType",
    "MatchMethod",
    "MatchResult",
    "Severity",
    "SeverityProfileName",
    "ThresholdConfig",
    "Trend",
    "VarianceRecord",
    "VarianceTrend",
    "VarianceAnalysisError",
    "InvalidAmountError",
    "InvalidPeriodError",
    "DuplicateItemError",
    "HierarchyCycleError",
    "InvalidThresholdError",
]
