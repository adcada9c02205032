# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

from typing import List, Optional


class VarianceAnalysisError(Exception):
    """
    Base class for conditions that fail an analysis run.
    Carries a machine-readable code plus the offending item and field when known.
    """

    code = "ANALYSIS_ERROR"

    def __init__(self, message: str, item_id: Optional[str] = None, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.item_id = item_id
        self.field = field


class InvalidAmountError(VarianceAnalysisError):
    """
    Raised when a budget or actual amount is not a finite number.
    """

    code = "INVALID_AMOUNT"


class InvalidPeriodError(VarianceAnalysisError):
    """
    Raised for a period whose start falls after its end, or a period label
    that cannot be resolved to dates.
    """

    code = "INVALID_PERIOD"


class DuplicateItemError(VarianceAnalysisError):
    """
    Raised when two budget items share an identifier.
    """

    code = "DUPLICATE_ITEM"


class HierarchyCycleError(VarianceAnalysisError):
    """
    Raised when parent references between budget items form a cycle.
    """

    code = "HIERARCHY_CYCLE"

    def __init__(self, message: str, cycle: List[str]) -> None:
        super().__init__(message, item_id=cycle[0] if cycle else None, field="parent_id")
        self.cycle = cycle


class InvalidThresholdError(VarianceAnalysisError, ValueError):
    """
    Raised when the warning threshold is not strictly below the critical threshold.
    Subclasses ValueError so pydantic validators surface it as a ValidationError.
    """

    code = "INVALID_THRESHOLD"

    def __init__(self, message: str, warning_percent: object, critical_percent: object) -> None:
        super().__init__(message, field="warning_percent")
        self.warning_percent = warning_percent
        self.critical_percent = critical_percent
