# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

from decimal import ROUND_HALF_EVEN, Context, Decimal

from coreason_variance.models import AccountType, Direction, VarianceFigures

# Fixed arithmetic context so results never depend on the caller's thread-local decimal context
DECIMAL_CONTEXT = Context(prec=28, rounding=ROUND_HALF_EVEN)

HUNDRED = Decimal("100")
ZERO = Decimal("0")

EXPENSE_TYPES = frozenset({AccountType.EXPENSE, AccountType.COST_OF_GOODS_SOLD})


def calculate_variance_percent(variance: Decimal, budget: Decimal) -> Decimal:
    """
    Variance relative to budget, in percent.
    A zero budget yields 0: unbudgeted activity never produces a percent-based signal.
    """
    if budget == ZERO:
        return ZERO
    return DECIMAL_CONTEXT.divide(DECIMAL_CONTEXT.multiply(variance, HUNDRED), budget)


def determine_direction(variance: Decimal, account_type: AccountType) -> Direction:
    """
    Revenue above plan and expenses below plan are favorable.
    Balance-sheet and other accounts carry no direction.
    """
    if variance == ZERO:
        return Direction.NEUTRAL

    if account_type == AccountType.REVENUE:
        return Direction.FAVORABLE if variance > ZERO else Direction.UNFAVORABLE

    if account_type in EXPENSE_TYPES:
        return Direction.FAVORABLE if variance < ZERO else Direction.UNFAVORABLE

    return Direction.NEUTRAL


def calculate_variance(budget: Decimal, actual: Decimal, account_type: AccountType) -> VarianceFigures:
    """
    Calculates the variance between a budgeted and an actual amount.
    Variance = Actual - Budget.

    Args:
        budget: The budgeted amount.
        actual: The actual amount (0 when no actual was matched).
        account_type: The account's economic type, which decides the direction.

    Returns:
        VarianceFigures with the signed variance, percent and direction.
    """
    variance = DECIMAL_CONTEXT.subtract(actual, budget)
    return VarianceFigures(
        variance=variance,
        variance_percent=calculate_variance_percent(variance, budget),
        direction=determine_direction(variance, account_type),
    )
