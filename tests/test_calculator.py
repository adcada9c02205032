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

import pytest
from coreason_variance.calculator import calculate_variance, calculate_variance_percent, determine_direction
from coreason_variance.models import AccountType, Direction


def test_calculate_variance_over_budget_expense() -> None:
    """Test an expense overspend is unfavorable."""
    figures = calculate_variance(Decimal("1000"), Decimal("1200"), AccountType.EXPENSE)

    assert figures.variance == Decimal("200")
    assert figures.variance_percent == Decimal("20")
    assert figures.direction == Direction.UNFAVORABLE


def test_direction_asymmetry_between_revenue_and_expense() -> None:
    """Test the same shortfall is favorable for expenses and unfavorable for revenue."""
    expense = calculate_variance(Decimal("1000"), Decimal("900"), AccountType.EXPENSE)
    revenue = calculate_variance(Decimal("1000"), Decimal("900"), AccountType.REVENUE)

    assert expense.variance == revenue.variance == Decimal("-100")
    assert expense.direction == Direction.FAVORABLE
    assert revenue.direction == Direction.UNFAVORABLE


def test_revenue_above_plan_is_favorable() -> None:
    figures = calculate_variance(Decimal("1000"), Decimal("1300"), AccountType.REVENUE)
    assert figures.direction == Direction.FAVORABLE
    assert figures.variance_percent == Decimal("30")


def test_cost_of_goods_sold_follows_expense_convention() -> None:
    figures = calculate_variance(Decimal("500"), Decimal("400"), AccountType.COST_OF_GOODS_SOLD)
    assert figures.direction == Direction.FAVORABLE


@pytest.mark.parametrize(
    "account_type",
    [AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY, AccountType.OTHER],
)
def test_other_account_types_are_neutral(account_type: AccountType) -> None:
    """Test accounts without an accounting convention never carry a direction."""
    assert determine_direction(Decimal("250"), account_type) == Direction.NEUTRAL
    assert determine_direction(Decimal("-250"), account_type) == Direction.NEUTRAL


def test_zero_variance_is_neutral() -> None:
    figures = calculate_variance(Decimal("1000"), Decimal("1000"), AccountType.REVENUE)
    assert figures.variance == Decimal("0")
    assert figures.direction == Direction.NEUTRAL


def test_zero_budget_yields_zero_percent() -> None:
    """Test a zero budget never produces a percent, however large the actual."""
    figures = calculate_variance(Decimal("0"), Decimal("500"), AccountType.EXPENSE)

    assert figures.variance == Decimal("500")
    assert figures.variance_percent == Decimal("0")
    assert figures.direction == Direction.UNFAVORABLE


def test_percent_boundary_is_exact() -> None:
    """Test decimal arithmetic lands exactly on 15 for 150 over 1000."""
    assert calculate_variance_percent(Decimal("150"), Decimal("1000")) == Decimal("15")
    assert calculate_variance_percent(Decimal("151"), Decimal("1000")) == Decimal("15.1")


def test_percent_keeps_sign_for_negative_budget() -> None:
    figures = calculate_variance(Decimal("-1000"), Decimal("-1200"), AccountType.OTHER)
    assert figures.variance == Decimal("-200")
    assert figures.variance_percent == Decimal("20")


def test_unmatched_actual_is_full_shortfall() -> None:
    """Test a missing actual (zero) gives variance = -budget."""
    figures = calculate_variance(Decimal("750"), Decimal("0"), AccountType.EXPENSE)
    assert figures.variance == Decimal("-750")
    assert figures.variance_percent == Decimal("-100")
    assert figures.direction == Direction.FAVORABLE
