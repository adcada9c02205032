# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

from typing import Dict, List, Optional, Sequence

from coreason_variance.models import ActualItem, BudgetItem, MatchedPair, MatchMethod, MatchResult
from coreason_variance.utils.logger import logger


def normalize_name(name: str) -> str:
    return name.strip().casefold()


class AccountMatcher:
    """
    The Matcher: Pairs each budget item with the actual recorded for the same account.

    Account codes are matched exactly (case-sensitive) when both sides carry one.
    When no actual shares the code, account names are compared case-insensitively,
    accepting either name containing the other, since the two source systems name
    and number accounts independently.
    When several actuals qualify, the first one in input order wins.
    """

    def _names_overlap(self, budget_name: str, actual_name: str) -> bool:
        # An empty name would be a substring of everything
        if not budget_name or not actual_name:
            return False
        return budget_name in actual_name or actual_name in budget_name

    def find_match(
        self,
        budget: BudgetItem,
        candidates: Sequence[ActualItem],
        code_index: Optional[Dict[str, ActualItem]] = None,
    ) -> MatchedPair:
        """
        Finds the actual for one budget item among candidates of the same period.

        Args:
            budget: The budget item to resolve.
            candidates: Actual items of the budget item's period, in input order.
            code_index: Optional precomputed map of account code to first actual with that code.

        Returns:
            A MatchedPair. An unmatched pair has actual=None, which downstream counts as zero.
        """
        if budget.account_code:
            if code_index is not None:
                by_code = code_index.get(budget.account_code)
            else:
                by_code = next((a for a in candidates if a.account_code == budget.account_code), None)
            if by_code is not None:
                return MatchedPair(budget=budget, actual=by_code, method=MatchMethod.CODE)

        budget_name = normalize_name(budget.account_name)
        for actual in candidates:
            if self._names_overlap(budget_name, normalize_name(actual.account_name)):
                return MatchedPair(budget=budget, actual=actual, method=MatchMethod.NAME)

        return MatchedPair(budget=budget, actual=None, method=MatchMethod.NONE)

    def match(self, budget_items: Sequence[BudgetItem], actual_items: Sequence[ActualItem]) -> MatchResult:
        """
        Matches every budget item against the actuals of its own period.
        One actual may satisfy several budget items.

        Returns:
            MatchResult with one pair per budget item (budget input order) and the
            ids of actuals that no budget item claimed.
        """
        by_period: Dict[str, List[ActualItem]] = {}
        code_indexes: Dict[str, Dict[str, ActualItem]] = {}
        for actual in actual_items:
            by_period.setdefault(actual.period, []).append(actual)
            if actual.account_code:
                # First by input order wins
                code_indexes.setdefault(actual.period, {}).setdefault(actual.account_code, actual)

        pairs: List[MatchedPair] = []
        claimed: set[str] = set()
        for budget in budget_items:
            pair = self.find_match(
                budget,
                by_period.get(budget.period, []),
                code_index=code_indexes.get(budget.period, {}),
            )
            if pair.actual is not None:
                claimed.add(pair.actual.id)
            else:
                logger.debug(f"No actual found for budget item {budget.id} ({budget.account_name}). Assuming 0.")
            pairs.append(pair)

        unmatched_actual_ids = [actual.id for actual in actual_items if actual.id not in claimed]
        if unmatched_actual_ids:
            logger.warning(f"{len(unmatched_actual_ids)} actual item(s) matched no budget item.")

        return MatchResult(pairs=pairs, unmatched_actual_ids=unmatched_actual_ids)
