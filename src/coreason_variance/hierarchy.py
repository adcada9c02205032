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

from coreason_variance.calculator import DECIMAL_CONTEXT, ZERO, calculate_variance
from coreason_variance.classifier import SeverityClassifier
from coreason_variance.exceptions import HierarchyCycleError
from coreason_variance.models import MatchMethod, VarianceRecord
from coreason_variance.utils.logger import logger

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


class HierarchyAggregator:
    """
    The Aggregator: Rolls child account variances up into synthetic parent-level records.

    Source records are never altered. Each budget item referenced as a parent gets one
    extra record (is_rollup=True) whose amounts are the sum of its children's totals,
    where a child's total is its own rollup if it has children, or its source amounts otherwise.
    """

    def _link_children(self, records: Sequence[VarianceRecord]) -> Dict[str, List[str]]:
        """
        Maps parent ids to child ids in input order.
        References to a budget item that does not exist in the same period are ignored.
        """
        by_id = {record.budget_item_id: record for record in records}
        children: Dict[str, List[str]] = {}
        for record in records:
            if record.parent_id is None:
                continue
            parent = by_id.get(record.parent_id)
            if parent is None or parent.period != record.period:
                logger.warning(
                    f"Budget item {record.budget_item_id} references unknown parent {record.parent_id} "
                    f"in period {record.period}. Treating it as a root."
                )
                continue
            children.setdefault(record.parent_id, []).append(record.budget_item_id)
        return children

    def _check_acyclic(self, records: Sequence[VarianceRecord], children: Dict[str, List[str]]) -> None:
        """
        Walks every parent chain once. Raises HierarchyCycleError on the first cycle found.
        """
        parent_of = {child: parent for parent, kids in children.items() for child in kids}
        state: Dict[str, int] = {record.budget_item_id: _UNVISITED for record in records}

        for record in records:
            path: List[str] = []
            node: Optional[str] = record.budget_item_id
            while node is not None and state[node] == _UNVISITED:
                state[node] = _IN_PROGRESS
                path.append(node)
                node = parent_of.get(node)

            if node is not None and state[node] == _IN_PROGRESS:
                cycle = path[path.index(node) :]
                raise HierarchyCycleError(f"Cyclic parent references: {' -> '.join(cycle + [node])}", cycle=cycle)

            for visited in path:
                state[visited] = _DONE

    def aggregate(self, records: Sequence[VarianceRecord], classifier: SeverityClassifier) -> List[VarianceRecord]:
        """
        Appends rollup records for every parent, ordered by level and then by the
        parent's position in the input.

        Args:
            records: Source (level 0) records with unique budget item ids.
            classifier: Classifier used to grade the synthetic records.

        Returns:
            The source records unchanged, followed by the rollups. Without any
            parent references the input is returned as is.
        """
        children = self._link_children(records)
        if not children:
            return list(records)

        self._check_acyclic(records, children)

        by_id = {record.budget_item_id: record for record in records}
        position = {record.budget_item_id: index for index, record in enumerate(records)}
        totals: Dict[str, Tuple[Decimal, Decimal, int]] = {}

        # Post-order walk so every child total exists before its parent's
        for root in children:
            if root in totals:
                continue
            stack: List[Tuple[str, bool]] = [(root, False)]
            while stack:
                node, expanded = stack.pop()
                if node in totals:
                    continue
                if not expanded:
                    stack.append((node, True))
                    stack.extend((kid, False) for kid in children[node] if kid in children and kid not in totals)
                    continue

                budget, actual, level = ZERO, ZERO, 0
                for kid in children[node]:
                    if kid in children:
                        kid_budget, kid_actual, kid_level = totals[kid]
                    else:
                        kid_budget, kid_actual, kid_level = by_id[kid].budget, by_id[kid].actual, 0
                    budget = DECIMAL_CONTEXT.add(budget, kid_budget)
                    actual = DECIMAL_CONTEXT.add(actual, kid_actual)
                    level = max(level, kid_level + 1)
                totals[node] = (budget, actual, level)

        rollups: List[VarianceRecord] = []
        for parent_id, (budget, actual, level) in totals.items():
            parent = by_id[parent_id]
            figures = calculate_variance(budget, actual, parent.account_type)
            rollups.append(
                parent.model_copy(
                    update={
                        "budget": budget,
                        "actual": actual,
                        "variance": figures.variance,
                        "variance_percent": figures.variance_percent,
                        "direction": figures.direction,
                        "severity": classifier.classify(figures.variance_percent),
                        "level": level,
                        "is_rollup": True,
                        "match_method": MatchMethod.NONE,
                        "trend": None,
                        "previous_variance_percent": None,
                    }
                )
            )

        rollups.sort(key=lambda record: (record.level, position[record.budget_item_id]))
        return list(records) + rollups
