# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

import calendar
import json
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from coreason_variance.exceptions import InvalidAmountError, InvalidPeriodError
from coreason_variance.models import AccountType, ActualItem, BudgetItem
from coreason_variance.utils.logger import logger

_MONTH = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTER = re.compile(r"^(\d{4})-Q([1-4])$", re.IGNORECASE)
_YEAR = re.compile(r"^(\d{4})$")
_SLUG = re.compile(r"[^a-z0-9]+")

# Checked in order, so the more specific phrases come first
_ACCOUNT_TYPE_KEYWORDS: List[Tuple[str, AccountType]] = [
    ("cost of goods", AccountType.COST_OF_GOODS_SOLD),
    ("cost of sales", AccountType.COST_OF_GOODS_SOLD),
    ("cogs", AccountType.COST_OF_GOODS_SOLD),
    ("income", AccountType.REVENUE),
    ("revenue", AccountType.REVENUE),
    ("sales", AccountType.REVENUE),
    ("expense", AccountType.EXPENSE),
    ("operating", AccountType.EXPENSE),
    ("cost", AccountType.EXPENSE),
    ("asset", AccountType.ASSET),
    ("liabilit", AccountType.LIABILITY),
    ("equity", AccountType.EQUITY),
]

DEFAULT_COLUMN_MAPPING: Dict[str, str] = {
    "amount": "budget",
    "account_code": "account_code",
    "account_type": "account_type",
    "parent_id": "parent_id",
    "category": "category",
    "department": "department",
}


def period_bounds(label: str) -> Tuple[date, date]:
    """
    Resolves a period label to its first and last day.

    Supports months ('2024-01'), quarters ('2024-Q1') and years ('2024').

    Raises:
        InvalidPeriodError: For any other label.
    """
    text = label.strip()

    month = _MONTH.match(text)
    if month:
        year, number = int(month.group(1)), int(month.group(2))
        if not 1 <= number <= 12:
            raise InvalidPeriodError(f"Invalid month in period label: {label}", field="period")
        return date(year, number, 1), date(year, number, calendar.monthrange(year, number)[1])

    quarter = _QUARTER.match(text)
    if quarter:
        year, number = int(quarter.group(1)), int(quarter.group(2))
        first_month = 3 * (number - 1) + 1
        last_month = first_month + 2
        return date(year, first_month, 1), date(year, last_month, calendar.monthrange(year, last_month)[1])

    year_match = _YEAR.match(text)
    if year_match:
        year = int(year_match.group(1))
        return date(year, 1, 1), date(year, 12, 31)

    raise InvalidPeriodError(f"Unsupported period label: {label}", field="period")


def parse_account_type(label: Optional[str], default: AccountType = AccountType.OTHER) -> AccountType:
    """
    Maps a free-text label ('Income', 'Cost of Goods Sold', 'Operating Expenses', ...)
    to an AccountType. Enum values are accepted as is.
    """
    if not label:
        return default
    text = label.strip().casefold()
    try:
        return AccountType(text)
    except ValueError:
        pass
    for keyword, account_type in _ACCOUNT_TYPE_KEYWORDS:
        if keyword in text:
            return account_type
    return default


def slugify(name: str) -> str:
    return _SLUG.sub("-", name.casefold()).strip("-")


def parse_amount(raw: Any, item_id: Optional[str] = None) -> Optional[Decimal]:
    """
    Parses a reported amount such as '1,234.56', '$90', '(250.00)' or 12.5.
    Returns None for blanks. Parentheses mean a negative amount.

    Raises:
        InvalidAmountError: For text that is not a finite number.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, Decimal)) and not isinstance(raw, bool):
        value = Decimal(raw)
    elif isinstance(raw, float):
        value = Decimal(str(raw))
    else:
        text = str(raw).strip().replace(",", "").replace("$", "")
        if not text:
            return None
        negative = text.startswith("(") and text.endswith(")")
        if negative:
            text = text[1:-1]
        try:
            value = Decimal(text)
        except InvalidOperation as e:
            raise InvalidAmountError(f"Cannot parse amount: {raw!r}", item_id=item_id, field="amount") from e
        if negative:
            value = -value

    if not value.is_finite():
        raise InvalidAmountError(f"Amount is not finite: {raw!r}", item_id=item_id, field="amount")
    return value


def _col_value(columns: Sequence[Mapping[str, Any]], index: int, key: str = "value") -> Optional[Any]:
    if index >= len(columns):
        return None
    return columns[index].get(key)


def _section_label(row: Mapping[str, Any]) -> Optional[str]:
    header = row.get("Header") or {}
    return row.get("group") or _col_value(header.get("ColData") or [], 0)


def flatten_profit_and_loss(report: Mapping[str, Any], period: str) -> List[ActualItem]:
    """
    Flattens a profit and loss report into one ActualItem per account row.

    The report is a tree of rows. Section rows carry a header (which sets the
    account type for everything below it), nested rows and a summary. Data rows
    carry the account name (with its id) in the first column and the amount in
    the second. Summary lines are totals and are not emitted.

    Args:
        report: The report document, with its rows under report['Rows']['Row'].
        period: Period label stamped on every item.

    Returns:
        ActualItems in report order. Blank and zero rows are skipped, signs are kept
        as reported. Ids are slugs of the account names, made unique with a suffix.
    """
    items: List[ActualItem] = []
    used_ids: Dict[str, int] = {}

    def walk(rows: Sequence[Mapping[str, Any]], account_type: AccountType) -> None:
        for row in rows:
            if row.get("type") == "Section" or "Rows" in row:
                section_type = parse_account_type(_section_label(row), default=account_type)
                walk((row.get("Rows") or {}).get("Row") or [], section_type)
                continue

            columns = row.get("ColData") or []
            name = (_col_value(columns, 0) or "").strip()
            if not name:
                continue

            slug = slugify(name) or "account"
            amount = parse_amount(_col_value(columns, 1), item_id=slug)
            if amount is None or amount == 0:
                continue

            used_ids[slug] = used_ids.get(slug, 0) + 1
            item_id = slug if used_ids[slug] == 1 else f"{slug}-{used_ids[slug]}"
            items.append(
                ActualItem(
                    id=item_id,
                    account_code=_col_value(columns, 0, "id") or None,
                    account_name=name,
                    account_type=account_type,
                    amount=amount,
                    period=period,
                )
            )

    walk((report.get("Rows") or {}).get("Row") or [], AccountType.OTHER)
    logger.debug(f"Flattened profit and loss report into {len(items)} actual item(s) for {period}.")
    return items


def _column_text(item: Mapping[str, Any], column_id: Optional[str]) -> Optional[str]:
    """
    Reads a board column as text. Falls back to the JSON-encoded value when the
    column has no display text.
    """
    if not column_id:
        return None
    for column in item.get("column_values") or []:
        if column.get("id") != column_id:
            continue
        text = column.get("text")
        if text not in (None, ""):
            return str(text)
        value = column.get("value")
        if value in (None, ""):
            return None
        try:
            decoded = json.loads(value) if isinstance(value, str) else value
        except json.JSONDecodeError:
            return str(value)
        if isinstance(decoded, dict):
            decoded = decoded.get("text") or decoded.get("number") or decoded.get("value")
        return None if decoded in (None, "") else str(decoded)
    return None


def board_items_to_budget_items(
    items: Sequence[Mapping[str, Any]],
    period: str,
    column_mapping: Optional[Mapping[str, str]] = None,
) -> List[BudgetItem]:
    """
    Converts work-board items into BudgetItems.

    Args:
        items: Board items, each with 'id', 'name' and 'column_values' entries of
               {'id', 'text', 'value'}. Subitems may carry 'parent_item': {'id'}.
        period: Period label of the budget. Must be a supported label.
        column_mapping: BudgetItem field -> board column id. Defaults to DEFAULT_COLUMN_MAPPING.

    Returns:
        BudgetItems in board order. Items without an amount are skipped.
    """
    mapping = dict(DEFAULT_COLUMN_MAPPING)
    if column_mapping:
        mapping.update(column_mapping)
    start, end = period_bounds(period)

    budget_items: List[BudgetItem] = []
    for item in items:
        item_id = str(item.get("id") or "")
        amount = parse_amount(_column_text(item, mapping.get("amount")), item_id=item_id)
        if amount is None:
            logger.debug(f"Board item {item_id} has no budget amount. Skipping.")
            continue

        parent_id = _column_text(item, mapping.get("parent_id"))
        if parent_id is None and item.get("parent_item"):
            parent_id = str(item["parent_item"].get("id") or "") or None

        budget_items.append(
            BudgetItem(
                id=item_id,
                account_code=_column_text(item, mapping.get("account_code")),
                account_name=str(item.get("name") or ""),
                account_type=parse_account_type(
                    _column_text(item, mapping.get("account_type")), default=AccountType.EXPENSE
                ),
                amount=amount,
                period=period,
                period_start=start,
                period_end=end,
                parent_id=parent_id,
                category=_column_text(item, mapping.get("category")),
                department=_column_text(item, mapping.get("department")),
            )
        )
    return budget_items
