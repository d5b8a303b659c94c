"""
Reconciliation of rate and bonus subtotals into manager summary rows.

Bonus SUBTOTAL rows of the SpecialTag and Upsell streams are merged per
manager per month first, then joined with the Incoming rate SUBTOTAL rows
over the union of managers. A manager seen with an id in one stream and
only by name in another still resolves to one summary row.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from upsales.margin import add2, add_amounts
from upsales.models import (
    KIND_BONUS,
    KIND_RATE,
    ManagerSummaryRow,
    ReportRow,
    normalize_manager_name,
)

MonthKey = Tuple[int, int]


@dataclass
class _SummaryEntry:
    manager_name: str
    manager_id: Optional[str]
    manager_key: str
    month: int
    year: int
    rates: Tuple[float, ...]
    bonuses: Tuple[float, ...]

    def to_row(self) -> ManagerSummaryRow:
        return ManagerSummaryRow(
            manager_name=self.manager_name,
            manager_id=self.manager_id,
            manager_key=self.manager_key,
            month=self.month,
            year=self.year,
            rates=self.rates,
            bonuses=self.bonuses,
            totals=add_amounts(self.rates, self.bonuses),
        )


@dataclass
class _MonthIndex:
    """Per-month identity map: normalized manager name -> manager id."""
    name_to_id: Dict[str, str] = field(default_factory=dict)

    def learn(self, rows: Iterable[ReportRow]) -> None:
        for row in rows:
            if row.manager_id not in (None, ""):
                name_key = normalize_manager_name(row.manager_name)[1]
                self.name_to_id.setdefault(name_key, str(row.manager_id))

    def key_for(self, row: ReportRow) -> str:
        if row.manager_id not in (None, ""):
            return str(row.manager_id)
        name_key = normalize_manager_name(row.manager_name)[1]
        return self.name_to_id.get(name_key, row.manager_key)


def _subtotals(rows: Iterable[ReportRow], kind: str) -> List[ReportRow]:
    return [row for row in rows if row.is_subtotal and row.kind == kind]


def _by_month(rows: Iterable[ReportRow]) -> Dict[MonthKey, List[ReportRow]]:
    grouped: Dict[MonthKey, List[ReportRow]] = {}
    for row in rows:
        grouped.setdefault((row.year, row.month), []).append(row)
    return grouped


def merge_bonus_subtotals(rows: Iterable[ReportRow], tier_count: int = 3) -> List[ReportRow]:
    """
    Merge bonus SUBTOTAL rows of one manager-month into one row.

    SpecialTag and Upsell subtotals for the same manager key and month are
    summed tier by tier. Non-bonus and detail rows are ignored.
    """
    merged: Dict[Tuple[str, int, int], ReportRow] = {}
    for month_rows in _by_month(_subtotals(rows, KIND_BONUS)).values():
        index = _MonthIndex()
        index.learn(month_rows)
        for row in month_rows:
            key = (index.key_for(row), row.month, row.year)
            existing = merged.get(key)
            if existing is None:
                merged[key] = ReportRow(
                    date=row.date,
                    manager_name=row.manager_name,
                    manager_id=row.manager_id,
                    manager_key=key[0],
                    type_label=row.type_label,
                    name=row.name,
                    sale_price=None,
                    cost_price=None,
                    margin=row.margin,
                    amounts=tuple(row.amounts) if row.amounts else (0.0,) * tier_count,
                    kind=KIND_BONUS,
                    month=row.month,
                    year=row.year,
                    count=row.count,
                )
                continue
            merged[key] = ReportRow(
                date=existing.date,
                manager_name=existing.manager_name,
                manager_id=existing.manager_id or row.manager_id,
                manager_key=existing.manager_key,
                type_label=existing.type_label,
                name=existing.name,
                sale_price=None,
                cost_price=None,
                margin=add2(existing.margin, row.margin),
                amounts=add_amounts(existing.amounts, row.amounts),
                kind=KIND_BONUS,
                month=existing.month,
                year=existing.year,
                count=existing.count + row.count,
            )
    return list(merged.values())


def combine_rates_and_bonuses(
    rows: Iterable[ReportRow],
    tier_count: int = 3,
) -> List[ManagerSummaryRow]:
    """
    Join rate and bonus SUBTOTAL rows into per-manager summary rows.

    Every manager present in either stream for a month gets one row;
    the missing side is zero. total = round2(rate + bonus) per tier.
    Months are ordered chronologically; within a month, managers keep
    first-encounter order, rate stream first.

    Args:
        rows: Report rows of all streams; only SUBTOTAL rows are used.
        tier_count: Number of compensation tiers.
    """
    rows = list(rows)
    rate_rows = _subtotals(rows, KIND_RATE)
    bonus_rows = merge_bonus_subtotals(rows, tier_count)
    zeros = (0.0,) * tier_count

    rate_by_month = _by_month(rate_rows)
    bonus_by_month = _by_month(bonus_rows)

    summary: List[ManagerSummaryRow] = []
    for month_key in sorted(set(rate_by_month) | set(bonus_by_month)):
        month_rates = rate_by_month.get(month_key, [])
        month_bonuses = bonus_by_month.get(month_key, [])

        index = _MonthIndex()
        index.learn(month_rates)
        index.learn(month_bonuses)

        entries: Dict[str, _SummaryEntry] = {}
        for row in month_rates + month_bonuses:
            key = index.key_for(row)
            entry = entries.get(key)
            if entry is None:
                entry = entries[key] = _SummaryEntry(
                    manager_name=row.manager_name,
                    manager_id=row.manager_id,
                    manager_key=key,
                    month=row.month,
                    year=row.year,
                    rates=zeros,
                    bonuses=zeros,
                )
            elif entry.manager_id in (None, "") and row.manager_id not in (None, ""):
                entry.manager_id = row.manager_id

            if row.kind == KIND_RATE:
                entry.rates = add_amounts(entry.rates, row.amounts)
            else:
                entry.bonuses = add_amounts(entry.bonuses, row.amounts)

        summary.extend(entry.to_row() for entry in entries.values())
    return summary
