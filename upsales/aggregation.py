"""
Order and manager-month aggregation.

OrderAggregator folds classified items into one aggregate per order per
stream. ManagerMonthAggregator turns those aggregates into report rows:
one detail row per order, then one SUBTOTAL row per (manager, month),
with tier bonuses (SpecialTag, Upsell) or tier rates (Incoming).
"""
from datetime import tzinfo
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from upsales.config import TierConfig
from upsales.dates import format_display_date, resolve_month_year
from upsales.margin import add2, add_amounts, bonuses_for_all_tiers, rates_for_all_tiers, sum_exact
from upsales.models import (
    DEFAULT_TAGGED_NAME,
    GRAND_TOTAL_MARKER,
    KIND_BONUS,
    KIND_RATE,
    KIND_TOTAL,
    SUBTOTAL_LABEL,
    SUBTOTAL_MARKER,
    ClassifiedItem,
    ManagerMonthTotal,
    OrderAggregate,
    ReportRow,
    Stream,
)
from upsales.observability import get_logger

logger = get_logger(__name__)

MAX_LISTED_NAMES = 3


def _list_names(names: Sequence[str]) -> str:
    """'a, b, c' for up to three names, 'a, b, c...' beyond that."""
    listed = ", ".join(names[:MAX_LISTED_NAMES])
    if len(names) > MAX_LISTED_NAMES:
        listed += "..."
    return listed


def _exact(value, rounded):
    return value if value is not None else rounded


# ═══════════════════════════════════════════════════════════════════════════════
# ORDER AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════

class OrderAggregator:
    """Groups classified items of one stream by order id."""

    def aggregate(self, items: Iterable[ClassifiedItem]) -> List[OrderAggregate]:
        """
        Build one aggregate per order, in first-encounter order.

        Sale, cost and margin are summed from the items' unrounded values and
        rounded once, so a discount split unevenly across items still adds up
        to the order's own total. Items of orders without an id are kept apart
        by their order_ref.
        """
        grouped: Dict[object, List[ClassifiedItem]] = {}
        for item in items:
            key = item.order_ref if item.order_ref is not None else item.order_id
            grouped.setdefault(key, []).append(item)

        aggregates = []
        for order_items in grouped.values():
            first = order_items[0]
            aggregates.append(OrderAggregate(
                order_id=first.order_id,
                stream=first.stream,
                manager=first.manager,
                date=first.date,
                total_sale=sum_exact(i.sale_total for i in order_items),
                total_cost=sum_exact(_exact(i.exact_cost, i.cost_total) for i in order_items),
                total_margin=sum_exact(_exact(i.exact_margin, i.margin) for i in order_items),
                items=tuple(order_items),
                special_tag=next((i.special_tag for i in order_items if i.special_tag), None),
            ))
        return aggregates


    @staticmethod
    def display_name(aggregate: OrderAggregate) -> str:
        """Row name for an order aggregate."""
        if aggregate.stream is Stream.SPECIAL_TAG:
            return aggregate.special_tag or DEFAULT_TAGGED_NAME

        if aggregate.stream is Stream.UPSELL:
            names = [item.name for item in aggregate.items]
            if len(names) == 1:
                return names[0]
            return f"{len(names)} допродажів: {_list_names(names)}"

        names = aggregate.item_names
        if not names:
            return Stream.INCOMING.default_item_name
        if len(names) == 1:
            return names[0]
        return f"{len(names)} товарів: {_list_names(names)}"


# ═══════════════════════════════════════════════════════════════════════════════
# MANAGER-MONTH AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════

def subtotal_name(stream: Stream, count: int) -> str:
    """Display name of a manager-month SUBTOTAL row."""
    if stream is Stream.UPSELL:
        return f"Всього: {count} допродажів"
    if stream is Stream.SPECIAL_TAG:
        return f"Всього: {count} замовлень за тегами"
    return f"Всього: {count} вхідних замовлень"


class ManagerMonthAggregator:
    """
    Accumulates per-order compensation into manager-month totals.

    Usage:
        aggregator = ManagerMonthAggregator(config.compensation.tiers, tz)
        rows = aggregator.aggregate(order_aggregates, Stream.UPSELL)
    """

    def __init__(self, tiers: Sequence[TierConfig], tz: Optional[tzinfo] = None):
        self.tiers = tuple(tiers)
        self.tz = tz
        self.excluded_orders: List[object] = []

    def amounts_for(self, margin: float, stream: Stream) -> Tuple[float, ...]:
        """Tier bonuses for bonus streams, tier rates for the incoming stream."""
        if stream.kind == KIND_RATE:
            return rates_for_all_tiers(margin, self.tiers)
        return bonuses_for_all_tiers(margin, self.tiers)

    def aggregate(self, aggregates: Iterable[OrderAggregate], stream: Stream) -> List[ReportRow]:
        """Detail rows in input order, followed by SUBTOTAL rows per (manager, month)."""
        details: List[ReportRow] = []
        totals: Dict[Tuple[str, int, int], ManagerMonthTotal] = {}

        for aggregate in aggregates:
            period = resolve_month_year(aggregate.date, self.tz)
            if period is None:
                self.excluded_orders.append(aggregate.order_id)
                logger.warning(
                    "Order date unresolvable, excluded from monthly totals",
                    extra={"order_id": aggregate.order_id, "date": aggregate.date, "stream": stream.value},
                )
                continue
            month, year = period

            amounts = self.amounts_for(aggregate.total_margin, stream)
            count = len(aggregate.items) if stream is Stream.UPSELL else 1
            manager = aggregate.manager

            details.append(ReportRow(
                date=format_display_date(aggregate.date, self.tz),
                manager_name=manager.name,
                manager_id=manager.id,
                manager_key=manager.key,
                type_label=stream.type_label,
                name=OrderAggregator.display_name(aggregate),
                sale_price=aggregate.total_sale,
                cost_price=aggregate.total_cost,
                margin=aggregate.total_margin,
                amounts=amounts,
                kind=stream.kind,
                month=month,
                year=year,
                order_id=aggregate.order_id,
                count=count,
            ))

            bucket = (manager.key, month, year)
            total = totals.get(bucket)
            if total is None:
                total = totals[bucket] = ManagerMonthTotal(
                    manager=manager,
                    manager_key=manager.key,
                    month=month,
                    year=year,
                    kind=stream.kind,
                    amounts=[0.0] * len(self.tiers),
                )
            total.margin = add2(total.margin, aggregate.total_margin)
            total.sale = add2(total.sale, aggregate.total_sale)
            total.cost = add2(total.cost, aggregate.total_cost)
            total.amounts = list(add_amounts(total.amounts, amounts))
            total.count += count

        return details + [self._subtotal_row(total, stream) for total in totals.values()]

    @staticmethod
    def _subtotal_row(total: ManagerMonthTotal, stream: Stream) -> ReportRow:
        with_totals = stream.kind == KIND_RATE
        return ReportRow(
            date=SUBTOTAL_MARKER,
            manager_name=total.manager.name,
            manager_id=total.manager.id,
            manager_key=total.manager_key,
            type_label=SUBTOTAL_LABEL,
            name=subtotal_name(stream, total.count),
            sale_price=total.sale if with_totals else None,
            cost_price=total.cost if with_totals else None,
            margin=total.margin,
            amounts=tuple(total.amounts),
            kind=total.kind,
            month=total.month,
            year=total.year,
            count=total.count,
        )

    def grand_total_row(self, rows: Iterable[ReportRow], month: int, year: int) -> ReportRow:
        """
        Month GRAND-TOTAL over SUBTOTAL rows only.

        Detail rows are ignored so nothing is counted twice.
        """
        subtotals = [row for row in rows if row.is_subtotal]
        margin = 0.0
        amounts: Tuple[float, ...] = (0.0,) * len(self.tiers)
        kinds = set()
        for row in subtotals:
            margin = add2(margin, row.margin)
            amounts = add_amounts(amounts, row.amounts)
            kinds.add(row.kind)

        if kinds == {KIND_BONUS} or kinds == {KIND_RATE}:
            kind = kinds.pop()
        else:
            kind = KIND_TOTAL

        return ReportRow(
            date=GRAND_TOTAL_MARKER,
            manager_name="",
            manager_id=None,
            manager_key="",
            type_label="",
            name="",
            sale_price=None,
            cost_price=None,
            margin=margin,
            amounts=amounts,
            kind=kind,
            month=month,
            year=year,
            count=sum(row.count for row in subtotals),
        )
