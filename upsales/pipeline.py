"""
Compensation pipeline.

Wires the stages together:

    raw orders -> dedup -> canceled filter -> classify -> per-order
    aggregation -> manager-month aggregation -> reconciliation

and groups the output per calendar month. The run is pure: nothing is
published until `run` returns a complete CompensationReport.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from upsales.aggregation import ManagerMonthAggregator, OrderAggregator
from upsales.classifier import ClassificationResult, ItemClassifier
from upsales.config import AppConfig, config as default_config
from upsales.dates import month_key
from upsales.models import ManagerSummaryRow, Order, ReportRow, Stream
from upsales.observability import Timer, get_logger, run_scope
from upsales.reconciliation import combine_rates_and_bonuses

logger = get_logger(__name__)

OrderInput = Union[Order, Dict[str, Any]]


@dataclass(frozen=True)
class MonthReport:
    """All rows of one calendar month."""
    month: int
    year: int
    rows: Tuple[ReportRow, ...]
    summary: Tuple[ManagerSummaryRow, ...]

    @property
    def key(self) -> str:
        return month_key(self.month, self.year)

    @property
    def grand_total(self) -> Optional[ReportRow]:
        for row in reversed(self.rows):
            if row.is_grand_total:
                return row
        return None

    def rows_for(self, type_label: str) -> List[ReportRow]:
        """Detail rows of one stream type."""
        return [row for row in self.rows if row.type_label == type_label]


@dataclass(frozen=True)
class CompensationReport:
    """Result of one pipeline run."""
    months: Tuple[MonthReport, ...]
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def summary(self) -> List[ManagerSummaryRow]:
        return [row for month in self.months for row in month.summary]

    def month(self, month: int, year: int) -> Optional[MonthReport]:
        for report in self.months:
            if report.month == month and report.year == year:
                return report
        return None

    @property
    def is_empty(self) -> bool:
        return not self.months


def parse_orders(raw_orders: Iterable[OrderInput]) -> List[Order]:
    """
    Parse raw payloads into Orders, deduplicating by id (first wins).

    Orders without an id are kept and counted as separate orders; there is
    nothing to dedup them on.
    """
    orders: List[Order] = []
    seen = set()
    for raw in raw_orders:
        order = raw if isinstance(raw, Order) else Order.from_api(raw)
        if order.id is not None:
            if order.id in seen:
                continue
            seen.add(order.id)
        else:
            logger.warning(
                "Order without id, kept as a separate order",
                extra={"manager": order.manager.name, "created_at": order.created_at},
            )
        orders.append(order)
    return orders


class CompensationPipeline:
    """
    Computes manager compensation from a batch of KeyCRM orders.

    Usage:
        pipeline = CompensationPipeline(config)
        report = pipeline.run(orders)
    """

    # Row order within a month table
    STREAM_ORDER = (Stream.UPSELL, Stream.SPECIAL_TAG, Stream.INCOMING)

    def __init__(self, app_config: Optional[AppConfig] = None):
        self.config = app_config or default_config
        self.classifier = ItemClassifier(self.config.compensation)
        self.order_aggregator = OrderAggregator()
        self.tz = ZoneInfo(self.config.report.timezone)

    def run(self, raw_orders: Iterable[OrderInput]) -> CompensationReport:
        """Run all stages over a batch and return the monthly report."""
        with run_scope():
            with Timer("compensation_pipeline", logger):
                orders = parse_orders(raw_orders)
                classified = self.classifier.classify_all(orders)

                month_aggregator = ManagerMonthAggregator(self.config.compensation.tiers, self.tz)
                rows_by_stream = {
                    stream: month_aggregator.aggregate(
                        self.order_aggregator.aggregate(classified.stream(stream)),
                        stream,
                    )
                    for stream in self.STREAM_ORDER
                }

                months = self._build_months(rows_by_stream, month_aggregator)
                stats = self._stats(classified, month_aggregator, months)

        logger.info(
            f"Compensation computed: {stats['orders_seen']} orders, {len(months)} months",
            extra=stats,
        )
        return CompensationReport(months=tuple(months), stats=stats)

    def _build_months(
        self,
        rows_by_stream: Dict[Stream, List[ReportRow]],
        month_aggregator: ManagerMonthAggregator,
    ) -> List[MonthReport]:
        per_month: Dict[Tuple[int, int], List[ReportRow]] = {}
        for stream in self.STREAM_ORDER:
            for row in rows_by_stream[stream]:
                per_month.setdefault((row.year, row.month), []).append(row)

        tier_count = len(self.config.compensation.tiers)
        months = []
        for year, month in sorted(per_month):
            rows = per_month[(year, month)]
            grand_total = month_aggregator.grand_total_row(rows, month, year)
            months.append(MonthReport(
                month=month,
                year=year,
                rows=tuple(rows) + (grand_total,),
                summary=tuple(combine_rates_and_bonuses(rows, tier_count)),
            ))
        return months

    @staticmethod
    def _stats(
        classified: ClassificationResult,
        month_aggregator: ManagerMonthAggregator,
        months: List[MonthReport],
    ) -> Dict[str, Any]:
        stats = classified.to_dict()
        stats["orders_excluded_no_date"] = len(month_aggregator.excluded_orders)
        stats["months"] = [m.key for m in months]
        stats["managers"] = sum(len(m.summary) for m in months)
        return stats
