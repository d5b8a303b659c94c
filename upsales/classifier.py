"""
Order classification and margin attribution.

Every qualifying line item (positive sale price) of a non-canceled order
is attributed to exactly one stream:

- SPECIAL_TAG: the order carries one of the full-order tags; all its items
  count, and the order discount is prorated across them by value.
- UPSELL: the item (or its offer) is flagged as an upsell.
- INCOMING: everything else.

Upsell and incoming items get undiscounted margin.
"""
import itertools
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from upsales.config import CompensationConfig
from upsales.margin import decimal_sum, discount_share, exact_item_margin, round2
from upsales.models import (
    DEFAULT_SPECIAL_TAG,
    ClassifiedItem,
    LineItem,
    Order,
    Stream,
)
from upsales.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderClassification:
    """Partition of one order's qualifying items into the three streams."""
    order_id: object
    special_tag: Optional[str]
    special_tag_items: Tuple[ClassifiedItem, ...] = ()
    upsell_items: Tuple[ClassifiedItem, ...] = ()
    incoming_items: Tuple[ClassifiedItem, ...] = ()
    dropped: int = 0

    @property
    def items(self) -> Tuple[ClassifiedItem, ...]:
        return self.special_tag_items + self.upsell_items + self.incoming_items


@dataclass
class ClassificationResult:
    """Streams for a whole batch, in input encounter order."""
    special_tag: List[ClassifiedItem] = field(default_factory=list)
    upsell: List[ClassifiedItem] = field(default_factory=list)
    incoming: List[ClassifiedItem] = field(default_factory=list)
    orders_seen: int = 0
    orders_canceled: int = 0
    items_dropped: int = 0

    def add(self, classification: OrderClassification) -> None:
        self.special_tag.extend(classification.special_tag_items)
        self.upsell.extend(classification.upsell_items)
        self.incoming.extend(classification.incoming_items)
        self.items_dropped += classification.dropped

    def stream(self, stream: Stream) -> List[ClassifiedItem]:
        streams = {
            Stream.SPECIAL_TAG: self.special_tag,
            Stream.UPSELL: self.upsell,
            Stream.INCOMING: self.incoming,
        }
        return streams[stream]

    def to_dict(self) -> dict:
        return {
            "orders_seen": self.orders_seen,
            "orders_canceled": self.orders_canceled,
            "items_dropped": self.items_dropped,
            "special_tag_items": len(self.special_tag),
            "upsell_items": len(self.upsell),
            "incoming_items": len(self.incoming),
        }


class ItemClassifier:
    """
    Classifies order line items into compensation streams.

    Usage:
        classifier = ItemClassifier(config.compensation)
        result = classifier.classify_all(orders)
    """

    def __init__(self, compensation: CompensationConfig):
        self.compensation = compensation
        self._anonymous = itertools.count(1)

    def is_canceled(self, order: Order) -> bool:
        """Check if order is canceled / failed and must be skipped."""
        return self.compensation.is_canceled(order.status_id, order.status_group_id)

    def special_tag(self, order: Order) -> Optional[str]:
        """First full-order tag the order carries, in configured spelling."""
        return order.special_tag(self.compensation.full_order_tags)

    def classify(self, order: Order) -> OrderClassification:
        """
        Partition one order's items.

        The caller is expected to have dropped canceled orders already.
        """
        qualifying = [item for item in order.items if item.qualifies]
        dropped = len(order.items) - len(qualifying)
        order_ref = self._order_ref(order)

        for item in qualifying:
            if not item.purchased_price:
                logger.debug(
                    "Purchase price missing, margin equals sale value",
                    extra={"order_id": order.id, "item": item.name, "price_source": item.price_source},
                )

        tag = self.special_tag(order)
        if tag:
            return OrderClassification(
                order_id=order.id,
                special_tag=tag,
                special_tag_items=self._classify_tagged(order, order_ref, qualifying, tag),
                dropped=dropped,
            )

        upsell: List[ClassifiedItem] = []
        incoming: List[ClassifiedItem] = []
        for item in qualifying:
            if item.is_upsell:
                upsell.append(self._build(order, order_ref, item, Stream.UPSELL))
            else:
                incoming.append(self._build(order, order_ref, item, Stream.INCOMING))

        return OrderClassification(
            order_id=order.id,
            special_tag=None,
            upsell_items=tuple(upsell),
            incoming_items=tuple(incoming),
            dropped=dropped,
        )

    def classify_all(self, orders: Iterable[Order]) -> ClassificationResult:
        """Classify a batch, skipping canceled orders."""
        result = ClassificationResult()
        for order in orders:
            result.orders_seen += 1
            if self.is_canceled(order):
                result.orders_canceled += 1
                continue
            result.add(self.classify(order))
        return result

    def _order_ref(self, order: Order) -> Any:
        """Key the order's items are grouped by downstream."""
        if order.id is not None:
            return order.id
        return f"без id #{next(self._anonymous)}"

    def _classify_tagged(
        self,
        order: Order,
        order_ref: Any,
        items: List[LineItem],
        tag: str,
    ) -> Tuple[ClassifiedItem, ...]:
        total_value = decimal_sum(item.value for item in items)
        return tuple(
            self._build(
                order, order_ref, item, Stream.SPECIAL_TAG,
                discount_share(total_value, order.grand_total, item.value),
                tag or DEFAULT_SPECIAL_TAG,
            )
            for item in items
        )

    @staticmethod
    def _build(
        order: Order,
        order_ref: Any,
        item: LineItem,
        stream: Stream,
        discount: Decimal = Decimal(0),
        special_tag: Optional[str] = None,
    ) -> ClassifiedItem:
        exact_cost = decimal_sum((item.cost, discount))
        exact_margin = exact_item_margin(item.sale_price, item.purchased_price, item.quantity, discount)
        return ClassifiedItem(
            order_id=order.id,
            stream=stream,
            name=item.display_name(stream.default_item_name),
            quantity=item.quantity,
            sale_price=item.sale_price,
            purchased_price=item.purchased_price,
            sale_total=round2(item.value),
            cost_total=round2(exact_cost),
            margin=round2(exact_margin),
            manager=order.manager,
            date=order.created_at,
            discount_part=round2(discount),
            item_discount=item.total_discount,
            product_id=item.product_id or (str(order.id) if order.id is not None else None),
            special_tag=special_tag,
            order_ref=order_ref,
            exact_margin=exact_margin,
            exact_cost=exact_cost,
        )
