"""
Domain models for the compensation engine.

Provides type-safe dataclasses for KeyCRM orders, classified line items,
per-order aggregates and the rows handed to the report writer. Raw API
payloads are parsed once, in the `from_api` constructors, and never
re-inspected downstream.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from upsales import resolvers


# ═══════════════════════════════════════════════════════════════════════════════
# LABELS
# ═══════════════════════════════════════════════════════════════════════════════

UNKNOWN_MANAGER = "Невідомий менеджер"
NO_MANAGER_KEY = "Без менеджера"

SUBTOTAL_MARKER = "ПІДСУМОК"
GRAND_TOTAL_MARKER = "ЗАГАЛЬНИЙ ПІДСУМОК"
SUBTOTAL_LABEL = "Підсумок"

DEFAULT_ITEM_NAME = "Товар"
DEFAULT_UPSELL_NAME = "Невідома допродажа"
DEFAULT_INCOMING_NAME = "Вхідне замовлення"
DEFAULT_TAGGED_NAME = "Замовлення за тегом"
DEFAULT_SPECIAL_TAG = "Спеціальний тег"

KIND_BONUS = "bonus"
KIND_RATE = "rate"
KIND_TOTAL = "total"


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Stream(Enum):
    """Compensation bucket a line item is attributed to."""
    SPECIAL_TAG = "special_tag"
    UPSELL = "upsell"
    INCOMING = "incoming"

    @property
    def type_label(self) -> str:
        """Row type label shown in the monthly tables."""
        labels = {
            Stream.SPECIAL_TAG: "За тегом",
            Stream.UPSELL: "Допродаж",
            Stream.INCOMING: "Вхідне замовлення",
        }
        return labels[self]

    @property
    def kind(self) -> str:
        """Whether the stream pays a bonus or a rate."""
        return KIND_RATE if self is Stream.INCOMING else KIND_BONUS

    @property
    def default_item_name(self) -> str:
        names = {
            Stream.SPECIAL_TAG: DEFAULT_ITEM_NAME,
            Stream.UPSELL: DEFAULT_UPSELL_NAME,
            Stream.INCOMING: DEFAULT_INCOMING_NAME,
        }
        return names[self]


# ═══════════════════════════════════════════════════════════════════════════════
# MANAGER IDENTITY
# ═══════════════════════════════════════════════════════════════════════════════

_WHITESPACE = re.compile(r"\s+")


def normalize_manager_name(name: Optional[str]) -> Tuple[str, str]:
    """
    Collapse whitespace in a manager name.

    Returns:
        (display_name, normalized_key); unknown managers fall back
        to UNKNOWN_MANAGER.
    """
    if name is None:
        return UNKNOWN_MANAGER, UNKNOWN_MANAGER.lower()
    collapsed = _WHITESPACE.sub(" ", str(name).strip())
    display_name = collapsed or UNKNOWN_MANAGER
    return display_name, display_name.lower()


def manager_key(manager_id: Optional[str], name: Optional[str]) -> str:
    """
    Resolve the grouping key for a manager.

    manager id, else normalized display name, else raw name,
    else the NO_MANAGER_KEY sentinel.
    """
    if manager_id not in (None, ""):
        return str(manager_id)
    if name:
        collapsed = _WHITESPACE.sub(" ", str(name).strip()).lower()
        if collapsed:
            return collapsed
        return str(name)
    return NO_MANAGER_KEY


@dataclass(frozen=True)
class ManagerRef:
    """Sales manager attached to an order."""
    id: Optional[str]
    name: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ManagerRef":
        """Create ManagerRef from a KeyCRM order payload."""
        display_name, _ = normalize_manager_name(resolvers.MANAGER_NAME.resolve(data))
        return cls(id=resolvers.MANAGER_ID.resolve(data), name=display_name)

    @property
    def key(self) -> str:
        return manager_key(self.id, self.name)


# ═══════════════════════════════════════════════════════════════════════════════
# ORDERS
# ═══════════════════════════════════════════════════════════════════════════════

def normalize_tag_value(value: Any) -> str:
    """Trim and lower-case a tag value for comparison."""
    if value is None:
        return ""
    return str(value).strip().lower()


@dataclass(frozen=True)
class Tag:
    """Order tag: a bare string, or a structured {name, alias} object."""
    name: Optional[str] = None
    alias: Optional[str] = None
    raw: Optional[str] = None

    @classmethod
    def from_api(cls, data: Any) -> Optional["Tag"]:
        """Create Tag from a KeyCRM tag value."""
        if not data:
            return None
        if isinstance(data, str):
            return cls(raw=data)
        if isinstance(data, dict):
            return cls(name=data.get("name"), alias=data.get("alias"))
        return None

    def normalized_forms(self) -> List[str]:
        """Comparable forms in lookup order: raw string, name, alias."""
        forms = [normalize_tag_value(v) for v in (self.raw, self.name, self.alias)]
        return [f for f in forms if f]

    def matches(self, target: str) -> bool:
        """Check if this tag matches a target tag name."""
        normalized_target = normalize_tag_value(target)
        return bool(normalized_target) and normalized_target in self.normalized_forms()


@dataclass(frozen=True)
class LineItem:
    """Product line item within an order, with resolved prices."""
    quantity: float
    sale_price: float
    purchased_price: float
    is_upsell: bool = False
    name: Optional[str] = None
    product_id: Optional[str] = None
    total_discount: float = 0.0
    # Payload field the sale price was read from
    price_source: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "LineItem":
        """Create LineItem from a KeyCRM product payload."""
        return cls(
            quantity=resolvers.QUANTITY.resolve(data),
            sale_price=resolvers.SALE_PRICE.resolve(data),
            purchased_price=resolvers.PURCHASED_PRICE.resolve(data),
            is_upsell=resolvers.UPSELL_FLAG.resolve(data),
            name=resolvers.ITEM_NAME.resolve(data),
            product_id=resolvers.ITEM_ID.resolve(data),
            total_discount=resolvers.ITEM_DISCOUNT.resolve(data),
            price_source=resolvers.SALE_PRICE.source(data),
        )

    @property
    def qualifies(self) -> bool:
        """Items with non-positive sale price are dropped."""
        return self.sale_price > 0

    @property
    def value(self) -> float:
        """Pre-discount line value."""
        return self.sale_price * self.quantity

    @property
    def cost(self) -> float:
        """Line purchase cost."""
        return self.purchased_price * self.quantity

    def display_name(self, default: str = DEFAULT_ITEM_NAME) -> str:
        return self.name or default


@dataclass(frozen=True)
class Order:
    """Order from KeyCRM."""
    id: Any
    created_at: Optional[str] = None
    status_id: Optional[int] = None
    status_group_id: Optional[int] = None
    manager: ManagerRef = field(default_factory=lambda: ManagerRef(id=None, name=UNKNOWN_MANAGER))
    tags: Tuple[Tag, ...] = ()
    items: Tuple[LineItem, ...] = ()
    total_discount: float = 0.0
    grand_total: float = 0.0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Order":
        """Create Order from KeyCRM API response."""
        raw_tags = data.get("tags") or []
        if not isinstance(raw_tags, list):
            raw_tags = [raw_tags]
        tags = tuple(t for t in (Tag.from_api(raw) for raw in raw_tags) if t)

        raw_products = data.get("products")
        products = raw_products if isinstance(raw_products, list) else []
        items = tuple(LineItem.from_api(p) for p in products if isinstance(p, dict))

        status_id = resolvers.STATUS_ID.resolve(data)
        status_group_id = resolvers.STATUS_GROUP_ID.resolve(data)

        return cls(
            id=data.get("id"),
            created_at=data.get("created_at") or None,
            status_id=int(status_id) if status_id else None,
            status_group_id=int(status_group_id) if status_group_id else None,
            manager=ManagerRef.from_api(data),
            tags=tags,
            items=items,
            total_discount=resolvers.ORDER_DISCOUNT.resolve(data),
            grand_total=resolvers.GRAND_TOTAL.resolve(data),
        )

    def special_tag(self, targets: Sequence[str]) -> Optional[str]:
        """
        Find the first tag matching one of the target tag names.

        Tags are scanned in order; for each tag the targets are tried in
        their configured order. Returns the target's own spelling.
        """
        normalized_targets = [normalize_tag_value(t) for t in targets]
        for tag in self.tags:
            for form in tag.normalized_forms():
                if form in normalized_targets:
                    return targets[normalized_targets.index(form)]
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# CLASSIFICATION AND AGGREGATION RESULTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ClassifiedItem:
    """A line item attributed to exactly one compensation stream."""
    order_id: Any
    stream: Stream
    name: str
    quantity: float
    sale_price: float
    purchased_price: float
    sale_total: float
    cost_total: float
    margin: float
    manager: ManagerRef
    date: Optional[str]
    discount_part: float = 0.0
    item_discount: float = 0.0
    product_id: Optional[str] = None
    special_tag: Optional[str] = None
    # Grouping key of the source order; id-less orders get a unique stand-in
    order_ref: Any = None
    # Unrounded values that order totals are summed from
    exact_margin: Optional[Decimal] = field(default=None, repr=False, compare=False)
    exact_cost: Optional[Decimal] = field(default=None, repr=False, compare=False)

    @property
    def is_special_tag(self) -> bool:
        return self.stream is Stream.SPECIAL_TAG


@dataclass(frozen=True)
class OrderAggregate:
    """All items of one order within one stream."""
    order_id: Any
    stream: Stream
    manager: ManagerRef
    date: Optional[str]
    total_sale: float
    total_cost: float
    total_margin: float
    items: Tuple[ClassifiedItem, ...]
    special_tag: Optional[str] = None

    @property
    def item_names(self) -> List[str]:
        """Item names in encounter order, deduplicated."""
        names: List[str] = []
        for item in self.items:
            if item.name and item.name not in names:
                names.append(item.name)
        return names


@dataclass(frozen=True)
class ReportRow:
    """
    One row of a monthly table.

    Detail rows carry a display date; synthetic rows carry SUBTOTAL_MARKER
    or GRAND_TOTAL_MARKER instead. `amounts` holds bonuses (kind=bonus)
    or rates (kind=rate), one per tier.
    """
    date: str
    manager_name: str
    manager_id: Optional[str]
    manager_key: str
    type_label: str
    name: str
    sale_price: Optional[float]
    cost_price: Optional[float]
    margin: float
    amounts: Tuple[float, ...]
    kind: str
    month: int
    year: int
    order_id: Any = None
    count: int = 1

    @property
    def is_subtotal(self) -> bool:
        return self.date == SUBTOTAL_MARKER

    @property
    def is_grand_total(self) -> bool:
        return self.date == GRAND_TOTAL_MARKER

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        data = {
            "date": self.date,
            "manager_name": self.manager_name,
            "manager_id": self.manager_id,
            "type": self.type_label,
            "name": self.name,
            "sale_price": self.sale_price,
            "cost_price": self.cost_price,
            "margin": self.margin,
            "kind": self.kind,
            "order_id": self.order_id,
            "month": self.month,
            "year": self.year,
        }
        for level, amount in enumerate(self.amounts, start=1):
            data[f"{self.kind}_level{level}"] = amount
        return data


@dataclass
class ManagerMonthTotal:
    """Running totals for one manager in one month of one stream family."""
    manager: ManagerRef
    manager_key: str
    month: int
    year: int
    kind: str
    margin: float = 0.0
    sale: float = 0.0
    cost: float = 0.0
    amounts: List[float] = field(default_factory=list)
    count: int = 0


@dataclass(frozen=True)
class ManagerSummaryRow:
    """Combined rate + bonus for one manager in one month, per tier."""
    manager_name: str
    manager_id: Optional[str]
    manager_key: str
    month: int
    year: int
    rates: Tuple[float, ...]
    bonuses: Tuple[float, ...]
    totals: Tuple[float, ...]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        data: Dict[str, Any] = {
            "manager_name": self.manager_name,
            "manager_id": self.manager_id,
            "month": self.month,
            "year": self.year,
        }
        for level, (rate, bonus, total) in enumerate(
            zip(self.rates, self.bonuses, self.totals), start=1
        ):
            data[f"rate_level{level}"] = rate
            data[f"bonus_level{level}"] = bonus
            data[f"total_level{level}"] = total
        return data
