"""
Field resolvers for loosely shaped KeyCRM payloads.

KeyCRM returns prices, names and flags under different keys depending on
the order source and on which relations were included. Each logical field
is described once here as an ordered chain of accessors; the first
accessor that yields a usable value wins.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

Payload = Dict[str, Any]
Accessor = Callable[[Payload], Any]


def key(name: str) -> Accessor:
    """Accessor for a top-level key."""
    def _get(data: Payload) -> Any:
        return data.get(name)
    _get.__name__ = name
    return _get


def nested(parent: str, name: str) -> Accessor:
    """Accessor for a key inside a nested object (e.g. offer.price)."""
    def _get(data: Payload) -> Any:
        child = data.get(parent)
        if isinstance(child, dict):
            return child.get(name)
        return None
    _get.__name__ = f"{parent}.{name}"
    return _get


def to_float(value: Any) -> Optional[float]:
    """Parse a number the way KeyCRM sends it (number or numeric string)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value: Any) -> Optional[int]:
    """Parse an integer id; None when absent or malformed."""
    number = to_float(value)
    if number is None:
        return None
    return int(number)


@dataclass(frozen=True)
class NumberResolver:
    """First accessor whose value parses to a non-zero number wins."""

    name: str
    accessors: Tuple[Accessor, ...]
    default: float = 0.0

    def resolve(self, data: Payload) -> float:
        for accessor in self.accessors:
            number = to_float(accessor(data))
            if number:
                return number
        return self.default

    def source(self, data: Payload) -> Optional[str]:
        """Name of the accessor that produced the value, for diagnostics."""
        for accessor in self.accessors:
            if to_float(accessor(data)):
                return accessor.__name__
        return None


@dataclass(frozen=True)
class TextResolver:
    """First accessor with a non-empty value wins."""

    name: str
    accessors: Tuple[Accessor, ...]

    def resolve(self, data: Payload, default: Optional[str] = None) -> Optional[str]:
        for accessor in self.accessors:
            value = accessor(data)
            if value is None or value == "":
                continue
            text = str(value).strip()
            if text:
                return text
        return default


@dataclass(frozen=True)
class FlagResolver:
    """True when any accessor yields literal True."""

    name: str
    accessors: Tuple[Accessor, ...]

    def resolve(self, data: Payload) -> bool:
        return any(accessor(data) is True for accessor in self.accessors)


# ─── Line item fields ─────────────────────────────────────────────────────────

SALE_PRICE = NumberResolver("sale_price", (
    key("price_sold"),
    key("price"),
    key("sale_price"),
    nested("offer", "price"),
    nested("offer", "sale_price"),
))

PURCHASED_PRICE = NumberResolver("purchased_price", (
    key("purchased_price"),
    nested("offer", "purchased_price"),
    key("cost"),
    key("cost_price"),
    nested("offer", "cost"),
    nested("offer", "cost_price"),
))

QUANTITY = NumberResolver("quantity", (key("quantity"),), default=1.0)

ITEM_DISCOUNT = NumberResolver("total_discount", (key("total_discount"),))

ITEM_NAME = TextResolver("name", (
    key("name"),
    key("product_name"),
    nested("offer", "name"),
))

ITEM_ID = TextResolver("product_id", (key("id"), key("product_id")))

UPSELL_FLAG = FlagResolver("is_upsell", (
    key("upsale"),
    key("upsell"),
    key("is_upsell"),
    nested("offer", "upsale"),
    nested("offer", "upsell"),
    nested("offer", "is_upsell"),
))

# ─── Order fields ─────────────────────────────────────────────────────────────

STATUS_ID = NumberResolver("status_id", (nested("status", "id"), key("status_id")))

STATUS_GROUP_ID = NumberResolver("status_group_id", (nested("status", "group_id"),))

MANAGER_ID = TextResolver("manager_id", (nested("manager", "id"), key("manager_id")))

MANAGER_NAME = TextResolver("manager_name", (
    nested("manager", "full_name"),
    nested("manager", "name"),
    key("manager_name"),
))

GRAND_TOTAL = NumberResolver("grand_total", (key("grand_total"),))

ORDER_DISCOUNT = NumberResolver("total_discount", (key("total_discount"),))
