"""
Pytest configuration and shared fixtures.
"""
import pytest
from typing import Any, Dict, List, Optional

from upsales.config import AppConfig, APIConfig, CompensationConfig, ReportConfig


def make_order(
    order_id: int,
    products: List[Dict[str, Any]],
    created_at: Optional[str] = "2025-11-10T10:00:00Z",
    manager: Optional[Dict[str, Any]] = None,
    tags: Optional[List[Any]] = None,
    grand_total: Optional[float] = None,
    status: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build a KeyCRM order payload the way the API returns it with includes."""
    if grand_total is None:
        grand_total = sum(
            float(p.get("price_sold", 0)) * float(p.get("quantity", 1)) for p in products
        )
    return {
        "id": order_id,
        "created_at": created_at,
        "status": status or {"id": 1, "group_id": 1},
        "manager": manager if manager is not None else {"id": 7, "full_name": "Іван Петров"},
        "tags": tags or [],
        "grand_total": grand_total,
        "total_discount": 0,
        "products": products,
    }


def make_product(
    name: str,
    price_sold: float,
    purchased_price: float,
    quantity: float = 1,
    upsale: bool = False,
) -> Dict[str, Any]:
    return {
        "name": name,
        "quantity": quantity,
        "price_sold": price_sold,
        "purchased_price": purchased_price,
        "upsale": upsale,
    }


@pytest.fixture
def app_config() -> AppConfig:
    """Config with defaults and a dummy API key; independent of the environment."""
    return AppConfig(
        api=APIConfig(key="test-key", base_url="https://openapi.keycrm.app/v1"),
        compensation=CompensationConfig(),
        report=ReportConfig(output_dir="reports", period="last_month", custom_start="", custom_end=""),
    )


@pytest.fixture
def tagged_order() -> Dict[str, Any]:
    """Order tagged 'Стара база': items 100/60 and 50/30, grand_total 135."""
    return make_order(
        101,
        [
            make_product("Крем", 100, 60),
            make_product("Тонер", 50, 30),
        ],
        tags=[{"id": 3, "name": "Стара база", "alias": "old_base"}],
        grand_total=135,
    )


@pytest.fixture
def incoming_order() -> Dict[str, Any]:
    """Plain order: one item 200/120, no tags, not upsell."""
    return make_order(102, [make_product("Сироватка", 200, 120)])


@pytest.fixture
def upsell_order() -> Dict[str, Any]:
    """Order with one regular item and two upsell items (one flagged on the offer)."""
    return make_order(
        103,
        [
            make_product("Пінка", 300, 200),
            make_product("Маска", 250, 50, upsale=True),
            {
                "name": "Патчі",
                "quantity": 2,
                "price_sold": 150,
                "offer": {"purchased_price": 40, "upsale": True},
            },
        ],
    )


@pytest.fixture
def canceled_order() -> Dict[str, Any]:
    """Order in a canceled status (id 19)."""
    return make_order(104, [make_product("Крем", 500, 100)], status={"id": 19, "group_id": 5})


@pytest.fixture
def sample_orders(tagged_order, incoming_order, upsell_order, canceled_order) -> List[Dict[str, Any]]:
    return [tagged_order, incoming_order, upsell_order, canceled_order]


@pytest.fixture
def order_factory():
    """Builder for order payloads (see make_order)."""
    return make_order


@pytest.fixture
def product_factory():
    """Builder for product payloads (see make_product)."""
    return make_product
