"""
Pagination for the KeyCRM order endpoint.

KeyCRM pages carry a `meta` block (current_page, last_page, total) when
the endpoint supports it; some responses are a bare list instead. The
paginator follows `meta` when it is usable and otherwise keeps going
until an empty page.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from upsales.exceptions import KeyCRMDataError
from upsales.observability import get_logger
from upsales.resolvers import to_int

logger = get_logger(__name__)

FetchFunc = Callable[[Dict[str, Any]], Awaitable[Any]]


def extract_page(response: Any, page: int) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """
    Split a page response into (items, meta).

    Raises:
        KeyCRMDataError: If the response is neither {"data": [...]} nor a list
    """
    if isinstance(response, list):
        return response, None

    if not isinstance(response, dict):
        raise KeyCRMDataError(
            f"Invalid response type on page {page}",
            expected="dict or list",
            got=type(response).__name__
        )

    batch = response.get("data")
    if not isinstance(batch, list):
        raise KeyCRMDataError(
            f"Response 'data' field is not a list on page {page}",
            expected="list",
            got=type(batch).__name__
        )

    meta = response.get("meta")
    return batch, meta if isinstance(meta, dict) else None


def has_next_page(batch: List[Dict[str, Any]], meta: Optional[Dict[str, Any]], page: int) -> bool:
    """
    Stop rule.

    With meta carrying last_page and a positive total, continue while
    current_page < last_page. Without usable meta, continue while the page
    is non-empty.
    """
    if meta:
        last_page = to_int(meta.get("last_page"))
        total = to_int(meta.get("total")) or 0
        if last_page is not None and total > 0:
            current_page = to_int(meta.get("current_page")) or page
            return current_page < last_page
    return bool(batch)


class OrderPaginator:
    """
    Walks the order list page by page and returns every order once.

    Orders that shift between pages while the walk is in progress may show
    up twice; only the first copy (by id) is kept. Between pages the
    paginator waits rate_limit seconds to stay under KeyCRM's request quota.

        paginator = OrderPaginator(client.get_orders, page_size=50)
        orders = await paginator.fetch_all({"include": "products.offer"})
    """

    def __init__(
        self,
        fetch_func: FetchFunc,
        page_size: int = 50,
        rate_limit: float = 1.1,
        max_pages: int = 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetch_func = fetch_func
        self.page_size = page_size
        self.rate_limit = rate_limit
        self.max_pages = max_pages
        self._sleep = sleep
        self.pages_fetched = 0

    async def fetch_all(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Combined orders of all pages.

        Errors from fetch_func propagate unchanged and KeyCRMDataError is
        raised for an unreadable page, so a failed walk never returns a
        partial list.
        """
        params = dict(params or {})
        params["limit"] = self.page_size

        orders: List[Dict[str, Any]] = []
        seen = set()
        self.pages_fetched = 0

        for page in range(1, self.max_pages + 1):
            params["page"] = page
            response = await self.fetch_func(dict(params))
            self.pages_fetched += 1

            batch, meta = extract_page(response, page)
            for order in batch:
                order_id = order.get("id") if isinstance(order, dict) else None
                if order_id is not None:
                    if order_id in seen:
                        continue
                    seen.add(order_id)
                orders.append(order)

            logger.debug(
                f"Fetched page {page}: {len(batch)} orders",
                extra={"page": page, "batch_size": len(batch), "total_so_far": len(orders)}
            )

            if not has_next_page(batch, meta, page):
                break

            if page == self.max_pages:
                logger.warning(
                    f"Page limit of {self.max_pages} reached, stopping pagination",
                    extra={"max_pages": self.max_pages}
                )
                break

            if self.rate_limit > 0:
                await self._sleep(self.rate_limit)

        return orders
