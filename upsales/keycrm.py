"""
Async client for the KeyCRM order list.

Every page request goes through retry_with_backoff (network errors, timeouts
and 429 are transient) inside a circuit breaker shared by the process. Any
other error status fails the fetch at once. The current run id is sent as
X-Request-ID so KeyCRM-side logs can be matched to a run.
"""
from typing import Any, Dict, List, Optional

import httpx

from upsales.config import APIConfig
from upsales.exceptions import ConfigurationError, KeyCRMAPIError, KeyCRMConnectionError, KeyCRMDataError
from upsales.filters import DateRange
from upsales.observability import Timer, current_run_id, get_logger
from upsales.pagination import OrderPaginator
from upsales.resilience import CircuitBreaker, CircuitBreakerConfig, RetryConfig, retry_with_backoff

logger = get_logger(__name__)

DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=30.0)

# One breaker per process, so consecutive runs of the scheduler share it
_shared_breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=5, recovery_timeout=60.0))

# Used when a timeout or a 429 gives no Retry-After
TIMEOUT_RETRY_AFTER = 5
RATE_LIMIT_RETRY_AFTER = 60

ERROR_BODY_LIMIT = 500


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if value and value.isdigit():
        return int(value)
    return None


def _check_response(response: httpx.Response, endpoint: str) -> Any:
    """Decoded body of a successful response; raises on 429 and error statuses."""
    status = response.status_code

    if status == 429:
        raise KeyCRMConnectionError(
            "Rate limited by KeyCRM",
            retry_after=_retry_after(response) or RATE_LIMIT_RETRY_AFTER,
        )

    if status >= 400:
        body = response.text[:ERROR_BODY_LIMIT]
        logger.error(
            f"KeyCRM {endpoint} answered {status}",
            extra={"endpoint": endpoint, "status_code": status, "body": body}
        )
        message = (
            "KeyCRM rejected the API key, check KEYCRM_API_KEY"
            if status == 401 else f"API returned {status}"
        )
        raise KeyCRMAPIError(message, details=body, status_code=status)

    if not response.content:
        return {"data": []}
    try:
        return response.json()
    except ValueError as e:
        body = response.text[:ERROR_BODY_LIMIT]
        logger.error(
            f"KeyCRM {endpoint} answered with a body that is not JSON",
            extra={"endpoint": endpoint, "status_code": status, "body": body}
        )
        raise KeyCRMDataError(
            "Response body is not valid JSON",
            details=str(e),
            expected="JSON",
            got=response.headers.get("Content-Type") or "text",
        ) from e


class KeyCRMClient:
    """
    Session against the KeyCRM API.

        async with KeyCRMClient(config.api) as client:
            orders = await client.fetch_orders(date_range)
    """

    def __init__(
        self,
        api_config: Optional[APIConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.config = api_config or APIConfig()
        if not self.config.key:
            raise ConfigurationError("KEYCRM_API_KEY is required")

        self.circuit_breaker = circuit_breaker or _shared_breaker
        self.retry_config = retry_config or DEFAULT_RETRY
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.key}",
            "Accept": "application/json",
        }

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/") + "/",
            headers=self.headers,
            timeout=self.config.request_timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "KeyCRMClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        One API call with retries, guarded by the circuit breaker.

        Raises:
            KeyCRMConnectionError: Still failing after the last retry
            KeyCRMAPIError: Non-retryable error status
            CircuitOpenError: The breaker refused the call
        """
        return await self.circuit_breaker.call(
            retry_with_backoff,
            self._send,
            method, endpoint, params,
            config=self.retry_config,
            label=f"{method} {endpoint}",
        )

    async def _send(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self._client is None:
            await self.connect()

        run_id = current_run_id()
        headers = {"X-Request-ID": run_id} if run_id else None

        try:
            with Timer(f"keycrm_{endpoint}", logger):
                response = await self._client.request(
                    method=method, url=endpoint, params=params, headers=headers,
                )
        except httpx.TimeoutException as e:
            raise KeyCRMConnectionError(
                f"Request timeout after {self.config.request_timeout}s",
                retry_after=TIMEOUT_RETRY_AFTER,
            ) from e
        except httpx.RequestError as e:
            raise KeyCRMConnectionError(f"Request to {endpoint} failed", str(e)) from e

        return _check_response(response, endpoint)

    # ═══════════════════════════════════════════════════════════════════════════
    # ORDER METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_orders(self, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Get one page of orders.

        Args:
            params: Query params (page, limit, filter, include, etc.)

        Returns:
            API response with 'data' list (and usually 'meta')
        """
        return await self._request("GET", "order", params=params)

    def order_params(
        self,
        date_range: Optional[DateRange] = None,
        convert_to_utc: bool = True,
    ) -> Dict[str, Any]:
        """Base query for the order list: relations plus optional created_between."""
        params: Dict[str, Any] = {"include": self.config.include}
        if date_range is not None:
            params["filter[created_between]"] = date_range.as_filter(convert_to_utc)
        return params

    async def fetch_orders(
        self,
        date_range: Optional[DateRange] = None,
        convert_to_utc: bool = True,
    ) -> List[Dict[str, Any]]:
        """
        Fetch every order in the range, all pages, deduplicated by id.

        Args:
            date_range: created_at window; None fetches everything
            convert_to_utc: Send the window in UTC instead of local time

        Raises:
            KeyCRMError: Any fetch failure; no partial result is returned
        """
        params = self.order_params(date_range, convert_to_utc)
        paginator = OrderPaginator(
            self.get_orders,
            page_size=self.config.page_limit,
            rate_limit=self.config.rate_limit_delay,
            max_pages=self.config.max_pages,
        )

        with Timer("keycrm_fetch_orders", logger):
            orders = await paginator.fetch_all(params)

        logger.info(
            f"Fetched {len(orders)} orders in {paginator.pages_fetched} pages",
            extra={
                "orders": len(orders),
                "pages": paginator.pages_fetched,
                "created_between": params.get("filter[created_between]"),
            }
        )
        return orders
