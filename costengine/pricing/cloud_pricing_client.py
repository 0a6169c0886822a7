"""
Cloud Pricing API client.
Sends batched GraphQL price queries over HTTP (API key authentication).
"""
from typing import Dict, Any, List, Optional
from decimal import Decimal, InvalidOperation
import json
import logging
import httpx

from costengine.core.config import config
from costengine.core.errors import (
    CatalogQueryError,
    CatalogTimeoutError,
    CatalogUnavailableError,
    InvalidCredentialError,
)
from costengine.pricing.catalog import CatalogResult, PriceQuery, PriceRow, PricingCatalog


logger = logging.getLogger(__name__)


PRICES_QUERY = """
query($productFilter: ProductFilter!, $priceFilter: PriceFilter) {
  products(filter: $productFilter) {
    prices(filter: $priceFilter) {
      priceHash
      USD
      unit
      description
      purchaseOption
      startUsageAmount
      endUsageAmount
      termLength
      termPurchaseOption
      termOfferingClass
    }
  }
}
"""


class CloudPricingAPIClient(PricingCatalog):
    """Client for the Cloud Pricing API GraphQL endpoint."""

    name = "cloud_pricing_api"

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the pricing API client.

        Args:
            api_key: Pricing API key (defaults to config value)
            endpoint: Base URL of the pricing API (defaults to config value)
            timeout: Per-request timeout in seconds
            http_client: Optional shared AsyncClient; the caller keeps ownership
        """
        self.api_key = api_key if api_key is not None else config.PRICING_API_KEY
        self.endpoint = (endpoint or config.PRICING_API_ENDPOINT).rstrip("/")
        self.timeout = timeout or config.PRICING_REQUEST_TIMEOUT
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def graphql_url(self) -> str:
        return f"{self.endpoint}/graphql"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _build_payload(self, queries: List[PriceQuery]) -> List[Dict[str, Any]]:
        return [
            {
                "query": PRICES_QUERY,
                "variables": {
                    "productFilter": query.product_filter.to_dict(),
                    "priceFilter": query.price_filter.to_dict() if query.price_filter else {},
                },
            }
            for query in queries
        ]

    async def query(self, queries: List[PriceQuery]) -> List[CatalogResult]:
        """
        Query prices for a batch of filters in a single request.

        Args:
            queries: Price queries to send

        Returns:
            One CatalogResult per query, in order

        Raises:
            InvalidCredentialError: If the API key is missing or rejected
            CatalogUnavailableError: On connection errors, 429 or 5xx responses
            CatalogQueryError: On other 4xx responses
            CatalogTimeoutError: If the request times out
        """
        if not queries:
            return []
        if not self.api_key:
            raise InvalidCredentialError("No pricing API key is configured", endpoint=self.endpoint)

        headers = {
            "X-Api-Key": self.api_key,
            "Content-Type": "application/json",
            "User-Agent": "costengine",
        }

        try:
            response = await self._get_client().post(
                self.graphql_url,
                headers=headers,
                json=self._build_payload(queries),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()

        except httpx.HTTPStatusError as error:
            self._raise_for_status(error)

        except httpx.TimeoutException as error:
            raise CatalogTimeoutError(
                f"Pricing API request timed out after {self.timeout}s"
            ) from error

        except httpx.RequestError as error:
            raise CatalogUnavailableError(
                f"Failed to connect to pricing API: {str(error)}"
            ) from error

        except (json.JSONDecodeError, ValueError) as error:
            raise CatalogUnavailableError("Pricing API returned a response that is not JSON") from error

        if isinstance(data, dict) and data.get("errors"):
            raise CatalogQueryError(f"Pricing API rejected the query: {self._join_errors(data['errors'])}")

        if not isinstance(data, list) or len(data) != len(queries):
            count = len(data) if isinstance(data, list) else 1
            raise CatalogUnavailableError(
                f"Pricing API returned {count} results for {len(queries)} queries"
            )

        return [self._parse_result(item) for item in data]

    def _raise_for_status(self, error: httpx.HTTPStatusError) -> None:
        status = error.response.status_code
        detail = self._error_detail(error.response)

        if status in (401, 403):
            raise InvalidCredentialError(
                f"Invalid pricing API key: {detail}", endpoint=self.endpoint
            ) from error
        if status == 429:
            raise CatalogUnavailableError(
                f"Pricing API rate limit exceeded: {detail}",
                retry_after=self._retry_after(error.response),
            ) from error
        if status >= 500:
            raise CatalogUnavailableError(
                f"Pricing API request failed: {detail} (status: {status})"
            ) from error
        raise CatalogQueryError(
            f"Pricing API request failed: {detail} (status: {status})"
        ) from error

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            message = body.get("error") or body.get("message")
            if isinstance(message, dict):
                message = message.get("message")
            if message:
                return str(message)
        return response.text or response.reason_phrase

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return max(float(value), 0.0)
        except ValueError:
            return None

    @staticmethod
    def _join_errors(errors: Any) -> str:
        if not isinstance(errors, list):
            return str(errors)
        return "; ".join(
            str(item.get("message", item)) if isinstance(item, dict) else str(item)
            for item in errors
        )

    def _parse_result(self, item: Any) -> CatalogResult:
        if not isinstance(item, dict):
            return CatalogResult(error="Malformed result from pricing API")
        if item.get("errors"):
            return CatalogResult(error=self._join_errors(item["errors"]))

        products = (item.get("data") or {}).get("products") or []
        rows: List[PriceRow] = []
        for product in products:
            for price in product.get("prices") or []:
                amount = price.get("USD")
                if amount is None:
                    continue
                try:
                    value = Decimal(str(amount))
                except InvalidOperation:
                    logger.warning(f"Skipping price {price.get('priceHash')} with invalid amount {amount!r}")
                    continue
                rows.append(PriceRow(
                    price=value,
                    currency="USD",
                    price_hash=price.get("priceHash"),
                    unit=price.get("unit"),
                    description=price.get("description"),
                    purchase_option=price.get("purchaseOption"),
                    start_usage_amount=price.get("startUsageAmount"),
                    end_usage_amount=price.get("endUsageAmount"),
                    term_length=price.get("termLength"),
                    term_purchase_option=price.get("termPurchaseOption"),
                    term_offering_class=price.get("termOfferingClass"),
                ))
        return CatalogResult(rows=rows)
