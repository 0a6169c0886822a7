"""
AWS Price List catalog.
Answers price queries with the official AWS Price List API (boto3 get_products).
"""
from typing import Dict, Any, List, Optional, Pattern, Tuple
from decimal import Decimal, InvalidOperation
import asyncio
import json
import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    NoCredentialsError,
    ReadTimeoutError,
)

from costengine.core.config import config
from costengine.core.errors import (
    CatalogTimeoutError,
    CatalogUnavailableError,
    InvalidCredentialError,
)
from costengine.domain.cost_models import ProductFilter
from costengine.pricing.catalog import (
    CatalogResult,
    PriceQuery,
    PriceRow,
    PricingCatalog,
    compile_catalog_regex,
    price_row_matches,
)


logger = logging.getLogger(__name__)


# The Price List API filters on human-readable location names, not region codes
REGION_LOCATIONS: Dict[str, str] = {
    "us-east-1": "US East (N. Virginia)",
    "us-east-2": "US East (Ohio)",
    "us-west-1": "US West (N. California)",
    "us-west-2": "US West (Oregon)",
    "ca-central-1": "Canada (Central)",
    "sa-east-1": "South America (Sao Paulo)",
    "eu-west-1": "Europe (Ireland)",
    "eu-west-2": "Europe (London)",
    "eu-west-3": "Europe (Paris)",
    "eu-central-1": "Europe (Frankfurt)",
    "eu-north-1": "Europe (Stockholm)",
    "eu-south-1": "Europe (Milan)",
    "ap-south-1": "Asia Pacific (Mumbai)",
    "ap-east-1": "Asia Pacific (Hong Kong)",
    "ap-northeast-1": "Asia Pacific (Tokyo)",
    "ap-northeast-2": "Asia Pacific (Seoul)",
    "ap-northeast-3": "Asia Pacific (Osaka)",
    "ap-southeast-1": "Asia Pacific (Singapore)",
    "ap-southeast-2": "Asia Pacific (Sydney)",
    "me-south-1": "Middle East (Bahrain)",
    "af-south-1": "Africa (Cape Town)",
}

AUTH_ERROR_CODES = {
    "AccessDeniedException",
    "ExpiredTokenException",
    "InvalidClientTokenId",
    "InvalidSignatureException",
    "MissingAuthenticationToken",
    "UnrecognizedClientException",
}

THROTTLING_ERROR_CODES = {
    "RequestLimitExceeded",
    "ThrottlingException",
    "TooManyRequestsException",
}

# get_products pages are 100 products each
MAX_PAGES = 10

TERM_GROUPS = (("on_demand", "OnDemand"), ("reserved", "Reserved"))


class AWSPriceListCatalog(PricingCatalog):
    """Pricing catalog backed by the AWS Price List API."""

    name = "aws_price_list"

    def __init__(
        self,
        pricing_client: Any = None,
        region_name: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the AWS Price List catalog.

        Args:
            pricing_client: Optional boto3 'pricing' client (created if None)
            region_name: Region hosting the Price List endpoint
            timeout: Connect/read timeout in seconds
        """
        self.region_name = region_name or config.AWS_PRICING_REGION
        if pricing_client is None:
            timeout = timeout or config.PRICING_REQUEST_TIMEOUT
            boto_config = BotoConfig(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={'max_attempts': 0}  # The resolver owns retries
            )
            pricing_client = boto3.client(
                'pricing',
                region_name=self.region_name,
                config=boto_config
            )
        self.pricing_client = pricing_client

    async def query(self, queries: List[PriceQuery]) -> List[CatalogResult]:
        """
        Resolve each query with get_products.

        The boto3 client is blocking, so calls run in a worker thread.
        """
        results = []
        for query in queries:
            results.append(await asyncio.to_thread(self._query_one, query))
        return results

    def _build_filters(
        self,
        product_filter: ProductFilter
    ) -> Tuple[Optional[List[Dict[str, str]]], List[Tuple[str, Pattern]]]:
        """
        Translate a ProductFilter into get_products TERM_MATCH filters.

        Regex attribute filters cannot be expressed server-side and are
        returned separately for local matching.

        Returns:
            Tuple of (filters, regex_filters); filters is None when the
            region has no known pricing location
        """
        filters: List[Dict[str, str]] = []
        regex_filters: List[Tuple[str, Pattern]] = []

        if product_filter.region:
            location = REGION_LOCATIONS.get(product_filter.region)
            if location is None:
                logger.warning(f"AWS region code '{product_filter.region}' not found in region map")
                return None, regex_filters
            filters.append({'Type': 'TERM_MATCH', 'Field': 'location', 'Value': location})

        if product_filter.product_family:
            filters.append({'Type': 'TERM_MATCH', 'Field': 'productFamily', 'Value': product_filter.product_family})
        if product_filter.sku:
            filters.append({'Type': 'TERM_MATCH', 'Field': 'sku', 'Value': product_filter.sku})

        for attribute in product_filter.attribute_filters:
            if attribute.value is not None:
                filters.append({'Type': 'TERM_MATCH', 'Field': attribute.key, 'Value': attribute.value})
            else:
                regex_filters.append((attribute.key, compile_catalog_regex(attribute.value_regex)))

        return filters, regex_filters

    def _get_products(self, service_code: str, filters: List[Dict[str, str]]) -> List[Any]:
        price_list: List[Any] = []
        next_token = None
        for _ in range(MAX_PAGES):
            kwargs: Dict[str, Any] = {
                'ServiceCode': service_code,
                'Filters': filters,
                'FormatVersion': 'aws_v1',
            }
            if next_token:
                kwargs['NextToken'] = next_token
            response = self.pricing_client.get_products(**kwargs)
            price_list.extend(response.get('PriceList', []))
            next_token = response.get('NextToken')
            if not next_token:
                break
        else:
            logger.warning(f"Stopped paging {service_code} prices after {MAX_PAGES} pages")
        return price_list

    def _query_one(self, query: PriceQuery) -> CatalogResult:
        product_filter = query.product_filter

        if product_filter.vendor_name and product_filter.vendor_name.lower() != "aws":
            return CatalogResult(error=f"Vendor '{product_filter.vendor_name}' is not available in the AWS Price List")
        if not product_filter.service:
            return CatalogResult(error="AWS Price List queries need a service code")

        filters, regex_filters = self._build_filters(product_filter)
        if filters is None:
            return CatalogResult()

        try:
            price_list = self._get_products(product_filter.service, filters)

        except ClientError as error:
            code = error.response.get('Error', {}).get('Code', '')
            if code in AUTH_ERROR_CODES:
                raise InvalidCredentialError(
                    f"AWS rejected the pricing credentials ({code})",
                    endpoint=f"pricing.{self.region_name}.amazonaws.com"
                ) from error
            if code in THROTTLING_ERROR_CODES:
                raise CatalogUnavailableError(f"AWS pricing API throttled the request ({code})") from error
            if code in ("InvalidParameterException", "NotFoundException"):
                return CatalogResult(error=f"AWS pricing API rejected the query ({code})")
            logger.error(f"AWS pricing API error: {error}")
            raise CatalogUnavailableError(f"Failed to query AWS pricing: {str(error)}") from error

        except NoCredentialsError as error:
            raise InvalidCredentialError(
                "No AWS credentials available for the pricing API",
                endpoint=f"pricing.{self.region_name}.amazonaws.com"
            ) from error

        except (ConnectTimeoutError, ReadTimeoutError) as error:
            raise CatalogTimeoutError(f"AWS pricing API timed out: {str(error)}") from error

        except BotoCoreError as error:
            raise CatalogUnavailableError(f"Failed to reach AWS pricing API: {str(error)}") from error

        rows: List[PriceRow] = []
        for raw_product in price_list:
            try:
                price_data = json.loads(raw_product) if isinstance(raw_product, str) else raw_product
            except json.JSONDecodeError:
                logger.warning("Skipping AWS price list entry that is not valid JSON")
                continue
            attributes = price_data.get('product', {}).get('attributes', {})
            if not all(pattern.search(attributes.get(key, "")) for key, pattern in regex_filters):
                continue
            rows.extend(self._extract_rows(price_data))

        return CatalogResult(rows=[row for row in rows if price_row_matches(row, query.price_filter)])

    def _extract_rows(self, price_data: Dict[str, Any]) -> List[PriceRow]:
        """Flatten the OnDemand and Reserved price dimensions of one product."""
        rows: List[PriceRow] = []
        terms = price_data.get('terms', {})
        for purchase_option, term_group in TERM_GROUPS:
            for term in (terms.get(term_group) or {}).values():
                term_attributes = term.get('termAttributes') or {}
                for rate_code, dimension in (term.get('priceDimensions') or {}).items():
                    price_per_unit = (dimension.get('pricePerUnit') or {}).get('USD')
                    if price_per_unit is None:
                        continue
                    try:
                        price = Decimal(price_per_unit)
                    except InvalidOperation:
                        continue
                    rows.append(PriceRow(
                        price=price,
                        currency="USD",
                        price_hash=rate_code,
                        unit=dimension.get('unit'),
                        description=dimension.get('description'),
                        purchase_option=purchase_option,
                        start_usage_amount=dimension.get('beginRange'),
                        end_usage_amount=dimension.get('endRange'),
                        term_length=term_attributes.get('LeaseContractLength'),
                        term_purchase_option=term_attributes.get('PurchaseOption'),
                        term_offering_class=term_attributes.get('OfferingClass'),
                    ))
        return rows
