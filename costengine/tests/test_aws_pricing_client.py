"""
Tests for the AWS Price List catalog, using botocore's Stubber.
"""

import json
import pytest
import boto3
from botocore.stub import Stubber
from decimal import Decimal

from costengine.core.errors import CatalogUnavailableError, InvalidCredentialError
from costengine.domain.cost_models import AttributeFilter, PriceFilter, ProductFilter
from costengine.pricing.aws_pricing_client import AWSPriceListCatalog
from costengine.pricing.catalog import PriceQuery


def _pricing_client():
    return boto3.client(
        "pricing",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def _eip_query(region="us-east-1", vendor="aws"):
    return PriceQuery(
        key="eip",
        product_filter=ProductFilter(
            vendor_name=vendor,
            region=region,
            service="AmazonEC2",
            product_family="IP Address",
            attribute_filters=[AttributeFilter(key="usagetype", value_regex="/ElasticIP:IdleAddress/")],
        ),
        price_filter=PriceFilter(start_usage_amount="1"),
    )


def _price_item(sku, usagetype, dimensions):
    return json.dumps({
        "product": {
            "sku": sku,
            "productFamily": "IP Address",
            "attributes": {"usagetype": usagetype, "location": "US East (N. Virginia)"},
        },
        "terms": {
            "OnDemand": {
                f"{sku}.JRTCKXETXF": {
                    "termAttributes": {},
                    "priceDimensions": {
                        f"{sku}.JRTCKXETXF.{rate}": {
                            "unit": "Hrs",
                            "description": f"{usagetype} {begin}-{end}",
                            "beginRange": begin,
                            "endRange": end,
                            "pricePerUnit": {"USD": price},
                        }
                        for rate, begin, end, price in dimensions
                    },
                },
            },
        },
    })


EXPECTED_EIP_PARAMS = {
    "ServiceCode": "AmazonEC2",
    "Filters": [
        {"Type": "TERM_MATCH", "Field": "location", "Value": "US East (N. Virginia)"},
        {"Type": "TERM_MATCH", "Field": "productFamily", "Value": "IP Address"},
    ],
    "FormatVersion": "aws_v1",
}


@pytest.mark.asyncio
async def test_get_products_rows_are_filtered_and_flattened():
    """Regex attributes are matched locally and tiers become rows."""
    client = _pricing_client()
    catalog = AWSPriceListCatalog(pricing_client=client)

    with Stubber(client) as stubber:
        stubber.add_response("get_products", {
            "FormatVersion": "aws_v1",
            "PriceList": [
                _price_item("IDLE", "USE1-ElasticIP:IdleAddress", [
                    ("6YS6EN2CT7", "0", "1", "0.0000000000"),
                    ("8EEUB22XNJ", "1", "Inf", "0.0050000000"),
                ]),
                _price_item("REMAP", "USE1-ElasticIP:AdditionalAddress", [
                    ("6YS6EN2CT7", "0", "Inf", "0.0050000000"),
                ]),
            ],
        }, EXPECTED_EIP_PARAMS)

        results = await catalog.query([_eip_query()])

        stubber.assert_no_pending_responses()

    rows = results[0].rows
    assert len(rows) == 1
    assert rows[0].price == Decimal("0.0050000000")
    assert rows[0].price_hash == "IDLE.JRTCKXETXF.8EEUB22XNJ"
    assert rows[0].purchase_option == "on_demand"
    assert rows[0].start_usage_amount == "1"


@pytest.mark.asyncio
async def test_pages_are_followed():
    """NextToken pages are collected before matching."""
    client = _pricing_client()
    catalog = AWSPriceListCatalog(pricing_client=client)

    with Stubber(client) as stubber:
        stubber.add_response("get_products", {
            "FormatVersion": "aws_v1",
            "PriceList": [],
            "NextToken": "page-2",
        }, EXPECTED_EIP_PARAMS)
        stubber.add_response("get_products", {
            "FormatVersion": "aws_v1",
            "PriceList": [
                _price_item("IDLE", "USE1-ElasticIP:IdleAddress", [("8EEUB22XNJ", "1", "Inf", "0.005")]),
            ],
        }, dict(EXPECTED_EIP_PARAMS, NextToken="page-2"))

        results = await catalog.query([_eip_query()])

        stubber.assert_no_pending_responses()

    assert results[0].rows[0].price == Decimal("0.005")


@pytest.mark.asyncio
async def test_access_denied_raises_invalid_credential():
    """Auth error codes abort with InvalidCredentialError."""
    client = _pricing_client()
    catalog = AWSPriceListCatalog(pricing_client=client)

    with Stubber(client) as stubber:
        stubber.add_client_error(
            "get_products",
            service_error_code="AccessDeniedException",
            service_message="User is not authorized",
            http_status_code=403,
        )

        with pytest.raises(InvalidCredentialError) as excinfo:
            await catalog.query([_eip_query()])

    assert excinfo.value.endpoint == "pricing.us-east-1.amazonaws.com"


@pytest.mark.asyncio
async def test_throttling_is_retryable():
    """Throttling becomes a retryable CatalogUnavailableError."""
    client = _pricing_client()
    catalog = AWSPriceListCatalog(pricing_client=client)

    with Stubber(client) as stubber:
        stubber.add_client_error(
            "get_products",
            service_error_code="ThrottlingException",
            http_status_code=400,
        )

        with pytest.raises(CatalogUnavailableError) as excinfo:
            await catalog.query([_eip_query()])

    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_invalid_parameter_is_a_per_query_error():
    """A rejected filter only fails its own query."""
    client = _pricing_client()
    catalog = AWSPriceListCatalog(pricing_client=client)

    with Stubber(client) as stubber:
        stubber.add_client_error(
            "get_products",
            service_error_code="InvalidParameterException",
            http_status_code=400,
        )

        results = await catalog.query([_eip_query()])

    assert results[0].error is not None
    assert results[0].rows == []


@pytest.mark.asyncio
async def test_unknown_region_and_vendor_do_not_call_aws():
    """Queries AWS cannot answer are answered locally."""
    client = _pricing_client()
    catalog = AWSPriceListCatalog(pricing_client=client)

    with Stubber(client) as stubber:
        results = await catalog.query([
            _eip_query(region="mars-north-1"),
            _eip_query(vendor="azure"),
        ])

        stubber.assert_no_pending_responses()

    assert results[0].rows == [] and results[0].error is None
    assert "azure" in results[1].error
