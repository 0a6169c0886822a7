"""
AWS resource builders.
Each builder declares the cost components of one Terraform resource type.
"""
from typing import Dict, Any, List
from decimal import Decimal

from costengine.domain.cost_models import (
    AttributeFilter,
    CostComponent,
    PriceFilter,
    ProductFilter,
    Resource,
    to_decimal,
)
from costengine.resources.registry import ResourceData, registry


# EBS volume types and how their storage is described
VOLUME_TYPE_NAMES: Dict[str, str] = {
    "gp2": "general purpose SSD, gp2",
    "gp3": "general purpose SSD, gp3",
    "io1": "provisioned IOPS SSD, io1",
    "io2": "provisioned IOPS SSD, io2",
    "st1": "throughput optimized HDD, st1",
    "sc1": "cold HDD, sc1",
    "standard": "magnetic",
}

DEFAULT_ROOT_VOLUME_TYPE = "gp2"
DEFAULT_ROOT_VOLUME_SIZE_GB = 8

TENANCY_NAMES = {
    "default": "Shared",
    "dedicated": "Dedicated",
    "host": "Host",
}


def _ec2_filter(region: str, product_family: str, attribute_filters: List[AttributeFilter]) -> ProductFilter:
    return ProductFilter(
        vendor_name="aws",
        region=region,
        service="AmazonEC2",
        product_family=product_family,
        attribute_filters=attribute_filters,
    )


@registry.register("aws_eip")
def build_eip(data: ResourceData) -> Resource:
    """Elastic IPs only cost money while they are not attached to anything."""
    attached = (
        data.get("customer_owned_ipv4_pool")
        or data.get("instance")
        or data.get("network_interface")
    )
    if attached:
        return Resource(
            address=data.address,
            resource_type=data.resource_type,
            no_price=True,
            is_skipped=True,
            skip_message="Elastic IP is attached and has no cost",
        )

    return Resource(
        address=data.address,
        resource_type=data.resource_type,
        cost_components=[
            CostComponent(
                name="IP address (if unused)",
                unit="hours",
                unit_multiplier=Decimal(1),
                hourly_quantity=Decimal(1),
                product_filter=_ec2_filter(
                    data.region_or_default,
                    "IP Address",
                    [AttributeFilter(key="usagetype", value_regex="/ElasticIP:IdleAddress/")],
                ),
                price_filter=PriceFilter(start_usage_amount="1"),
            ),
        ],
    )


def _volume_size(address: str, device: Dict[str, Any]) -> Decimal:
    size = device.get("volume_size")
    if size is None:
        return Decimal(DEFAULT_ROOT_VOLUME_SIZE_GB)
    try:
        quantity = to_decimal(size)
    except (TypeError, ArithmeticError) as error:
        raise ValueError(f"Resource '{address}' has a non-numeric root volume_size: {size!r}") from error
    if not quantity.is_finite() or quantity < 0:
        raise ValueError(f"Resource '{address}' has an invalid root volume_size: {size!r}")
    return quantity


def _root_block_device(data: ResourceData) -> Resource:
    """
    Raises:
        ValueError: If root_block_device or its size or type is malformed
    """
    device = data.get("root_block_device", {})
    if isinstance(device, list):
        device = device[0] if device else {}
    if not isinstance(device, dict):
        raise ValueError(f"Resource '{data.address}' has a malformed root_block_device: {device!r}")

    volume_type = device.get("volume_type") or DEFAULT_ROOT_VOLUME_TYPE
    if not isinstance(volume_type, str):
        raise ValueError(f"Resource '{data.address}' has an invalid root volume_type: {volume_type!r}")
    size = _volume_size(data.address, device)
    description = VOLUME_TYPE_NAMES.get(volume_type, volume_type)

    return Resource(
        address="root_block_device",
        resource_type=data.resource_type,
        cost_components=[
            CostComponent(
                name=f"Storage ({description})",
                unit="GB",
                monthly_quantity=size,
                product_filter=_ec2_filter(
                    data.region_or_default,
                    "Storage",
                    [AttributeFilter(key="volumeApiName", value=volume_type)],
                ),
            ),
        ],
    )


@registry.register("aws_instance")
def build_instance(data: ResourceData) -> Resource:
    """On-demand Linux compute hours plus the root EBS volume."""
    instance_type = data.get("instance_type")
    if not instance_type:
        return Resource(
            address=data.address,
            resource_type=data.resource_type,
            no_price=True,
            is_skipped=True,
            skip_message="Instance type is not known",
        )

    if not isinstance(instance_type, str):
        raise ValueError(f"Resource '{data.address}' has an invalid instance_type: {instance_type!r}")
    tenancy_setting = data.get("tenancy", "default")
    if not isinstance(tenancy_setting, str):
        raise ValueError(f"Resource '{data.address}' has an invalid tenancy: {tenancy_setting!r}")
    tenancy = TENANCY_NAMES.get(tenancy_setting, "Shared")

    compute = CostComponent(
        name=f"Instance usage (Linux/UNIX, on-demand, {instance_type})",
        unit="hours",
        hourly_quantity=Decimal(1),
        product_filter=_ec2_filter(
            data.region_or_default,
            "Compute Instance",
            [
                AttributeFilter(key="instanceType", value=instance_type),
                AttributeFilter(key="tenancy", value=tenancy),
                AttributeFilter(key="operatingSystem", value="Linux"),
                AttributeFilter(key="preInstalledSw", value="NA"),
                AttributeFilter(key="capacitystatus", value="Used"),
            ],
        ),
        price_filter=PriceFilter(purchase_option="on_demand"),
    )

    return Resource(
        address=data.address,
        resource_type=data.resource_type,
        cost_components=[compute],
        sub_resources=[_root_block_device(data)],
    )


def _lambda_filter(region: str, group: str, usage_type: str) -> ProductFilter:
    return ProductFilter(
        vendor_name="aws",
        region=region,
        service="AWSLambda",
        product_family="Serverless",
        attribute_filters=[
            AttributeFilter(key="group", value=group),
            AttributeFilter(key="usagetype", value_regex=usage_type),
        ],
    )


@registry.register("aws_lambda_function")
def build_lambda_function(data: ResourceData) -> Resource:
    """
    Lambda is billed per request and per GB-second of compute.

    Both quantities come from usage (``monthly_requests`` and
    ``monthly_duration_gb_seconds``); without usage the components stay
    unpriced rather than guessing.
    """
    region = data.region_or_default
    return Resource(
        address=data.address,
        resource_type=data.resource_type,
        cost_components=[
            CostComponent(
                name="Requests",
                unit="requests",
                product_filter=_lambda_filter(region, "AWS-Lambda-Requests", "/Request$/"),
                price_filter=PriceFilter(start_usage_amount="0"),
                usage_key="monthly_requests",
            ),
            CostComponent(
                name="Duration",
                unit="GB-seconds",
                product_filter=_lambda_filter(region, "AWS-Lambda-Duration", "/GB-Second$/"),
                price_filter=PriceFilter(start_usage_amount="0"),
                usage_key="monthly_duration_gb_seconds",
            ),
        ],
    )
