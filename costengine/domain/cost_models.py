"""
Domain models for cost estimation.
Defines resources, cost components, and the product/price filters used to
look their prices up in a pricing catalog.
"""
from typing import List, Dict, Any, Optional, Iterator, Tuple
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
import json

from costengine.core.errors import ErrorKind, InternalInvariantViolation


# Separator between a parent address and a sub-resource name
ADDRESS_SEPARATOR = "/"

# Skip message for resource types no builder knows about
UNSUPPORTED_MESSAGE = "This resource is not currently supported"


class PriceStatus(Enum):
    """Resolution state of a cost component's unit price."""
    PENDING = "pending"
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


class CostStatus(Enum):
    """Calculation state of a cost component's hourly/monthly cost."""
    PENDING = "pending"
    PRICED = "priced"
    NO_USAGE = "no_usage"
    UNRESOLVED = "unresolved"
    SKIPPED = "skipped"


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert a number or numeric string to Decimal.

    Floats go through their string form so 0.05 becomes Decimal("0.05")
    rather than the binary approximation.

    Raises:
        TypeError: If value is a bool or another non-numeric type
    """
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError(f"Expected a number, got bool: {value!r}")
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, (int, str)):
        return Decimal(value)
    raise TypeError(f"Expected a number, got {type(value).__name__}: {value!r}")


def format_decimal(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a Decimal without losing precision."""
    if value is None:
        return None
    return str(value)


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


@dataclass
class AttributeFilter:
    """Matches a catalog product attribute by exact value or by regex."""
    key: str
    value: Optional[str] = None
    value_regex: Optional[str] = None  # "/pattern/flags" notation

    def __post_init__(self):
        if (self.value is None) == (self.value_regex is None):
            raise ValueError(
                f"Attribute filter '{self.key}' needs exactly one of value or value_regex"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the catalog's camelCase representation."""
        return _drop_none({
            "key": self.key,
            "value": self.value,
            "valueRegex": self.value_regex,
        })


@dataclass
class ProductFilter:
    """Criteria identifying the priced product in the catalog."""
    vendor_name: Optional[str] = None
    service: Optional[str] = None
    product_family: Optional[str] = None
    region: Optional[str] = None
    sku: Optional[str] = None
    attribute_filters: List[AttributeFilter] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the catalog's camelCase representation."""
        result = _drop_none({
            "vendorName": self.vendor_name,
            "service": self.service,
            "productFamily": self.product_family,
            "region": self.region,
            "sku": self.sku,
        })
        if self.attribute_filters:
            result["attributeFilters"] = [f.to_dict() for f in self.attribute_filters]
        return result


@dataclass
class PriceFilter:
    """Criteria narrowing a matched product to one price point."""
    purchase_option: Optional[str] = None
    unit: Optional[str] = None
    description: Optional[str] = None
    description_regex: Optional[str] = None
    term_length: Optional[str] = None
    term_purchase_option: Optional[str] = None
    term_offering_class: Optional[str] = None
    start_usage_amount: Optional[str] = None
    end_usage_amount: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the catalog's camelCase representation."""
        return _drop_none({
            "purchaseOption": self.purchase_option,
            "unit": self.unit,
            "description": self.description,
            "descriptionRegex": self.description_regex,
            "termLength": self.term_length,
            "termPurchaseOption": self.term_purchase_option,
            "termOfferingClass": self.term_offering_class,
            "startUsageAmount": self.start_usage_amount,
            "endUsageAmount": self.end_usage_amount,
        })


def filter_key(product_filter: ProductFilter, price_filter: Optional[PriceFilter]) -> str:
    """
    Build the canonical deduplication key for a pair of filters.

    Structurally equal filters always produce the same key. Attribute filters
    are order-independent, and a missing price filter equals an empty one.
    """
    product = product_filter.to_dict()
    if "attributeFilters" in product:
        product["attributeFilters"] = sorted(
            product["attributeFilters"],
            key=lambda item: json.dumps(item, sort_keys=True)
        )
    payload = {
        "productFilter": product,
        "priceFilter": price_filter.to_dict() if price_filter else {},
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


@dataclass(eq=False)
class CostComponent:
    """A single priced line item within a resource."""
    name: str
    unit: str
    product_filter: ProductFilter
    price_filter: Optional[PriceFilter] = None
    unit_multiplier: Decimal = Decimal(1)
    hourly_quantity: Optional[Decimal] = None
    monthly_quantity: Optional[Decimal] = None
    usage_key: Optional[str] = None
    usage_period: str = "monthly"  # which quantity a usage value fills

    # Set by the price resolver
    price: Optional[Decimal] = field(default=None, init=False)
    price_hash: Optional[str] = field(default=None, init=False)
    currency: Optional[str] = field(default=None, init=False)
    price_status: PriceStatus = field(default=PriceStatus.PENDING, init=False)
    price_non_unique: bool = field(default=False, init=False)
    unresolved_kind: Optional[ErrorKind] = field(default=None, init=False)
    unresolved_reason: Optional[str] = field(default=None, init=False)

    # Set by the cost calculator
    hourly_cost: Optional[Decimal] = field(default=None, init=False)
    monthly_cost: Optional[Decimal] = field(default=None, init=False)
    cost_status: CostStatus = field(default=CostStatus.PENDING, init=False)

    def __post_init__(self):
        self.unit_multiplier = to_decimal(self.unit_multiplier)
        self.hourly_quantity = to_decimal(self.hourly_quantity)
        self.monthly_quantity = to_decimal(self.monthly_quantity)
        if self.unit_multiplier < 0:
            raise ValueError(f"Cost component '{self.name}' has a negative unit multiplier")
        for period, quantity in (("hourly", self.hourly_quantity), ("monthly", self.monthly_quantity)):
            if quantity is not None and (not quantity.is_finite() or quantity < 0):
                raise ValueError(
                    f"Cost component '{self.name}' has an invalid {period} quantity: {quantity}"
                )
        if self.usage_period not in ("monthly", "hourly"):
            raise ValueError(
                f"Cost component '{self.name}' has invalid usage period '{self.usage_period}'"
            )
        self.check_quantities()

    def check_quantities(self) -> None:
        """
        Raises:
            InternalInvariantViolation: If both hourly and monthly quantities are set
        """
        if self.hourly_quantity is not None and self.monthly_quantity is not None:
            raise InternalInvariantViolation(
                f"Cost component '{self.name}' has both hourly and monthly quantities set"
            )

    @property
    def filter_key(self) -> str:
        return filter_key(self.product_filter, self.price_filter)

    @property
    def has_quantity(self) -> bool:
        return self.hourly_quantity is not None or self.monthly_quantity is not None

    def set_quantity(self, value: Any, period: Optional[str] = None) -> None:
        """Set the hourly or monthly quantity, clearing the other one."""
        period = period or self.usage_period
        quantity = to_decimal(value)
        if period == "hourly":
            self.hourly_quantity, self.monthly_quantity = quantity, None
        else:
            self.hourly_quantity, self.monthly_quantity = None, quantity

    def set_price(
        self,
        price: Any,
        price_hash: Optional[str] = None,
        currency: str = "USD",
        non_unique: bool = False
    ) -> None:
        """
        Record the resolved unit price.

        Raises:
            InternalInvariantViolation: If a price was already resolved
        """
        if self.price_status == PriceStatus.RESOLVED:
            raise InternalInvariantViolation(
                f"Price for cost component '{self.name}' is already resolved"
            )
        self.price = to_decimal(price)
        self.price_hash = price_hash
        self.currency = currency
        self.price_non_unique = non_unique
        self.price_status = PriceStatus.RESOLVED
        self.unresolved_kind = None
        self.unresolved_reason = None

    def mark_unresolved(self, kind: ErrorKind, reason: str) -> None:
        """
        Record that no price could be resolved.

        Raises:
            InternalInvariantViolation: If a price was already resolved
        """
        if self.price_status == PriceStatus.RESOLVED:
            raise InternalInvariantViolation(
                f"Price for cost component '{self.name}' is already resolved"
            )
        self.price = None
        self.price_hash = None
        self.price_status = PriceStatus.UNRESOLVED
        self.unresolved_kind = kind
        self.unresolved_reason = reason

    def clear_price(self) -> None:
        """Forget the resolved price and costs so a new resolution pass can run."""
        self.price = None
        self.price_hash = None
        self.currency = None
        self.price_non_unique = False
        self.price_status = PriceStatus.PENDING
        self.unresolved_kind = None
        self.unresolved_reason = None
        self.hourly_cost = None
        self.monthly_cost = None
        self.cost_status = CostStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "unit": self.unit,
            "unit_multiplier": format_decimal(self.unit_multiplier),
            "hourly_quantity": format_decimal(self.hourly_quantity),
            "monthly_quantity": format_decimal(self.monthly_quantity),
            "price": format_decimal(self.price),
            "price_hash": self.price_hash,
            "currency": self.currency,
            "price_status": self.price_status.value,
            "price_non_unique": self.price_non_unique,
            "unresolved_kind": self.unresolved_kind.value if self.unresolved_kind else None,
            "unresolved_reason": self.unresolved_reason,
            "hourly_cost": format_decimal(self.hourly_cost),
            "monthly_cost": format_decimal(self.monthly_cost),
            "cost_status": self.cost_status.value,
        }


@dataclass(eq=False)
class Resource:
    """A declared infrastructure resource and its priced line items."""
    address: str
    resource_type: str = ""
    cost_components: List[CostComponent] = field(default_factory=list)
    sub_resources: List["Resource"] = field(default_factory=list)
    no_price: bool = False
    is_skipped: bool = False
    skip_message: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)

    # Path-qualified address, assigned when the tree is walked
    qualified_address: str = field(default="", init=False)

    # Set by the cost calculator
    hourly_cost: Optional[Decimal] = field(default=None, init=False)
    monthly_cost: Optional[Decimal] = field(default=None, init=False)
    own_hourly_cost: Optional[Decimal] = field(default=None, init=False)
    own_monthly_cost: Optional[Decimal] = field(default=None, init=False)

    def __post_init__(self):
        if not self.address:
            raise ValueError("Resource address is required")
        self.qualified_address = self.address

    @property
    def is_counted(self) -> bool:
        """Whether this resource (ignoring ancestors) contributes to totals."""
        return not self.no_price and not self.is_skipped

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "address": self.address,
            "qualified_address": self.qualified_address,
            "resource_type": self.resource_type,
            "no_price": self.no_price,
            "is_skipped": self.is_skipped,
            "skip_message": self.skip_message,
            "hourly_cost": format_decimal(self.hourly_cost),
            "monthly_cost": format_decimal(self.monthly_cost),
            "cost_components": [c.to_dict() for c in self.cost_components],
            "sub_resources": [r.to_dict() for r in self.sub_resources],
        }


def iter_qualified(resources: List[Resource]) -> Iterator[Tuple[str, Resource, bool]]:
    """
    Walk a resource forest in pre-order using an explicit stack.

    Yields ``(qualified_address, resource, counted)`` without touching the
    resources, where ``counted`` is False for a skipped or no-price resource
    and everything beneath it.

    Raises:
        InternalInvariantViolation: If a resource object appears twice (cycle or shared node)
    """
    seen = set()
    stack: List[Tuple[Resource, Optional[str], bool]] = [
        (resource, None, True) for resource in reversed(resources)
    ]
    while stack:
        resource, parent_address, parent_counted = stack.pop()
        if id(resource) in seen:
            raise InternalInvariantViolation(
                f"Resource '{resource.address}' appears more than once in the resource tree"
            )
        seen.add(id(resource))

        if parent_address:
            address = f"{parent_address}{ADDRESS_SEPARATOR}{resource.address}"
        else:
            address = resource.address
        counted = parent_counted and resource.is_counted
        yield address, resource, counted

        for child in reversed(resource.sub_resources):
            stack.append((child, address, counted))


def walk_resources(resources: List[Resource]) -> Iterator[Tuple[Resource, bool]]:
    """
    Same walk as iter_qualified, assigning ``qualified_address`` on the way
    down and yielding ``(resource, counted)``.
    """
    for address, resource, counted in iter_qualified(resources):
        resource.qualified_address = address
        yield resource, counted


def iter_post_order(resources: List[Resource]) -> Iterator[Resource]:
    """
    Yield every resource after all of its sub-resources.

    The tree must already be validated as acyclic.
    """
    stack: List[Tuple[Resource, bool]] = [(resource, False) for resource in reversed(resources)]
    while stack:
        resource, expanded = stack.pop()
        if expanded:
            yield resource
            continue
        stack.append((resource, True))
        for child in reversed(resource.sub_resources):
            stack.append((child, False))


@dataclass
class ProjectSummary:
    """Counts describing how completely a project was priced."""
    total_resources: int = 0
    supported_resources: int = 0
    unsupported_resources: int = 0
    no_price_resources: int = 0
    unsupported_resource_counts: Dict[str, int] = field(default_factory=dict)
    unresolved_components: int = 0
    no_usage_components: int = 0
    non_unique_components: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_resources": self.total_resources,
            "supported_resources": self.supported_resources,
            "unsupported_resources": self.unsupported_resources,
            "no_price_resources": self.no_price_resources,
            "unsupported_resource_counts": dict(self.unsupported_resource_counts),
            "unresolved_components": self.unresolved_components,
            "no_usage_components": self.no_usage_components,
            "non_unique_components": self.non_unique_components,
        }


@dataclass(eq=False)
class Project:
    """The root of a cost estimate: resources plus aggregate totals."""
    name: str
    resources: List[Resource] = field(default_factory=list)
    currency: str = "USD"

    # Set by the cost calculator
    total_hourly_cost: Optional[Decimal] = field(default=None, init=False)
    total_monthly_cost: Optional[Decimal] = field(default=None, init=False)
    summary: Optional[ProjectSummary] = field(default=None, init=False)

    def all_resources(self) -> List[Resource]:
        """Every resource in the tree, sub-resources included, in pre-order."""
        return [resource for resource, _ in walk_resources(self.resources)]

    def counted_cost_components(self) -> List[CostComponent]:
        """Components of resources that contribute to totals."""
        return [
            component
            for resource, counted in walk_resources(self.resources)
            if counted
            for component in resource.cost_components
        ]

    def validate(self) -> None:
        """
        Check the structural invariants of the resource tree.

        Raises:
            InternalInvariantViolation: On duplicate addresses, cycles, both
                quantities set, or a priced leaf without cost components
        """
        addresses = set()
        for resource, _ in walk_resources(self.resources):
            if resource.qualified_address in addresses:
                raise InternalInvariantViolation(
                    f"Duplicate resource address '{resource.qualified_address}' in project '{self.name}'"
                )
            addresses.add(resource.qualified_address)

            is_leaf = not resource.sub_resources
            if is_leaf and resource.is_counted and not resource.cost_components:
                raise InternalInvariantViolation(
                    f"Resource '{resource.qualified_address}' has no cost components "
                    f"but is neither marked no_price nor skipped"
                )
            for component in resource.cost_components:
                component.check_quantities()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "currency": self.currency,
            "total_hourly_cost": format_decimal(self.total_hourly_cost),
            "total_monthly_cost": format_decimal(self.total_monthly_cost),
            "summary": self.summary.to_dict() if self.summary else None,
            "resources": [r.to_dict() for r in self.resources],
        }
