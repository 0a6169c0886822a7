"""
Pricing catalog protocol.
Defines the batched query interface every catalog backend implements, plus
the price-row matching and tie-break rules shared by all backends.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Pattern
import re

from costengine.domain.cost_models import CostComponent, PriceFilter, ProductFilter, filter_key


@dataclass(frozen=True)
class PriceQuery:
    """One (ProductFilter, PriceFilter) lookup, identified by its filter key."""
    key: str
    product_filter: ProductFilter
    price_filter: Optional[PriceFilter] = None

    @classmethod
    def for_component(cls, component: CostComponent) -> "PriceQuery":
        return cls(
            key=filter_key(component.product_filter, component.price_filter),
            product_filter=component.product_filter,
            price_filter=component.price_filter,
        )


@dataclass(frozen=True)
class PriceRow:
    """A single price point returned by the catalog."""
    price: Decimal
    currency: str = "USD"
    price_hash: Optional[str] = None
    unit: Optional[str] = None
    description: Optional[str] = None
    purchase_option: Optional[str] = None
    start_usage_amount: Optional[str] = None
    end_usage_amount: Optional[str] = None
    term_length: Optional[str] = None
    term_purchase_option: Optional[str] = None
    term_offering_class: Optional[str] = None


@dataclass
class CatalogResult:
    """Rows matching one query, in catalog order, or the per-query error."""
    rows: List[PriceRow] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class PriceSelection:
    """Outcome of choosing one row among the rows matching a query."""
    row: Optional[PriceRow]
    non_unique: bool = False
    candidates: int = 0


class PricingCatalog(ABC):
    """
    Batched pricing catalog.

    ``query`` returns exactly one CatalogResult per query, in the same order.
    Implementations raise InvalidCredentialError when the credential is
    rejected, and CatalogUnavailableError, CatalogQueryError or
    CatalogTimeoutError when the whole batch fails.
    """

    name: str = "catalog"

    @abstractmethod
    async def query(self, queries: List[PriceQuery]) -> List[CatalogResult]:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any connections held by the catalog."""
        return None


def compile_catalog_regex(expression: str) -> Pattern:
    """
    Compile a regex written in the catalog's "/pattern/flags" notation.

    Only the "i" flag is recognised. Expressions without slashes are
    compiled as-is.
    """
    if len(expression) >= 2 and expression.startswith("/"):
        closing = expression.rfind("/")
        if closing > 0:
            pattern = expression[1:closing]
            flags = re.IGNORECASE if "i" in expression[closing + 1:] else 0
            return re.compile(pattern, flags)
    return re.compile(expression)


def _to_amount(value: str) -> Optional[Decimal]:
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError):
        return None


def _amounts_equal(left: str, right: str) -> bool:
    left_amount, right_amount = _to_amount(left), _to_amount(right)
    if left_amount is None or right_amount is None:
        return left == right
    return left_amount == right_amount


def price_row_matches(row: PriceRow, price_filter: Optional[PriceFilter]) -> bool:
    """
    Check a row against every explicitly set price filter field.

    Attributes missing from the row never contradict the filter.
    """
    if price_filter is None:
        return True

    exact_fields = (
        "purchase_option",
        "unit",
        "description",
        "term_length",
        "term_purchase_option",
        "term_offering_class",
    )
    for name in exact_fields:
        wanted = getattr(price_filter, name)
        actual = getattr(row, name)
        if wanted is not None and actual is not None and actual != wanted:
            return False

    if price_filter.description_regex and row.description is not None:
        if not compile_catalog_regex(price_filter.description_regex).search(row.description):
            return False

    for name in ("start_usage_amount", "end_usage_amount"):
        wanted = getattr(price_filter, name)
        actual = getattr(row, name)
        if wanted is not None and actual is not None and not _amounts_equal(actual, wanted):
            return False

    return True


FILTERED_ROW_FIELDS = (
    ("purchase_option", "purchase_option"),
    ("unit", "unit"),
    ("description", "description"),
    ("description_regex", "description"),
    ("term_length", "term_length"),
    ("term_purchase_option", "term_purchase_option"),
    ("term_offering_class", "term_offering_class"),
    ("start_usage_amount", "start_usage_amount"),
    ("end_usage_amount", "end_usage_amount"),
)


def _prefer_explicit(candidates: List[PriceRow], price_filter: PriceFilter) -> List[PriceRow]:
    """Keep rows that carry each requested attribute over rows that lack it."""
    for filter_field, row_field in FILTERED_ROW_FIELDS:
        if getattr(price_filter, filter_field) is None or len(candidates) < 2:
            continue
        explicit = [row for row in candidates if getattr(row, row_field) is not None]
        if explicit:
            candidates = explicit
    return candidates


def _is_default_tier(row: PriceRow) -> bool:
    if row.start_usage_amount is None:
        return True
    amount = _to_amount(row.start_usage_amount)
    return amount is not None and amount == 0


def _is_on_demand(row: PriceRow) -> bool:
    return (row.purchase_option or "").lower().replace("-", "_") in ("on_demand", "ondemand")


def select_price(rows: List[PriceRow], price_filter: Optional[PriceFilter]) -> PriceSelection:
    """
    Pick the single price for a query from its matching rows.

    Rows contradicting explicit price filter fields are dropped first, then
    rows that carry a requested attribute win over rows that lack it. When
    the filter leaves the usage tier open, the default tier (start amount 0)
    is preferred; when it leaves the purchase option open, on-demand is
    preferred. Anything still ambiguous takes the first row in catalog order
    and is reported as non-unique.
    """
    candidates = [row for row in rows if price_row_matches(row, price_filter)]

    # The same price can be listed under several products
    unique: List[PriceRow] = []
    seen_hashes = set()
    for row in candidates:
        if row.price_hash is not None:
            if row.price_hash in seen_hashes:
                continue
            seen_hashes.add(row.price_hash)
        unique.append(row)
    candidates = unique

    if not candidates:
        return PriceSelection(row=None)

    explicit = price_filter or PriceFilter()
    candidates = _prefer_explicit(candidates, explicit)

    if len(candidates) > 1 and explicit.start_usage_amount is None:
        default_tier = [row for row in candidates if _is_default_tier(row)]
        if default_tier:
            candidates = default_tier

    if len(candidates) > 1 and explicit.purchase_option is None:
        on_demand = [row for row in candidates if _is_on_demand(row)]
        if on_demand:
            candidates = on_demand

    return PriceSelection(
        row=candidates[0],
        non_unique=len(candidates) > 1,
        candidates=len(candidates),
    )
