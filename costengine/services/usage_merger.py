"""
Usage merger service.
Applies externally supplied usage estimates to resources before pricing.
"""
from typing import Dict, Any, List, Optional, Pattern, Tuple
from decimal import Decimal, InvalidOperation
import logging
import re

from costengine.core.errors import UsageError
from costengine.domain.cost_models import Project, Resource, to_decimal, walk_resources


logger = logging.getLogger(__name__)


WILDCARD_SUFFIX = "[*]"


def _wildcard_pattern(address: str) -> Pattern:
    """aws_instance.web[*] matches aws_instance.web[0], aws_instance.web["a"], ..."""
    base = address[:-len(WILDCARD_SUFFIX)]
    return re.compile(rf"^{re.escape(base)}\[[^\]]+\]$")


def _usage_quantity(resource: Resource, key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise UsageError(f"Usage '{key}' for '{resource.qualified_address}' must be a number, got {value!r}")
    try:
        quantity = to_decimal(value)
    except (TypeError, InvalidOperation) as error:
        raise UsageError(
            f"Usage '{key}' for '{resource.qualified_address}' must be a number, got {value!r}"
        ) from error
    if quantity is None or not quantity.is_finite() or quantity < 0:
        raise UsageError(
            f"Usage '{key}' for '{resource.qualified_address}' must be a non-negative number, got {value!r}"
        )
    return quantity


def _stored_value(value: Any) -> Any:
    """Numbers are kept as Decimal; anything else is stored unchanged."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return to_decimal(value)
    return value


def _check_usage(usage: Any) -> None:
    if not isinstance(usage, dict):
        raise UsageError(f"Usage must map resource addresses to values, got {type(usage).__name__}")
    for address, values in usage.items():
        if not isinstance(values, dict):
            raise UsageError(f"Usage for '{address}' must be a mapping of usage keys to values")


def merge_usage(project: Project, usage: Optional[Dict[str, Dict[str, Any]]]) -> int:
    """
    Merge usage values into a project's resources.

    ``usage`` maps resource addresses to ``{usage_key: value}``. Addresses
    ending in ``[*]`` apply to every indexed instance of that resource; keys
    given for an exact address override the wildcard ones. Each value is
    stored on ``Resource.usage`` and, when a cost component of the resource
    is bound to that usage key, becomes the component's hourly or monthly
    quantity.

    Args:
        project: Project to update in place
        usage: Usage values by address

    Returns:
        Number of resources that received usage values

    Raises:
        UsageError: If the usage data is malformed or a value bound to a
            cost component is not a non-negative number
    """
    if not usage:
        return 0
    _check_usage(usage)

    exact: Dict[str, Dict[str, Any]] = {}
    wildcards: List[Tuple[Pattern, Dict[str, Any]]] = []
    for address, values in usage.items():
        if address.endswith(WILDCARD_SUFFIX):
            wildcards.append((_wildcard_pattern(address), values))
        else:
            exact[address] = values

    updated = 0
    matched_addresses = set()
    for resource, _ in walk_resources(project.resources):
        values: Dict[str, Any] = {}
        for pattern, wildcard_values in wildcards:
            if pattern.match(resource.qualified_address):
                values.update(wildcard_values)
        if resource.qualified_address in exact:
            values.update(exact[resource.qualified_address])
            matched_addresses.add(resource.qualified_address)
        if not values:
            continue

        for key, value in values.items():
            resource.usage[key] = _stored_value(value)
            for component in resource.cost_components:
                if component.usage_key == key:
                    component.set_quantity(_usage_quantity(resource, key, value))
        updated += 1

    unmatched = set(exact) - matched_addresses
    if unmatched:
        logger.warning(f"Usage given for unknown resources: {', '.join(sorted(unmatched))}")
    logger.debug(f"Applied usage to {updated} resources in project '{project.name}'")
    return updated
