"""
Diff engine service.
Aligns two calculated projects by resource address and computes per-resource
and per-component cost deltas.
"""
from typing import Dict, List, Optional, Tuple
from decimal import Decimal, localcontext
import logging

from costengine.core.errors import InternalInvariantViolation
from costengine.domain.cost_models import CostComponent, CostStatus, Project, Resource, iter_qualified
from costengine.domain.diff_models import ChangeType, ComponentDelta, DiffResult, ResourceDiff
from costengine.services.cost_calculator import DECIMAL_PRECISION


logger = logging.getLogger(__name__)


ZERO = Decimal(0)

ComponentKey = Tuple[str, str, int]


def _or_zero(value: Optional[Decimal]) -> Decimal:
    return ZERO if value is None else value


def _flatten(project: Project) -> Dict[str, Tuple[Resource, bool]]:
    """Map every qualified address in the tree to its resource and counted flag."""
    return {
        address: (resource, counted)
        for address, resource, counted in iter_qualified(project.resources)
    }


def _keyed_components(resource: Optional[Resource], counted: bool) -> Dict[ComponentKey, CostComponent]:
    """
    Key a resource's own components by (name, unit, occurrence).

    The occurrence index tells apart components that share a name and unit.
    """
    if resource is None or not counted:
        return {}
    keyed: Dict[ComponentKey, CostComponent] = {}
    occurrences: Dict[Tuple[str, str], int] = {}
    for component in resource.cost_components:
        name_unit = (component.name, component.unit)
        index = occurrences.get(name_unit, 0)
        occurrences[name_unit] = index + 1
        keyed[(component.name, component.unit, index)] = component
    return keyed


def _component_delta(
    key: ComponentKey,
    prior: Optional[CostComponent],
    current: Optional[CostComponent]
) -> Tuple[ComponentDelta, Decimal, Decimal]:
    """
    Build one component delta.

    Returns the delta plus the monthly and hourly amounts it adds to the
    resource sums; an unresolved side adds zero, as it does to the totals.
    """
    prior_monthly = prior.monthly_cost if prior else None
    current_monthly = current.monthly_cost if current else None
    monthly_sum = _or_zero(current_monthly) - _or_zero(prior_monthly)
    hourly_sum = _or_zero(current.hourly_cost if current else None) - _or_zero(prior.hourly_cost if prior else None)

    unresolved = any(
        c is not None and c.cost_status == CostStatus.UNRESOLVED for c in (prior, current)
    )

    if prior is None:
        change = ChangeType.ADDED
    elif current is None:
        change = ChangeType.REMOVED
    elif prior_monthly == current_monthly and prior.cost_status == current.cost_status:
        change = ChangeType.UNCHANGED
    else:
        change = ChangeType.UPDATED

    delta = ComponentDelta(
        name=key[0],
        unit=key[1],
        change=change,
        prior_monthly_cost=prior_monthly,
        current_monthly_cost=current_monthly,
        monthly_delta=None if unresolved else monthly_sum,
        hourly_delta=None if unresolved else hourly_sum,
        unresolved=unresolved,
    )
    return delta, monthly_sum, hourly_sum


def _resource_diff(
    address: str,
    prior: Optional[Tuple[Resource, bool]],
    current: Optional[Tuple[Resource, bool]]
) -> ResourceDiff:
    prior_resource, prior_counted = prior if prior else (None, False)
    current_resource, current_counted = current if current else (None, False)

    prior_components = _keyed_components(prior_resource, prior_counted)
    current_components = _keyed_components(current_resource, current_counted)

    # Prior order first, then components only the current side has
    keys = list(prior_components)
    keys.extend(key for key in current_components if key not in prior_components)

    deltas: List[ComponentDelta] = []
    monthly_delta = ZERO
    hourly_delta = ZERO
    for key in keys:
        delta, monthly, hourly = _component_delta(
            key, prior_components.get(key), current_components.get(key)
        )
        deltas.append(delta)
        monthly_delta += monthly
        hourly_delta += hourly

    if prior_resource is None:
        change = ChangeType.ADDED
    elif current_resource is None:
        change = ChangeType.REMOVED
    elif any(delta.change != ChangeType.UNCHANGED for delta in deltas) or prior_counted != current_counted:
        change = ChangeType.UPDATED
    else:
        change = ChangeType.UNCHANGED

    return ResourceDiff(
        address=address,
        change=change,
        prior=prior_resource,
        current=current_resource,
        prior_monthly_cost=sum((_or_zero(c.monthly_cost) for c in prior_components.values()), ZERO),
        current_monthly_cost=sum((_or_zero(c.monthly_cost) for c in current_components.values()), ZERO),
        monthly_delta=monthly_delta,
        hourly_delta=hourly_delta,
        component_deltas=deltas,
    )


def diff_projects(prior: Project, current: Project) -> DiffResult:
    """
    Compare two calculated projects.

    Resources are matched on their qualified address, so sub-resources are
    compared individually and each one contributes only its own components.
    Resources present only in the prior project are REMOVED, resources only
    in the current project are ADDED.

    Args:
        prior: Project before the change
        current: Project after the change

    Returns:
        DiffResult whose resource deltas sum to the change in project totals

    Raises:
        InternalInvariantViolation: If either project has not been calculated,
            or the deltas do not add up to the change in totals
    """
    for project in (prior, current):
        if project.total_monthly_cost is None or project.total_hourly_cost is None:
            raise InternalInvariantViolation(
                f"Project '{project.name}' must be calculated before it can be diffed"
            )

    prior_map = _flatten(prior)
    current_map = _flatten(current)

    addresses = list(prior_map)
    addresses.extend(address for address in current_map if address not in prior_map)

    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION

        resources = [
            _resource_diff(address, prior_map.get(address), current_map.get(address))
            for address in addresses
        ]

        total_monthly_delta = sum((r.monthly_delta for r in resources), ZERO)
        total_hourly_delta = sum((r.hourly_delta for r in resources), ZERO)
        expected = current.total_monthly_cost - prior.total_monthly_cost

    if total_monthly_delta != expected:
        raise InternalInvariantViolation(
            f"Diff of '{prior.name}' and '{current.name}' is inconsistent: resource deltas sum to "
            f"{total_monthly_delta} but project totals differ by {expected}"
        )

    result = DiffResult(
        prior_name=prior.name,
        current_name=current.name,
        resources=resources,
        prior_total_monthly_cost=prior.total_monthly_cost,
        current_total_monthly_cost=current.total_monthly_cost,
        total_monthly_delta=total_monthly_delta,
        total_hourly_delta=total_hourly_delta,
    )
    logger.info(
        f"Diffed '{prior.name}' against '{current.name}': {len(result.changed())} changed "
        f"resources, monthly delta {total_monthly_delta}"
    )
    return result
