"""
Cost calculator service.
Turns resolved unit prices and quantities into hourly and monthly costs and
aggregates them up the resource tree.
"""
from typing import Dict, Any, Optional
from decimal import Decimal, localcontext
import logging

from costengine.core.config import config
from costengine.core.errors import InternalInvariantViolation
from costengine.domain.cost_models import (
    UNSUPPORTED_MESSAGE,
    CostComponent,
    CostStatus,
    PriceStatus,
    Project,
    ProjectSummary,
    iter_post_order,
    to_decimal,
    walk_resources,
)


logger = logging.getLogger(__name__)


HOURS_PER_MONTH = Decimal(config.HOURS_PER_MONTH)
DECIMAL_PRECISION = 50
ZERO = Decimal(0)


def _price_component(component: CostComponent, hours_per_month: Decimal) -> None:
    component.check_quantities()

    if component.price_status == PriceStatus.UNRESOLVED:
        component.hourly_cost = None
        component.monthly_cost = None
        component.cost_status = CostStatus.UNRESOLVED
        return

    if component.price_status != PriceStatus.RESOLVED:
        raise InternalInvariantViolation(
            f"Cost component '{component.name}' has no resolved price; run the price resolver first"
        )

    unit_cost = component.price * component.unit_multiplier

    if component.hourly_quantity is not None:
        component.hourly_cost = unit_cost * component.hourly_quantity
        component.monthly_cost = component.hourly_cost * hours_per_month
        component.cost_status = CostStatus.PRICED
    elif component.monthly_quantity is not None:
        component.monthly_cost = unit_cost * component.monthly_quantity
        component.hourly_cost = component.monthly_cost / hours_per_month
        component.cost_status = CostStatus.PRICED
    else:
        component.hourly_cost = None
        component.monthly_cost = None
        component.cost_status = CostStatus.NO_USAGE


def _skip_component(component: CostComponent) -> None:
    component.hourly_cost = None
    component.monthly_cost = None
    component.cost_status = CostStatus.SKIPPED


def _or_zero(value: Optional[Decimal]) -> Decimal:
    return ZERO if value is None else value


def calculate_costs(project: Project, hours_per_month: Any = HOURS_PER_MONTH) -> Project:
    """
    Compute component, resource and project costs in place.

    Hourly-quantity components are scaled up by ``hours_per_month`` and
    monthly-quantity components are scaled down by it. Unresolved and
    no-usage components cost nothing towards the totals but are counted in
    the project summary. Skipped and no-price resources, and everything
    under them, are left out of every total.

    Args:
        project: Project whose prices have been resolved
        hours_per_month: Hours used to convert between hourly and monthly costs

    Returns:
        The same project, for chaining

    Raises:
        InternalInvariantViolation: If the tree is malformed or a counted
            component was never resolved
    """
    hours = to_decimal(hours_per_month)
    if hours <= 0:
        raise ValueError("hours_per_month must be positive")

    project.validate()

    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION

        counted: Dict[int, bool] = {}
        for resource, is_counted in walk_resources(project.resources):
            counted[id(resource)] = is_counted
            for component in resource.cost_components:
                if is_counted:
                    _price_component(component, hours)
                else:
                    _skip_component(component)

        for resource in iter_post_order(project.resources):
            if not counted[id(resource)]:
                resource.own_hourly_cost = None
                resource.own_monthly_cost = None
                resource.hourly_cost = None
                resource.monthly_cost = None
                continue

            resource.own_hourly_cost = sum(
                (_or_zero(c.hourly_cost) for c in resource.cost_components), ZERO
            )
            resource.own_monthly_cost = sum(
                (_or_zero(c.monthly_cost) for c in resource.cost_components), ZERO
            )
            children = [child for child in resource.sub_resources if counted[id(child)]]
            resource.hourly_cost = resource.own_hourly_cost + sum(
                (child.hourly_cost for child in children), ZERO
            )
            resource.monthly_cost = resource.own_monthly_cost + sum(
                (child.monthly_cost for child in children), ZERO
            )

        top_level = [r for r in project.resources if counted[id(r)]]
        project.total_hourly_cost = sum((r.hourly_cost for r in top_level), ZERO)
        project.total_monthly_cost = sum((r.monthly_cost for r in top_level), ZERO)

    project.summary = build_summary(project)

    if project.summary.unresolved_components:
        logger.warning(
            f"Project '{project.name}' has {project.summary.unresolved_components} "
            f"cost components without a price; totals exclude them"
        )
    logger.info(
        f"Project '{project.name}' costs {project.total_monthly_cost} {project.currency}/month"
    )
    return project


def build_summary(project: Project) -> ProjectSummary:
    """
    Count how completely a project was priced.

    Resource counts cover top-level resources; component counts cover every
    component of a counted resource, sub-resources included. Only resources
    skipped for lack of a builder count as unsupported.
    """
    summary = ProjectSummary()
    for resource in project.resources:
        summary.total_resources += 1
        if resource.is_skipped and resource.skip_message == UNSUPPORTED_MESSAGE:
            summary.unsupported_resources += 1
            resource_type = resource.resource_type or "unknown"
            summary.unsupported_resource_counts[resource_type] = (
                summary.unsupported_resource_counts.get(resource_type, 0) + 1
            )
        elif resource.no_price or resource.is_skipped:
            summary.no_price_resources += 1
        else:
            summary.supported_resources += 1

    for component in project.counted_cost_components():
        if component.cost_status == CostStatus.UNRESOLVED:
            summary.unresolved_components += 1
        elif component.cost_status == CostStatus.NO_USAGE:
            summary.no_usage_components += 1
        if component.price_non_unique:
            summary.non_unique_components += 1
    return summary
