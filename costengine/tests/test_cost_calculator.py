"""
Tests for cost calculation.
CRITICAL INVARIANT: decimal arithmetic is exact and unpriced components never
count as zero-cost silently.
"""

import pytest
from decimal import Decimal, localcontext

from costengine.core.errors import ErrorKind, InternalInvariantViolation
from costengine.domain.cost_models import UNSUPPORTED_MESSAGE, CostStatus, Project, Resource
from costengine.services.cost_calculator import DECIMAL_PRECISION, HOURS_PER_MONTH, calculate_costs
from costengine.tests.fakes import make_component, make_resource


def _priced(component, price):
    component.set_price(price, price_hash="hash")
    return component


def test_hourly_quantity_round_trips_exactly():
    """monthly == p * m * q * 730 and hourly * 730 == monthly, exactly."""
    component = _priced(make_component("Box", "box", hourly="3", unit_multiplier="0.5"), "0.0116")
    project = Project(name="exact", resources=[make_resource("example_box.a", component)])

    calculate_costs(project)

    assert component.monthly_cost == Decimal("0.0116") * Decimal("0.5") * Decimal("3") * 730
    assert component.hourly_cost * HOURS_PER_MONTH == component.monthly_cost
    assert component.monthly_cost == Decimal("12.7020")
    assert component.cost_status == CostStatus.PRICED


def test_float_inputs_do_not_drift():
    """0.1 + 0.2 style drift never shows up in the totals."""
    first = _priced(make_component("A", "a", monthly=0.1), 1)
    second = _priced(make_component("B", "b", monthly=0.2), 1)
    project = Project(name="floats", resources=[make_resource("example_box.a", first, second)])

    calculate_costs(project)

    assert project.total_monthly_cost == Decimal("0.3")


def test_monthly_quantity_is_converted_to_hourly():
    """Monthly quantities divide by 730 for the hourly cost."""
    component = _priced(make_component("Storage", "disk", monthly=73, unit="GB"), "0.10")
    project = Project(name="monthly", resources=[make_resource("example_box.a", component)])

    calculate_costs(project)

    assert component.monthly_cost == Decimal("7.30")
    assert component.hourly_cost == Decimal("0.01")


def test_single_component_without_usage():
    """A priced component with no quantity is NO_USAGE and contributes nothing."""
    component = _priced(make_component("Box", "box"), "0.05")
    resource = make_resource("example_box.a", component)
    project = Project(name="nousage", resources=[resource])

    calculate_costs(project)

    assert component.cost_status == CostStatus.NO_USAGE
    assert component.hourly_cost is None
    assert component.monthly_cost is None
    assert resource.monthly_cost == Decimal(0)
    assert project.total_monthly_cost == Decimal(0)
    assert project.summary.no_usage_components == 1
    assert component.to_dict()["cost_status"] == "no_usage"


def test_unresolved_component_is_tracked_not_zero():
    """Unresolved components are excluded from totals but counted in the summary."""
    unresolved = make_component("Box", "box", hourly=1)
    unresolved.mark_unresolved(ErrorKind.NO_MATCH, "No catalog price")
    priced = _priced(make_component("Disk", "disk", monthly=10, unit="GB"), "0.10")
    project = Project(name="unresolved", resources=[make_resource("example_box.a", unresolved, priced)])

    calculate_costs(project)

    assert unresolved.cost_status == CostStatus.UNRESOLVED
    assert unresolved.monthly_cost is None
    assert project.total_monthly_cost == Decimal("1.00")
    assert project.summary.unresolved_components == 1


def test_pending_component_on_counted_resource_fails_loudly():
    """Calculating before resolving is a programming error."""
    project = Project(name="pending", resources=[
        make_resource("example_box.a", make_component("Box", "box", hourly=1))
    ])

    with pytest.raises(InternalInvariantViolation):
        calculate_costs(project)


def test_both_quantities_set_fails_loudly():
    """A component with hourly and monthly quantities is rejected."""
    component = _priced(make_component("Box", "box", hourly=1), "0.05")
    component.monthly_quantity = Decimal(1)
    project = Project(name="both", resources=[make_resource("example_box.a", component)])

    with pytest.raises(InternalInvariantViolation):
        calculate_costs(project)


def test_aggregation_includes_sub_resources_and_skips_skipped(sample_project):
    """Resource totals sum their sub-resources; skipped subtrees are excluded."""
    for resource in sample_project.all_resources():
        if resource.is_counted:
            for component in resource.cost_components:
                component.set_price({"box-small": "0.05", "box-large": "0.20", "disk": "0.10"}[
                    component.product_filter.sku
                ])

    calculate_costs(sample_project)

    web, worker, legacy = sample_project.resources
    assert web.own_monthly_cost == Decimal("36.50")
    assert web.sub_resources[0].monthly_cost == Decimal("2.00")
    assert web.monthly_cost == Decimal("38.50")
    assert worker.monthly_cost == Decimal("292.00")
    assert legacy.monthly_cost is None
    assert legacy.cost_components[0].cost_status == CostStatus.SKIPPED
    assert sample_project.total_monthly_cost == Decimal("330.50")
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        assert sample_project.total_hourly_cost == web.hourly_cost + worker.hourly_cost


def test_skipped_sub_resource_is_excluded_from_parent():
    """A skipped sub-resource contributes nothing to its parent."""
    child = make_resource(
        "extra_volume",
        _priced(make_component("Storage", "disk", monthly=100, unit="GB"), "0.10"),
        is_skipped=True,
    )
    parent = make_resource(
        "example_box.a",
        _priced(make_component("Box", "box", monthly=1), "5"),
        sub_resources=[child],
    )
    project = Project(name="skipchild", resources=[parent])

    calculate_costs(project)

    assert parent.monthly_cost == Decimal(5)
    assert child.cost_components[0].cost_status == CostStatus.SKIPPED


def test_summary_counts_resources():
    """The summary separates supported, unsupported and no-price resources."""
    project = Project(name="summary", resources=[
        make_resource("example_box.a", _priced(make_component("Box", "box", hourly=1), "1")),
        Resource(address="aws_foo.a", resource_type="aws_foo", no_price=True, is_skipped=True,
                 skip_message=UNSUPPORTED_MESSAGE),
        Resource(address="aws_foo.b", resource_type="aws_foo", no_price=True, is_skipped=True,
                 skip_message=UNSUPPORTED_MESSAGE),
        Resource(address="aws_eip.attached", resource_type="aws_eip", no_price=True, is_skipped=True,
                 skip_message="Elastic IP is attached and has no cost"),
        Resource(address="aws_iam_role.r", resource_type="aws_iam_role", no_price=True),
    ])

    calculate_costs(project)

    summary = project.summary
    assert summary.total_resources == 5
    assert summary.supported_resources == 1
    assert summary.unsupported_resources == 2
    assert summary.unsupported_resource_counts == {"aws_foo": 2}
    assert summary.no_price_resources == 2


def test_custom_hours_per_month():
    """hours_per_month is configurable per call."""
    component = _priced(make_component("Box", "box", hourly=1), "1")
    project = Project(name="hours", resources=[make_resource("example_box.a", component)])

    calculate_costs(project, hours_per_month=720)

    assert project.total_monthly_cost == Decimal(720)
