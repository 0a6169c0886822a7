"""
Tests for cost diffs.
CRITICAL INVARIANT: per-resource deltas always sum to the change in totals.
"""

import pytest
from decimal import Decimal

from costengine.core.errors import ErrorKind, InternalInvariantViolation
from costengine.domain.cost_models import ADDRESS_SEPARATOR, Project
from costengine.domain.diff_models import ChangeType
from costengine.services.cost_calculator import calculate_costs
from costengine.services.diff_engine import diff_projects
from costengine.tests.fakes import make_component, make_resource


def _monthly(name, price, sku="box", **kwargs):
    component = make_component(name, sku, monthly=1, **kwargs)
    component.set_price(price)
    return component


def _project(name, *resources):
    return calculate_costs(Project(name=name, resources=list(resources)))


def test_added_removed_and_updated_resources():
    """A removed, B +$5, C added: aggregate delta is -x + 10."""
    prior = _project(
        "prior",
        make_resource("example_box.a", _monthly("Box", "7")),
        make_resource("example_box.b", _monthly("Box", "10")),
    )
    current = _project(
        "current",
        make_resource("example_box.b", _monthly("Box", "15")),
        make_resource("example_box.c", _monthly("Box", "5")),
    )

    result = diff_projects(prior, current)

    by_address = {r.address: r for r in result.resources}
    assert by_address["example_box.a"].change == ChangeType.REMOVED
    assert by_address["example_box.a"].monthly_delta == Decimal("-7")
    assert by_address["example_box.a"].current is None
    assert by_address["example_box.b"].change == ChangeType.UPDATED
    assert by_address["example_box.b"].monthly_delta == Decimal("5")
    assert by_address["example_box.c"].change == ChangeType.ADDED
    assert by_address["example_box.c"].monthly_delta == Decimal("5")
    assert by_address["example_box.c"].prior is None
    assert result.total_monthly_delta == Decimal("3")
    assert result.total_monthly_delta == current.total_monthly_cost - prior.total_monthly_cost


def test_unchanged_resources_are_reported_unchanged():
    """Identical resources produce a zero delta and UNCHANGED."""
    prior = _project("prior", make_resource("example_box.a", _monthly("Box", "10")))
    current = _project("current", make_resource("example_box.a", _monthly("Box", "10")))

    result = diff_projects(prior, current)

    assert result.resources[0].change == ChangeType.UNCHANGED
    assert result.resources[0].monthly_delta == Decimal(0)
    assert result.changed() == []


def test_sub_resources_are_diffed_by_qualified_address():
    """Sub-resources are aligned individually without double counting."""
    prior = _project("prior", make_resource(
        "example_box.a",
        _monthly("Box", "10"),
        sub_resources=[make_resource("root_volume", _monthly("Storage", "2", unit="GB"))],
    ))
    current = _project("current", make_resource(
        "example_box.a",
        _monthly("Box", "10"),
        sub_resources=[make_resource("root_volume", _monthly("Storage", "3", unit="GB"))],
    ))

    result = diff_projects(prior, current)

    by_address = {r.address: r for r in result.resources}
    assert set(by_address) == {"example_box.a", "example_box.a/root_volume"}
    assert by_address["example_box.a"].change == ChangeType.UNCHANGED
    assert by_address["example_box.a/root_volume"].monthly_delta == Decimal(1)
    assert result.total_monthly_delta == Decimal(1)


def test_unresolved_component_delta_is_not_zero():
    """An unresolved side yields a None delta flagged unresolved."""
    prior = _project("prior", make_resource("example_box.a", _monthly("Box", "10")))
    unresolved = make_component("Box", "box", monthly=1)
    unresolved.mark_unresolved(ErrorKind.NO_MATCH, "No catalog price")
    current = _project("current", make_resource("example_box.a", unresolved))

    result = diff_projects(prior, current)

    resource_diff = result.resources[0]
    delta = resource_diff.component_deltas[0]
    assert delta.unresolved is True
    assert delta.monthly_delta is None
    assert resource_diff.has_unresolved
    assert resource_diff.change == ChangeType.UPDATED
    # Totals exclude the unresolved price, and so does the aggregate delta
    assert result.total_monthly_delta == current.total_monthly_cost - prior.total_monthly_cost


def test_components_with_same_name_are_matched_by_occurrence():
    """Repeated (name, unit) pairs are matched in order."""
    prior = _project("prior", make_resource(
        "example_box.a", _monthly("Disk", "1", sku="d1"), _monthly("Disk", "2", sku="d2")
    ))
    current = _project("current", make_resource(
        "example_box.a", _monthly("Disk", "1", sku="d1"), _monthly("Disk", "5", sku="d2")
    ))

    result = diff_projects(prior, current)

    deltas = result.resources[0].component_deltas
    assert [d.change for d in deltas] == [ChangeType.UNCHANGED, ChangeType.UPDATED]
    assert deltas[1].monthly_delta == Decimal(3)


def test_skipped_resource_contributes_nothing():
    """A resource that becomes skipped loses its cost in the diff."""
    prior = _project("prior", make_resource("example_box.a", _monthly("Box", "10")))
    current = _project(
        "current",
        make_resource("example_box.a", _monthly("Box", "10"), is_skipped=True),
    )

    result = diff_projects(prior, current)

    assert result.resources[0].change == ChangeType.UPDATED
    assert result.total_monthly_delta == Decimal("-10")


def test_uncalculated_project_is_rejected():
    """Both projects must be calculated first."""
    prior = _project("prior", make_resource("example_box.a", _monthly("Box", "10")))
    current = Project(name="current", resources=[make_resource("example_box.a", _monthly("Box", "10"))])

    with pytest.raises(InternalInvariantViolation):
        diff_projects(prior, current)


def test_to_dict_orders_by_largest_change():
    """Serialized resources are ordered by absolute monthly delta."""
    prior = _project(
        "prior",
        make_resource("example_box.a", _monthly("Box", "1")),
        make_resource("example_box.b", _monthly("Box", "100")),
    )
    current = _project(
        "current",
        make_resource("example_box.a", _monthly("Box", "2")),
    )

    data = diff_projects(prior, current).to_dict()

    assert [r["address"] for r in data["resources"]] == ["example_box.b", "example_box.a"]
    assert data["total_monthly_delta"] == "-99"


def test_diff_leaves_inputs_untouched():
    """Sub-resources are matched on their qualified address without writing it back."""
    def with_volume(name, volume_price):
        volume = make_resource("volume", _monthly("Storage", volume_price, sku="disk"))
        return _project(name, make_resource("example_box.a", _monthly("Box", "10"), sub_resources=[volume]))

    prior = with_volume("prior", "1")
    current = with_volume("current", "3")
    volumes = [prior.resources[0].sub_resources[0], current.resources[0].sub_resources[0]]
    for volume in volumes:
        volume.qualified_address = "volume"

    result = diff_projects(prior, current)

    by_address = {r.address: r for r in result.resources}
    assert by_address[f"example_box.a{ADDRESS_SEPARATOR}volume"].monthly_delta == Decimal("2")
    assert [volume.qualified_address for volume in volumes] == ["volume", "volume"]
