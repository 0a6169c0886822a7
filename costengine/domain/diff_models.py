"""
Domain models for comparing two cost estimates.
Defines per-component and per-resource deltas and the overall diff result.
"""
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from costengine.domain.cost_models import Resource, format_decimal


class ChangeType(Enum):
    """How a resource or component changed between two estimates."""
    ADDED = "added"
    REMOVED = "removed"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ComponentDelta:
    """Delta for a single cost component, matched by name and unit."""
    name: str
    unit: str
    change: ChangeType
    prior_monthly_cost: Optional[Decimal]
    current_monthly_cost: Optional[Decimal]
    monthly_delta: Optional[Decimal]  # None when unresolved on either side
    hourly_delta: Optional[Decimal]
    unresolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "unit": self.unit,
            "change": self.change.value,
            "prior_monthly_cost": format_decimal(self.prior_monthly_cost),
            "current_monthly_cost": format_decimal(self.current_monthly_cost),
            "monthly_delta": format_decimal(self.monthly_delta),
            "hourly_delta": format_decimal(self.hourly_delta),
            "unresolved": self.unresolved,
        }


@dataclass(frozen=True)
class ResourceDiff:
    """Delta for one resource address; prior or current may be absent."""
    address: str
    change: ChangeType
    prior: Optional[Resource]
    current: Optional[Resource]
    prior_monthly_cost: Decimal
    current_monthly_cost: Decimal
    monthly_delta: Decimal
    hourly_delta: Decimal
    component_deltas: List[ComponentDelta] = field(default_factory=list)

    @property
    def has_unresolved(self) -> bool:
        return any(delta.unresolved for delta in self.component_deltas)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "address": self.address,
            "change": self.change.value,
            "prior_monthly_cost": format_decimal(self.prior_monthly_cost),
            "current_monthly_cost": format_decimal(self.current_monthly_cost),
            "monthly_delta": format_decimal(self.monthly_delta),
            "hourly_delta": format_decimal(self.hourly_delta),
            "has_unresolved": self.has_unresolved,
            "component_deltas": [delta.to_dict() for delta in self.component_deltas],
        }


@dataclass(frozen=True)
class DiffResult:
    """Result of comparing a prior and a current project."""
    prior_name: str
    current_name: str
    resources: List[ResourceDiff]
    prior_total_monthly_cost: Decimal
    current_total_monthly_cost: Decimal
    total_monthly_delta: Decimal
    total_hourly_delta: Decimal

    def changed(self) -> List[ResourceDiff]:
        """Resource diffs other than UNCHANGED."""
        return [r for r in self.resources if r.change != ChangeType.UNCHANGED]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        # Largest absolute change first, as the delta tables show it
        sorted_resources = sorted(
            self.resources,
            key=lambda r: abs(r.monthly_delta),
            reverse=True
        )

        return {
            "prior_name": self.prior_name,
            "current_name": self.current_name,
            "prior_total_monthly_cost": format_decimal(self.prior_total_monthly_cost),
            "current_total_monthly_cost": format_decimal(self.current_total_monthly_cost),
            "total_monthly_delta": format_decimal(self.total_monthly_delta),
            "total_hourly_delta": format_decimal(self.total_hourly_delta),
            "resources": [r.to_dict() for r in sorted_resources],
        }
