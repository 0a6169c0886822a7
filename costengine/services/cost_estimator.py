"""
Cost estimator service.
Runs usage merging, price resolution and cost calculation for a project, and
diffs two projects.
"""
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
import logging

from costengine.core.errors import ResolutionTimeoutError
from costengine.domain.cost_models import Project
from costengine.domain.diff_models import DiffResult
from costengine.pricing.session import PricingSession
from costengine.services.cost_calculator import HOURS_PER_MONTH, calculate_costs
from costengine.services.diff_engine import diff_projects
from costengine.services.price_resolver import PriceResolver, ResolutionReport
from costengine.services.usage_merger import merge_usage


logger = logging.getLogger(__name__)


@dataclass
class EstimateOutcome:
    """A calculated project with its resolution report and warnings."""
    project: Project
    report: Optional[ResolutionReport] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "project": self.project.to_dict(),
            "report": self.report.to_dict() if self.report else None,
            "warnings": list(self.warnings),
        }


@dataclass
class DiffOutcome:
    """Estimates of two projects and the diff between them."""
    prior: EstimateOutcome
    current: EstimateOutcome
    diff: DiffResult

    @property
    def warnings(self) -> List[str]:
        return self.prior.warnings + self.current.warnings

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "prior": self.prior.to_dict(),
            "current": self.current.to_dict(),
            "diff": self.diff.to_dict(),
            "warnings": self.warnings,
        }


class CostEstimator:
    """Service for estimating the cost of a project against a pricing session."""

    def __init__(self, session: PricingSession, hours_per_month: Any = HOURS_PER_MONTH):
        """
        Initialize cost estimator.

        Args:
            session: Pricing session used to resolve prices
            hours_per_month: Hours used to convert between hourly and monthly costs
        """
        self.session = session
        self.resolver = PriceResolver(session)
        self.hours_per_month = hours_per_month

    async def estimate(
        self,
        project: Project,
        usage: Optional[Dict[str, Dict[str, Any]]] = None
    ) -> EstimateOutcome:
        """
        Price a project in place.

        A deadline expiry is not fatal: completed prices are kept, the rest
        are unresolved, and the timeout is reported as a warning.

        Args:
            project: Project to estimate
            usage: Optional usage values by resource address

        Returns:
            EstimateOutcome with the calculated project

        Raises:
            InvalidCredentialError: If the pricing catalog rejects the credential
            UsageError: If the usage data cannot be applied
        """
        warnings: List[str] = []
        project.validate()
        merge_usage(project, usage)

        try:
            report = await self.resolver.resolve(project)
        except ResolutionTimeoutError as error:
            logger.warning(f"Partial estimate for project '{project.name}': {error}")
            warnings.append(str(error))
            report = error.report

        calculate_costs(project, self.hours_per_month)

        summary = project.summary
        if summary.unresolved_components:
            warnings.append(
                f"{summary.unresolved_components} cost components could not be priced "
                f"and are excluded from the totals"
            )
        if summary.unsupported_resources:
            types = ", ".join(
                f"{count} x {resource_type}"
                for resource_type, count in sorted(summary.unsupported_resource_counts.items())
            )
            warnings.append(f"{summary.unsupported_resources} resources are not supported yet: {types}")

        return EstimateOutcome(project=project, report=report, warnings=warnings)

    async def estimate_diff(
        self,
        prior: Project,
        current: Project,
        usage: Optional[Dict[str, Dict[str, Any]]] = None
    ) -> DiffOutcome:
        """
        Price two projects and diff them.

        The same usage values are applied to both projects.
        """
        prior_outcome = await self.estimate(prior, usage)
        current_outcome = await self.estimate(current, usage)
        diff = diff_projects(prior, current)
        return DiffOutcome(prior=prior_outcome, current=current_outcome, diff=diff)
