"""
API routes for cost estimation.
Accepts declared resources as JSON and returns priced projects and diffs.
"""
from typing import Dict, Any, AsyncIterator, List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
import logging

import costengine.resources.aws  # noqa: F401  registers the AWS builders
from costengine.core.errors import (
    InternalInvariantViolation,
    InvalidCredentialError,
    PricingError,
)
from costengine.domain.cost_models import Project
from costengine.pricing.session import PricingSession
from costengine.resources.registry import ResourceData, registry
from costengine.services.cost_estimator import CostEstimator


logger = logging.getLogger(__name__)
router = APIRouter()


class ResourceInput(BaseModel):
    """A declared resource and its attributes."""
    address: str = Field(..., min_length=1, description="Resource address, e.g. aws_instance.web")
    resource_type: str = Field(..., min_length=1, description="Terraform resource type, e.g. aws_instance")
    region: Optional[str] = Field(None, description="Region code (default: us-east-1)")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Resource attributes")


class ProjectInput(BaseModel):
    """A named set of declared resources."""
    project_name: str = Field(..., min_length=1, description="Project name")
    resources: List[ResourceInput] = Field(..., description="Declared resources")


class EstimateRequest(ProjectInput):
    """Request model for a single project estimate."""
    usage: Optional[Dict[str, Dict[str, Any]]] = Field(
        None,
        description="Usage values by resource address; addresses ending in [*] match every index"
    )


class DiffRequest(BaseModel):
    """Request model for comparing two projects."""
    prior: ProjectInput = Field(..., description="Project before the change")
    current: ProjectInput = Field(..., description="Project after the change")
    usage: Optional[Dict[str, Dict[str, Any]]] = Field(None, description="Usage values applied to both projects")


async def get_pricing_session(
    x_pricing_api_key: Optional[str] = Header(None)
) -> AsyncIterator[PricingSession]:
    """
    Open a pricing session for one request.

    The X-Pricing-API-Key header overrides the configured API key.
    """
    session = PricingSession.open(api_key=x_pricing_api_key or None)
    try:
        yield session
    finally:
        await session.aclose()


def build_project(project_input: ProjectInput) -> Project:
    """
    Turn request resources into a project through the resource registry.

    Raises:
        ValueError: If two resources share an address
    """
    addresses = [resource.address for resource in project_input.resources]
    duplicates = sorted({address for address in addresses if addresses.count(address) > 1})
    if duplicates:
        raise ValueError(f"Duplicate resource addresses: {', '.join(duplicates)}")

    return registry.build_project(
        project_input.project_name,
        [
            ResourceData(
                address=resource.address,
                resource_type=resource.resource_type,
                region=resource.region,
                attributes=dict(resource.attributes),
            )
            for resource in project_input.resources
        ]
    )


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, InvalidCredentialError):
        return HTTPException(status_code=401, detail=f"Pricing credential rejected: {str(error)}")
    if isinstance(error, ValueError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, PricingError) and not isinstance(error, InternalInvariantViolation):
        logger.error(f"Pricing failed ({error.kind.value}): {error}")
        return HTTPException(status_code=502, detail=f"Pricing failed: {str(error)}")
    logger.error(f"Unexpected error while estimating costs: {error}", exc_info=True)
    return HTTPException(status_code=500, detail="An unexpected error occurred while estimating costs")


@router.post("/api/estimate")
async def estimate_project(
    estimate_request: EstimateRequest,
    session: PricingSession = Depends(get_pricing_session)
) -> Dict[str, Any]:
    """
    Estimate the cost of a set of declared resources.

    Args:
        estimate_request: Request body with project name, resources and usage
        session: Pricing session for this request

    Returns:
        JSON response with the priced project, resolution report and warnings

    Raises:
        HTTPException: 401 if the pricing credential is rejected, 422 for
                       unusable resources or usage, 502 if pricing fails
    """
    try:
        project = build_project(estimate_request)
        outcome = await CostEstimator(session).estimate(project, estimate_request.usage)
    except Exception as error:
        raise _to_http_error(error) from error

    return {
        "status": "ok",
        **outcome.to_dict(),
    }


@router.post("/api/estimate/diff")
async def estimate_diff(
    diff_request: DiffRequest,
    session: PricingSession = Depends(get_pricing_session)
) -> Dict[str, Any]:
    """
    Estimate two sets of resources and compare them.

    Args:
        diff_request: Request body with the prior and current projects
        session: Pricing session for this request

    Returns:
        JSON response with both priced projects, the diff and warnings

    Raises:
        HTTPException: 401 if the pricing credential is rejected, 422 for
                       unusable resources or usage, 502 if pricing fails
    """
    try:
        prior = build_project(diff_request.prior)
        current = build_project(diff_request.current)
        outcome = await CostEstimator(session).estimate_diff(prior, current, diff_request.usage)
    except Exception as error:
        raise _to_http_error(error) from error

    return {
        "status": "ok",
        **outcome.to_dict(),
    }
