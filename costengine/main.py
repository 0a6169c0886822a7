"""
Main FastAPI application bootstrap.
Configures logging and includes routers.
"""
import logging
from typing import Dict, Any

from fastapi import FastAPI

from costengine.core.config import config
from costengine.api.estimate import router as estimate_router


logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Validate configuration on startup
try:
    config.validate()
except ValueError as error:
    # Fail fast with a clear, non-secret-bearing message
    raise RuntimeError(f"Configuration error: {error}") from error

# Log a safe summary of the pricing configuration (no secrets)
logger.info(
    "Pricing catalog=%s, endpoint=%s, api_key=%s",
    config.PRICING_CATALOG,
    config.PRICING_API_ENDPOINT,
    "set" if config.PRICING_API_KEY else "MISSING",
)


app = FastAPI(
    title="Cost Engine",
    description="Prices declared infrastructure resources and diffs cost estimates",
)

# Include routers
app.include_router(estimate_router)


@app.get("/health")
async def health() -> Dict[str, Any]:
    """
    Liveness check.

    Returns:
        Service status and the configured pricing catalog
    """
    return {
        "status": "ok",
        "catalog": config.PRICING_CATALOG,
    }
