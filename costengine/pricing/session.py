"""
Pricing session.
Bundles the catalog, its credential and the resolver limits for one caller.
"""
from dataclasses import dataclass
from typing import List, Optional
import logging

from costengine.core.config import config
from costengine.pricing.catalog import CatalogResult, PriceQuery, PricingCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricingSettings:
    """Resolver limits for a pricing session."""
    batch_size: int = 5
    max_concurrency: int = 4
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.5
    retry_backoff_max_seconds: float = 8.0
    deadline_seconds: Optional[float] = 120.0
    currency: str = "USD"

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.retry_backoff_seconds < 0 or self.retry_backoff_max_seconds < 0:
            raise ValueError("retry backoff must not be negative")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be positive")

    @classmethod
    def from_config(cls) -> "PricingSettings":
        """Build settings from the environment configuration."""
        return cls(
            batch_size=config.PRICING_BATCH_SIZE,
            max_concurrency=config.PRICING_MAX_CONCURRENCY,
            retry_attempts=config.PRICING_RETRY_ATTEMPTS,
            retry_backoff_seconds=config.PRICING_RETRY_BACKOFF_SECONDS,
            retry_backoff_max_seconds=config.PRICING_RETRY_BACKOFF_MAX_SECONDS,
            deadline_seconds=config.PRICING_DEADLINE_SECONDS,
            currency=config.DEFAULT_CURRENCY,
        )


class PricingSession:
    """
    Caller-owned pricing session.

    Holds the catalog (with its credential and connections) and the resolver
    settings, and counts the catalog calls made through it. Use as an async
    context manager to release the catalog's connections.
    """

    def __init__(self, catalog: PricingCatalog, settings: Optional[PricingSettings] = None):
        self.catalog = catalog
        self.settings = settings or PricingSettings()
        self.catalog_calls = 0

    @classmethod
    def open(
        cls,
        api_key: Optional[str] = None,
        settings: Optional[PricingSettings] = None
    ) -> "PricingSession":
        """
        Open a session on the configured catalog.

        Args:
            api_key: Pricing API key overriding the configured one
                (Cloud Pricing API only)
            settings: Resolver limits (defaults to the environment configuration)
        """
        if config.PRICING_CATALOG == "aws_price_list":
            from costengine.pricing.aws_pricing_client import AWSPriceListCatalog
            catalog: PricingCatalog = AWSPriceListCatalog()
        else:
            from costengine.pricing.cloud_pricing_client import CloudPricingAPIClient
            catalog = CloudPricingAPIClient(api_key=api_key)
        logger.debug(f"Opened pricing session on catalog '{catalog.name}'")
        return cls(catalog, settings or PricingSettings.from_config())

    async def query(self, queries: List[PriceQuery]) -> List[CatalogResult]:
        """Send one batch to the catalog and count the call."""
        self.catalog_calls += 1
        return await self.catalog.query(queries)

    async def aclose(self) -> None:
        await self.catalog.aclose()

    async def __aenter__(self) -> "PricingSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
