"""
Configuration module for loading environment variables.
Pricing catalog endpoints, credentials and resolver limits are read here.
"""
import os


class Config:
    """Application configuration loaded from environment variables."""

    # Pricing catalog
    PRICING_CATALOG: str = os.getenv("PRICING_CATALOG", "cloud_pricing_api")
    PRICING_API_ENDPOINT: str = os.getenv(
        "PRICING_API_ENDPOINT",
        "https://pricing.api.infracost.io"
    ).rstrip("/")
    PRICING_API_KEY: str = os.getenv("PRICING_API_KEY", "")
    AWS_PRICING_REGION: str = os.getenv("AWS_PRICING_REGION", "us-east-1")
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "USD")

    # Resolver limits
    PRICING_BATCH_SIZE: int = int(os.getenv("PRICING_BATCH_SIZE", "5"))
    PRICING_MAX_CONCURRENCY: int = int(os.getenv("PRICING_MAX_CONCURRENCY", "4"))
    PRICING_RETRY_ATTEMPTS: int = int(os.getenv("PRICING_RETRY_ATTEMPTS", "3"))
    PRICING_RETRY_BACKOFF_SECONDS: float = float(os.getenv("PRICING_RETRY_BACKOFF_SECONDS", "0.5"))
    PRICING_RETRY_BACKOFF_MAX_SECONDS: float = float(os.getenv("PRICING_RETRY_BACKOFF_MAX_SECONDS", "8"))
    PRICING_REQUEST_TIMEOUT: float = float(os.getenv("PRICING_REQUEST_TIMEOUT", "30"))
    PRICING_DEADLINE_SECONDS: float = float(os.getenv("PRICING_DEADLINE_SECONDS", "120"))

    # Cost calculation
    HOURS_PER_MONTH: int = 730  # Standard assumption: 24/7 operation

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """
        Validates that configuration values are usable.

        Raises:
            ValueError: If any configuration value is missing or invalid.
        """
        if cls.PRICING_CATALOG not in ("cloud_pricing_api", "aws_price_list"):
            raise ValueError(
                f"PRICING_CATALOG must be 'cloud_pricing_api' or 'aws_price_list' (got: {cls.PRICING_CATALOG})"
            )
        if cls.PRICING_CATALOG == "cloud_pricing_api" and not cls.PRICING_API_ENDPOINT.startswith(("http://", "https://")):
            raise ValueError(
                f"PRICING_API_ENDPOINT must be a valid URL (got: {cls.PRICING_API_ENDPOINT})"
            )
        if cls.PRICING_BATCH_SIZE < 1:
            raise ValueError("PRICING_BATCH_SIZE must be at least 1")
        if cls.PRICING_MAX_CONCURRENCY < 1:
            raise ValueError("PRICING_MAX_CONCURRENCY must be at least 1")
        if cls.PRICING_RETRY_ATTEMPTS < 1:
            raise ValueError("PRICING_RETRY_ATTEMPTS must be at least 1")
        if cls.PRICING_REQUEST_TIMEOUT <= 0 or cls.PRICING_DEADLINE_SECONDS <= 0:
            raise ValueError("PRICING_REQUEST_TIMEOUT and PRICING_DEADLINE_SECONDS must be positive")

        # The API key is optional here because callers can supply their own
        # via the X-Pricing-API-Key header.


config = Config()
