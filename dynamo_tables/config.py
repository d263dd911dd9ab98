"""
Configuration for dynamo_tables.

Uses pydantic-settings for environment variable management. Engines consume
the immutable ``TableConfiguration`` built from these settings.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from dynamo_tables.utils.retry_with_backoff import (
    exponential_backoff_with_jitter,
)


class TableSettings(BaseSettings):
    """Configuration for a DynamoDB-backed table."""

    model_config = SettingsConfigDict(
        env_prefix="DYNAMO_TABLES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # DynamoDB Configuration
    table_name: str = Field(
        default="dynamo-tables",
        description="DynamoDB table name",
    )
    aws_region: str = Field(
        default="us-east-1",
        description="AWS region for DynamoDB",
    )
    endpoint_url: Optional[str] = Field(
        default=None,
        description="Override DynamoDB endpoint URL (for local testing)",
    )

    # Read/statement behaviour
    consistent_read: bool = Field(
        default=True,
        description="Use strongly consistent reads for get and query",
    )
    escape_single_quote_in_partiql: bool = Field(
        default=False,
        description="Double embedded single quotes in PartiQL literals",
    )

    # Transaction conflict retries
    num_retries: int = Field(
        default=5,
        description="Maximum resubmissions of a conflicting transaction",
        ge=0,
        le=20,
    )
    base_retry_interval_ms: int = Field(
        default=500,
        description="Base backoff interval in milliseconds",
        ge=0,
    )
    max_retry_interval_ms: int = Field(
        default=10000,
        description="Maximum backoff interval in milliseconds",
        ge=0,
    )
    exponential_backoff: float = Field(
        default=2.0,
        description="Backoff multiplier applied per attempt",
        ge=1.0,
    )
    jitter: bool = Field(
        default=True,
        description="Randomise the backoff interval",
    )


@lru_cache
def get_settings() -> TableSettings:
    """Get cached settings instance."""
    return TableSettings()


@dataclass(frozen=True)
class RetryConfiguration:
    """Backoff policy used when a transaction conflicts with another."""

    num_retries: int = 5
    base_retry_interval_ms: int = 500
    max_retry_interval_ms: int = 10000
    exponential_backoff: float = 2.0
    jitter: bool = True

    @classmethod
    def no_retries(cls) -> "RetryConfiguration":
        return cls(num_retries=0)

    def get_retry_interval(self, retries_remaining: int) -> float:
        """Seconds to wait before the next attempt.

        Args:
            retries_remaining (int): Retries left before this attempt is made.

        Returns:
            float: The delay in seconds.
        """
        attempt = max(self.num_retries - retries_remaining, 0)
        return exponential_backoff_with_jitter(
            attempt,
            base_delay=self.base_retry_interval_ms / 1000.0,
            max_delay=self.max_retry_interval_ms / 1000.0,
            jitter=self.jitter,
            multiplier=self.exponential_backoff,
        )


@dataclass(frozen=True)
class TableConfiguration:
    """Behaviour switches threaded into every table operation."""

    consistent_read: bool = True
    escape_single_quote_in_partiql: bool = False
    retry: RetryConfiguration = field(default_factory=RetryConfiguration)

    @classmethod
    def from_settings(cls, settings: TableSettings) -> "TableConfiguration":
        return cls(
            consistent_read=settings.consistent_read,
            escape_single_quote_in_partiql=(
                settings.escape_single_quote_in_partiql
            ),
            retry=RetryConfiguration(
                num_retries=settings.num_retries,
                base_retry_interval_ms=settings.base_retry_interval_ms,
                max_retry_interval_ms=settings.max_retry_interval_ms,
                exponential_backoff=settings.exponential_backoff,
                jitter=settings.jitter,
            ),
        )
