"""Backoff utilities for DynamoDB operations."""

from .retry_with_backoff import (
    exponential_backoff_with_jitter,
    sleep_before_retry,
)

__all__ = [
    "exponential_backoff_with_jitter",
    "sleep_before_retry",
]
