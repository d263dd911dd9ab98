"""
Exponential backoff helpers for resubmitting conflicting transactions.
"""

import logging
import random
import time

logger = logging.getLogger(__name__)


def exponential_backoff_with_jitter(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    multiplier: float = 2.0,
) -> float:
    """
    Calculate exponential backoff delay with optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Whether to add random jitter to prevent thundering herd
        multiplier: Growth factor applied per attempt

    Returns:
        Delay in seconds
    """
    # Calculate exponential delay: base * multiplier^attempt
    delay: float = min(base_delay * (multiplier**attempt), max_delay)

    if jitter:
        # Scale down by up to 25% so the cap is never exceeded
        delay = delay * (1 - random.random() * 0.25)

    return delay


def sleep_before_retry(delay: float) -> None:
    """Sleep for ``delay`` seconds, skipping zero-length waits."""
    if delay > 0:
        logger.debug("Backing off for %.3f seconds", delay)
        time.sleep(delay)
