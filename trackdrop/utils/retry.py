"""Exponential backoff with jitter for API retries"""

import logging
import random
from typing import Optional

from trackdrop.errors import RateLimitedError
from trackdrop.models.config_models import RetryPolicy


logger = logging.getLogger(__name__)


def raw_backoff_ms(policy: RetryPolicy, attempt: int) -> float:
    """Un-jittered delay for a 1-indexed attempt, capped at ``max_delay_ms``."""
    exponent = max(attempt - 1, 0)
    try:
        delay = policy.base_delay_ms * (policy.multiplier ** exponent)
    except OverflowError:
        delay = float(policy.max_delay_ms)
    return min(float(policy.max_delay_ms), delay)


def compute_backoff_delay(
    policy: RetryPolicy,
    attempt: int,
    rng: Optional[random.Random] = None
) -> float:
    """Calculate the backoff delay before retrying.

    The capped exponential delay is shifted by a uniform offset within
    ``±jitter`` of itself, then floored at ``min_delay_ms``.

    Args:
        policy: Retry policy
        attempt: Attempt that just failed (1-indexed)
        rng: Optional random source

    Returns:
        Delay in milliseconds
    """
    rng = rng or random
    capped = raw_backoff_ms(policy, attempt)
    offset = rng.uniform(-policy.jitter, policy.jitter) * capped
    return max(float(policy.min_delay_ms), capped + offset)


def retry_delay_for(
    error: Exception,
    policy: RetryPolicy,
    attempt: int,
    rng: Optional[random.Random] = None
) -> float:
    """Delay in milliseconds before the next attempt after ``error``.

    A rate-limit response dictates its own delay; everything else backs off.
    """
    if isinstance(error, RateLimitedError):
        return float(error.retry_after_ms)
    return compute_backoff_delay(policy, attempt, rng)
