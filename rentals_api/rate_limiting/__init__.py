"""
Request throttling and retries for the indexer clients.
"""

from rentals_api.rate_limiting.limiter import RateLimiter, get_rate_limiter
from rentals_api.rate_limiting.retry import retry_with_backoff

__all__ = ["RateLimiter", "get_rate_limiter", "retry_with_backoff"]
