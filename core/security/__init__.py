from .rate_limit import DistributedRateLimiter, RateLimiter

__all__ = [
    "RateLimiter",
    "DistributedRateLimiter",
]
