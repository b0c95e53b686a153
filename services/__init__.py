from .rate_limiter import RateLimiter, get_rate_limiter

__all__ = [
    "RateLimiter",
    "get_rate_limiter",
]
