from .env import env_bool, env_list, env_float
from .rate_limit import SlidingWindowLimiter, RedisRateLimiter

__all__ = [
    "env_bool",
    "env_list",
    "env_float",
    "SlidingWindowLimiter",
    "RedisRateLimiter",
]
