"""Rate limit counter stores.

The policy layer depends on ``AbstractRateLimitStore`` only. Production uses
one MongoDB collection per route class so counters are shared across worker
processes and survive restarts; the in-memory store serves local runs and
tests.
"""

from subtrack.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord
from subtrack.adapters.rate_limit.factory import create_rate_limit_store
from subtrack.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from subtrack.adapters.rate_limit.mongo import MongoRateLimitStore

__all__ = [
    "AbstractRateLimitStore",
    "InMemoryRateLimitStore",
    "MongoRateLimitStore",
    "RateLimitRecord",
    "create_rate_limit_store",
]
