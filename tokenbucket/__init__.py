"""Token bucket rate limiter with state shared through pluggable storage backends."""

from tokenbucket.bucket import ConsumeResult, TokenBucket
from tokenbucket.consumer import BlockingConsumer
from tokenbucket.errors import (
    AlreadyBootstrappedError,
    CasConflictError,
    ConfigurationError,
    ConsumeTimeoutError,
    StorageError,
    TokenBucketError,
)
from tokenbucket.rate import Rate, RateUnit

__all__ = [
    "AlreadyBootstrappedError",
    "BlockingConsumer",
    "CasConflictError",
    "ConfigurationError",
    "ConsumeResult",
    "ConsumeTimeoutError",
    "Rate",
    "RateUnit",
    "StorageError",
    "TokenBucket",
    "TokenBucketError",
]
