"""Exception hierarchy for token bucket operations.

Three outcomes must stay distinguishable for callers:
- ConfigurationError: a programming error (bad capacity, rate, token amount).
  Raised immediately and never retried.
- StorageError: the backend failed (lock, I/O, malformed data, network).
- ConsumeTimeoutError: the blocking consumer gave up waiting for tokens.

A denied consume is none of these; it is a regular return value.
"""


class TokenBucketError(Exception):
    """Base class for all token bucket errors."""


class ConfigurationError(TokenBucketError, ValueError):
    """Invalid capacity, rate, token amount, timeout or storage configuration."""


class StorageError(TokenBucketError):
    """A storage backend failed to read, write, lock or remove bucket state."""


class AlreadyBootstrappedError(StorageError):
    """A bootstrap write lost the race: another actor already initialised the state.

    This is the desired end state, so TokenBucket.bootstrap treats it as a no-op.
    """


class CasConflictError(StorageError):
    """An optimistic write found the value changed since it was read.

    CasMutex re-runs the whole critical section when it sees this error.
    """


class ConsumeTimeoutError(TokenBucketError, TimeoutError):
    """The blocking consumer's deadline elapsed before tokens became available."""
