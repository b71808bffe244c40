"""Binary encoding of a bucket timestamp as a fixed 8-byte double."""

import struct

from tokenbucket.errors import StorageError

# Little-endian IEEE-754 double, identical on every host sharing a bucket.
_MICROTIME_FORMAT = struct.Struct("<d")

MICROTIME_SIZE = _MICROTIME_FORMAT.size


def pack_microtime(microtime: float) -> bytes:
    return _MICROTIME_FORMAT.pack(microtime)


def unpack_microtime(data: bytes) -> float:
    """Decode a packed timestamp, rejecting buffers that are not exactly 8 bytes."""
    if len(data) != MICROTIME_SIZE:
        raise StorageError(f"Stored timestamp must be {MICROTIME_SIZE} bytes long, got {len(data)}")
    return _MICROTIME_FORMAT.unpack(data)[0]
