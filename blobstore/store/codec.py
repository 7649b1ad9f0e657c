"""
Blob codec — key encoding and optional value compression.

Keys are stored as lowercase hex. Hex preserves byte order, so
`ORDER BY key` over encoded keys equals the order of the original keys,
and any binary key fits a TEXT primary key column.

Values are compressed with LZ4 frames when the store was opened with
compression. The setting belongs to the store, never to a single record.
"""

from __future__ import annotations

import binascii

import lz4.frame

from blobstore.core.errors import InvariantViolation, StorageError

KeyLike = bytes | bytearray | memoryview | str


def key_bytes(key: KeyLike) -> bytes:
    """Normalize a caller key to bytes. str keys are UTF-8 encoded."""
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key)
    raise TypeError(f"key must be bytes or str, not {type(key).__name__}")


def encode_key(key: KeyLike) -> str:
    return key_bytes(key).hex()


def decode_key(code: str | bytes) -> bytes:
    """
    Reverse encode_key().

    Raises InvariantViolation on a malformed code: only encode_key()
    writes keys, so a bad one means the table is corrupt.
    """
    try:
        return binascii.unhexlify(code)
    except (ValueError, binascii.Error) as e:
        raise InvariantViolation(f"invalid encoded key {code!r}") from e


def encode_path(path: tuple[str, ...]) -> str:
    """
    Table identifier for a keyspace path.

    Each component is hex encoded and components are joined with "_",
    which is not a hex digit, so distinct paths never collide and the
    result never needs quoting beyond the identifier quotes.
    """
    if not path:
        raise ValueError("keyspace path must not be empty")
    return "_".join(name.encode("utf-8").hex() for name in path)


class BlobCodec:
    """
    Compresses values on the way in and restores them on the way out.

    Usage:
        codec = BlobCodec(compress=True)
        stored = codec.pack(b"hello")
        assert codec.unpack(stored) == b"hello"
    """

    def __init__(self, compress: bool = True) -> None:
        self._compress = compress

    @property
    def compress(self) -> bool:
        return self._compress

    def pack(self, data: bytes) -> bytes:
        if self._compress:
            return lz4.frame.compress(data)
        return bytes(data)

    def unpack(self, data: bytes) -> bytes:
        if not self._compress:
            return bytes(data)
        try:
            return lz4.frame.decompress(data)
        except RuntimeError as e:
            raise StorageError(f"corrupt compressed value: {e}", op="decode") from e
