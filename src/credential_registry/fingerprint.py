"""Deterministic SHA-256 fingerprints for credential documents."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Final

from credential_registry.errors import InputError

__all__ = [
    "DIGEST_SIZE",
    "DocumentDigest",
    "digest",
    "digest_file",
    "digest_stream",
]

DIGEST_SIZE: Final[int] = 32
_CHUNK_SIZE: Final[int] = 64 * 1024
_HEX_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(0x|0X)?[0-9a-fA-F]{64}$")


@dataclass(frozen=True, slots=True)
class DocumentDigest:
    """32-byte content fingerprint used as a document's on-chain identity."""

    value: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.value, (bytes, bytearray)):
            raise InputError("Document digest must be bytes")
        if len(self.value) != DIGEST_SIZE:
            raise InputError(
                f"Document digest must be {DIGEST_SIZE} bytes, got {len(self.value)}"
            )
        object.__setattr__(self, "value", bytes(self.value))

    @property
    def hex(self) -> str:
        """Return the ``0x``-prefixed lowercase hex presentation."""

        return "0x" + self.value.hex()

    @classmethod
    def from_hex(cls, text: str) -> DocumentDigest:
        """Parse a digest from its hex presentation.

        Args:
            text: 64 hex characters with an optional ``0x`` prefix.

        Returns:
            The parsed digest.

        Raises:
            InputError: If ``text`` is not a 32-byte hex string.
        """

        if not isinstance(text, str) or not _HEX_PATTERN.match(text.strip()):
            raise InputError(f"Not a 32-byte hex digest: {text!r}")
        stripped = text.strip()
        if stripped[:2] in ("0x", "0X"):
            stripped = stripped[2:]
        return cls(bytes.fromhex(stripped))

    def __bytes__(self) -> bytes:
        return self.value

    def __str__(self) -> str:
        return self.hex


def digest(data: bytes) -> DocumentDigest:
    """Return the SHA-256 fingerprint of ``data``."""

    return DocumentDigest(hashlib.sha256(data).digest())


def digest_stream(
    stream: BinaryIO, *, max_bytes: int | None = None
) -> DocumentDigest:
    """Fingerprint a binary stream without loading it into memory.

    Args:
        stream: Readable binary stream positioned at the document start.
        max_bytes: Optional upper bound on the document size.

    Returns:
        The document digest.

    Raises:
        InputError: If the stream yields more than ``max_bytes`` bytes.
        OSError: If the stream cannot be read.
    """

    hasher = hashlib.sha256()
    total = 0
    while True:
        chunk = stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if max_bytes is not None and total > max_bytes:
            raise InputError(
                f"Document exceeds the maximum size of {max_bytes} bytes"
            )
        hasher.update(chunk)
    return DocumentDigest(hasher.digest())


def digest_file(
    path: str | Path, *, max_bytes: int | None = None
) -> DocumentDigest:
    """Fingerprint the file at ``path``.

    ``OSError`` from opening or reading the file propagates unchanged.
    """

    with Path(path).open("rb") as handle:
        return digest_stream(handle, max_bytes=max_bytes)
