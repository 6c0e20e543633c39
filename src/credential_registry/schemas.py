"""Pydantic models describing credential registry values."""

from __future__ import annotations

from typing import Literal

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from credential_registry.fingerprint import DocumentDigest

__all__ = [
    "UINT64_MAX",
    "ZERO_ADDRESS",
    "AuditEvent",
    "AuditEventKind",
    "ConnectedAccount",
    "CredentialRecord",
    "VerificationResult",
]

UINT64_MAX = 2**64 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

AuditEventKind = Literal["Issued", "Revoked"]


def _coerce_digest(value: object) -> object:
    """Accept hex strings and raw bytes wherever a digest is expected."""

    if isinstance(value, str):
        return DocumentDigest.from_hex(value)
    if isinstance(value, (bytes, bytearray)):
        return DocumentDigest(bytes(value))
    return value


def _coerce_address(value: object) -> object:
    if isinstance(value, str) and is_address(value):
        return to_checksum_address(value)
    return value


class CredentialRecord(BaseModel):
    """Credential fields bound into a delegated-issuance signature.

    Field content is validated by the encoder, not here, so that an empty
    name or course surfaces as :class:`~credential_registry.errors.InputError`
    at signing time rather than as a construction failure.
    """

    model_config = ConfigDict(
        frozen=True, extra="forbid", arbitrary_types_allowed=True
    )

    doc_hash: DocumentDigest = Field(..., description="SHA-256 document digest.")
    student_name: str = Field(..., description="Credential subject name.")
    course: str = Field(..., description="Course or programme title.")
    issue_date: int = Field(
        ..., ge=0, le=UINT64_MAX, description="Issuance time as unix seconds."
    )
    ipfs_cid: str | None = Field(
        default=None,
        description="Content identifier of the document (protocol v2 only).",
    )

    @field_validator("doc_hash", mode="before")
    @classmethod
    def _parse_doc_hash(cls, value: object) -> object:
        return _coerce_digest(value)

    @field_serializer("doc_hash")
    def _serialize_doc_hash(self, value: DocumentDigest) -> str:
        return value.hex


class VerificationResult(BaseModel):
    """Snapshot of a registry ``verify`` read."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    issued: bool
    revoked: bool
    issued_at: int = Field(..., ge=0, le=UINT64_MAX)
    issuer: str = Field(..., description="Checksummed issuer address.")
    ipfs_cid: str | None = Field(
        default=None, description="Recorded content identifier (protocol v2)."
    )

    @field_validator("issuer", mode="before")
    @classmethod
    def _checksum_issuer(cls, value: object) -> object:
        return _coerce_address(value)


class AuditEvent(BaseModel):
    """A single issuance or revocation fact read from the registry logs."""

    model_config = ConfigDict(
        frozen=True, extra="forbid", arbitrary_types_allowed=True
    )

    kind: AuditEventKind
    doc_hash: DocumentDigest
    issuer: str
    block_number: int = Field(..., ge=0)
    timestamp: int | None = Field(
        default=None, description="issuedAt/revokedAt emitted with the event."
    )
    ipfs_cid: str | None = None
    transaction_hash: str | None = None
    log_index: int | None = None

    @field_validator("doc_hash", mode="before")
    @classmethod
    def _parse_doc_hash(cls, value: object) -> object:
        return _coerce_digest(value)

    @field_validator("issuer", mode="before")
    @classmethod
    def _checksum_issuer(cls, value: object) -> object:
        return _coerce_address(value)

    @field_serializer("doc_hash")
    def _serialize_doc_hash(self, value: DocumentDigest) -> str:
        return value.hex


class ConnectedAccount(BaseModel):
    """Account exposed by the signer after requesting access."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str
    chain_id: int = Field(..., gt=0)
    is_issuer: bool = False

    @field_validator("address", mode="before")
    @classmethod
    def _checksum_address(cls, value: object) -> object:
        return _coerce_address(value)
