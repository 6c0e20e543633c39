"""EIP-712 encoding of credential records for delegated issuance.

The encoder builds the exact ``(domain, types, message)`` triple that the
signer signs and that the registry reproduces during ``issueWithSignature``
to recover the issuer. Nothing here reads the clock: callers pass ``now``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import is_address, keccak, to_checksum_address

from credential_registry.errors import InputError
from credential_registry.protocol import (
    CREDENTIAL_PRIMARY_TYPE,
    DOMAIN_FIELDS,
    RegistryProtocol,
)
from credential_registry.schemas import UINT64_MAX, CredentialRecord

__all__ = [
    "DEFAULT_CLOCK_SKEW_SECONDS",
    "DEFAULT_DOMAIN_NAME",
    "DEFAULT_DOMAIN_VERSION",
    "EncodedTypedValue",
    "build_typed_value",
    "credential_values",
    "SigningDomain",
    "StructuredSignature",
    "encode",
    "recover_signer",
    "validate_record",
]

DEFAULT_DOMAIN_NAME: Final[str] = "CredentialRegistry"
DEFAULT_DOMAIN_VERSION: Final[str] = "1"
DEFAULT_CLOCK_SKEW_SECONDS: Final[int] = 300


@dataclass(frozen=True, slots=True)
class SigningDomain:
    """EIP-712 domain binding a signature to one registry on one chain."""

    chain_id: int
    verifying_contract: str
    name: str = DEFAULT_DOMAIN_NAME
    version: str = DEFAULT_DOMAIN_VERSION

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


@dataclass(frozen=True, slots=True)
class StructuredSignature:
    """Canonical ``(v, r, s)`` decomposition of a 65-byte signature."""

    v: int
    r: bytes
    s: bytes

    @classmethod
    def from_bytes(cls, raw: bytes | str) -> StructuredSignature:
        """Split a raw ``r || s || v`` signature.

        Recovery ids ``0``/``1`` are normalised to ``27``/``28``.

        Raises:
            InputError: If the signature is not 65 bytes.
        """

        if isinstance(raw, str):
            text = raw[2:] if raw[:2] in ("0x", "0X") else raw
            try:
                raw = bytes.fromhex(text)
            except ValueError as exc:
                raise InputError("Signature is not valid hex") from exc
        if len(raw) != 65:
            raise InputError(f"Signature must be 65 bytes, got {len(raw)}")
        v = raw[64]
        if v < 27:
            v += 27
        return cls(v=v, r=bytes(raw[:32]), s=bytes(raw[32:64]))

    def to_bytes(self) -> bytes:
        return self.r + self.s + bytes([self.v])

    @property
    def hex(self) -> str:
        return "0x" + self.to_bytes().hex()


@dataclass(frozen=True, slots=True)
class EncodedTypedValue:
    """Domain descriptor, type schema and value record ready for signing."""

    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    primary_type: str
    message: dict[str, Any]

    def full_message(self) -> dict[str, Any]:
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain,
            "message": self.message,
        }

    def signable(self) -> SignableMessage:
        """Return the EIP-191 version ``0x01`` message used for signing."""

        return encode_typed_data(full_message=self.full_message())

    def digest(self) -> bytes:
        """Return the 32-byte EIP-712 signing hash."""

        signable = self.signable()
        return bytes(
            keccak(b"\x19" + signable.version + signable.header + signable.body)
        )

    def as_json(self) -> dict[str, Any]:
        """Return the ``eth_signTypedData_v4`` payload with bytes as hex."""

        payload = self.full_message()
        payload["message"] = {
            key: "0x" + value.hex() if isinstance(value, bytes) else value
            for key, value in self.message.items()
        }
        return payload


def validate_record(
    record: CredentialRecord,
    protocol: RegistryProtocol,
    *,
    now: int,
    clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
) -> None:
    """Reject records that must not be signed.

    Raises:
        InputError: For blank names or courses, implausible issue dates and
            content identifiers that do not match the protocol version.
    """

    if not record.student_name.strip():
        raise InputError("studentName must not be empty")
    if not record.course.strip():
        raise InputError("course must not be empty")
    if not 0 <= record.issue_date <= UINT64_MAX:
        raise InputError("issueDate does not fit in uint64")
    if abs(record.issue_date - now) > clock_skew_seconds:
        raise InputError(
            f"issueDate {record.issue_date} is more than {clock_skew_seconds}s "
            f"away from the current time {now}"
        )
    if protocol.carries_ipfs_cid and record.ipfs_cid is None:
        raise InputError(
            f"Protocol v{protocol.version} credentials require an ipfsCid"
        )
    if not protocol.carries_ipfs_cid and record.ipfs_cid is not None:
        raise InputError(
            f"Protocol v{protocol.version} credentials cannot carry an ipfsCid"
        )


def _validate_domain(domain: SigningDomain) -> None:
    if domain.chain_id <= 0:
        raise InputError("Signing domain chainId must be positive")
    if not is_address(domain.verifying_contract):
        raise InputError(
            f"Signing domain verifyingContract is not an address: "
            f"{domain.verifying_contract!r}"
        )


def credential_values(
    record: CredentialRecord, protocol: RegistryProtocol
) -> dict[str, Any]:
    """Return the record as schema-ordered EIP-712 values."""

    values: dict[str, Any] = {
        "docHash": record.doc_hash.value,
        "studentName": record.student_name,
        "course": record.course,
        "issueDate": record.issue_date,
    }
    if protocol.carries_ipfs_cid:
        values["ipfsCid"] = record.ipfs_cid
    return {name: values[name] for name, _ in protocol.credential_fields}


def build_typed_value(
    domain: SigningDomain,
    record: CredentialRecord,
    protocol: RegistryProtocol,
) -> EncodedTypedValue:
    """Build the typed-data triple without record validation.

    Verifiers use this to reproduce exactly what a signer was shown.
    """

    _validate_domain(domain)
    normalized_domain = SigningDomain(
        chain_id=domain.chain_id,
        verifying_contract=to_checksum_address(domain.verifying_contract),
        name=domain.name,
        version=domain.version,
    )
    types = {
        "EIP712Domain": [
            {"name": name, "type": kind} for name, kind in DOMAIN_FIELDS
        ],
        CREDENTIAL_PRIMARY_TYPE: [
            {"name": name, "type": kind} for name, kind in protocol.credential_fields
        ],
    }
    return EncodedTypedValue(
        domain=normalized_domain.as_dict(),
        types=types,
        primary_type=CREDENTIAL_PRIMARY_TYPE,
        message=credential_values(record, protocol),
    )


def encode(
    domain: SigningDomain,
    record: CredentialRecord,
    protocol: RegistryProtocol,
    *,
    now: int,
    clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
) -> EncodedTypedValue:
    """Validate ``record`` and build its typed-data triple under ``domain``.

    Args:
        domain: Domain of the target registry.
        record: Credential to sign.
        protocol: Registry generation whose schema is signed.
        now: Current unix time used for the issue-date plausibility check.
        clock_skew_seconds: Accepted distance between ``issue_date`` and ``now``.

    Returns:
        Encoded value; equal inputs always give equal outputs.

    Raises:
        InputError: When the record or domain fails validation.
    """

    validate_record(
        record, protocol, now=now, clock_skew_seconds=clock_skew_seconds
    )
    return build_typed_value(domain, record, protocol)


def recover_signer(encoded: EncodedTypedValue, signature: StructuredSignature) -> str:
    """Return the checksum address that produced ``signature`` over ``encoded``."""

    return Account.recover_message(
        encoded.signable(),
        vrs=(signature.v, signature.r, signature.s),
    )
