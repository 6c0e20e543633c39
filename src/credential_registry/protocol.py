"""Protocol variants spoken by deployed credential registries.

Two registry generations exist. Version 1 anchors a bare digest; version 2
adds an ``ipfsCid`` string to the signed credential, to the ``verify``
result and to the ``Issued`` event. The variant is chosen once when a client
is built and threaded through every encoder and codec call, because the
schema is part of what gets signed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Final, Literal

__all__ = [
    "CREDENTIAL_PRIMARY_TYPE",
    "DOMAIN_FIELDS",
    "ProtocolV1",
    "ProtocolV2",
    "RegistryProtocol",
    "protocol_for",
]

CREDENTIAL_PRIMARY_TYPE: Final[str] = "Credential"

DOMAIN_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
)

_V1_CREDENTIAL_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("docHash", "bytes32"),
    ("studentName", "string"),
    ("course", "string"),
    ("issueDate", "uint64"),
)


@dataclass(frozen=True, slots=True)
class ProtocolV1:
    """Registry generation without content-address metadata."""

    tag: ClassVar[Literal["v1"]] = "v1"
    version: ClassVar[str] = "1"
    carries_ipfs_cid: ClassVar[bool] = False

    credential_fields: ClassVar[tuple[tuple[str, str], ...]] = _V1_CREDENTIAL_FIELDS
    verify_outputs: ClassVar[tuple[str, ...]] = ("bool", "bool", "uint64", "address")
    issued_event_data: ClassVar[tuple[str, ...]] = ("uint64",)
    revoked_event_data: ClassVar[tuple[str, ...]] = ("uint64",)

    @property
    def credential_tuple_type(self) -> str:
        """Return the ABI tuple type of the credential struct."""

        return "(" + ",".join(kind for _, kind in self.credential_fields) + ")"

    @property
    def issue_with_signature_signature(self) -> str:
        return f"issueWithSignature({self.credential_tuple_type},uint8,bytes32,bytes32)"

    @property
    def issued_event_signature(self) -> str:
        return "Issued(bytes32,address," + ",".join(self.issued_event_data) + ")"

    @property
    def revoked_event_signature(self) -> str:
        return "Revoked(bytes32,address," + ",".join(self.revoked_event_data) + ")"


@dataclass(frozen=True, slots=True)
class ProtocolV2(ProtocolV1):
    """Registry generation that records an IPFS content identifier."""

    tag: ClassVar[Literal["v2"]] = "v2"  # type: ignore[assignment]
    version: ClassVar[str] = "2"
    carries_ipfs_cid: ClassVar[bool] = True

    credential_fields: ClassVar[tuple[tuple[str, str], ...]] = (
        *_V1_CREDENTIAL_FIELDS,
        ("ipfsCid", "string"),
    )
    verify_outputs: ClassVar[tuple[str, ...]] = (
        "bool",
        "bool",
        "uint64",
        "address",
        "string",
    )
    issued_event_data: ClassVar[tuple[str, ...]] = ("uint64", "string")


RegistryProtocol = ProtocolV1 | ProtocolV2


def protocol_for(version: str | int) -> RegistryProtocol:
    """Return the protocol variant for a configured version identifier.

    Accepts ``1``/``2`` as well as ``"v1"``/``"v2"``.

    Raises:
        ValueError: If the version is not a known registry generation.
    """

    normalized = str(version).strip().lower().removeprefix("v")
    if normalized == ProtocolV1.version:
        return ProtocolV1()
    if normalized == ProtocolV2.version:
        return ProtocolV2()
    raise ValueError(f"Unknown registry protocol version: {version!r}")
