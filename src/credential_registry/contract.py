"""ABI codec for the credential registry contract.

Builds calldata for the registry's functions and decodes return data, event
logs and revert payloads, and maps node errors onto the package's ledger
errors. The codec is stateless; every function that
depends on the registry generation takes the protocol variant explicitly.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Final

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import (
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    keccak,
    to_checksum_address,
)

from credential_registry.encoder import StructuredSignature, credential_values
from credential_registry.errors import (
    AlreadyIssued,
    AlreadyRevoked,
    ChainError,
    SignatureRejectedOnChain,
)
from credential_registry.fingerprint import DocumentDigest
from credential_registry.protocol import RegistryProtocol
from credential_registry.schemas import (
    AuditEvent,
    AuditEventKind,
    CredentialRecord,
    VerificationResult,
)
from credential_registry.transport import RpcError, parse_quantity

__all__ = [
    "ISSUER_ROLE",
    "classify_revert",
    "decode_has_role",
    "decode_log",
    "decode_revert_reason",
    "decode_verify",
    "encode_has_role",
    "encode_issue",
    "encode_issue_with_signature",
    "encode_revoke",
    "encode_verify",
    "event_topic",
    "selector",
]

ISSUER_ROLE: Final[bytes] = keccak(text="ISSUER_ROLE")

_ERROR_SELECTOR: Final[bytes] = function_signature_to_4byte_selector("Error(string)")
_PANIC_SELECTOR: Final[bytes] = function_signature_to_4byte_selector("Panic(uint256)")

_REVERT_PREFIX: Final[re.Pattern[str]] = re.compile(
    r"^(?:VM Exception while processing transaction: )?"
    r"(?:execution reverted|reverted with reason string)[:\s]*",
    re.IGNORECASE,
)
_SIGNATURE_MARKERS: Final[tuple[str, ...]] = ("sig", "signer", "issuer", "missing role")


def selector(signature: str) -> bytes:
    """Return the 4-byte selector of a canonical function signature."""

    return function_signature_to_4byte_selector(signature)


def encode_issue(digest: DocumentDigest) -> bytes:
    return selector("issue(bytes32)") + encode(["bytes32"], [digest.value])


def encode_revoke(digest: DocumentDigest) -> bytes:
    return selector("revoke(bytes32)") + encode(["bytes32"], [digest.value])


def encode_verify(digest: DocumentDigest) -> bytes:
    return selector("verify(bytes32)") + encode(["bytes32"], [digest.value])


def encode_has_role(role: bytes, account: str) -> bytes:
    return selector("hasRole(bytes32,address)") + encode(
        ["bytes32", "address"], [role, to_checksum_address(account)]
    )


def encode_issue_with_signature(
    record: CredentialRecord,
    signature: StructuredSignature,
    protocol: RegistryProtocol,
) -> bytes:
    """Encode ``issueWithSignature(credential, v, r, s)`` for ``protocol``."""

    credential = tuple(credential_values(record, protocol).values())
    return selector(protocol.issue_with_signature_signature) + encode(
        [protocol.credential_tuple_type, "uint8", "bytes32", "bytes32"],
        [credential, signature.v, signature.r, signature.s],
    )


def decode_verify(data: bytes, protocol: RegistryProtocol) -> VerificationResult:
    """Decode ``verify`` return data into a :class:`VerificationResult`."""

    try:
        values = decode(list(protocol.verify_outputs), data)
    except (DecodingError, ValueError) as exc:
        raise ChainError(
            f"verify returned undecodable data for protocol v{protocol.version}"
        ) from exc
    issued, revoked, issued_at, issuer = values[:4]
    return VerificationResult(
        issued=issued,
        revoked=revoked,
        issued_at=issued_at,
        issuer=issuer,
        ipfs_cid=values[4] if protocol.carries_ipfs_cid else None,
    )


def decode_has_role(data: bytes) -> bool:
    try:
        (granted,) = decode(["bool"], data)
    except (DecodingError, ValueError) as exc:
        raise ChainError("hasRole returned undecodable data") from exc
    return bool(granted)


def event_topic(kind: AuditEventKind, protocol: RegistryProtocol) -> str:
    """Return the ``topic0`` hex string of an Issued/Revoked event."""

    if kind == "Issued":
        signature = protocol.issued_event_signature
    else:
        signature = protocol.revoked_event_signature
    return "0x" + event_signature_to_log_topic(signature).hex()


def _hex_bytes(value: object) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.startswith("0x") else value
        return bytes.fromhex(text)
    raise ValueError(f"Expected hex data, got {value!r}")


def decode_log(
    kind: AuditEventKind, log: Mapping[str, Any], protocol: RegistryProtocol
) -> AuditEvent:
    """Decode a raw ``eth_getLogs`` record into an :class:`AuditEvent`.

    Raises:
        ChainError: If the log does not have the shape of the event.
    """

    data_types = (
        protocol.issued_event_data if kind == "Issued" else protocol.revoked_event_data
    )
    try:
        topics = [_hex_bytes(topic) for topic in log["topics"]]
        if len(topics) != 3:
            raise ValueError(f"{kind} log carries {len(topics)} topics, expected 3")
        values = decode(list(data_types), _hex_bytes(log.get("data", "0x")))
        block_number = parse_quantity(log["blockNumber"])
    except (KeyError, ValueError, DecodingError, ChainError) as exc:
        raise ChainError(f"Malformed {kind} log: {exc}") from exc
    if block_number is None:
        raise ChainError(f"{kind} log is still pending and has no block number")

    return AuditEvent(
        kind=kind,
        doc_hash=DocumentDigest(topics[1]),
        issuer=to_checksum_address(topics[2][-20:]),
        block_number=block_number,
        timestamp=values[0],
        ipfs_cid=values[1] if len(values) > 1 else None,
        transaction_hash=log.get("transactionHash"),
        log_index=parse_quantity(log.get("logIndex")),
    )


def decode_revert_reason(data: object) -> str | None:
    """Extract a human-readable reason from revert data.

    Handles ``Error(string)`` and ``Panic(uint256)`` payloads; returns
    ``None`` for custom errors or empty data.
    """

    try:
        raw = _hex_bytes(data)
    except ValueError:
        return None
    if raw[:4] == _ERROR_SELECTOR:
        try:
            (reason,) = decode(["string"], raw[4:])
        except (DecodingError, ValueError):
            return None
        return str(reason)
    if raw[:4] == _PANIC_SELECTOR:
        try:
            (code,) = decode(["uint256"], raw[4:])
        except (DecodingError, ValueError):
            return None
        return f"panic 0x{code:02x}"
    return None


def _revert_reason(exc: RpcError) -> str | None:
    """Return the ledger's revert reason, preferring ABI-encoded data."""

    data = exc.data
    if isinstance(data, dict):
        data = data.get("data")
    reason = decode_revert_reason(data) if data is not None else None
    if reason:
        return reason
    message = exc.rpc_message.strip()
    if not message:
        return None
    stripped = _REVERT_PREFIX.sub("", message).strip().strip("'\"")
    return stripped or message


def classify_revert(exc: RpcError, operation: str | None) -> ChainError:
    """Map a node error to the most specific :class:`ChainError`.

    Args:
        exc: Error reported by the node.
        operation: Write operation being attempted (``"issue"``, ``"revoke"``
            or ``"issue_with_signature"``), ``None`` for reads.

    Returns:
        A ledger error carrying the revert reason verbatim.
    """

    reason = _revert_reason(exc)
    label = operation or "call"
    message = f"{label} reverted: {reason}" if reason else f"{label} failed: {exc}"
    lowered = (reason or "").lower()
    if operation is not None and "already" in lowered:
        if "revoked" in lowered:
            return AlreadyRevoked(message, reason=reason)
        return AlreadyIssued(message, reason=reason)
    if operation == "issue_with_signature" and any(
        marker in lowered for marker in _SIGNATURE_MARKERS
    ):
        return SignatureRejectedOnChain(message, reason=reason)
    return ChainError(message, reason=reason)
