"""Ledger-facing facade for the credential registry.

The client submits direct and delegated issuance, revocations, read-only
verification queries and audit-window fetches against exactly one registry
deployment. It keeps no mutable state between calls beyond the transport it
was given; transaction state lives in the handles it returns.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Final, TypeVar

from eth_utils import is_address, to_checksum_address

from credential_registry.audit import DEFAULT_AUDIT_WINDOW, merge
from credential_registry.config_loader import RegistryConfig
from credential_registry.contract import (
    ISSUER_ROLE,
    classify_revert,
    decode_has_role,
    decode_log,
    decode_verify,
    encode_has_role,
    encode_issue,
    encode_issue_with_signature,
    encode_revoke,
    encode_verify,
    event_topic,
)
from credential_registry.encoder import (
    DEFAULT_CLOCK_SKEW_SECONDS,
    DEFAULT_DOMAIN_NAME,
    DEFAULT_DOMAIN_VERSION,
    SigningDomain,
    StructuredSignature,
)
from credential_registry.errors import (
    ChainError,
    InputError,
    NetworkMismatch,
    SignerError,
    TransactionRejected,
    UserRejected,
    WalletNotConnected,
)
from credential_registry.fingerprint import DocumentDigest
from credential_registry.protocol import RegistryProtocol
from credential_registry.schemas import (
    AuditEvent,
    AuditEventKind,
    ConnectedAccount,
    CredentialRecord,
    VerificationResult,
)
from credential_registry.signing import SignerCapability, SigningSession, is_user_rejection
from credential_registry.tracker import (
    Operation,
    SubmittedCall,
    TransactionHandle,
    TransactionTracker,
)
from credential_registry.transport import JsonRpcTransport, LedgerTransport, RpcError

__all__ = ["DEFAULT_EVENT_LOOKBACK_BLOCKS", "RegistryClient", "classify_revert"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_EVENT_LOOKBACK_BLOCKS: Final[int] = 5000


def _as_digest(value: DocumentDigest | str | bytes) -> DocumentDigest:
    if isinstance(value, DocumentDigest):
        return value
    if isinstance(value, str):
        return DocumentDigest.from_hex(value)
    return DocumentDigest(value)


class RegistryClient:
    """Client bound to one registry deployment speaking one protocol version.

    Args:
        transport: Ledger transport used for reads and receipt polling.
        registry_address: Address of the registry contract.
        protocol: Registry generation, fixed for the client's lifetime.
        chain_id: Chain the registry is deployed on. When set, writes refuse
            a ledger transport that reports another chain.
        signer: Optional wallet capability; required for writes only.
        tracker: Optional transaction tracker; defaults to one over
            ``transport``.
        domain_name: EIP-712 domain name expected by the registry.
        domain_version: EIP-712 domain version expected by the registry.
        audit_window: Maximum number of events returned by the audit view.
        event_lookback_blocks: Block range scanned by the audit view.
        clock_skew_seconds: Issue-date tolerance for sessions the client
            creates itself.
    """

    def __init__(
        self,
        transport: LedgerTransport,
        *,
        registry_address: str,
        protocol: RegistryProtocol,
        chain_id: int | None = None,
        signer: SignerCapability | None = None,
        tracker: TransactionTracker | None = None,
        domain_name: str = DEFAULT_DOMAIN_NAME,
        domain_version: str = DEFAULT_DOMAIN_VERSION,
        audit_window: int = DEFAULT_AUDIT_WINDOW,
        event_lookback_blocks: int = DEFAULT_EVENT_LOOKBACK_BLOCKS,
        clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
    ) -> None:
        if not is_address(registry_address):
            raise InputError(f"Not a registry address: {registry_address!r}")
        self.transport = transport
        self.registry_address = to_checksum_address(registry_address)
        self.protocol = protocol
        self.chain_id = chain_id
        self.signer = signer
        self.tracker = tracker or TransactionTracker(transport)
        self.domain_name = domain_name
        self.domain_version = domain_version
        self.audit_window = audit_window
        self.event_lookback_blocks = event_lookback_blocks
        self.clock_skew_seconds = clock_skew_seconds

    @classmethod
    def from_config(
        cls,
        config: RegistryConfig,
        *,
        transport: LedgerTransport | None = None,
        signer: SignerCapability | None = None,
    ) -> RegistryClient:
        """Build a client from a loaded :class:`RegistryConfig`."""

        ledger = transport or JsonRpcTransport(
            config.network.rpc_url, timeout_seconds=config.network.rpc_timeout
        )
        tracker = TransactionTracker(
            ledger,
            confirmations=config.confirmation.confirmations,
            poll_interval=config.confirmation.poll_interval,
        )
        return cls(
            ledger,
            registry_address=config.registry.address,
            protocol=config.protocol,
            chain_id=config.network.chain_id,
            signer=signer,
            tracker=tracker,
            domain_name=config.signing.domain_name,
            domain_version=config.signing.domain_version,
            audit_window=config.audit.window,
            event_lookback_blocks=config.audit.lookback_blocks,
            clock_skew_seconds=config.signing.clock_skew_seconds,
        )

    def signing_domain(self, chain_id: int) -> SigningDomain:
        """Return a fresh signing domain for this registry on ``chain_id``."""

        return SigningDomain(
            chain_id=chain_id,
            verifying_contract=self.registry_address,
            name=self.domain_name,
            version=self.domain_version,
        )

    async def connect(self) -> ConnectedAccount:
        """Request account access and report the account's issuer status.

        Raises:
            WalletNotConnected: If no signer is bound or it exposes no account.
            UserRejected: If the user declines account access.
        """

        account = await self._sender()
        chain_id = await self._signer_call(self._require_signer().chain_id())
        is_issuer = await self.has_role(ISSUER_ROLE, account)
        LOGGER.info(
            "Wallet connected",
            extra={"account": account, "chain_id": chain_id, "is_issuer": is_issuer},
        )
        return ConnectedAccount(address=account, chain_id=chain_id, is_issuer=is_issuer)

    async def issue_direct(self, digest: DocumentDigest | str | bytes) -> TransactionHandle:
        """Submit ``issue(digest)`` from the connected account."""

        doc = _as_digest(digest)
        return await self._submit("issue", encode_issue(doc), doc)

    async def revoke(self, digest: DocumentDigest | str | bytes) -> TransactionHandle:
        """Submit ``revoke(digest)`` from the connected account."""

        doc = _as_digest(digest)
        return await self._submit("revoke", encode_revoke(doc), doc)

    async def issue_with_signature(
        self, record: CredentialRecord, signature: StructuredSignature
    ) -> TransactionHandle:
        """Submit a delegated issuance carrying the issuer's signature.

        The connected account only pays for the transaction; authorisation
        comes from ``signature``.

        Raises:
            SignatureRejectedOnChain: If the registry's recovery check fails.
        """

        data = encode_issue_with_signature(record, signature, self.protocol)
        return await self._submit("issue_with_signature", data, record.doc_hash)

    async def sign_and_issue(
        self,
        record: CredentialRecord,
        *,
        session: SigningSession | None = None,
    ) -> TransactionHandle:
        """Sign ``record`` with the bound signer and submit it.

        The record is validated before any network or wallet interaction. The
        signing domain is rebuilt from the ledger's current chain id on every
        call.

        Raises:
            NetworkMismatch: If the ledger transport is not on the configured
                chain, or the signer is not on the ledger's chain.
        """

        signing_session = session or SigningSession(
            self.protocol, clock_skew_seconds=self.clock_skew_seconds
        )
        if type(signing_session.protocol) is not type(self.protocol):
            raise InputError(
                f"Signing session speaks protocol v{signing_session.protocol.version}, "
                f"registry speaks v{self.protocol.version}"
            )
        signing_session.check(record)
        domain = self.signing_domain(await self._ledger_chain_id())
        signature = await signing_session.sign(domain, record, self.signer)
        return await self.issue_with_signature(record, signature)

    async def verify(self, digest: DocumentDigest | str | bytes) -> VerificationResult:
        """Read the registry record for ``digest``.

        Never touches the signer.

        Raises:
            ChainError: On transport failures or undecodable responses.
        """

        doc = _as_digest(digest)
        try:
            data = await self.transport.call(self.registry_address, encode_verify(doc))
        except RpcError as exc:
            error = classify_revert(exc, None)
            LOGGER.warning(
                "Verification query failed",
                extra={"doc_hash": doc.hex, "reason": error.reason},
                exc_info=exc,
            )
            raise error from exc
        result = decode_verify(data, self.protocol)
        LOGGER.debug(
            "Verification result",
            extra={
                "doc_hash": doc.hex,
                "issued": result.issued,
                "revoked": result.revoked,
            },
        )
        return result

    async def has_role(self, role: bytes, account: str) -> bool:
        """Return whether ``account`` holds ``role`` on the registry."""

        try:
            data = await self.transport.call(
                self.registry_address, encode_has_role(role, account)
            )
        except RpcError as exc:
            raise classify_revert(exc, None) from exc
        return decode_has_role(data)

    async def fetch_events(
        self, kind: AuditEventKind, from_block: int, to_block: int
    ) -> list[AuditEvent]:
        """Return decoded ``kind`` events emitted in ``[from_block, to_block]``."""

        try:
            logs = await self.transport.get_logs(
                self.registry_address,
                [event_topic(kind, self.protocol)],
                from_block,
                to_block,
            )
        except RpcError as exc:
            raise classify_revert(exc, None) from exc
        return [decode_log(kind, log, self.protocol) for log in logs]

    async def fetch_audit_window(
        self, *, lookback_blocks: int | None = None
    ) -> list[AuditEvent]:
        """Return the most recent audit events over a recent block range.

        Issued and revoked logs are fetched as two independent queries and
        merged. The window is best-effort: lagging nodes may return fewer
        events than a previous call did.
        """

        lookback = (
            self.event_lookback_blocks if lookback_blocks is None else lookback_blocks
        )
        latest = await self.transport.block_number()
        from_block = max(0, latest - lookback)
        issued, revoked = await asyncio.gather(
            self.fetch_events("Issued", from_block, latest),
            self.fetch_events("Revoked", from_block, latest),
        )
        events = merge(issued, revoked, limit=self.audit_window)
        LOGGER.info(
            "Audit window loaded",
            extra={
                "from_block": from_block,
                "to_block": latest,
                "issued": len(issued),
                "revoked": len(revoked),
                "returned": len(events),
            },
        )
        return events

    def _require_signer(self) -> SignerCapability:
        if self.signer is None:
            raise WalletNotConnected("Connect a wallet before sending transactions")
        return self.signer

    async def _signer_call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except SignerError:
            raise
        except Exception as exc:
            if is_user_rejection(exc):
                raise UserRejected("User rejected the wallet request") from exc
            raise

    async def _ledger_chain_id(self) -> int:
        actual = await self.transport.chain_id()
        if self.chain_id is not None and actual != self.chain_id:
            LOGGER.warning(
                "Ledger transport is on an unexpected chain",
                extra={"expected_chain_id": self.chain_id, "actual_chain_id": actual},
            )
            raise NetworkMismatch(self.chain_id, actual, source="Ledger transport")
        return actual

    async def _sender(self) -> str:
        signer = self._require_signer()
        accounts = await self._signer_call(signer.request_accounts())
        if not accounts:
            raise WalletNotConnected("Wallet exposed no accounts")
        return to_checksum_address(accounts[0])

    async def _submit(
        self, operation: Operation, data: bytes, digest: DocumentDigest
    ) -> TransactionHandle:
        """Pre-flight, send and start tracking a state-changing call."""

        signer = self._require_signer()
        handle = self.tracker.new(operation)
        context = {"operation": operation, "doc_hash": digest.hex}
        try:
            if self.chain_id is not None:
                await self._ledger_chain_id()
            sender = await self._sender()
            try:
                await self.transport.call(self.registry_address, data, sender=sender)
            except RpcError as exc:
                raise classify_revert(exc, operation) from exc
            try:
                tx_hash = await signer.send_transaction(self.registry_address, data)
            except RpcError as exc:
                raise classify_revert(exc, operation) from exc
            except (SignerError, ChainError):
                raise
            except Exception as exc:
                if is_user_rejection(exc):
                    raise TransactionRejected(
                        f"User rejected the {operation} transaction"
                    ) from exc
                raise
        except (SignerError, ChainError) as exc:
            handle.fail(str(exc))
            LOGGER.warning(
                "Submission failed",
                extra={
                    **context,
                    "error_type": type(exc).__name__,
                    "reason": getattr(exc, "reason", None),
                },
            )
            raise

        handle.submitted(tx_hash, SubmittedCall(self.registry_address, data, sender))
        LOGGER.info("Transaction submitted", extra={**context, "tx_hash": tx_hash})
        return handle
