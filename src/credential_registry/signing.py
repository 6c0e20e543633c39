"""Structured-data signing sessions and signer capabilities.

Provides:
- SignerCapability: the wallet surface the core consumes
- SigningSession: validate, network-check, sign and decompose a credential
- LocalAccountSigner: in-process signer backed by an eth-account key
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from credential_registry.encoder import (
    DEFAULT_CLOCK_SKEW_SECONDS,
    EncodedTypedValue,
    SigningDomain,
    StructuredSignature,
    encode,
    validate_record,
)
from credential_registry.errors import (
    InputError,
    NetworkMismatch,
    SignerError,
    SignerUnavailable,
    UserRejected,
)
from credential_registry.protocol import RegistryProtocol
from credential_registry.schemas import CredentialRecord
from credential_registry.transport import LedgerTransport

__all__ = [
    "USER_REJECTED_CODE",
    "LocalAccountSigner",
    "SignerCapability",
    "SigningSession",
    "is_user_rejection",
]

LOGGER = logging.getLogger(__name__)

# EIP-1193 "User Rejected Request"
USER_REJECTED_CODE = 4001


class SignerCapability(Protocol):
    """Wallet operations supplied by the environment."""

    async def request_accounts(self) -> list[str]:
        """Request account access and return the exposed accounts."""

    async def chain_id(self) -> int:
        """Return the chain id the signer is currently connected to."""

    async def sign_typed_data(self, typed: EncodedTypedValue) -> bytes | str:
        """Sign EIP-712 typed data and return the 65-byte signature."""

    async def send_transaction(self, to: str, data: bytes) -> str:
        """Sign and broadcast a call to ``to``; return the transaction hash."""


def is_user_rejection(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` reports a user declining a wallet prompt."""

    if isinstance(exc, UserRejected):
        return True
    return getattr(exc, "code", None) == USER_REJECTED_CODE


class SigningSession:
    """Drive a signer to produce a structured credential signature.

    A session remembers the domain each record was signed under and refuses
    to sign the same record for a different domain.

    Args:
        protocol: Registry generation whose credential schema is signed.
        clock: Source of the current unix time, consulted once per signature.
        clock_skew_seconds: Accepted distance between ``issue_date`` and now.
    """

    def __init__(
        self,
        protocol: RegistryProtocol,
        *,
        clock: Callable[[], float] = time.time,
        clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
    ) -> None:
        self.protocol = protocol
        self._clock = clock
        self._clock_skew_seconds = clock_skew_seconds
        self._signed_domains: dict[CredentialRecord, SigningDomain] = {}
        self.last_encoded: EncodedTypedValue | None = None

    def check(self, record: CredentialRecord) -> None:
        """Validate ``record`` against the session's schema and clock.

        Raises:
            InputError: If the record would be rejected by :meth:`sign`.
        """

        validate_record(
            record,
            self.protocol,
            now=int(self._clock()),
            clock_skew_seconds=self._clock_skew_seconds,
        )

    async def sign(
        self,
        domain: SigningDomain,
        record: CredentialRecord,
        signer: SignerCapability | None,
    ) -> StructuredSignature:
        """Sign ``record`` under ``domain`` with ``signer``.

        Returns:
            The ``(v, r, s)`` decomposition of the signature.

        Raises:
            InputError: If the record fails validation (before any signer
                interaction) or was already signed under another domain.
            SignerUnavailable: If ``signer`` is ``None``.
            NetworkMismatch: If the signer is on a different chain.
            UserRejected: If the user declines the request.
        """

        encoded = encode(
            domain,
            record,
            self.protocol,
            now=int(self._clock()),
            clock_skew_seconds=self._clock_skew_seconds,
        )
        previous = self._signed_domains.get(record)
        if previous is not None and previous != domain:
            raise InputError(
                "Credential was already signed for chain "
                f"{previous.chain_id} at {previous.verifying_contract}"
            )
        self.last_encoded = encoded

        if signer is None:
            raise SignerUnavailable("No signer is bound to the signing session")

        active_chain_id = await signer.chain_id()
        if active_chain_id != domain.chain_id:
            raise NetworkMismatch(domain.chain_id, active_chain_id)

        try:
            raw = await signer.sign_typed_data(encoded)
        except SignerError:
            raise
        except Exception as exc:
            if is_user_rejection(exc):
                LOGGER.info(
                    "Signature request rejected",
                    extra={"doc_hash": record.doc_hash.hex},
                )
                raise UserRejected("User rejected the signature request") from exc
            raise

        signature = StructuredSignature.from_bytes(raw)
        self._signed_domains[record] = domain
        LOGGER.info(
            "Credential signed",
            extra={
                "doc_hash": record.doc_hash.hex,
                "chain_id": domain.chain_id,
                "protocol": self.protocol.tag,
            },
        )
        return signature


class LocalAccountSigner:
    """Signer capability backed by a local secp256k1 key.

    Args:
        private_key: Hex or raw 32-byte private key. When ``None``, a random
            key is generated if ``ephemeral=True``; otherwise a
            :class:`ValueError` is raised.
        transport: Ledger transport used to read the chain id and broadcast
            signed transactions.
        ephemeral: Allow generating a throwaway key for testing.

    Attributes:
        address: Checksum address of the key.
    """

    def __init__(
        self,
        private_key: str | bytes | None = None,
        *,
        transport: LedgerTransport,
        ephemeral: bool = False,
    ) -> None:
        if private_key is None:
            if not ephemeral:
                raise ValueError(
                    "private_key is required for issuing credentials. "
                    "Provide a stable private key, or set ephemeral=True for testing."
                )
            account: LocalAccount = Account.create()
        else:
            account = Account.from_key(private_key)
        self._account = account
        self._transport = transport
        self.address = to_checksum_address(account.address)

    async def request_accounts(self) -> list[str]:
        return [self.address]

    async def chain_id(self) -> int:
        return await self._transport.chain_id()

    async def sign_typed_data(self, typed: EncodedTypedValue) -> bytes:
        signed = self._account.sign_message(typed.signable())
        return bytes(signed.signature)

    async def send_transaction(self, to: str, data: bytes) -> str:
        """Sign a legacy transaction locally and broadcast it."""

        to_address = to_checksum_address(to)
        chain_id = await self._transport.chain_id()
        nonce = await self._transport.get_transaction_count(self.address)
        gas_price = await self._transport.gas_price()
        gas = await self._transport.estimate_gas(
            {"from": self.address, "to": to_address, "data": data}
        )
        signed = self._account.sign_transaction(
            {
                "to": to_address,
                "data": data,
                "value": 0,
                "gas": gas,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": chain_id,
            }
        )
        tx_hash = await self._transport.send_raw_transaction(
            bytes(signed.raw_transaction)
        )
        LOGGER.debug(
            "Transaction broadcast",
            extra={"tx_hash": tx_hash, "nonce": nonce, "chain_id": chain_id},
        )
        return tx_hash
