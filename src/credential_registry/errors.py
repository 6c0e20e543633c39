"""Error taxonomy for :mod:`credential_registry`.

Every failure surfaced by the package derives from
:class:`CredentialRegistryError` so callers can tell the library's outcomes
apart from programming errors. The four families mirror where a failure is
detected:

- :class:`InputError` before any network interaction,
- :class:`SignerError` inside the wallet/signer capability,
- :class:`ChainError` at the ledger (transport failure or revert),
- :class:`TransactionUnresolved` when a caller stops waiting for a receipt.
"""

from __future__ import annotations

__all__ = [
    "AlreadyIssued",
    "AlreadyRevoked",
    "ChainError",
    "CredentialRegistryError",
    "InputError",
    "InvalidTransitionError",
    "NetworkMismatch",
    "SignatureRejectedOnChain",
    "SignerError",
    "SignerUnavailable",
    "TransactionFailed",
    "TransactionRejected",
    "TransactionUnresolved",
    "UserRejected",
    "WalletNotConnected",
]


class CredentialRegistryError(Exception):
    """Base class for all credential registry failures."""


class InputError(CredentialRegistryError, ValueError):
    """Raised when a record, digest or document is rejected locally."""


class SignerError(CredentialRegistryError):
    """Raised when the signer capability cannot complete a request."""


class UserRejected(SignerError):
    """The user declined the signature request in the wallet."""


class SignerUnavailable(SignerError):
    """No signer capability is bound to the session."""


class NetworkMismatch(SignerError):
    """The signer or ledger transport is on a different chain than expected."""

    def __init__(
        self, expected_chain_id: int, actual_chain_id: int, *, source: str = "Signer"
    ) -> None:
        super().__init__(
            f"{source} is connected to chain {actual_chain_id}, "
            f"expected chain {expected_chain_id}"
        )
        self.expected_chain_id = expected_chain_id
        self.actual_chain_id = actual_chain_id


class WalletNotConnected(SignerError):
    """A state-changing call was attempted without a connected wallet."""


class TransactionRejected(SignerError):
    """The user declined to send the transaction in the wallet."""


class ChainError(CredentialRegistryError):
    """Raised for RPC/transport failures and ledger reverts.

    Attributes:
        reason: Revert reason reported by the ledger, verbatim, when known.
    """

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class AlreadyIssued(ChainError):
    """The registry already holds an issuance record for the digest."""


class AlreadyRevoked(ChainError):
    """The registry already marks the digest as revoked."""


class SignatureRejectedOnChain(ChainError):
    """The ledger's own signature recovery rejected a delegated issuance."""


class TransactionFailed(ChainError):
    """A submitted transaction reached the failed terminal state."""

    def __init__(
        self, message: str, *, tx_hash: str | None = None, reason: str | None = None
    ) -> None:
        super().__init__(message, reason=reason)
        self.tx_hash = tx_hash


class TransactionUnresolved(CredentialRegistryError, TimeoutError):
    """The caller stopped waiting before the transaction reached a final state.

    The transaction may still be mined later; the handle stays pending.
    """

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(
            f"Transaction {tx_hash} unresolved after waiting {timeout:g}s"
        )
        self.tx_hash = tx_hash
        self.timeout = timeout


class InvalidTransitionError(CredentialRegistryError, RuntimeError):
    """Raised when a transaction handle is asked to leave a terminal state."""
