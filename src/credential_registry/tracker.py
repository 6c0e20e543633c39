"""Per-transaction state machine for submitted registry operations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Final, Literal, NoReturn

from credential_registry.contract import classify_revert
from credential_registry.errors import (
    ChainError,
    InvalidTransitionError,
    TransactionFailed,
    TransactionUnresolved,
)
from credential_registry.transport import LedgerTransport, RpcError, parse_quantity

__all__ = [
    "Operation",
    "SubmittedCall",
    "TransactionHandle",
    "TransactionOutcome",
    "TransactionStatus",
    "TransactionTracker",
]

LOGGER = logging.getLogger(__name__)

Operation = Literal["issue", "revoke", "issue_with_signature"]


class TransactionStatus(str, Enum):
    """Lifecycle states of a user-initiated operation."""

    IDLE = "idle"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TransactionStatus.CONFIRMED, TransactionStatus.FAILED)


_ALLOWED: Final[dict[TransactionStatus, frozenset[TransactionStatus]]] = {
    TransactionStatus.IDLE: frozenset(
        {TransactionStatus.PENDING, TransactionStatus.FAILED}
    ),
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.CONFIRMED, TransactionStatus.FAILED}
    ),
    TransactionStatus.CONFIRMED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class TransactionOutcome:
    """Receipt summary of a confirmed transaction."""

    tx_hash: str
    block_number: int
    confirmations: int
    gas_used: int | None = None


@dataclass(frozen=True, slots=True)
class SubmittedCall:
    """Call a transaction executed, kept so a revert can be replayed."""

    to: str
    data: bytes
    sender: str


def _retrieve_exception(task: asyncio.Task[TransactionOutcome]) -> None:
    if not task.cancelled():
        task.exception()


class TransactionHandle:
    """Track one operation from submission to a terminal state.

    Handles start ``IDLE``. :meth:`submitted` moves them to ``PENDING``;
    :meth:`wait` polls the ledger until ``CONFIRMED`` or ``FAILED``.
    Terminal states are final.
    """

    def __init__(self, tracker: TransactionTracker, operation: Operation) -> None:
        self._tracker = tracker
        self.operation: Operation = operation
        self.tx_hash: str | None = None
        self.outcome: TransactionOutcome | None = None
        self.failure_reason: str | None = None
        self.revert: ChainError | None = None
        self._status = TransactionStatus.IDLE
        self._task: asyncio.Task[TransactionOutcome] | None = None
        self._call: SubmittedCall | None = None

    def __repr__(self) -> str:
        return (
            f"TransactionHandle(operation={self.operation!r}, "
            f"status={self._status.value!r}, tx_hash={self.tx_hash!r})"
        )

    @property
    def status(self) -> TransactionStatus:
        return self._status

    def _transition(self, target: TransactionStatus) -> None:
        if target not in _ALLOWED[self._status]:
            raise InvalidTransitionError(
                f"Cannot move {self.operation} transaction from "
                f"{self._status.value} to {target.value}"
            )
        LOGGER.debug(
            "Transaction state change",
            extra={
                "operation": self.operation,
                "tx_hash": self.tx_hash,
                "from_state": self._status.value,
                "to_state": target.value,
            },
        )
        self._status = target

    def submitted(self, tx_hash: str, call: SubmittedCall | None = None) -> None:
        """Record that the transaction was broadcast.

        Args:
            tx_hash: Hash reported by the signer.
            call: The executed call, replayed to recover a revert reason if
                the mined transaction fails.
        """

        self._transition(TransactionStatus.PENDING)
        self.tx_hash = tx_hash
        self._call = call

    def confirm(self, outcome: TransactionOutcome) -> None:
        self._transition(TransactionStatus.CONFIRMED)
        self.outcome = outcome

    def fail(self, reason: str) -> None:
        self._transition(TransactionStatus.FAILED)
        self.failure_reason = reason

    async def wait(self, timeout: float | None = None) -> TransactionOutcome:
        """Suspend until the transaction reaches a terminal state.

        Args:
            timeout: Optional caller deadline in seconds.

        Returns:
            The confirmed outcome.

        Raises:
            TransactionFailed: If the transaction reverted or tracking failed.
                For reverts, ``reason`` is the ledger's revert reason when
                it could be recovered.
            TransactionUnresolved: If ``timeout`` elapsed first. The handle
                stays ``PENDING`` and may be awaited again.
            InvalidTransitionError: If the handle was never submitted.
        """

        if self._status is TransactionStatus.CONFIRMED and self.outcome is not None:
            return self.outcome
        if self._status is TransactionStatus.FAILED:
            raise TransactionFailed(
                f"{self.operation} transaction failed: {self.failure_reason}",
                tx_hash=self.tx_hash,
                reason=self.failure_reason,
            ) from self.revert
        tx_hash = self.tx_hash
        if self._status is TransactionStatus.IDLE or tx_hash is None:
            raise InvalidTransitionError("Transaction has not been submitted")

        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._poll(tx_hash), name=f"credential-registry-receipt-{tx_hash}"
            )
            self._task.add_done_callback(_retrieve_exception)
        try:
            return await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Transaction unresolved at caller deadline",
                extra={
                    "operation": self.operation,
                    "tx_hash": tx_hash,
                    "timeout": timeout,
                },
            )
            raise TransactionUnresolved(tx_hash, timeout or 0.0) from None

    async def _poll(self, tx_hash: str) -> TransactionOutcome:
        tracker = self._tracker
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            status: int | None = None
            block_number: int | None = None
            gas_used: int | None = None
            try:
                receipt = await tracker.transport.get_transaction_receipt(tx_hash)
                latest = await tracker.transport.block_number() if receipt else None
                if receipt is not None:
                    status = parse_quantity(receipt.get("status"))
                    block_number = parse_quantity(receipt.get("blockNumber"))
                    gas_used = parse_quantity(receipt.get("gasUsed"))
            except ChainError as exc:
                self.fail(f"transport error while awaiting receipt: {exc}")
                LOGGER.warning(
                    "Receipt polling failed",
                    extra={"operation": self.operation, "tx_hash": tx_hash},
                    exc_info=exc,
                )
                raise TransactionFailed(
                    f"{self.operation} transaction tracking failed",
                    tx_hash=tx_hash,
                    reason=str(exc),
                ) from exc

            if block_number is not None and latest is not None:
                if status == 0:
                    await self._reverted(tx_hash, block_number)
                confirmations = latest - block_number + 1
                if confirmations >= tracker.confirmations:
                    return self._confirmed(tx_hash, block_number, confirmations, gas_used)

            if (
                tracker.failure_timeout is not None
                and loop.time() - started >= tracker.failure_timeout
            ):
                reason = f"no receipt after {tracker.failure_timeout:g}s"
                self.fail(reason)
                raise TransactionFailed(
                    f"{self.operation} transaction timed out",
                    tx_hash=tx_hash,
                    reason=reason,
                )
            await asyncio.sleep(tracker.poll_interval)

    async def _replay(self, block_number: int) -> ChainError | None:
        """Re-execute the submitted call at ``block_number`` to read its revert."""

        if self._call is None:
            return None
        call = self._call
        try:
            await self._tracker.transport.call(
                call.to, call.data, sender=call.sender, block=block_number
            )
        except RpcError as exc:
            return classify_revert(exc, self.operation)
        except ChainError as exc:
            LOGGER.warning(
                "Revert replay failed",
                extra={"operation": self.operation, "block_number": block_number},
                exc_info=exc,
            )
        return None

    async def _reverted(self, tx_hash: str, block_number: int) -> NoReturn:
        self.revert = await self._replay(block_number)
        reason = (self.revert and self.revert.reason) or "transaction reverted"
        self.fail(reason)
        LOGGER.warning(
            "Transaction reverted",
            extra={
                "operation": self.operation,
                "tx_hash": tx_hash,
                "block_number": block_number,
                "reason": reason,
            },
        )
        raise TransactionFailed(
            f"{self.operation} transaction reverted: {reason}",
            tx_hash=tx_hash,
            reason=reason,
        ) from self.revert

    def _confirmed(
        self, tx_hash: str, block_number: int, confirmations: int, gas_used: int | None
    ) -> TransactionOutcome:
        outcome = TransactionOutcome(
            tx_hash=tx_hash,
            block_number=block_number,
            confirmations=confirmations,
            gas_used=gas_used,
        )
        self.confirm(outcome)
        LOGGER.info(
            "Transaction confirmed",
            extra={
                "operation": self.operation,
                "tx_hash": tx_hash,
                "block_number": block_number,
            },
        )
        return outcome


class TransactionTracker:
    """Factory for :class:`TransactionHandle` objects sharing polling policy.

    Args:
        transport: Ledger transport used to read receipts.
        confirmations: Blocks (including the inclusion block) required before
            a receipt counts as confirmed.
        poll_interval: Delay between receipt polls in seconds.
        failure_timeout: Optional tracker-side limit after which a receipt-less
            transaction is marked failed. Distinct from caller timeouts.
    """

    def __init__(
        self,
        transport: LedgerTransport,
        *,
        confirmations: int = 1,
        poll_interval: float = 1.0,
        failure_timeout: float | None = None,
    ) -> None:
        if confirmations < 1:
            raise ValueError("confirmations must be at least 1")
        self.transport = transport
        self.confirmations = confirmations
        self.poll_interval = poll_interval
        self.failure_timeout = failure_timeout

    def new(self, operation: Operation) -> TransactionHandle:
        """Return an ``IDLE`` handle for an operation about to be submitted."""

        return TransactionHandle(self, operation)
