"""In-memory registry ledger and wallet used across the test suite."""

from __future__ import annotations

import itertools
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from eth_abi import decode, encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from credential_registry.contract import event_topic, selector
from credential_registry.encoder import (
    EncodedTypedValue,
    SigningDomain,
    StructuredSignature,
    build_typed_value,
    recover_signer,
)
from credential_registry.protocol import RegistryProtocol
from credential_registry.schemas import ZERO_ADDRESS, CredentialRecord
from credential_registry.transport import RpcError

ISSUER_KEY = "0x" + "11" * 32
OUTSIDER_KEY = "0x" + "22" * 32
RELAYER_KEY = "0x" + "33" * 32
REGISTRY_ADDRESS = "0x0C6Fe5983595528E2B27294bc6b9a5C7736989EB"
SEPOLIA = 11155111
LEDGER_TIME = 1_700_000_000

_ERROR_SELECTOR = function_signature_to_4byte_selector("Error(string)")


def address_of(private_key: str) -> str:
    return Account.from_key(private_key).address


def revert(reason: str) -> RpcError:
    """Build the error a node returns for ``require(false, reason)``."""

    data = _ERROR_SELECTOR + encode(["string"], [reason])
    return RpcError(3, f"execution reverted: {reason}", "0x" + data.hex())


class WalletError(Exception):
    """Error shaped like an EIP-1193 provider error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


class FakeLedger:
    """Registry contract plus just enough of a node to drive the client."""

    def __init__(
        self,
        *,
        protocol: RegistryProtocol,
        issuers: Iterable[str] = (),
        chain_id: int = SEPOLIA,
        address: str = REGISTRY_ADDRESS,
        start_block: int = 100,
    ) -> None:
        self.protocol = protocol
        self.chain = chain_id
        self.address = to_checksum_address(address)
        self.issuers = {address_of(key) for key in issuers}
        self.block = start_block
        self.now = LEDGER_TIME
        self.records: dict[bytes, dict[str, Any]] = {}
        self.logs: list[dict[str, Any]] = []
        self.receipts: dict[str, dict[str, Any]] = {}
        self.unmined: list[str] = []
        self.auto_mine = True
        self.revert_next_receipt = False
        self.fail_receipts_with: Exception | None = None
        self.raw_transactions: list[bytes] = []
        self.calls: list[str] = []
        self.call_blocks: list[int | None] = []
        self._nonces = itertools.count()

    # -- LedgerTransport -------------------------------------------------

    async def chain_id(self) -> int:
        self.calls.append("chain_id")
        return self.chain

    async def block_number(self) -> int:
        return self.block

    async def call(
        self,
        to: str,
        data: bytes,
        *,
        sender: str | None = None,
        block: int | None = None,
    ) -> bytes:
        self.calls.append("call")
        self.call_blocks.append(block)
        return self._dispatch(sender, data, mutate=False)

    async def get_logs(
        self,
        address: str,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        self.calls.append("get_logs")
        topic0 = topics[0] if topics else None
        return [
            log
            for log in self.logs
            if to_checksum_address(address) == self.address
            and (topic0 is None or log["topics"][0] == topic0)
            and from_block <= int(log["blockNumber"], 16) <= to_block
        ]

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        if self.fail_receipts_with is not None:
            raise self.fail_receipts_with
        return self.receipts.get(tx_hash)

    async def get_transaction_count(self, address: str) -> int:
        return 7

    async def gas_price(self) -> int:
        return 1_000_000_000

    async def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        return 90_000

    async def send_raw_transaction(self, raw: bytes) -> str:
        self.raw_transactions.append(raw)
        return "0x" + keccak(raw).hex()

    # -- test controls ---------------------------------------------------

    def execute(self, sender: str, data: bytes) -> str:
        """Apply a transaction from ``sender`` and return its hash."""

        self._dispatch(sender, data, mutate=True)
        tx_hash = "0x" + keccak(next(self._nonces).to_bytes(32, "big")).hex()
        self.unmined.append(tx_hash)
        if self.auto_mine:
            self.mine()
        return tx_hash

    def mine(self, blocks: int = 1) -> None:
        """Advance ``blocks`` blocks, including pending transactions in the first."""

        self.block += 1
        for tx_hash in self.unmined:
            status = 0 if self.revert_next_receipt else 1
            self.revert_next_receipt = False
            self.receipts[tx_hash] = {
                "transactionHash": tx_hash,
                "status": hex(status),
                "blockNumber": hex(self.block),
                "gasUsed": hex(52_000),
            }
        self.unmined.clear()
        self.block += blocks - 1

    def grant_issuer(self, private_key: str) -> None:
        self.issuers.add(address_of(private_key))

    def emit(
        self,
        kind: str,
        doc_hash: bytes,
        issuer: str,
        block: int,
        values: Sequence[object],
    ) -> None:
        types = (
            self.protocol.issued_event_data
            if kind == "Issued"
            else self.protocol.revoked_event_data
        )
        self.logs.append(
            {
                "address": self.address,
                "topics": [
                    event_topic(kind, self.protocol),  # type: ignore[arg-type]
                    "0x" + doc_hash.hex(),
                    "0x" + bytes(12).hex() + issuer[2:].lower(),
                ],
                "data": "0x" + encode(list(types), list(values)).hex(),
                "blockNumber": hex(block),
                "transactionHash": "0x" + keccak(len(self.logs).to_bytes(8, "big")).hex(),
                "logIndex": hex(len(self.logs)),
            }
        )

    # -- contract logic --------------------------------------------------

    def _dispatch(self, sender: str | None, data: bytes, *, mutate: bool) -> bytes:
        head, body = data[:4], data[4:]
        if head == selector("verify(bytes32)"):
            (doc_hash,) = decode(["bytes32"], body)
            return self._verify(doc_hash)
        if head == selector("hasRole(bytes32,address)"):
            _role, account = decode(["bytes32", "address"], body)
            return encode(["bool"], [to_checksum_address(account) in self.issuers])
        if head == selector("issue(bytes32)"):
            (doc_hash,) = decode(["bytes32"], body)
            self._issue(sender, doc_hash, None, mutate=mutate)
            return b""
        if head == selector("revoke(bytes32)"):
            (doc_hash,) = decode(["bytes32"], body)
            self._revoke(sender, doc_hash, mutate=mutate)
            return b""
        if head == selector(self.protocol.issue_with_signature_signature):
            self._issue_with_signature(body, mutate=mutate)
            return b""
        raise RpcError(-32000, "execution reverted")

    def _verify(self, doc_hash: bytes) -> bytes:
        entry = self.records.get(doc_hash)
        if entry is None:
            values: list[object] = [False, False, 0, ZERO_ADDRESS]
            if self.protocol.carries_ipfs_cid:
                values.append("")
        else:
            values = [entry["issued"], entry["revoked"], entry["issued_at"], entry["issuer"]]
            if self.protocol.carries_ipfs_cid:
                values.append(entry["cid"] or "")
        return encode(list(self.protocol.verify_outputs), values)

    def _issue(
        self, issuer: str | None, doc_hash: bytes, cid: str | None, *, mutate: bool
    ) -> None:
        if issuer is None or to_checksum_address(issuer) not in self.issuers:
            raise revert("Not an issuer")
        if doc_hash in self.records:
            raise revert("Credential already issued")
        if not mutate:
            return
        issuer = to_checksum_address(issuer)
        self.records[doc_hash] = {
            "issued": True,
            "revoked": False,
            "issued_at": self.now,
            "issuer": issuer,
            "cid": cid,
        }
        values: list[object] = [self.now]
        if self.protocol.carries_ipfs_cid:
            values.append(cid or "")
        self.emit("Issued", doc_hash, issuer, self.block + 1, values)

    def _revoke(self, sender: str | None, doc_hash: bytes, *, mutate: bool) -> None:
        if sender is None or to_checksum_address(sender) not in self.issuers:
            raise revert("Not an issuer")
        entry = self.records.get(doc_hash)
        if entry is None:
            raise revert("Credential not issued")
        if entry["revoked"]:
            raise revert("Credential already revoked")
        if not mutate:
            return
        entry["revoked"] = True
        self.emit("Revoked", doc_hash, to_checksum_address(sender), self.block + 1, [self.now])

    def _issue_with_signature(self, body: bytes, *, mutate: bool) -> None:
        credential, v, r, s = decode(
            [self.protocol.credential_tuple_type, "uint8", "bytes32", "bytes32"], body
        )
        record = CredentialRecord(
            doc_hash=credential[0],
            student_name=credential[1],
            course=credential[2],
            issue_date=credential[3],
            ipfs_cid=credential[4] if self.protocol.carries_ipfs_cid else None,
        )
        typed = build_typed_value(
            SigningDomain(chain_id=self.chain, verifying_contract=self.address),
            record,
            self.protocol,
        )
        try:
            signer = recover_signer(typed, StructuredSignature(v=v, r=r, s=s))
        except Exception:
            raise revert("Invalid signature") from None
        if signer not in self.issuers:
            raise revert("Invalid signature: signer is not an issuer")
        self._issue(signer, record.doc_hash.value, record.ipfs_cid, mutate=mutate)


class FakeWallet:
    """Signer capability backed by a local key and a :class:`FakeLedger`."""

    def __init__(self, private_key: str, ledger: FakeLedger, *, chain_id: int | None = None) -> None:
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.ledger = ledger
        self.active_chain_id = ledger.chain if chain_id is None else chain_id
        self.reject_signatures = False
        self.reject_transactions = False
        self.accounts_requested = 0
        self.chain_queries = 0
        self.signature_requests: list[EncodedTypedValue] = []
        self.sent: list[bytes] = []

    async def request_accounts(self) -> list[str]:
        self.accounts_requested += 1
        return [self.address]

    async def chain_id(self) -> int:
        self.chain_queries += 1
        return self.active_chain_id

    async def sign_typed_data(self, typed: EncodedTypedValue) -> bytes:
        self.signature_requests.append(typed)
        if self.reject_signatures:
            raise WalletError(4001, "User denied message signature.")
        return bytes(self.account.sign_message(typed.signable()).signature)

    async def send_transaction(self, to: str, data: bytes) -> str:
        if self.reject_transactions:
            raise WalletError(4001, "User denied transaction signature.")
        self.sent.append(data)
        return self.ledger.execute(self.address, data)

