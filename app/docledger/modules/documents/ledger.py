"""
Ledger anchor client.

The ledger is an EVM contract exposing:

    storeDocument(string ownerID, string hash)
    verifyDocument(string hash) view returns (bool)

Writes are blocking (they wait for the transaction to be mined) and are never
retried. Reads are side-effect free and retried on transport errors.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from app.docledger.config import Settings
from app.docledger.errors import (
    ConfirmationTimeoutError,
    InsufficientFundsError,
    LedgerError,
    NetworkError,
    TransactionRevertedError,
)

logger = logging.getLogger(__name__)

DOCUMENT_VERIFICATION_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "storeDocument",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "uniqueID", "type": "string"},
            {"name": "documentHash", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "verifyDocument",
        "stateMutability": "view",
        "inputs": [{"name": "documentHash", "type": "string"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


class LedgerClient(Protocol):
    def store_document(self, owner_id: str, content_hash: str) -> str: ...

    def verify_document(self, content_hash: str) -> bool: ...


def gas_ceiling(estimate: int, headroom: float) -> int:
    """Gas limit strictly above the estimate."""
    return max(int(estimate * headroom), estimate + 1)


def _is_insufficient_funds(e: BaseException) -> bool:
    return "insufficient funds" in str(e).lower()


_TRANSPORT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout, ConnectionError, TimeoutError)
# Failures where the request never reached the node (ConnectTimeout is a ConnectionError).
_NOT_DELIVERED_ERRORS = (requests.exceptions.ConnectionError, ConnectionRefusedError)


class Web3LedgerClient:
    def __init__(
        self,
        w3: Web3,
        contract: Any,
        account: Any,
        *,
        chain_id: int | None = None,
        gas_headroom: float = 1.2,
        receipt_timeout: int = 120,
        read_retries: int = 3,
    ) -> None:
        if gas_headroom <= 1.0:
            raise ValueError("gas_headroom must be greater than 1.0")
        self.w3 = w3
        self.contract = contract
        self.account = account
        self.chain_id = chain_id
        self.gas_headroom = gas_headroom
        self.receipt_timeout = receipt_timeout
        self.read_retries = read_retries

    @classmethod
    def from_settings(cls, settings: Settings) -> "Web3LedgerClient":
        missing = [
            name
            for name, value in (
                ("LEDGER_RPC_URL", settings.ledger_rpc_url),
                ("LEDGER_PRIVATE_KEY", settings.ledger_private_key),
                ("LEDGER_CONTRACT_ADDRESS", settings.ledger_contract_address),
            )
            if not value
        ]
        if missing:
            raise LedgerError(f"Missing ledger configuration: {', '.join(missing)}")

        abi = DOCUMENT_VERIFICATION_ABI
        if settings.ledger_abi_path:
            with open(settings.ledger_abi_path, "r", encoding="utf-8") as f:
                artifact = json.load(f)
            abi = artifact["abi"] if isinstance(artifact, dict) else artifact

        w3 = Web3(Web3.HTTPProvider(settings.ledger_rpc_url, request_kwargs={"timeout": 30}))
        key = settings.ledger_private_key
        if not key.startswith("0x"):
            key = "0x" + key
        account = w3.eth.account.from_key(key)
        contract = w3.eth.contract(address=Web3.to_checksum_address(settings.ledger_contract_address), abi=abi)
        return cls(
            w3,
            contract,
            account,
            chain_id=settings.ledger_chain_id,
            gas_headroom=settings.ledger_gas_headroom,
            receipt_timeout=settings.ledger_receipt_timeout,
            read_retries=settings.network_retries,
        )

    def store_document(self, owner_id: str, content_hash: str) -> str:
        sender = self.account.address
        fn = self.contract.functions.storeDocument(owner_id, content_hash)
        try:
            gas_price = self.w3.eth.gas_price
            estimate = fn.estimate_gas({"from": sender})
            gas_limit = gas_ceiling(estimate, self.gas_headroom)
            logger.info(
                "Ledger write: owner=%s gas_price=%s estimate=%s gas_limit=%s",
                owner_id,
                gas_price,
                estimate,
                gas_limit,
            )
            tx = fn.build_transaction(
                {
                    "from": sender,
                    "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
                    "gas": gas_limit,
                    "gasPrice": gas_price,
                    "chainId": self.chain_id if self.chain_id is not None else self.w3.eth.chain_id,
                }
            )
            signed = self.account.sign_transaction(tx)
        except ContractLogicError as e:
            raise TransactionRevertedError(f"storeDocument reverted: {e}") from e
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"Ledger unreachable: {e}") from e
        except (Web3Exception, ValueError) as e:
            if _is_insufficient_funds(e):
                raise InsufficientFundsError(f"Insufficient funds for ledger write from {sender}") from e
            raise TransactionRevertedError(f"storeDocument rejected: {e}") from e

        # Known before submission; lets an ambiguous send be tracked on chain.
        local_tx_id = Web3.to_hex(Web3.keccak(signed.raw_transaction))
        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except _NOT_DELIVERED_ERRORS as e:
            raise NetworkError(f"Ledger unreachable: {e}") from e
        except _TRANSPORT_ERRORS as e:
            # The node may have accepted the transaction before the connection dropped.
            raise ConfirmationTimeoutError(
                f"Submission of {local_tx_id} interrupted ({e}); not resubmitting",
                transaction_id=local_tx_id,
            ) from e
        except (Web3Exception, ValueError) as e:
            if _is_insufficient_funds(e):
                raise InsufficientFundsError(f"Insufficient funds for ledger write from {sender}") from e
            raise TransactionRevertedError(f"storeDocument rejected: {e}") from e

        tx_id = Web3.to_hex(tx_hash)
        logger.info("Ledger write submitted: tx=%s; waiting for confirmation", tx_id)
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise ConfirmationTimeoutError(
                f"Transaction {tx_id} not mined within {self.receipt_timeout}s; not resubmitting",
                transaction_id=tx_id,
            ) from e
        except _TRANSPORT_ERRORS as e:
            # Already submitted: must not surface as a retryable NetworkError.
            raise ConfirmationTimeoutError(f"Lost connection while awaiting {tx_id}: {e}", transaction_id=tx_id) from e

        if receipt["status"] != 1:
            raise TransactionRevertedError(f"Transaction {tx_id} reverted (gas_used={receipt.get('gasUsed')})")
        logger.info("Ledger write confirmed: tx=%s gas_used=%s", tx_id, receipt.get("gasUsed"))
        return tx_id

    def verify_document(self, content_hash: str) -> bool:
        last_err: Exception | None = None
        for attempt in range(self.read_retries + 1):
            try:
                return bool(self.contract.functions.verifyDocument(content_hash).call())
            except _TRANSPORT_ERRORS as e:
                last_err = e
                logger.warning("Ledger read failed (attempt %s): %s", attempt + 1, e)
                if attempt < self.read_retries:
                    time.sleep(min(1 * (attempt + 1), 5))
            except (Web3Exception, ValueError) as e:
                raise LedgerError(f"verifyDocument failed: {e}") from e
        raise NetworkError(f"Ledger read failed after retries: {last_err}")


@dataclass
class MemoryLedger:
    """In-process append-only ledger for development and tests."""

    entries: list[tuple[str, str, str]] = field(default_factory=list)  # (tx_id, owner_id, content_hash)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def store_document(self, owner_id: str, content_hash: str) -> str:
        with self._lock:
            seed = f"{len(self.entries)}:{owner_id}:{content_hash}".encode("utf-8")
            tx_id = "0x" + hashlib.sha256(seed).hexdigest()
            self.entries.append((tx_id, owner_id, content_hash))
        return tx_id

    def verify_document(self, content_hash: str) -> bool:
        with self._lock:
            return any(h == content_hash for _, _, h in self.entries)


def ledger_from_settings(settings: Settings) -> LedgerClient:
    backend = settings.ledger_backend
    if backend == "web3":
        return Web3LedgerClient.from_settings(settings)
    if backend == "memory":
        return MemoryLedger()
    raise LedgerError(f"Unknown LEDGER_BACKEND: {backend!r}")
