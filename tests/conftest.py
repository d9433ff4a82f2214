# tests/conftest.py
"""
Shared fixtures for payment gate tests.

The ledger is replaced by FakeLedger, an in-memory stand-in for the
JSON-RPC client; grants live in a fresh in-memory SQLite database per test.
"""
from datetime import timedelta
from typing import Dict, Optional

import pytest

from app.core.config import Settings
from app.paygate.audit import PaymentAuditLog
from app.paygate.fees import FeeSchedule, eth_to_wei
from app.paygate.gate import AccessGate
from app.paygate.ledger import LedgerError, LedgerReceipt, LedgerTransaction
from app.paygate.session_cache import SessionCache
from app.paygate.store import Base, GrantStore
from app.paygate.verifier import PaymentVerifier

SUBJECT = "0x" + "a" * 40
OTHER_SUBJECT = "0x" + "b" * 40
DESTINATION = "0x" + "d" * 40
MODEL_DETAILS_FEE = "0.0001"


class FakeLedger:
    """In-memory ledger with controllable visibility and confirmation."""

    def __init__(self):
        self.transactions: Dict[str, LedgerTransaction] = {}
        self.receipts: Dict[str, LedgerReceipt] = {}
        self.pending_polls: Dict[str, int] = {}
        self.error: Optional[Exception] = None
        self.block_number = 1000
        self.receipt_calls = 0

    def add_payment(
        self,
        tx_hash: str,
        sender: str = SUBJECT,
        recipient: Optional[str] = DESTINATION,
        value_eth: str = MODEL_DETAILS_FEE,
        value_wei: Optional[int] = None,
        status: int = 1,
        pending_polls: int = 0,
    ) -> LedgerTransaction:
        tx = LedgerTransaction(
            tx_hash=tx_hash.lower(),
            sender=sender.lower(),
            recipient=recipient.lower() if recipient else None,
            value_wei=value_wei if value_wei is not None else eth_to_wei(value_eth),
            block_number=self.block_number,
        )
        self.transactions[tx.tx_hash] = tx
        self.receipts[tx.tx_hash] = LedgerReceipt(
            tx_hash=tx.tx_hash, status=status, block_number=self.block_number
        )
        self.pending_polls[tx.tx_hash] = pending_polls
        return tx

    def get_transaction(self, tx_hash: str) -> Optional[LedgerTransaction]:
        if self.error:
            raise self.error
        return self.transactions.get(tx_hash.lower())

    def get_receipt(self, tx_hash: str) -> Optional[LedgerReceipt]:
        if self.error:
            raise self.error
        self.receipt_calls += 1
        key = tx_hash.lower()
        if self.pending_polls.get(key, 0) > 0:
            self.pending_polls[key] -= 1
            return None
        return self.receipts.get(key)

    def get_block_number(self) -> int:
        if self.error:
            raise self.error
        return self.block_number


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL="sqlite://",
        PAYMENT_WALLET_ADDRESS=DESTINATION,
        PAYMENT_AUDIT_LOG_PATH=str(tmp_path / "audit" / "payments.jsonl"),
        CONFIRMATION_TIMEOUT_SECONDS=1.0,
        CONFIRMATION_POLL_INTERVAL_SECONDS=0.01,
        CORS_ORIGINS="http://localhost:3000",
    )


@pytest.fixture
def grant_store():
    store = GrantStore.from_url("sqlite://")
    store.create_schema()
    yield store
    Base.metadata.drop_all(bind=store.engine)


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def fee_schedule(test_settings) -> FeeSchedule:
    return FeeSchedule.from_settings(test_settings)


@pytest.fixture
def session_cache() -> SessionCache:
    return SessionCache(ttl_seconds=3600, max_entries=100)


@pytest.fixture
def audit_log(test_settings) -> PaymentAuditLog:
    return PaymentAuditLog(test_settings.PAYMENT_AUDIT_LOG_PATH)


@pytest.fixture
def verifier(fake_ledger, fee_schedule, grant_store, session_cache, audit_log) -> PaymentVerifier:
    return PaymentVerifier(
        ledger=fake_ledger,
        fee_schedule=fee_schedule,
        grant_store=grant_store,
        session_cache=session_cache,
        audit_log=audit_log,
        validity=timedelta(days=30),
        confirmation_timeout=1.0,
        poll_interval=0.01,
    )


@pytest.fixture
def gate(fee_schedule, grant_store, session_cache) -> AccessGate:
    return AccessGate(
        fee_schedule=fee_schedule,
        grant_store=grant_store,
        session_cache=session_cache,
    )


@pytest.fixture
def ledger_error() -> LedgerError:
    return LedgerError("RPC call eth_getTransactionByHash failed: connection refused")
