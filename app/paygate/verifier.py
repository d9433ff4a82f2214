# app/paygate/verifier.py
"""
Payment verification.

Turns a claimed transaction reference into a Grant:
1. Resolve the transaction on the ledger (malformed hash -> InvalidTransactionReference,
   unknown -> NotFound, retry later)
2. Wait for its receipt without blocking the event loop
   (reverted -> TransactionFailed, wait exceeded -> ConfirmationTimeout)
3. Check sender, recipient and amount against the fee rule
4. Reject references that already produced a grant
5. Persist the grant; a lost insert race resolves to AlreadyConsumed

Nothing is written before step 5, so an abandoned or failed verification
never leaves a partial grant behind.
"""
import asyncio
import logging
import re
import time
from datetime import timedelta
from typing import Callable, Optional

from app.paygate.audit import PaymentAuditLog
from app.paygate.errors import (
    AlreadyConsumed,
    ConfirmationTimeout,
    GrantConflict,
    InsufficientPayment,
    InvalidTransactionReference,
    LedgerUnavailable,
    PaymentError,
    RecipientMismatch,
    SenderMismatch,
    TransactionFailed,
    TransactionNotFound,
)
from app.paygate.fees import FeeSchedule, wei_to_eth
from app.paygate.ledger import LedgerClient, LedgerError, LedgerReceipt, LedgerRequestRejected
from app.paygate.session_cache import SessionCache
from app.paygate.store import GRANT_STATUS_VERIFIED, Grant, GrantStore, utcnow

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY = timedelta(days=30)

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")


class PaymentVerifier:
    """Validates claimed payments against the ledger and the fee schedule."""

    def __init__(
        self,
        ledger: LedgerClient,
        fee_schedule: FeeSchedule,
        grant_store: GrantStore,
        session_cache: Optional[SessionCache] = None,
        audit_log: Optional[PaymentAuditLog] = None,
        validity: timedelta = DEFAULT_VALIDITY,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 2.0,
        clock: Callable = utcnow,
    ):
        self._ledger = ledger
        self._fee_schedule = fee_schedule
        self._grant_store = grant_store
        self._session_cache = session_cache
        self._audit_log = audit_log
        self._validity = validity
        self._confirmation_timeout = confirmation_timeout
        self._poll_interval = poll_interval
        self._clock = clock

    async def verify(
        self,
        tx_reference: str,
        resource_type: str,
        resource_id: str,
        claimed_subject: str,
        request_id: Optional[str] = None,
    ) -> Grant:
        """
        Verify a payment and grant access.

        Args:
            tx_reference: Ledger transaction hash
            resource_type: Type of resource being paid for
            resource_id: Identifier of the resource
            claimed_subject: Wallet address claiming the payment

        Returns:
            The persisted Grant

        Raises:
            VerificationError: Typed rejection (see app.paygate.errors)
            StoreUnavailable: If the grant store cannot be reached
        """
        tx_reference = tx_reference.strip().lower()
        subject = claimed_subject.strip().lower()
        resource_id = str(resource_id)

        try:
            grant = await self._verify(tx_reference, resource_type, resource_id, subject)
        except PaymentError as e:
            logger.warning(
                f"Payment verification rejected for {subject} "
                f"{resource_type}/{resource_id} (tx {tx_reference}): {e.kind}: {e.message}"
            )
            if self._audit_log is not None:
                self._audit_log.log_verification_rejected(
                    subject=subject,
                    tx_reference=tx_reference,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    kind=e.kind,
                    message=e.message,
                    request_id=request_id,
                )
            raise

        logger.info(
            f"Payment verified: grant {grant.id} for {subject} "
            f"{resource_type}/{resource_id} (tx {tx_reference}, {grant.amount_paid} {grant.currency})"
        )
        if self._audit_log is not None:
            self._audit_log.log_verification_succeeded(
                subject=subject,
                tx_reference=tx_reference,
                resource_type=resource_type,
                resource_id=resource_id,
                grant_id=grant.id,
                amount=grant.amount_paid,
                request_id=request_id,
            )
        return grant

    async def _verify(
        self,
        tx_reference: str,
        resource_type: str,
        resource_id: str,
        subject: str,
    ) -> Grant:
        if not TX_HASH_PATTERN.match(tx_reference):
            raise InvalidTransactionReference()

        # 1. Resolve the transaction
        try:
            tx = await asyncio.to_thread(self._ledger.get_transaction, tx_reference)
        except LedgerRequestRejected as e:
            raise InvalidTransactionReference(str(e)) from e
        except LedgerError as e:
            raise LedgerUnavailable(str(e)) from e

        if tx is None:
            raise TransactionNotFound()

        # 2. Wait for inclusion
        receipt = await self._wait_for_receipt(tx_reference)
        if not receipt.succeeded:
            raise TransactionFailed(
                f"Transaction {tx_reference} reverted (status {receipt.status})"
            )

        # 3. Validate against the fee rule
        rule = self._fee_schedule.lookup(resource_type)

        if tx.sender.lower() != subject:
            raise SenderMismatch()

        if (tx.recipient or "").lower() != rule.destination.lower():
            raise RecipientMismatch()

        if tx.value_wei < rule.amount_wei:
            raise InsufficientPayment(
                f"Expected {rule.amount} {rule.currency}, "
                f"received {wei_to_eth(tx.value_wei)} {rule.currency}"
            )

        # 4. Replay check
        existing = await asyncio.to_thread(self._grant_store.find_by_tx_reference, tx_reference)
        if existing is not None:
            raise AlreadyConsumed()

        # 5. Persist
        now = self._clock()
        grant = Grant(
            subject=subject,
            resource_type=resource_type,
            resource_id=resource_id,
            amount_paid=wei_to_eth(tx.value_wei),
            currency=rule.currency,
            tx_reference=tx_reference,
            status=GRANT_STATUS_VERIFIED,
            block_number=receipt.block_number or tx.block_number,
            created_at=now,
            expires_at=now + self._validity,
        )
        try:
            grant = await asyncio.to_thread(self._grant_store.put, grant)
        except GrantConflict as e:
            # A concurrent verification of the same reference won the insert
            raise AlreadyConsumed() from e

        if self._session_cache is not None:
            self._session_cache.set(subject, resource_type, resource_id, expires_at=grant.expires_at)

        return grant

    async def _wait_for_receipt(self, tx_reference: str) -> LedgerReceipt:
        """Poll for the receipt until it appears or the timeout expires."""
        deadline = time.monotonic() + self._confirmation_timeout
        while True:
            try:
                receipt = await asyncio.to_thread(self._ledger.get_receipt, tx_reference)
            except LedgerRequestRejected as e:
                raise InvalidTransactionReference(str(e)) from e
            except LedgerError as e:
                raise LedgerUnavailable(str(e)) from e

            if receipt is not None:
                return receipt

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConfirmationTimeout(
                    f"Transaction {tx_reference} not confirmed within "
                    f"{self._confirmation_timeout:g} seconds"
                )
            await asyncio.sleep(min(self._poll_interval, remaining))
