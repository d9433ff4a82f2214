# app/paygate/audit.py
"""
Audit logging for payment verification attempts.

Every verification attempt is recorded, whether it produced a grant or
was rejected, so misuse (replays, underpayment, spoofed senders) can be
investigated later. The log is append-only and purely observational: it
is never read on the authorization path, and a failed write never changes
the outcome of a verification.

Log format: JSON lines (one event per line)
Log location: Configured via PAYMENT_AUDIT_LOG_PATH

Events logged:
- Verification succeeded (subject, tx reference, resource, grant id)
- Verification rejected (subject, tx reference, resource, error kind)
- Payment required sent (subject, resource, amount, destination)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    VERIFICATION_SUCCEEDED = "verification_succeeded"
    VERIFICATION_REJECTED = "verification_rejected"
    PAYMENT_REQUIRED_SENT = "payment_required_sent"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    subject: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Build a structured event ready to be written to the audit log."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "subject": subject.lower() if subject else None,
        "data": data
    }


class PaymentAuditLog:
    """Append-only JSON-lines log of verification attempts."""

    def __init__(self, log_path: str, enabled: bool = True):
        self._log_path = Path(log_path)
        self._enabled = enabled

    def log_event(
        self,
        event_type: AuditEventType,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Append one event.

        Returns:
            The request_id used for this event, or None if disabled or on error
        """
        if not self._enabled:
            return None

        event = create_audit_event(event_type, data, subject=subject, request_id=request_id)

        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_path, "a") as f:
                f.write(json.dumps(event) + "\n")

            logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
            return event["request_id"]

        except OSError as e:
            logger.error(f"Failed to write audit event: {e}")
            return None

    def log_verification_succeeded(
        self,
        subject: str,
        tx_reference: str,
        resource_type: str,
        resource_id: str,
        grant_id: str,
        amount: str,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        return self.log_event(
            AuditEventType.VERIFICATION_SUCCEEDED,
            data={
                "tx_reference": tx_reference,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "grant_id": grant_id,
                "amount": amount,
            },
            subject=subject,
            request_id=request_id
        )

    def log_verification_rejected(
        self,
        subject: str,
        tx_reference: str,
        resource_type: str,
        resource_id: str,
        kind: str,
        message: str,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        return self.log_event(
            AuditEventType.VERIFICATION_REJECTED,
            data={
                "tx_reference": tx_reference,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "kind": kind,
                "message": message,
            },
            subject=subject,
            request_id=request_id
        )

    def log_payment_required_sent(
        self,
        subject: str,
        resource_type: str,
        resource_id: str,
        amount: str,
        currency: str,
        payment_address: str,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        return self.log_event(
            AuditEventType.PAYMENT_REQUIRED_SENT,
            data={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "amount": amount,
                "currency": currency,
                "payment_address": payment_address,
            },
            subject=subject,
            request_id=request_id
        )

    def read(
        self,
        max_entries: int = 100,
        event_type: Optional[AuditEventType] = None,
        subject: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Read entries from the audit log, most recent first.

        Args:
            max_entries: Maximum number of entries to return
            event_type: Filter by event type (optional)
            subject: Filter by subject (optional)
        """
        if not self._log_path.exists():
            return []

        wanted_subject = subject.lower() if subject else None
        events = []
        try:
            with open(self._log_path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if event_type and event.get("event_type") != event_type.value:
                        continue
                    if wanted_subject and event.get("subject") != wanted_subject:
                        continue
                    events.append(event)
        except OSError as e:
            logger.error(f"Failed to read audit log: {e}")
            return []

        return list(reversed(events))[:max_entries]
