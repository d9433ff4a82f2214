# app/paygate/gate.py
"""
Access gate for paid resources.

Decides whether a subject may access (resource_type, resource_id):
- Missing subject: AuthenticationMissing (distinct from payment required)
- Session cache hit: allow
- Active grant in the store: allow (and warm the cache)
- Otherwise: deny with self-contained payment instructions

The gate is read-only with respect to grants. The cache is only a fast
path; a hit is honoured only because every cache entry was written after
a grant was persisted, and a miss always falls through to the store.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from app.paygate.errors import AuthenticationMissing
from app.paygate.fees import FeeSchedule
from app.paygate.session_cache import SessionCache
from app.paygate.store import Grant, GrantStore

logger = logging.getLogger(__name__)

VERIFY_PATH = "/api/v1/payment/verify"


@dataclass
class AccessDecision:
    """Outcome of an access check."""
    allowed: bool
    subject: str
    resource_type: str
    resource_id: str
    grant: Optional[Grant] = None
    source: Optional[str] = None  # "cache" or "store" when allowed
    payment_info: Dict[str, Any] = field(default_factory=dict)


class AccessGate:
    """Policy enforcement point consulted before releasing a paid resource."""

    def __init__(
        self,
        fee_schedule: FeeSchedule,
        grant_store: GrantStore,
        session_cache: Optional[SessionCache] = None,
        network: str = "Base Sepolia",
        chain_id: int = 84532,
        verify_path: str = VERIFY_PATH,
    ):
        self._fee_schedule = fee_schedule
        self._grant_store = grant_store
        self._session_cache = session_cache
        self._network = network
        self._chain_id = chain_id
        self._verify_path = verify_path

    @property
    def network(self) -> str:
        return self._network

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def check_access(
        self,
        subject: Optional[str],
        resource_type: str,
        resource_id: str
    ) -> AccessDecision:
        """
        Check if a subject may access a resource.

        Raises:
            AuthenticationMissing: If no subject was supplied
            StoreUnavailable: If the cache missed and the store is unreachable
        """
        if not subject or not subject.strip():
            raise AuthenticationMissing()

        subject = subject.strip().lower()
        resource_id = str(resource_id)

        if self._session_cache is not None and self._session_cache.get(subject, resource_type, resource_id):
            logger.debug(f"Access granted from session cache: {subject} {resource_type}/{resource_id}")
            return AccessDecision(
                allowed=True,
                subject=subject,
                resource_type=resource_type,
                resource_id=resource_id,
                source="cache",
            )

        grant = self._grant_store.find_active(subject, resource_type, resource_id)
        if grant is not None:
            if self._session_cache is not None:
                self._session_cache.set(subject, resource_type, resource_id, expires_at=grant.expires_at)
            return AccessDecision(
                allowed=True,
                subject=subject,
                resource_type=resource_type,
                resource_id=resource_id,
                grant=grant,
                source="store",
            )

        logger.info(f"Payment required: {subject} {resource_type}/{resource_id}")
        return AccessDecision(
            allowed=False,
            subject=subject,
            resource_type=resource_type,
            resource_id=resource_id,
            payment_info=self.build_payment_required(resource_type, resource_id),
        )

    def build_payment_required(self, resource_type: str, resource_id: str) -> Dict[str, Any]:
        """
        Build the body of a 402 Payment Required response.

        Carries everything a client needs to pay and retry with no prior context.
        """
        rule = self._fee_schedule.lookup(resource_type)
        return {
            "error": "Payment Required",
            "message": f"Payment of {rule.amount} {rule.currency} required to access this resource",
            "paymentDetails": {
                "resourceType": resource_type,
                "resourceId": str(resource_id),
                "amount": rule.amount,
                "amountWei": str(rule.amount_wei),
                "currency": rule.currency,
                "paymentAddress": rule.destination,
                "network": self._network,
                "chainId": self._chain_id,
            },
            "instructions": {
                "step1": f"Send at least {rule.amount} {rule.currency} to {rule.destination} on {self._network}",
                "step2": f"Call POST {self._verify_path} with the transaction hash",
                "step3": "Retry this request after payment verification",
            },
        }
