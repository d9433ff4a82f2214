# app/paygate/middleware.py
"""
FastAPI middleware enforcing payment on gated resources.

This module provides HTTP middleware that:
1. Intercepts requests to protected endpoints
2. Reads the subject from the X-Wallet-Address header (401 if missing)
3. Asks the AccessGate whether an active grant exists
4. Returns 402 Payment Required with payment instructions when it doesn't
5. Attaches an X-PAYMENT-RESPONSE receipt to allowed responses

Verification itself happens at POST /api/v1/payment/verify; this
middleware only reads grant state.
"""
import asyncio
import json
import logging
import re
from typing import Callable, List, Optional, Pattern, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from x402.encoding import safe_base64_decode, safe_base64_encode

from app.paygate.audit import PaymentAuditLog
from app.paygate.errors import PaymentError
from app.paygate.fees import (
    RESOURCE_COMPETITION_ENTRY,
    RESOURCE_DEPOSIT,
    RESOURCE_MODEL_DETAILS,
)
from app.paygate.gate import AccessDecision, AccessGate
from app.paygate.store import as_utc

logger = logging.getLogger(__name__)

# x402 protocol constants
X402_VERSION = 1
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
WALLET_ADDRESS_HEADER = "X-Wallet-Address"

DEFAULT_API_PREFIX = "/api/v1"

# Protected endpoints configuration: (method, path under the API prefix, resource type)
# The "resource_id" group of the pattern identifies the resource.
PROTECTED_ENDPOINTS: List[Tuple[str, str, str]] = [
    ("GET", r"/models/(?P<resource_id>[^/]+)/details/?$", RESOURCE_MODEL_DETAILS),
    ("POST", r"/models/(?P<resource_id>[^/]+)/invest/?$", RESOURCE_DEPOSIT),
    ("POST", r"/competitions/(?P<resource_id>[^/]+)/enter/?$", RESOURCE_COMPETITION_ENTRY),
]

CompiledEndpoints = List[Tuple[str, Pattern, str]]


def compile_protected_endpoints(api_prefix: str = DEFAULT_API_PREFIX) -> CompiledEndpoints:
    """Anchor the protected endpoint patterns under the mounted API prefix."""
    prefix = re.escape(api_prefix.rstrip("/"))
    return [
        (method, re.compile(rf"^{prefix}{pattern}"), resource_type)
        for method, pattern, resource_type in PROTECTED_ENDPOINTS
    ]


_DEFAULT_ENDPOINTS = compile_protected_endpoints()


def match_protected_endpoint(
    method: str,
    path: str,
    endpoints: Optional[CompiledEndpoints] = None
) -> Optional[Tuple[str, str]]:
    """
    Match a request against the protected endpoints.

    Returns:
        (resource_type, resource_id) if the request is gated, None otherwise
    """
    for protected_method, pattern, resource_type in endpoints or _DEFAULT_ENDPOINTS:
        if method != protected_method:
            continue
        match = pattern.match(path)
        if match:
            return resource_type, match.group("resource_id")
    return None


def create_402_response(payment_info: dict) -> JSONResponse:
    """Create an HTTP 402 Payment Required response."""
    body = {"x402Version": X402_VERSION}
    body.update(payment_info)
    return JSONResponse(status_code=402, content=body)


def create_error_response(error: PaymentError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def encode_grant_receipt(decision: AccessDecision) -> str:
    """
    Encode the grant behind an allowed request for the X-PAYMENT-RESPONSE header.

    Returns:
        Base64-encoded JSON string
    """
    receipt = {
        "success": True,
        "resourceType": decision.resource_type,
        "resourceId": decision.resource_id,
        "subject": decision.subject,
        "source": decision.source,
    }
    if decision.grant is not None:
        expires_at = as_utc(decision.grant.expires_at)
        receipt.update({
            "grantId": decision.grant.id,
            "txReference": decision.grant.tx_reference,
            "expiresAt": expires_at.isoformat() if expires_at else None,
        })
    return safe_base64_encode(json.dumps(receipt).encode("utf-8"))


def decode_grant_receipt(header_value: str) -> Optional[dict]:
    """Decode an X-PAYMENT-RESPONSE header (clients and tests)."""
    try:
        decoded_str = safe_base64_decode(header_value)
        if decoded_str is None:
            return None
        return json.loads(decoded_str)
    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to decode {X_PAYMENT_RESPONSE_HEADER} header: {e}")
        return None


class PaymentGateMiddleware(BaseHTTPMiddleware):
    """
    Payment enforcement middleware for FastAPI.

    Unprotected requests pass through unchanged. Protected requests reach
    the endpoint only when the AccessGate allows them; the decision is
    exposed to the endpoint as ``request.state.access``.
    """

    def __init__(
        self,
        app,
        gate: AccessGate,
        audit_log: Optional[PaymentAuditLog] = None,
        api_prefix: str = DEFAULT_API_PREFIX,
    ):
        super().__init__(app)
        self._gate = gate
        self._audit_log = audit_log
        self._endpoints = compile_protected_endpoints(api_prefix)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        matched = match_protected_endpoint(request.method, request.url.path, self._endpoints)
        if matched is None:
            return await call_next(request)

        resource_type, resource_id = matched
        subject = request.headers.get(WALLET_ADDRESS_HEADER)

        try:
            # Store lookups are blocking; keep them off the event loop
            decision = await asyncio.to_thread(
                self._gate.check_access, subject, resource_type, resource_id
            )
        except PaymentError as e:
            if e.status_code >= 500:
                logger.error(f"Access check failed for {resource_type}/{resource_id}: {e.message}")
            else:
                logger.info(f"Access refused for {resource_type}/{resource_id}: {e.kind}")
            return create_error_response(e)

        if not decision.allowed:
            if self._audit_log is not None:
                details = decision.payment_info["paymentDetails"]
                self._audit_log.log_payment_required_sent(
                    subject=decision.subject,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    amount=details["amount"],
                    currency=details["currency"],
                    payment_address=details["paymentAddress"],
                )
            return create_402_response(decision.payment_info)

        request.state.access = decision
        response = await call_next(request)
        if 200 <= response.status_code < 300:
            response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_grant_receipt(decision)
        return response
