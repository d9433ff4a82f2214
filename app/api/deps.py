# app/api/deps.py
"""FastAPI dependencies resolving the components built in create_app()."""
from typing import Optional

from fastapi import Header, Request

from app.paygate.errors import AuthenticationMissing
from app.paygate.fees import FeeSchedule
from app.paygate.gate import AccessGate
from app.paygate.store import GrantStore
from app.paygate.verifier import PaymentVerifier


def get_verifier(request: Request) -> PaymentVerifier:
    return request.app.state.verifier


def get_grant_store(request: Request) -> GrantStore:
    return request.app.state.grant_store


def get_fee_schedule(request: Request) -> FeeSchedule:
    return request.app.state.fee_schedule


def get_gate(request: Request) -> AccessGate:
    return request.app.state.gate


def get_history_limit(request: Request) -> int:
    return request.app.state.history_limit


def require_subject(
    wallet_address: Optional[str] = Header(None, alias="X-Wallet-Address")
) -> str:
    """Subject of the request, lowercased; 401 when the header is missing."""
    if not wallet_address or not wallet_address.strip():
        raise AuthenticationMissing()
    return wallet_address.strip().lower()
