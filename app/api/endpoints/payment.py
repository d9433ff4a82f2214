# app/api/endpoints/payment.py
from fastapi import APIRouter, Depends, HTTPException, Path, status
from typing import Any
import logging

from app.api.deps import (
    get_fee_schedule,
    get_gate,
    get_grant_store,
    get_history_limit,
    get_verifier,
    require_subject,
)
from app.api.models.payment import (
    FeeAmount,
    GrantRecord,
    PaymentAmountsResponse,
    PaymentErrorResponse,
    PaymentHistoryResponse,
    PaymentStatusDetails,
    PaymentStatusResponse,
    PaymentSummary,
    RequiredPayment,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from app.paygate.errors import PaymentError
from app.paygate.fees import FeeSchedule
from app.paygate.gate import AccessGate
from app.paygate.store import GrantStore
from app.paygate.verifier import PaymentVerifier

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": PaymentErrorResponse, "description": "Malformed reference, or transaction failed, mismatched or underpaid"},
    404: {"model": PaymentErrorResponse, "description": "Transaction not yet visible, retry later"},
    409: {"model": PaymentErrorResponse, "description": "Transaction already used for a payment"},
    502: {"model": PaymentErrorResponse, "description": "Ledger RPC unavailable"},
    503: {"model": PaymentErrorResponse, "description": "Grant store unavailable"},
    504: {"model": PaymentErrorResponse, "description": "Confirmation wait timed out"},
}


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    responses=ERROR_RESPONSES,
    summary="Verify a Payment Transaction and Grant Access"
)
async def verify_payment(
    body: VerifyPaymentRequest,
    verifier: PaymentVerifier = Depends(get_verifier),
) -> Any:
    """
    Verifies an on-chain payment and grants access to the paid resource.

    The transaction must be sent by ``subject`` to the configured payment
    address with at least the fee for ``resourceType``. Each transaction
    can be used for one grant only.

    Raises:
        PaymentError: Typed rejection, rendered as {error, message, retryable}
        HTTPException: 500 for unexpected errors
    """
    try:
        grant = await verifier.verify(
            tx_reference=body.txReference,
            resource_type=body.resourceType,
            resource_id=body.resourceId,
            claimed_subject=body.subject,
        )
    except PaymentError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error verifying tx {body.txReference}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while verifying the payment."
        )

    record = grant.to_dict()
    return VerifyPaymentResponse(
        payment=PaymentSummary(
            grantId=record["grantId"],
            resourceType=record["resourceType"],
            resourceId=record["resourceId"],
            amount=record["amount"],
            currency=record["currency"],
            expiresAt=record["expiresAt"],
        )
    )


@router.get(
    "/status/{resource_type}/{resource_id}",
    response_model=PaymentStatusResponse,
    response_model_exclude_none=True,
    summary="Check Payment Status for a Resource"
)
def get_payment_status(
    resource_type: str = Path(..., description="Type of the resource.", example="model-details"),
    resource_id: str = Path(..., description="Identifier of the resource.", example="7"),
    subject: str = Depends(require_subject),
    grant_store: GrantStore = Depends(get_grant_store),
    gate: AccessGate = Depends(get_gate),
) -> Any:
    """
    Reports whether the caller holds an active grant for a resource.

    Returns the grant when paid, otherwise the payment required to get one.
    """
    grant = grant_store.find_active(subject, resource_type, resource_id)

    if grant is not None:
        record = grant.to_dict()
        return PaymentStatusResponse(
            paid=True,
            payment=PaymentStatusDetails(
                grantId=record["grantId"],
                amount=record["amount"],
                currency=record["currency"],
                timestamp=record["createdAt"],
                expiresAt=record["expiresAt"],
            )
        )

    details = gate.build_payment_required(resource_type, resource_id)["paymentDetails"]
    return PaymentStatusResponse(
        paid=False,
        required=RequiredPayment(
            amount=details["amount"],
            currency=details["currency"],
            paymentAddress=details["paymentAddress"],
            network=details["network"],
            chainId=details["chainId"],
        )
    )


@router.get(
    "/history",
    response_model=PaymentHistoryResponse,
    summary="List the Caller's Payments"
)
def get_payment_history(
    subject: str = Depends(require_subject),
    grant_store: GrantStore = Depends(get_grant_store),
    limit: int = Depends(get_history_limit),
) -> Any:
    """Returns the caller's most recent grants, newest first."""
    grants = grant_store.find_recent(subject, limit=limit)
    records = [GrantRecord(**_history_fields(grant.to_dict())) for grant in grants]
    logger.info(f"History endpoint accessed for {subject}, returning {len(records)} payments")
    return PaymentHistoryResponse(payments=records, total_count=len(records))


@router.get(
    "/amounts",
    response_model=PaymentAmountsResponse,
    summary="List Payment Amounts for Gated Resources"
)
async def get_payment_amounts(
    fee_schedule: FeeSchedule = Depends(get_fee_schedule),
    gate: AccessGate = Depends(get_gate),
) -> Any:
    """Returns the fee configured for each resource type plus the default fee."""
    return PaymentAmountsResponse(
        amounts=[FeeAmount(**rule.to_dict()) for rule in fee_schedule.rules()],
        default=FeeAmount(**fee_schedule.default_rule.to_dict()),
        network=gate.network,
        chainId=gate.chain_id,
    )


def _history_fields(record: dict) -> dict:
    return {key: value for key, value in record.items() if key != "subject"}
