# app/api/models/payment.py
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import List, Optional


class VerifyPaymentRequest(BaseModel):
    """
    Request model for verifying an on-chain payment.

    ``txHash`` and ``userAddress`` are accepted as aliases of
    ``txReference`` and ``subject``.
    """
    txReference: str = Field(
        ...,
        validation_alias=AliasChoices("txReference", "txHash"),
        description="Hash of the payment transaction.",
        min_length=1,
    )
    resourceType: str = Field(..., description="Type of the resource being paid for.", min_length=1)
    resourceId: str = Field(..., description="Identifier of the resource being paid for.", min_length=1)
    subject: str = Field(
        ...,
        validation_alias=AliasChoices("subject", "userAddress"),
        description="Wallet address that sent the payment.",
        min_length=1,
    )

    @field_validator("resourceId", mode="before")
    @classmethod
    def coerce_resource_id(cls, value):
        # Dashboards send numeric model ids
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("txReference", "subject")
    @classmethod
    def strip_and_lower(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("must not be blank")
        return value


class PaymentSummary(BaseModel):
    grantId: str
    resourceType: str
    resourceId: str
    amount: str
    currency: str
    expiresAt: str


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    message: str = "Payment verified successfully"
    payment: PaymentSummary


class PaymentErrorResponse(BaseModel):
    """Typed error body returned for every rejected verification."""
    error: str = Field(..., description="Machine-readable error kind.")
    message: str = Field(..., description="Human-readable explanation.")
    retryable: bool = Field(..., description="Whether retrying later can succeed.")


class PaymentStatusDetails(BaseModel):
    grantId: str
    amount: str
    currency: str
    timestamp: str
    expiresAt: str


class RequiredPayment(BaseModel):
    amount: str
    currency: str
    paymentAddress: str
    network: str
    chainId: int


class PaymentStatusResponse(BaseModel):
    paid: bool
    payment: Optional[PaymentStatusDetails] = None
    required: Optional[RequiredPayment] = None


class GrantRecord(BaseModel):
    grantId: str
    txReference: str
    resourceType: str
    resourceId: str
    amount: str
    currency: str
    status: str
    blockNumber: Optional[int] = None
    createdAt: str
    expiresAt: str


class PaymentHistoryResponse(BaseModel):
    payments: List[GrantRecord]
    total_count: int


class FeeAmount(BaseModel):
    resourceType: str
    amount: str
    amountWei: str
    currency: str
    paymentAddress: str
    description: str


class PaymentAmountsResponse(BaseModel):
    amounts: List[FeeAmount]
    default: FeeAmount
    network: str
    chainId: int
