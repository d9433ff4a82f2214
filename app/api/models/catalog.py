# app/api/models/catalog.py
from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class ModelSummary(BaseModel):
    """Public information about a trading model."""
    id: str
    name: str
    strategy: str
    accuracy: float
    subscribers: int


class ModelListResponse(BaseModel):
    models: List[ModelSummary]
    total_count: int


class ModelDetailsResponse(ModelSummary):
    """Paid analytics for a single model."""
    detailedMetrics: Dict[str, float]
    accessExpiresAt: Optional[str] = None


class DepositRequest(BaseModel):
    amount: str = Field(..., description="Amount to deposit (decimal ETH string).", example="0.01")


class DepositResponse(BaseModel):
    modelId: str
    depositor: str
    amount: str
    status: str = "accepted"


class CompetitionEntryResponse(BaseModel):
    competitionId: str
    participant: str
    status: str = "entered"
