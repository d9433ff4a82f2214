# app/api/endpoints/models.py
from fastapi import APIRouter, HTTPException, Path, Request, status
from typing import Any
import logging

from app.api.models.catalog import (
    DepositRequest,
    DepositResponse,
    ModelDetailsResponse,
    ModelListResponse,
    ModelSummary,
)
from app.paygate.store import as_utc

router = APIRouter()
logger = logging.getLogger(__name__)

# Static catalog; model performance data is produced elsewhere
MODEL_CATALOG = {
    "1": {"name": "AlphaNeural", "strategy": "Momentum", "accuracy": 87.5, "subscribers": 245},
    "2": {"name": "QuantumPredictor", "strategy": "ML-Based", "accuracy": 82.3, "subscribers": 189},
    "3": {"name": "DeepTrade AI", "strategy": "Mean Reversion", "accuracy": 79.8, "subscribers": 312},
}

MODEL_METRICS = {
    "1": {"sharpeRatio": 2.34, "maxDrawdown": -12.5, "winRate": 68.2, "profitFactor": 2.1},
    "2": {"sharpeRatio": 1.87, "maxDrawdown": -15.1, "winRate": 63.4, "profitFactor": 1.7},
    "3": {"sharpeRatio": 1.52, "maxDrawdown": -9.8, "winRate": 61.0, "profitFactor": 1.5},
}


def _get_model(model_id: str) -> dict:
    model = MODEL_CATALOG.get(model_id)
    if model is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Model '{model_id}' not found."
        )
    return model


@router.get("/", response_model=ModelListResponse, summary="List Models")
async def list_models() -> Any:
    """Public endpoint: basic information for every model."""
    models = [ModelSummary(id=model_id, **model) for model_id, model in MODEL_CATALOG.items()]
    return ModelListResponse(models=models, total_count=len(models))


@router.get(
    "/{model_id}/details",
    response_model=ModelDetailsResponse,
    summary="Get Model Analytics (paid)"
)
async def get_model_details(
    request: Request,
    model_id: str = Path(..., description="Identifier of the model.", example="1"),
) -> Any:
    """
    Returns detailed model analytics.

    Only reached when the payment gate found an active grant.
    """
    model = _get_model(model_id)
    access = getattr(request.state, "access", None)
    expires_at = None
    if access is not None and access.grant is not None:
        expires_at = as_utc(access.grant.expires_at).isoformat()

    return ModelDetailsResponse(
        id=model_id,
        detailedMetrics=MODEL_METRICS[model_id],
        accessExpiresAt=expires_at,
        **model
    )


@router.post(
    "/{model_id}/invest",
    response_model=DepositResponse,
    summary="Deposit into a Model (paid)"
)
async def invest_in_model(
    request: Request,
    body: DepositRequest,
    model_id: str = Path(..., description="Identifier of the model.", example="1"),
) -> Any:
    """Records a deposit request; the deposit fee was checked by the payment gate."""
    _get_model(model_id)
    depositor = request.state.access.subject
    logger.info(f"Deposit of {body.amount} accepted for model {model_id} from {depositor}")
    return DepositResponse(modelId=model_id, depositor=depositor, amount=body.amount)
