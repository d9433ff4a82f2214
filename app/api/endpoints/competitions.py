# app/api/endpoints/competitions.py
from fastapi import APIRouter, Path, Request
from typing import Any
import logging

from app.api.models.catalog import CompetitionEntryResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/{competition_id}/enter",
    response_model=CompetitionEntryResponse,
    summary="Enter a Competition (paid)"
)
async def enter_competition(
    request: Request,
    competition_id: str = Path(..., description="Identifier of the competition.", example="1"),
) -> Any:
    """Registers the caller in a competition once the entry fee is paid."""
    participant = request.state.access.subject
    logger.info(f"{participant} entered competition {competition_id}")
    return CompetitionEntryResponse(competitionId=competition_id, participant=participant)
