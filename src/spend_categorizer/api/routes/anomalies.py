from typing import Annotated

from fastapi import APIRouter, Depends

from spend_categorizer.api.dependencies import get_pipeline
from spend_categorizer.api.schemas import AnomalyRequest
from spend_categorizer.models import AnomalyAlert
from spend_categorizer.services.categorization import CategorizationPipeline

router = APIRouter()


@router.post("/anomalies", response_model=list[AnomalyAlert])
async def detect_unusual_spending(
    req: AnomalyRequest,
    pipeline: Annotated[CategorizationPipeline, Depends(get_pipeline)],
) -> list[AnomalyAlert]:
    return await pipeline.detect(req.transactions, today=req.today)
