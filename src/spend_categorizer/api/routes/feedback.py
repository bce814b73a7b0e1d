import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from spend_categorizer.api.dependencies import get_pipeline, get_service
from spend_categorizer.api.schemas import ErrorResponse, FeedbackRequest, RetrainResponse
from spend_categorizer.manager import CategorizerService
from spend_categorizer.models import CategorizationStats, FeedbackRecord
from spend_categorizer.services.categorization import CategorizationPipeline

router = APIRouter()


@router.post(
    "/feedback",
    response_model=FeedbackRecord,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def provide_feedback(
    req: FeedbackRequest,
    pipeline: Annotated[CategorizationPipeline, Depends(get_pipeline)],
) -> FeedbackRecord:
    return await pipeline.feedback(req.transaction_id, req.category_id, req.weight)


@router.get("/stats", response_model=CategorizationStats)
async def categorization_stats(
    service: Annotated[CategorizerService, Depends(get_service)],
) -> CategorizationStats:
    return await asyncio.to_thread(service.get_categorization_stats)


@router.post("/retrain", response_model=RetrainResponse)
async def retrain(
    service: Annotated[CategorizerService, Depends(get_service)],
) -> RetrainResponse:
    table = await asyncio.to_thread(service.retrain_models)
    return RetrainResponse(version=table.version, categories=len(table.categories()))
