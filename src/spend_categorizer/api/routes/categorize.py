from typing import Annotated

from fastapi import APIRouter, Depends

from spend_categorizer.api.dependencies import get_pipeline
from spend_categorizer.api.schemas import BatchCategorizeRequest, CategorizeRequest
from spend_categorizer.models import CategorizationResult
from spend_categorizer.services.categorization import CategorizationPipeline

router = APIRouter()


@router.post("/categorize", response_model=CategorizationResult)
async def categorize_transaction(
    req: CategorizeRequest,
    pipeline: Annotated[CategorizationPipeline, Depends(get_pipeline)],
) -> CategorizationResult:
    return await pipeline.predict(req.transaction)


@router.post("/categorize/batch", response_model=list[CategorizationResult])
async def categorize_transactions(
    req: BatchCategorizeRequest,
    pipeline: Annotated[CategorizationPipeline, Depends(get_pipeline)],
) -> list[CategorizationResult]:
    return await pipeline.predict_many(req.transactions)
