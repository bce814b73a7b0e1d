from typing import Annotated

from fastapi import APIRouter, Depends

from spend_categorizer.api.dependencies import get_service
from spend_categorizer.manager import CategorizerService

router = APIRouter()


@router.get("/health")
async def health(
    service: Annotated[CategorizerService, Depends(get_service)],
) -> dict[str, object]:
    return {
        "status": "ok",
        "transactions": len(service.store),
        "rules_version": service.rules.snapshot().version,
        "weights_version": service.weights.snapshot().version,
    }
