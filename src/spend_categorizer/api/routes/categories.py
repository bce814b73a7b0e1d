import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, status

from spend_categorizer.api.dependencies import get_service
from spend_categorizer.api.schemas import (
    CreateCategoryRequest,
    ErrorResponse,
    MergeCategoryRequest,
    UpdateCategoryRequest,
)
from spend_categorizer.manager import CategorizerService
from spend_categorizer.models import Category, CategorySuggestion, CategoryUsageStats

router = APIRouter(
    prefix="/categories",
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)


@router.get("", response_model=list[Category])
async def list_categories(
    service: Annotated[CategorizerService, Depends(get_service)],
) -> list[Category]:
    return await asyncio.to_thread(service.get_categories)


@router.post("", response_model=Category, status_code=status.HTTP_201_CREATED)
async def create_category(
    req: CreateCategoryRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> Category:
    return await asyncio.to_thread(
        service.create_custom_category,
        req.name,
        parent_id=req.parent_id,
        color=req.color,
        icon=req.icon,
    )


@router.get("/stats", response_model=list[CategoryUsageStats])
async def usage_stats(
    service: Annotated[CategorizerService, Depends(get_service)],
) -> list[CategoryUsageStats]:
    return await asyncio.to_thread(service.get_category_usage_stats)


@router.get("/suggestions", response_model=list[CategorySuggestion])
async def suggestions(
    service: Annotated[CategorizerService, Depends(get_service)],
) -> list[CategorySuggestion]:
    return await asyncio.to_thread(service.suggest_category_improvements)


@router.patch("/{category_id}", response_model=Category)
async def update_category(
    category_id: str,
    req: UpdateCategoryRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> Category:
    # Only fields present in the body change; an explicit null parent moves to the top level.
    return await asyncio.to_thread(
        service.update_category, category_id, **req.model_dump(exclude_unset=True)
    )


@router.delete("/{category_id}", response_model=Category)
async def delete_category(
    category_id: str,
    service: Annotated[CategorizerService, Depends(get_service)],
    reassign_to: str | None = None,
) -> Category:
    return await asyncio.to_thread(service.delete_category, category_id, reassign_to_id=reassign_to)


@router.post("/{category_id}/merge", response_model=Category)
async def merge_category(
    category_id: str,
    req: MergeCategoryRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> Category:
    return await asyncio.to_thread(service.merge_categories, category_id, req.target_id)
