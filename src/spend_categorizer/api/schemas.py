from datetime import date

from pydantic import BaseModel, Field

from spend_categorizer.models import Transaction


class CategorizeRequest(BaseModel):
    transaction: Transaction


class BatchCategorizeRequest(BaseModel):
    transactions: list[Transaction]


class FeedbackRequest(BaseModel):
    transaction_id: str
    category_id: str
    # Range is checked by the learner so the rejection names the invariant.
    weight: float = 1.0


class AnomalyRequest(BaseModel):
    transactions: list[Transaction]
    today: date | None = None


class CreateCategoryRequest(BaseModel):
    name: str
    parent_id: str | None = None
    color: str | None = None
    icon: str | None = None


class UpdateCategoryRequest(BaseModel):
    name: str | None = None
    parent_id: str | None = None
    color: str | None = None
    icon: str | None = None


class MergeCategoryRequest(BaseModel):
    target_id: str


class ErrorResponse(BaseModel):
    code: str
    detail: str


class RetrainResponse(BaseModel):
    version: int
    categories: int = Field(description="Categories with learned weights")
