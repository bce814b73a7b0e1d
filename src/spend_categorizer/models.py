from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class MatchSource(str, Enum):
    RULE = "RULE"
    PATTERN = "PATTERN"
    STATISTICAL = "STATISTICAL"
    USER = "USER"


class CategorizationStatus(str, Enum):
    UNCATEGORIZED = "UNCATEGORIZED"
    AUTO_CATEGORIZED = "AUTO_CATEGORIZED"
    USER_CONFIRMED = "USER_CONFIRMED"
    USER_CORRECTED = "USER_CORRECTED"

    @property
    def is_user_state(self) -> bool:
        return self in {CategorizationStatus.USER_CONFIRMED, CategorizationStatus.USER_CORRECTED}


class Transaction(BaseModel):
    id: str
    account_id: str
    amount: float  # negative = debit
    description: str
    merchant_name: str | None = None
    date: date
    location: str | None = None
    assigned_category_id: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    matched_from: MatchSource | None = None
    status: CategorizationStatus = CategorizationStatus.UNCATEGORIZED

    @property
    def is_debit(self) -> bool:
        return self.amount < 0


class Category(BaseModel):
    id: str
    name: str
    parent_id: str | None = None
    color: str | None = None
    icon: str | None = None
    is_builtin: bool = False


class CategoryScore(BaseModel):
    category_id: str
    confidence: float = Field(ge=0.0, le=1.0)


class CategorizationResult(BaseModel):
    transaction_id: str
    category_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    matched_from: MatchSource
    alternatives: list[CategoryScore] = Field(default_factory=list)


class FeedbackRecord(BaseModel):
    transaction_id: str
    corrected_category_id: str
    weight: float = Field(ge=0.0, le=1.0)
    timestamp: datetime


class UsageFrequency(str, Enum):
    NEVER = "NEVER"
    RARELY = "RARELY"
    OCCASIONALLY = "OCCASIONALLY"
    REGULARLY = "REGULARLY"
    FREQUENTLY = "FREQUENTLY"


class CategoryUsageStats(BaseModel):
    category: Category
    transaction_count: int
    total_amount: float
    average_amount: float
    last_used: date | None = None
    usage_frequency: UsageFrequency


class SuggestionType(str, Enum):
    MERGE_SIMILAR_CATEGORIES = "MERGE_SIMILAR_CATEGORIES"
    DELETE_UNUSED_CATEGORY = "DELETE_UNUSED_CATEGORY"
    CREATE_SUBCATEGORY = "CREATE_SUBCATEGORY"


class CategorySuggestion(BaseModel):
    type: SuggestionType
    title: str
    description: str
    related_category_ids: list[str] = Field(default_factory=list)


class AnomalyType(str, Enum):
    AMOUNT = "AMOUNT"
    FREQUENCY = "FREQUENCY"
    DUPLICATE = "DUPLICATE"
    NEW_MERCHANT = "NEW_MERCHANT"
    LOCATION = "LOCATION"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class AnomalyAlert(BaseModel):
    id: str
    transaction_id: str
    type: AnomalyType
    severity: Severity
    message: str
    suggested_action: str
    detected_at: date


class CategorizationStats(BaseModel):
    total_transactions_categorized: int
    average_confidence: float
    user_feedback_count: int
    accuracy_rate: float
    category_distribution: dict[str, int]
    source_distribution: dict[str, int]
    last_model_update: datetime | None = None
