import re
from itertools import combinations

from rapidfuzz import fuzz

from spend_categorizer.core.config import CategoryConfig
from spend_categorizer.core.errors import ErrorCode, ValidationError
from spend_categorizer.domain.text import slugify
from spend_categorizer.learning.feedback import FeedbackLearner
from spend_categorizer.logger import get_logger
from spend_categorizer.models import (
    Category,
    CategorySuggestion,
    CategoryUsageStats,
    SuggestionType,
    UsageFrequency,
)
from spend_categorizer.services.registry import CategoryRegistry
from spend_categorizer.services.store import TransactionStore

logger = get_logger(__name__)

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")
_UNSET = object()


def usage_frequency(transaction_count: int) -> UsageFrequency:
    if transaction_count == 0:
        return UsageFrequency.NEVER
    if transaction_count < 4:
        return UsageFrequency.RARELY
    if transaction_count < 16:
        return UsageFrequency.OCCASIONALLY
    if transaction_count < 52:
        return UsageFrequency.REGULARLY
    return UsageFrequency.FREQUENTLY


class CategoryManager:
    def __init__(
        self,
        registry: CategoryRegistry,
        store: TransactionStore,
        learner: FeedbackLearner,
        config: CategoryConfig | None = None,
    ):
        self.registry = registry
        self.store = store
        self.learner = learner
        self.config = config or CategoryConfig()

    def _require(self, category_id: str, role: str = "category") -> Category:
        category = self.registry.get(category_id)
        if category is None:
            raise ValidationError(ErrorCode.UNKNOWN_CATEGORY, f"{role} '{category_id}' does not exist")
        return category

    def _check_name(self, name: str, parent_id: str | None, exclude_id: str | None = None) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError(ErrorCode.INVALID_NAME, "category name cannot be empty")
        folded = cleaned.casefold()
        for sibling in self.registry.children(parent_id):
            if sibling.id != exclude_id and sibling.name.casefold() == folded:
                raise ValidationError(
                    ErrorCode.NAME_COLLISION,
                    f"'{cleaned}' collides with sibling category '{sibling.id}'",
                )
        return cleaned

    @staticmethod
    def _check_color(color: str | None) -> None:
        if color is not None and not _HEX_COLOR.match(color):
            raise ValidationError(ErrorCode.INVALID_COLOR, f"color '{color}' is not in #RRGGBB form")

    def _new_id(self, name: str) -> str:
        base = slugify(name) or "category"
        candidate = base
        suffix = 2
        while self.registry.exists(candidate):
            candidate = f"{base}_{suffix}"
            suffix += 1
        return candidate

    def create_custom_category(
        self,
        name: str,
        parent_id: str | None = None,
        color: str | None = None,
        icon: str | None = None,
    ) -> Category:
        with self.registry.lock:
            if parent_id is not None:
                self._require(parent_id, "parent category")
            cleaned = self._check_name(name, parent_id)
            self._check_color(color)

            category = Category(
                id=self._new_id(cleaned),
                name=cleaned,
                parent_id=parent_id,
                color=color,
                icon=icon,
                is_builtin=False,
            )
            self.registry.put(category)
        logger.info("[CATEGORIES] Created '%s' (%s) under %s", category.name, category.id, parent_id)
        return category

    def update_category(
        self,
        category_id: str,
        *,
        name: str | None = None,
        parent_id: object = _UNSET,
        color: str | None = None,
        icon: str | None = None,
    ) -> Category:
        """
        Rename, re-parent or restyle a category.

        `parent_id=None` moves the category to the top level; omitting it
        keeps the current parent.
        """
        with self.registry.lock:
            category = self._require(category_id)
            new_parent = category.parent_id if parent_id is _UNSET else parent_id
            if not (new_parent is None or isinstance(new_parent, str)):
                raise ValidationError(ErrorCode.UNKNOWN_CATEGORY, f"parent '{new_parent}' is not a category id")

            reparenting = new_parent != category.parent_id
            renaming = name is not None and name.strip() != category.name
            if reparenting and new_parent is not None:
                self._require(new_parent, "parent category")
                if new_parent == category_id or category_id in self.registry.ancestors(new_parent):
                    raise ValidationError(
                        ErrorCode.CYCLIC_PARENT,
                        f"making '{new_parent}' the parent of '{category_id}' would create a cycle",
                    )
            if category.is_builtin and (reparenting or renaming):
                raise ValidationError(
                    ErrorCode.BUILTIN_PROTECTED,
                    f"built-in category '{category_id}' cannot be renamed or moved",
                )
            cleaned = self._check_name(
                name if name is not None else category.name, new_parent, exclude_id=category_id
            )
            self._check_color(color)

            updated = category.model_copy(update={
                "name": cleaned,
                "parent_id": new_parent,
                "color": color if color is not None else category.color,
                "icon": icon if icon is not None else category.icon,
            })
            self.registry.put(updated)
        logger.info("[CATEGORIES] Updated '%s'", category_id)
        return updated

    def delete_category(self, category_id: str, reassign_to_id: str | None = None) -> Category:
        with self.registry.lock:
            category = self._require(category_id)
            if category.is_builtin:
                raise ValidationError(
                    ErrorCode.BUILTIN_PROTECTED, f"built-in category '{category_id}' cannot be deleted"
                )
            in_use = self.store.by_category(category_id)
            if reassign_to_id is None and in_use:
                raise ValidationError(
                    ErrorCode.REASSIGNMENT_REQUIRED,
                    f"category '{category_id}' is used by {len(in_use)} transactions; "
                    "a reassignment target is required",
                )
            if reassign_to_id is not None:
                self._require(reassign_to_id, "reassignment category")
                if reassign_to_id == category_id:
                    raise ValidationError(
                        ErrorCode.INVALID_REASSIGNMENT, "cannot reassign a category to itself"
                    )

            for child in self.registry.children(category_id):
                self._check_name(child.name, category.parent_id, exclude_id=category_id)

            moved = 0
            if reassign_to_id is not None:
                moved = self.store.reassign(category_id, reassign_to_id)
                self.learner.reassign_category(category_id, reassign_to_id)
            for child in self.registry.children(category_id):
                self.registry.put(child.model_copy(update={"parent_id": category.parent_id}))
            self.registry.remove(category_id)
        logger.info(
            "[CATEGORIES] Deleted '%s'; %s transactions moved to %s",
            category_id,
            moved,
            reassign_to_id,
        )
        return category

    def merge_categories(self, source_id: str, target_id: str) -> Category:
        self.delete_category(source_id, reassign_to_id=target_id)
        return self._require(target_id)

    def get_category_usage_stats(self) -> list[CategoryUsageStats]:
        transactions = self.store.all()
        stats: list[CategoryUsageStats] = []
        for category in self.registry.all():
            assigned = [t for t in transactions if t.assigned_category_id == category.id]
            total = round(sum(t.amount for t in assigned), 2)
            stats.append(CategoryUsageStats(
                category=category,
                transaction_count=len(assigned),
                total_amount=total,
                average_amount=round(total / len(assigned), 2) if assigned else 0.0,
                last_used=max((t.date for t in assigned), default=None),
                usage_frequency=usage_frequency(len(assigned)),
            ))
        return sorted(stats, key=lambda s: s.transaction_count, reverse=True)

    def suggest_category_improvements(self) -> list[CategorySuggestion]:
        suggestions: list[CategorySuggestion] = []
        usage = self.get_category_usage_stats()

        for stats in usage:
            if not stats.category.is_builtin and stats.transaction_count == 0:
                suggestions.append(CategorySuggestion(
                    type=SuggestionType.DELETE_UNUSED_CATEGORY,
                    title="Delete unused category",
                    description=f"Category '{stats.category.name}' has never been used.",
                    related_category_ids=[stats.category.id],
                ))

        for stats in usage:
            if (
                stats.category.parent_id is None
                and stats.transaction_count > self.config.subcategory_threshold
                and not self.registry.children(stats.category.id)
            ):
                suggestions.append(CategorySuggestion(
                    type=SuggestionType.CREATE_SUBCATEGORY,
                    title="Create subcategories",
                    description=(
                        f"Category '{stats.category.name}' has {stats.transaction_count} "
                        "transactions. Subcategories would make it easier to follow."
                    ),
                    related_category_ids=[stats.category.id],
                ))

        low_usage = [
            s for s in usage
            if s.transaction_count < self.config.min_usage and s.category.id != "uncategorized"
        ]
        low_usage.sort(key=lambda s: s.category.id)
        for first, second in combinations(low_usage, 2):
            if first.category.is_builtin and second.category.is_builtin:
                continue
            similarity = fuzz.token_set_ratio(
                first.category.name.casefold(), second.category.name.casefold()
            )
            if similarity < self.config.similarity_threshold:
                continue
            # The custom category (or the less used one) folds into the other.
            source, target = sorted(
                (first, second),
                key=lambda s: (s.category.is_builtin, s.transaction_count),
            )
            suggestions.append(CategorySuggestion(
                type=SuggestionType.MERGE_SIMILAR_CATEGORIES,
                title="Merge similar categories",
                description=(
                    f"'{source.category.name}' and '{target.category.name}' have similar names "
                    f"and only {source.transaction_count + target.transaction_count} transactions "
                    "between them."
                ),
                related_category_ids=[source.category.id, target.category.id],
            ))
        return suggestions
