import threading

from spend_categorizer.domain.categories import default_categories
from spend_categorizer.models import Category


class CategoryRegistry:
    """Category taxonomy: built-ins seeded at construction plus custom ones."""

    def __init__(self, categories: list[Category] | None = None):
        self._lock = threading.RLock()
        self._categories: dict[str, Category] = {}
        for category in categories if categories is not None else default_categories():
            self._categories[category.id] = category

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def get(self, category_id: str) -> Category | None:
        return self._categories.get(category_id)

    def exists(self, category_id: str | None) -> bool:
        return category_id is not None and category_id in self._categories

    def all(self) -> list[Category]:
        return list(self._categories.values())

    def ids(self) -> frozenset[str]:
        return frozenset(self._categories)

    def children(self, parent_id: str | None) -> list[Category]:
        return [c for c in self._categories.values() if c.parent_id == parent_id]

    def ancestors(self, category_id: str) -> list[str]:
        """Parent chain from the direct parent up to the root."""
        chain: list[str] = []
        current = self._categories.get(category_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id in chain:
                break
            chain.append(current.parent_id)
            current = self._categories.get(current.parent_id)
        return chain

    def put(self, category: Category) -> None:
        with self._lock:
            self._categories[category.id] = category

    def remove(self, category_id: str) -> None:
        with self._lock:
            self._categories.pop(category_id, None)
