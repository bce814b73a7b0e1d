import json
import os
import threading
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from spend_categorizer.logger import get_logger

logger = get_logger(__name__)


class WeightTable(BaseModel):
    """
    Immutable per-category map of feature -> score.

    Every change produces a new table with a bumped version, so a reader
    holding a table never observes a partially applied update.
    """
    model_config = ConfigDict(frozen=True)

    version: int = 0
    weights: dict[str, dict[str, float]] = Field(default_factory=dict)
    updated_at: datetime | None = None

    def categories(self) -> list[str]:
        return sorted(category for category, features in self.weights.items() if features)

    def get(self, category_id: str, feature: str) -> float | None:
        return self.weights.get(category_id, {}).get(feature)

    def is_empty(self) -> bool:
        return not any(self.weights.values())

    def replace(self, weights: dict[str, dict[str, float]]) -> "WeightTable":
        return WeightTable(
            version=self.version + 1,
            weights={category: dict(features) for category, features in weights.items() if features},
            updated_at=datetime.now(),
        )

    def copy_weights(self) -> dict[str, dict[str, float]]:
        return {category: dict(features) for category, features in self.weights.items()}


class WeightStore:
    """Holds the current WeightTable; single writer, lock-free readers."""

    def __init__(self, data_path: str | None = None):
        self.data_path = data_path
        self._lock = threading.Lock()
        self._table = WeightTable()
        self.load()

    def snapshot(self) -> WeightTable:
        # Rebinding an attribute is atomic, readers never need the lock.
        return self._table

    def commit(self, transition: Callable[[WeightTable], WeightTable]) -> WeightTable:
        with self._lock:
            current = self._table
            updated = transition(current)
            if updated is not current:
                self._table = updated
                self.save()
            return self._table

    def load(self) -> None:
        if not self.data_path or not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as f:
                self._table = WeightTable.model_validate(json.load(f))
            logger.info(
                "[WEIGHTS] Loaded table v%s (%s categories) from %s",
                self._table.version,
                len(self._table.categories()),
                self.data_path,
            )
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("[WEIGHTS] Ignoring unreadable %s: %s", self.data_path, e)
            self._table = WeightTable()

    def save(self) -> None:
        if not self.data_path:
            return
        with open(self.data_path, "w", encoding="utf-8") as f:
            f.write(self._table.model_dump_json(indent=2))

    def clear(self) -> None:
        self.commit(lambda table: table.replace({}))
