from collections.abc import Callable
from datetime import date
from itertools import count

import pytest

from spend_categorizer.core.config import CategoryConfig, DetectionConfig, LearnerConfig, PipelineConfig
from spend_categorizer.manager import CategorizerService
from spend_categorizer.models import Transaction


@pytest.fixture
def make_tx() -> Callable[..., Transaction]:
    ids = count(1)

    def _make(
        description: str = "POS PURCHASE",
        amount: float = -10.0,
        merchant_name: str | None = None,
        on: date = date(2024, 1, 15),
        account_id: str = "chequing",
        **extra,
    ) -> Transaction:
        return Transaction(
            id=extra.pop("id", f"tx-{next(ids)}"),
            account_id=account_id,
            amount=amount,
            description=description,
            merchant_name=merchant_name,
            date=on,
            **extra,
        )

    return _make


@pytest.fixture
def service(tmp_path) -> CategorizerService:
    return CategorizerService(
        data_dir=str(tmp_path),
        seed_training=False,
        pipeline_config=PipelineConfig(),
        learner_config=LearnerConfig(),
        detection_config=DetectionConfig(),
        category_config=CategoryConfig(),
        batch_workers=2,
    )
