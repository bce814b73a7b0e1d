from pydantic import BaseModel, Field

from spend_categorizer.core import settings


class PipelineConfig(BaseModel):
    rule_confidence_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    pattern_confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    fuzzy_match_threshold: float = Field(default=92.0, ge=0.0, le=100.0)
    weight_prior: float = Field(default=0.01, gt=0.0)
    softmax_temperature: float = Field(default=0.1, gt=0.0)
    alternatives: int = Field(default=3, ge=0)

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            rule_confidence_threshold=settings.get_env_float(
                "RULE_CONFIDENCE_THRESHOLD", 0.85, min_value=0.0, max_value=1.0
            ),
            pattern_confidence_threshold=settings.get_env_float(
                "PATTERN_CONFIDENCE_THRESHOLD", 0.75, min_value=0.0, max_value=1.0
            ),
            fuzzy_match_threshold=settings.get_env_float(
                "FUZZY_MATCH_THRESHOLD", 92.0, min_value=0.0, max_value=100.0
            ),
            weight_prior=settings.get_env_float("WEIGHT_PRIOR", 0.01, min_value=1e-6),
            softmax_temperature=settings.get_env_float(
                "SOFTMAX_TEMPERATURE", 0.1, min_value=1e-3
            ),
        )


class LearnerConfig(BaseModel):
    learning_rate: float = Field(default=0.1, gt=0.0, le=1.0)
    promotion_threshold: int = Field(default=3, ge=1)
    promoted_confidence: float = Field(default=0.95, ge=0.0, le=1.0)

    @classmethod
    def from_env(cls) -> "LearnerConfig":
        return cls(
            learning_rate=settings.get_env_float(
                "LEARNING_RATE", 0.1, min_value=1e-6, max_value=1.0
            ),
            promotion_threshold=settings.get_env_int("PROMOTION_THRESHOLD", 3, min_value=1),
        )


class DetectionConfig(BaseModel):
    # z-scores above which an amount alert becomes MEDIUM, HIGH, CRITICAL.
    severity_bands: tuple[float, float, float] = (2.0, 3.0, 5.0)
    min_samples: int = Field(default=3, ge=2)
    frequency_limit: int = Field(default=3, ge=1)
    duplicate_window_days: int = Field(default=0, ge=0)
    location_min_history: int = Field(default=5, ge=1)
    recent_charges_kept: int = Field(default=50, ge=1)

    @classmethod
    def from_env(cls) -> "DetectionConfig":
        bands = settings.get_env_float_list("SEVERITY_BANDS", (2.0, 3.0, 5.0))
        if len(bands) != 3:
            bands = (2.0, 3.0, 5.0)
        return cls(
            severity_bands=(bands[0], bands[1], bands[2]),
            min_samples=settings.get_env_int("ANOMALY_MIN_SAMPLES", 3, min_value=2),
            frequency_limit=settings.get_env_int("FREQUENCY_LIMIT", 3, min_value=1),
            duplicate_window_days=settings.get_env_int("DUPLICATE_WINDOW_DAYS", 0, min_value=0),
            location_min_history=settings.get_env_int("LOCATION_MIN_HISTORY", 5, min_value=1),
        )


class CategoryConfig(BaseModel):
    min_usage: int = Field(default=5, ge=1)
    similarity_threshold: float = Field(default=80.0, ge=0.0, le=100.0)
    subcategory_threshold: int = Field(default=50, ge=1)

    @classmethod
    def from_env(cls) -> "CategoryConfig":
        return cls(min_usage=settings.get_env_int("MIN_USAGE", 5, min_value=1))
