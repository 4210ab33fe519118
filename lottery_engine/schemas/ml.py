"""Pydantic schemas for training data, predictions and model records."""

from datetime import date, datetime
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from lottery_engine.schemas.lottery import Drawing, LotteryType


class LooseConfig(BaseModel):
    """Config whose invalid or unknown options fall back to defaults."""

    @classmethod
    def from_options(cls, options: dict[str, Any] | None):
        config = cls()
        for key, value in (options or {}).items():
            if key not in cls.model_fields:
                continue
            try:
                config = cls.model_validate({**config.model_dump(), key: value})
            except ValidationError:
                logger.warning("{}: ignoring invalid option {}={!r}", cls.__name__, key, value)
        return config


class TrainingData(BaseModel):
    """Feature vectors paired with the numbers drawn after each window."""

    features: list[list[float]]
    targets: list[list[int]]
    special_targets: list[list[int]] | None = None
    weights: list[float] | None = None

    @model_validator(mode="after")
    def _check_lengths(self) -> "TrainingData":
        if len(self.features) != len(self.targets):
            raise ValueError(
                f"features/targets length mismatch: {len(self.features)} != {len(self.targets)}"
            )
        if self.special_targets is not None and len(self.special_targets) != len(self.targets):
            raise ValueError("special_targets must align with targets")
        if self.weights is not None and len(self.weights) != len(self.targets):
            raise ValueError("weights must align with targets")
        return self

    def __len__(self) -> int:
        return len(self.targets)

    def is_empty(self) -> bool:
        return not self.features or not self.targets

    def subset(self, start: int | None = None, stop: int | None = None) -> "TrainingData":
        """Contiguous slice keeping optional columns aligned."""
        return TrainingData(
            features=self.features[start:stop],
            targets=self.targets[start:stop],
            special_targets=(
                self.special_targets[start:stop] if self.special_targets is not None else None
            ),
            weights=self.weights[start:stop] if self.weights is not None else None,
        )

    def split(self, ratio: float) -> tuple["TrainingData", "TrainingData"]:
        """Chronological split; the first part keeps ``ratio`` of the rows."""
        cut = int(len(self) * ratio)
        return self.subset(None, cut), self.subset(cut, None)


class AlgorithmConfig(BaseModel):
    """Loose bag of per-algorithm options; unknown keys are ignored by models."""

    lottery_type: LotteryType = LotteryType.SSQ
    parameters: dict[str, Any] = Field(default_factory=dict)
    hyperparameters: dict[str, Any] = Field(default_factory=dict)
    feature_config: dict[str, Any] = Field(default_factory=dict)

    def merged(self) -> dict[str, Any]:
        """Parameters overlaid by hyperparameters."""
        return {**self.parameters, **self.hyperparameters}


class PredictionInput(BaseModel):
    lottery_type: LotteryType
    historical_data: list[Drawing]
    target_date: date
    additional_features: dict[str, float] | None = None


class PredictionOutput(BaseModel):
    predicted_numbers: list[int]
    predicted_special_numbers: list[int] | None = None
    confidence_scores: list[float]
    algorithm_metadata: dict[str, Any] = Field(default_factory=dict)
    computation_time_ms: int = 0


class EvaluationMetrics(BaseModel):
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    mean_absolute_error: float = 0.0
    root_mean_squared_error: float = 0.0
    confusion_matrix: list[list[int]] | None = None
    feature_importance: dict[str, float] | None = None
    cross_validation_scores: list[float] | None = None


class ModelInfo(BaseModel):
    """Registry record for a trained model; owned by the registry, not the model."""

    algorithm_name: str
    lottery_type: LotteryType
    trained_at: datetime
    metrics: EvaluationMetrics
    config: AlgorithmConfig


class AlgorithmMetadata(BaseModel):
    name: str
    description: str
    supported_lottery_types: list[LotteryType]
    required_data_size: int
    accuracy_range: tuple[float, float]
    config_schema: dict[str, Any] = Field(default_factory=dict)


class AlgorithmComparison(BaseModel):
    algorithm_name: str
    accuracy: float
    precision: float
    recall: float
    f1_score: float


class TrainResponse(BaseModel):
    lottery_type: LotteryType
    accuracies: dict[str, float]
    failures: dict[str, str] = Field(default_factory=dict)
    training_samples: int
    message: str
