"""Base contract shared by every lottery prediction algorithm."""

import copy
import json
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from lottery_engine.errors import AlgorithmError, InvalidParameterError
from lottery_engine.ml.evaluation import compute_metrics
from lottery_engine.ml.features.feature_extractor import FeatureConfig, FeatureExtractor
from lottery_engine.schemas.lottery import (
    LotteryType,
    main_count,
    max_number,
    special_count,
    special_max,
)
from lottery_engine.schemas.ml import (
    AlgorithmConfig,
    EvaluationMetrics,
    PredictionInput,
    PredictionOutput,
    TrainingData,
)


def rank_numbers(
    numbers: Sequence[int], scores: Sequence[float], count: int, top: int
) -> tuple[list[int], list[float]]:
    """Pick ``count`` distinct numbers in [1, top] by descending score.

    Ties keep the order of ``numbers``. When fewer than ``count`` valid
    candidates exist the lowest unused numbers are appended with score 0.0.
    """
    order = sorted(range(len(numbers)), key=lambda i: -scores[i])
    selected: list[int] = []
    confidences: list[float] = []
    for i in order:
        n = int(numbers[i])
        if len(selected) == count:
            break
        if 1 <= n <= top and n not in selected:
            selected.append(n)
            confidences.append(float(scores[i]))
    return pad_selection(selected, confidences, count, top)


def pad_selection(
    numbers: list[int], confidences: list[float], count: int, top: int
) -> tuple[list[int], list[float]]:
    numbers, confidences = list(numbers[:count]), list(confidences[:count])
    for n in range(1, top + 1):
        if len(numbers) >= count:
            break
        if n not in numbers:
            numbers.append(n)
            confidences.append(0.0)
    return numbers, confidences


def write_json(path: Path, payload: dict[str, Any]) -> None:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload))
    except (OSError, TypeError, ValueError) as e:
        raise AlgorithmError(f"Failed to save model to {path}: {e}") from e


def read_json(path: Path) -> dict[str, Any]:
    path = Path(path)
    try:
        return json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise AlgorithmError(f"Failed to load model from {path}: {e}") from e


class PredictionAlgorithm(ABC):
    """Abstract base for all prediction algorithms.

    Subclasses own their learned parameters; registries own the bookkeeping
    (timestamps, metrics) about them.
    """

    algorithm_name: str = ""
    display_name: str = ""
    min_samples: int = 1
    artifact_suffix: str = ".json"

    def __init__(self, lottery_type: LotteryType = LotteryType.SSQ):
        self.lottery_type = LotteryType(lottery_type)
        self.feature_config = FeatureConfig()
        self.special_distribution: np.ndarray | None = None
        self._is_trained = False

    def name(self) -> str:
        return self.display_name

    def algorithm_type(self) -> str:
        return self.algorithm_name

    def is_trained(self) -> bool:
        return self._is_trained

    def get_feature_importance(self) -> dict[str, float] | None:
        return None

    def box_clone(self) -> "PredictionAlgorithm":
        """Independent copy carrying the same learned parameters."""
        return copy.deepcopy(self)

    @abstractmethod
    def train(self, data: TrainingData, config: AlgorithmConfig) -> float:
        """Fit the model and return a self-reported accuracy estimate.

        Raises:
            InvalidParameterError: features or targets are empty
            AlgorithmError: fewer samples than the algorithm needs
        """
        ...

    @abstractmethod
    def predict_samples(self, data: TrainingData) -> list[PredictionOutput | None]:
        """Predict every row of ``data``; ``None`` where lookback is missing."""
        ...

    @abstractmethod
    def _predict(self, input: PredictionInput) -> PredictionOutput:
        ...

    @abstractmethod
    def save_model(self, path: Path) -> None:
        ...

    @abstractmethod
    def load_model(self, path: Path) -> None:
        ...

    def predict(self, input: PredictionInput) -> PredictionOutput:
        self._require_trained()
        if LotteryType(input.lottery_type) != self.lottery_type:
            raise AlgorithmError(
                f"{self.name()} was trained for {self.lottery_type.value}, "
                f"not {LotteryType(input.lottery_type).value}"
            )
        start = time.perf_counter()
        output = self._predict(input)
        output.computation_time_ms = int((time.perf_counter() - start) * 1000)
        return output

    def evaluate(self, data: TrainingData) -> EvaluationMetrics:
        if data.is_empty():
            raise InvalidParameterError("Evaluation data is empty")
        self._require_trained()
        metrics = compute_metrics(self.predict_samples(data), data.targets)
        metrics.feature_importance = self.get_feature_importance()
        return metrics

    # ── shared helpers ───────────────────────────────────────────────

    @property
    def main_count(self) -> int:
        return main_count(self.lottery_type)

    @property
    def max_number(self) -> int:
        return max_number(self.lottery_type)

    def _require_trained(self) -> None:
        if not self._is_trained:
            raise AlgorithmError(f"{self.name()} model not trained")

    def _validate_training_data(self, data: TrainingData) -> None:
        if data.is_empty():
            raise InvalidParameterError("Training data is empty")
        if len(data) < self.min_samples:
            raise AlgorithmError(
                f"Insufficient training data for {self.name()}: "
                f"{len(data)} samples, need at least {self.min_samples}"
            )

    def _apply_common_config(self, config: AlgorithmConfig) -> None:
        """Adopt the variant and feature options; overlay any model options."""
        self.lottery_type = LotteryType(config.lottery_type)
        self.feature_config = FeatureConfig.from_options(config.feature_config)
        own = getattr(self, "config", None)
        options = config.merged()
        if own is not None and options:
            self.config = type(own).from_options({**own.model_dump(), **options})

    def _fit_special_distribution(self, data: TrainingData) -> None:
        """Per-number frequency of special numbers seen in training targets."""
        top = special_max(self.lottery_type)
        dist = np.zeros(top, dtype=np.float64)
        rows = data.special_targets or []
        for specials in rows:
            for n in specials:
                if 1 <= n <= top:
                    dist[n - 1] += 1
        if rows:
            dist /= len(rows)
        self.special_distribution = dist

    def _predict_special_numbers(self) -> list[int] | None:
        count = special_count(self.lottery_type)
        if count == 0:
            return None
        top = special_max(self.lottery_type)
        dist = self.special_distribution
        if dist is None or len(dist) != top:
            dist = np.zeros(top)
        numbers, _ = rank_numbers(list(range(1, top + 1)), dist.tolist(), count, top)
        return numbers

    def _prediction_features(self, input: PredictionInput) -> list[float]:
        """Feature vector for the upcoming draw on ``input.target_date``."""
        history = input.historical_data
        if not history:
            raise AlgorithmError(f"{self.name()} needs at least one historical draw")
        window = history[-self.feature_config.window_size:]
        return FeatureExtractor(self.feature_config).extract_single_features(
            input.target_date, window, self.lottery_type,
        )

    def _base_state(self) -> dict[str, Any]:
        return {
            "algorithm": self.algorithm_name,
            "lottery_type": self.lottery_type.value,
            "feature_config": self.feature_config.model_dump(),
            "special_distribution": (
                self.special_distribution.tolist()
                if self.special_distribution is not None else None
            ),
        }

    def _decode_base_state(self, state: dict[str, Any]) -> tuple:
        """Shared snapshot fields, decoded without touching ``self``."""
        if state.get("algorithm") != self.algorithm_name:
            raise AlgorithmError(
                f"Snapshot holds {state.get('algorithm')!r}, expected {self.algorithm_name!r}"
            )
        lottery_type = LotteryType(state["lottery_type"])
        feature_config = FeatureConfig.model_validate(state["feature_config"])
        dist = state.get("special_distribution")
        special_distribution = np.array(dist, dtype=np.float64) if dist is not None else None
        return lottery_type, feature_config, special_distribution

    def _restore_base_state(self, base: tuple) -> None:
        self.lottery_type, self.feature_config, self.special_distribution = base
