"""Frequency, hot/cold and trend scoring over the training draws."""

from pathlib import Path

import numpy as np
from loguru import logger
from scipy import stats

from lottery_engine.errors import AlgorithmError
from lottery_engine.ml.models.base_model import (
    PredictionAlgorithm,
    rank_numbers,
    read_json,
    write_json,
)
from lottery_engine.schemas.lottery import LotteryType
from lottery_engine.schemas.ml import (
    AlgorithmConfig,
    LooseConfig,
    PredictionInput,
    PredictionOutput,
    TrainingData,
)

RECENT_FRACTION = 0.2
HOT_BONUS = 0.1
COLD_PENALTY = 0.05


class StatisticalConfig(LooseConfig):
    confidence_threshold: float = 0.6
    hot_cold_weight: float = 0.4
    trend_weight: float = 0.3


class StatisticalModel(PredictionAlgorithm):
    """Scores every number from draw statistics; the input history is not consulted."""

    algorithm_name = "statistical"
    display_name = "Statistical Analysis"
    min_samples = 5

    def __init__(
        self,
        config: StatisticalConfig | None = None,
        lottery_type: LotteryType = LotteryType.SSQ,
    ):
        super().__init__(lottery_type)
        self.config = config or StatisticalConfig()
        self.frequency_distribution: dict[int, float] = {}
        self.hot_numbers: list[int] = []
        self.cold_numbers: list[int] = []
        self.trend_scores: dict[int, float] = {}
        self.pattern_weights: dict[str, float] = {}

    def _counts(self, draws: list[list[int]]) -> np.ndarray:
        counts = np.zeros(self.max_number + 1, dtype=np.float64)
        for row in draws:
            for n in row:
                if 1 <= n <= self.max_number:
                    counts[n] += 1
        return counts

    def compute_frequencies(self, draws: list[list[int]]) -> None:
        counts = self._counts(draws)
        total = counts.sum()
        self.frequency_distribution = (
            {n: float(counts[n] / total) for n in range(1, self.max_number + 1)}
            if total > 0 else {}
        )

    def identify_hot_cold(self, draws: list[list[int]]) -> None:
        """Top third of recent/older ratios are hot, bottom third cold."""
        split = len(draws) - int(len(draws) * RECENT_FRACTION)
        recent = self._counts(draws[split:])
        older = self._counts(draws[:split])
        scored = []
        for n in range(1, self.max_number + 1):
            score = recent[n] / older[n] if older[n] > 0 else recent[n] * 2.0
            scored.append((n, score))
        scored.sort(key=lambda item: -item[1])

        cut = len(scored) // 3
        self.hot_numbers = [n for n, _ in scored[:cut]]
        self.cold_numbers = [n for n, _ in scored[cut * 2:]]

    def compute_trends(self, draws: list[list[int]]) -> None:
        """Slope of draw index against occurrence order, per number seen twice or more."""
        positions: dict[int, list[int]] = {}
        for i, row in enumerate(draws):
            for n in row:
                if 1 <= n <= self.max_number:
                    positions.setdefault(n, []).append(i)
        self.trend_scores = {}
        for n, seen in positions.items():
            if len(seen) > 1:
                self.trend_scores[n] = float(stats.linregress(np.arange(len(seen)), seen).slope)

    def compute_pattern_weights(self, draws: list[list[int]]) -> None:
        consecutive = odd_even = total_sum = 0.0
        for row in draws:
            ordered = sorted(row)
            consecutive += sum(1 for a, b in zip(ordered, ordered[1:]) if b == a + 1)
            odd = sum(1 for n in row if n % 2 == 1)
            odd_even += abs(odd - (len(row) - odd))
            total_sum += sum(row)
        total = max(len(draws), 1)
        self.pattern_weights = {
            "consecutive": consecutive / total,
            "odd_even": odd_even / total,
            "sum": total_sum / total,
        }

    def probability_scores(self) -> dict[int, float]:
        hot, cold = set(self.hot_numbers), set(self.cold_numbers)
        scores = {}
        for n in range(1, self.max_number + 1):
            score = self.frequency_distribution.get(n, 0.0) * self.config.hot_cold_weight
            score += self.trend_scores.get(n, 0.0) * self.config.trend_weight
            if n in hot:
                score += HOT_BONUS
            if n in cold:
                score -= COLD_PENALTY
            scores[n] = max(score, 0.0)
        return scores

    def train(self, data: TrainingData, config: AlgorithmConfig) -> float:
        self._validate_training_data(data)
        self._apply_common_config(config)

        draws = data.targets
        logger.info("Training statistical model on {} draws", len(draws))
        self.compute_frequencies(draws)
        self.identify_hot_cold(draws)
        self.compute_trends(draws)
        self.compute_pattern_weights(draws)
        self._fit_special_distribution(data)
        self._is_trained = True
        return self.evaluate(data).accuracy

    def _output(self) -> PredictionOutput:
        scores = self.probability_scores()
        numbers, _ = rank_numbers(
            list(scores), list(scores.values()), self.main_count, self.max_number
        )
        return PredictionOutput(
            predicted_numbers=numbers,
            predicted_special_numbers=self._predict_special_numbers(),
            confidence_scores=[self.config.confidence_threshold] * len(numbers),
            algorithm_metadata={
                "algorithm": self.algorithm_name,
                "hot_numbers": len(self.hot_numbers),
                "cold_numbers": len(self.cold_numbers),
                "pattern_weights": dict(self.pattern_weights),
            },
        )

    def _predict(self, input: PredictionInput) -> PredictionOutput:
        return self._output()

    def predict_samples(self, data: TrainingData) -> list[PredictionOutput | None]:
        self._require_trained()
        output = self._output()
        return [output.model_copy(deep=True) for _ in range(len(data))]

    def get_feature_importance(self) -> dict[str, float] | None:
        return {
            "hot_cold_weight": self.config.hot_cold_weight,
            "trend_weight": self.config.trend_weight,
            **self.pattern_weights,
        }

    def save_model(self, path: Path) -> None:
        self._require_trained()
        write_json(path, {
            **self._base_state(),
            "config": self.config.model_dump(),
            "frequency_distribution": self.frequency_distribution,
            "hot_numbers": self.hot_numbers,
            "cold_numbers": self.cold_numbers,
            "trend_scores": self.trend_scores,
            "pattern_weights": self.pattern_weights,
        })

    def load_model(self, path: Path) -> None:
        state = read_json(path)
        try:
            base = self._decode_base_state(state)
            config = StatisticalConfig.model_validate(state["config"])
            # JSON object keys come back as strings
            frequency = {int(k): float(v) for k, v in state["frequency_distribution"].items()}
            trend_scores = {int(k): float(v) for k, v in state["trend_scores"].items()}
            hot = [int(n) for n in state["hot_numbers"]]
            cold = [int(n) for n in state["cold_numbers"]]
            pattern_weights = dict(state["pattern_weights"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise AlgorithmError(f"Corrupt statistical snapshot {path}: {e}") from e
        self._restore_base_state(base)
        self.config = config
        self.frequency_distribution, self.trend_scores = frequency, trend_scores
        self.hot_numbers, self.cold_numbers = hot, cold
        self.pattern_weights = pattern_weights
        self._is_trained = True
