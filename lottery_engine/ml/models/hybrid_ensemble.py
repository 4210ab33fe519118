"""Hybrid ensemble — combines the five base models by voting."""

from pathlib import Path

import numpy as np
from loguru import logger

from lottery_engine.errors import AlgorithmError, LotteryError
from lottery_engine.ml.evaluation import hit_rate
from lottery_engine.ml.models.arima_model import ArimaModel
from lottery_engine.ml.models.base_model import (
    PredictionAlgorithm,
    rank_numbers,
    read_json,
    write_json,
)
from lottery_engine.ml.models.lstm_model import LstmModel
from lottery_engine.ml.models.neural_network import NeuralNetworkModel
from lottery_engine.ml.models.random_forest import RandomForestModel
from lottery_engine.ml.models.statistical_model import StatisticalModel
from lottery_engine.schemas.lottery import LotteryType, special_count, special_max
from lottery_engine.schemas.ml import (
    AlgorithmConfig,
    LooseConfig,
    PredictionInput,
    PredictionOutput,
    TrainingData,
)

MODEL_ORDER = ["random_forest", "neural_network", "lstm", "arima", "statistical"]

# (rf, nn, lstm, arima, statistical)
WEIGHT_CANDIDATES = [
    (0.30, 0.20, 0.20, 0.15, 0.15),
    (0.25, 0.25, 0.20, 0.15, 0.15),
    (0.20, 0.25, 0.25, 0.15, 0.15),
    (0.20, 0.20, 0.20, 0.20, 0.20),
    (0.35, 0.20, 0.15, 0.15, 0.15),
]

TRAIN_FRACTION = 0.8
ENSEMBLE_BOOST = 1.1
VOTING_METHODS = ("weighted", "majority", "consensus")

Prediction = tuple[str, PredictionOutput]


class HybridConfig(LooseConfig):
    ensemble_weights: dict[str, float] = {
        "random_forest": 0.25,
        "neural_network": 0.20,
        "lstm": 0.20,
        "arima": 0.15,
        "statistical": 0.20,
    }
    voting_method: str = "weighted"
    diversity_weight: float = 0.1


def default_models(lottery_type: LotteryType) -> dict[str, PredictionAlgorithm]:
    return {
        "random_forest": RandomForestModel(lottery_type=lottery_type),
        "neural_network": NeuralNetworkModel(lottery_type=lottery_type),
        "lstm": LstmModel(lottery_type=lottery_type),
        "arima": ArimaModel(lottery_type=lottery_type),
        "statistical": StatisticalModel(lottery_type=lottery_type),
    }


class HybridEnsembleModel(PredictionAlgorithm):
    """Weighted, majority or consensus vote over the trained base models.

    Weights are picked from a small fixed grid by voting accuracy on the
    trailing 20% of the training rows.
    """

    algorithm_name = "hybrid"
    display_name = "Hybrid Ensemble"

    def __init__(
        self,
        config: HybridConfig | None = None,
        lottery_type: LotteryType = LotteryType.SSQ,
        models: dict[str, PredictionAlgorithm] | None = None,
    ):
        super().__init__(lottery_type)
        self.config = config or HybridConfig()
        self.models = models if models is not None else default_models(self.lottery_type)
        self.model_accuracies: dict[str, float] = {}

    def _weight(self, name: str) -> float:
        return self.config.ensemble_weights.get(name, 1.0)

    # ── voting ───────────────────────────────────────────────────────

    @staticmethod
    def _mean_confidence(output: PredictionOutput) -> float:
        scores = output.confidence_scores
        return sum(scores) / len(scores) if scores else 0.0

    def weighted_voting(self, predictions: list[Prediction]) -> dict[int, float]:
        scores: dict[int, float] = {}
        total = 0.0
        for name, output in predictions:
            contribution = self._weight(name) * self._mean_confidence(output)
            total += contribution
            for n in output.predicted_numbers:
                scores[n] = scores.get(n, 0.0) + contribution
        if total > 0:
            scores = {n: s / total for n, s in scores.items()}
        return scores

    @staticmethod
    def majority_voting(predictions: list[Prediction]) -> dict[int, float]:
        votes: dict[int, int] = {}
        for _, output in predictions:
            for n in output.predicted_numbers:
                votes[n] = votes.get(n, 0) + 1
        return {n: v / len(predictions) for n, v in votes.items()}

    def consensus_voting(self, predictions: list[Prediction]) -> dict[int, float]:
        scores: dict[int, float] = {}
        for name, output in predictions:
            for n in output.predicted_numbers:
                score = self._weight(name)
                for other_name, other in predictions:
                    if other_name != name and n in other.predicted_numbers:
                        score += self._weight(other_name) * self.config.diversity_weight
                scores[n] = scores.get(n, 0.0) + score
        return scores

    def vote_specials(self, predictions: list[Prediction]) -> list[int] | None:
        count = special_count(self.lottery_type)
        if count == 0:
            return None
        scores: dict[int, float] = {}
        for name, output in predictions:
            for n in output.predicted_special_numbers or []:
                scores[n] = scores.get(n, 0.0) + self._weight(name)
        top = special_max(self.lottery_type)
        numbers, _ = rank_numbers(list(scores), list(scores.values()), count, top)
        return numbers

    def combine(self, predictions: list[Prediction], method: str | None = None) -> PredictionOutput:
        """Merge per-model outputs into one prediction."""
        if not predictions:
            raise AlgorithmError("No model produced a prediction for the ensemble")
        method = method or self.config.voting_method
        if method == "majority":
            scores = self.majority_voting(predictions)
        elif method == "consensus":
            scores = self.consensus_voting(predictions)
        else:
            scores = self.weighted_voting(predictions)

        numbers, confidences = rank_numbers(
            list(scores), list(scores.values()), self.main_count, self.max_number
        )
        weights = [self._weight(name) for name, _ in predictions]
        ensemble_confidence = sum(
            w * self._mean_confidence(o) for w, (_, o) in zip(weights, predictions)
        ) / (sum(weights) or 1.0)

        return PredictionOutput(
            predicted_numbers=numbers,
            predicted_special_numbers=self.vote_specials(predictions),
            confidence_scores=confidences,
            algorithm_metadata={
                "algorithm": self.algorithm_name,
                "voting_method": method if method in VOTING_METHODS else "weighted",
                "models_used": [name for name, _ in predictions],
                "ensemble_confidence": ensemble_confidence,
            },
        )

    # ── training ─────────────────────────────────────────────────────

    def _trained_models(self) -> list[tuple[str, PredictionAlgorithm]]:
        return [(name, m) for name, m in self.models.items() if m.is_trained()]

    def _sample_predictions(self, data: TrainingData) -> dict[str, list[PredictionOutput | None]]:
        samples = {}
        for name, model in self._trained_models():
            try:
                samples[name] = model.predict_samples(data)
            except LotteryError as e:
                logger.warning("Ensemble: {} failed on validation rows: {}", name, e)
        return samples

    def _voting_accuracy(
        self, samples: dict[str, list[PredictionOutput | None]], targets: list[list[int]]
    ) -> float:
        hits = []
        for j, target in enumerate(targets):
            row = [(name, outputs[j]) for name, outputs in samples.items() if outputs[j] is not None]
            if row:
                hits.append(hit_rate(self.combine(row).predicted_numbers, target))
        return float(np.mean(hits)) if hits else 0.0

    def optimize_weights(self, validation: TrainingData) -> dict[str, float]:
        """Grid search over the fixed weight candidates; first strict improvement wins."""
        samples = self._sample_predictions(validation)
        if not samples:
            return self.config.ensemble_weights

        best_weights = dict(self.config.ensemble_weights)
        best_accuracy = 0.0
        for candidate in WEIGHT_CANDIDATES:
            self.config.ensemble_weights = dict(zip(MODEL_ORDER, candidate))
            accuracy = self._voting_accuracy(samples, validation.targets)
            logger.debug("Ensemble weights {} -> accuracy {:.4f}", candidate, accuracy)
            if accuracy > best_accuracy:
                best_accuracy, best_weights = accuracy, dict(self.config.ensemble_weights)

        self.config.ensemble_weights = best_weights
        return best_weights

    def train(self, data: TrainingData, config: AlgorithmConfig) -> float:
        self._validate_training_data(data)
        self._apply_common_config(config)

        self.model_accuracies = {}
        for name, model in self.models.items():
            try:
                self.model_accuracies[name] = model.train(data, config)
                logger.info("Ensemble member {} trained, accuracy={:.4f}", name, self.model_accuracies[name])
            except LotteryError as e:
                logger.warning("Ensemble member {} failed to train: {}", name, e)

        if not self.model_accuracies:
            raise AlgorithmError("No ensemble member could be trained")

        _, validation = data.split(TRAIN_FRACTION)
        if not validation.is_empty():
            self.optimize_weights(validation)

        self._is_trained = True
        return float(np.mean(list(self.model_accuracies.values()))) * ENSEMBLE_BOOST

    # ── inference ────────────────────────────────────────────────────

    def _predict(self, input: PredictionInput) -> PredictionOutput:
        predictions = []
        for name, model in self._trained_models():
            try:
                predictions.append((name, model.predict(input)))
            except LotteryError as e:
                logger.warning("Ensemble member {} failed to predict: {}", name, e)
        return self.combine(predictions)

    def predict_samples(self, data: TrainingData) -> list[PredictionOutput | None]:
        self._require_trained()
        samples = self._sample_predictions(data)
        outputs: list[PredictionOutput | None] = []
        for j in range(len(data)):
            row = [(name, out[j]) for name, out in samples.items() if out[j] is not None]
            outputs.append(self.combine(row) if row else None)
        return outputs

    def get_feature_importance(self) -> dict[str, float] | None:
        return dict(self.config.ensemble_weights)

    # ── persistence ──────────────────────────────────────────────────

    def _member_path(self, path: Path, name: str, model: PredictionAlgorithm) -> Path:
        path = Path(path)
        return path.with_name(f"{path.stem}_{name}{model.artifact_suffix}")

    def save_model(self, path: Path) -> None:
        self._require_trained()
        trained = self._trained_models()
        for name, model in trained:
            model.save_model(self._member_path(path, name, model))
        write_json(path, {
            **self._base_state(),
            "config": self.config.model_dump(),
            "model_accuracies": self.model_accuracies,
            "trained_models": [name for name, _ in trained],
        })

    def load_model(self, path: Path) -> None:
        state = read_json(path)
        try:
            base = self._decode_base_state(state)
            config = HybridConfig.model_validate(state["config"])
            accuracies = {k: float(v) for k, v in state["model_accuracies"].items()}
            trained = list(state["trained_models"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise AlgorithmError(f"Corrupt hybrid snapshot {path}: {e}") from e

        models = default_models(base[0])
        for name in trained:
            if name not in models:
                raise AlgorithmError(f"Unknown ensemble member {name!r} in {path}")
            models[name].load_model(self._member_path(path, name, models[name]))

        self._restore_base_state(base)
        self.config, self.model_accuracies, self.models = config, accuracies, models
        self._is_trained = True
