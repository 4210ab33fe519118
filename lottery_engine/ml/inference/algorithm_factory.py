"""Algorithm factory — builds models by name and keeps the trained ones."""

import json
from datetime import datetime
from pathlib import Path

from loguru import logger

from lottery_engine.errors import AlgorithmError, LotteryError
from lottery_engine.ml.inference.rw_lock import ReadWriteLock
from lottery_engine.ml.models.arima_model import ArimaConfig, ArimaModel
from lottery_engine.ml.models.base_model import PredictionAlgorithm, rank_numbers
from lottery_engine.ml.models.hybrid_ensemble import HybridConfig, HybridEnsembleModel
from lottery_engine.ml.models.lstm_model import LstmConfig, LstmModel
from lottery_engine.ml.models.neural_network import NeuralNetworkConfig, NeuralNetworkModel
from lottery_engine.ml.models.random_forest import RandomForestConfig, RandomForestModel
from lottery_engine.ml.models.statistical_model import StatisticalConfig, StatisticalModel
from lottery_engine.schemas.lottery import (
    LotteryType,
    main_count,
    max_number,
    special_count,
    special_max,
)
from lottery_engine.schemas.ml import (
    AlgorithmConfig,
    AlgorithmMetadata,
    EvaluationMetrics,
    ModelInfo,
    PredictionInput,
    PredictionOutput,
    TrainingData,
)

# name -> (model class, config class)
MODEL_CLASSES = {
    "random_forest": (RandomForestModel, RandomForestConfig),
    "neural_network": (NeuralNetworkModel, NeuralNetworkConfig),
    "lstm": (LstmModel, LstmConfig),
    "arima": (ArimaModel, ArimaConfig),
    "statistical": (StatisticalModel, StatisticalConfig),
    "hybrid": (HybridEnsembleModel, HybridConfig),
}

SUPPORTED_TYPES = [
    LotteryType.SSQ, LotteryType.DLT, LotteryType.FC3D, LotteryType.PL3, LotteryType.PL5,
]

_DESCRIPTIONS = {
    "random_forest": ("Bootstrap-aggregated Gini decision trees", 100, (0.65, 0.85)),
    "neural_network": ("Feed-forward multi-label network", 500, (0.70, 0.90)),
    "lstm": ("Stacked LSTM over recent feature windows", 1000, (0.75, 0.92)),
    "arima": ("ARIMA forecast of the draw sum", 50, (0.60, 0.80)),
    "statistical": ("Frequency, hot/cold and trend scoring", 30, (0.55, 0.75)),
    "hybrid": ("Voting ensemble of all base models", 1000, (0.80, 0.95)),
}


def _config_schema(config_cls) -> dict:
    return {
        name: {"type": str(field.annotation), "default": field.default}
        for name, field in config_cls.model_fields.items()
    }


ALGORITHM_METADATA: dict[str, AlgorithmMetadata] = {
    name: AlgorithmMetadata(
        name=name,
        description=description,
        supported_lottery_types=SUPPORTED_TYPES,
        required_data_size=size,
        accuracy_range=accuracy_range,
        config_schema=_config_schema(MODEL_CLASSES[name][1]),
    )
    for name, (description, size, accuracy_range) in _DESCRIPTIONS.items()
}


def create_algorithm(algorithm_name: str, config: AlgorithmConfig) -> PredictionAlgorithm:
    """Instantiate ``algorithm_name`` with options taken from ``config``."""
    entry = MODEL_CLASSES.get(algorithm_name)
    if entry is None:
        raise AlgorithmError(f"Unknown algorithm: {algorithm_name}")
    model_cls, config_cls = entry
    return model_cls(config_cls.from_options(config.merged()), lottery_type=config.lottery_type)


def majority_vote(
    predictions: list[tuple[str, PredictionOutput]],
    lottery_type: LotteryType,
    confidence: float | None = None,
) -> PredictionOutput:
    """Top numbers by vote count across ``predictions``.

    Confidence is the vote share unless a fixed ``confidence`` is given.
    """
    votes: dict[int, int] = {}
    special_votes: dict[int, int] = {}
    for _, output in predictions:
        for n in output.predicted_numbers:
            votes[n] = votes.get(n, 0) + 1
        for n in output.predicted_special_numbers or []:
            special_votes[n] = special_votes.get(n, 0) + 1

    shares = [v / len(predictions) for v in votes.values()]
    numbers, confidences = rank_numbers(
        list(votes), shares, main_count(lottery_type), max_number(lottery_type)
    )
    if confidence is not None:
        confidences = [confidence] * len(numbers)

    specials = None
    if special_count(lottery_type) > 0:
        specials, _ = rank_numbers(
            list(special_votes), list(special_votes.values()),
            special_count(lottery_type), special_max(lottery_type),
        )

    return PredictionOutput(
        predicted_numbers=numbers,
        predicted_special_numbers=specials,
        confidence_scores=confidences,
        algorithm_metadata={
            "method": "ensemble",
            "algorithms": ",".join(name for name, _ in predictions),
        },
    )


class AlgorithmFactory:
    """Registry of trained models and their ModelInfo for one lottery variant."""

    def __init__(self, lottery_type: LotteryType = LotteryType.SSQ):
        self.lottery_type = LotteryType(lottery_type)
        self.available_algorithms = dict(ALGORITHM_METADATA)
        self._trained: dict[str, PredictionAlgorithm] = {}
        self._registry: dict[str, ModelInfo] = {}
        self._lock = ReadWriteLock()

    def create_algorithm(self, algorithm_name: str, config: AlgorithmConfig) -> PredictionAlgorithm:
        return create_algorithm(algorithm_name, config)

    async def register_model(
        self,
        algorithm_name: str,
        model: PredictionAlgorithm,
        metrics: EvaluationMetrics,
        config: AlgorithmConfig,
    ) -> None:
        info = ModelInfo(
            algorithm_name=algorithm_name,
            lottery_type=self.lottery_type,
            trained_at=datetime.now(),
            metrics=metrics,
            config=config,
        )
        async with self._lock.write():
            self._trained[algorithm_name] = model
            self._registry[algorithm_name] = info
        logger.info("Registered {} for {} (accuracy={:.4f})", algorithm_name, self.lottery_type.value, metrics.accuracy)

    async def get_model(self, algorithm_name: str) -> PredictionAlgorithm | None:
        """Independent copy of a registered model, or None."""
        async with self._lock.read():
            model = self._trained.get(algorithm_name)
            return model.box_clone() if model is not None else None

    def get_model_info(self, algorithm_name: str) -> ModelInfo | None:
        return self._registry.get(algorithm_name)

    async def list_available_algorithms(self) -> list[str]:
        return list(self.available_algorithms)

    async def list_trained_algorithms(self) -> list[str]:
        async with self._lock.read():
            return list(self._trained)

    def get_algorithm_metadata(self, algorithm_name: str) -> AlgorithmMetadata | None:
        return self.available_algorithms.get(algorithm_name)

    def is_algorithm_supported(self, algorithm_name: str, lottery_type: LotteryType) -> bool:
        metadata = self.available_algorithms.get(algorithm_name)
        return metadata is not None and LotteryType(lottery_type) in metadata.supported_lottery_types

    def recommend_algorithms(self, data_size: int, target_accuracy: float) -> list[str]:
        return [
            name
            for name, metadata in self.available_algorithms.items()
            if self.lottery_type in metadata.supported_lottery_types
            and metadata.required_data_size <= data_size
            and metadata.accuracy_range[1] >= target_accuracy
        ]

    # ── persistence ──────────────────────────────────────────────────

    @staticmethod
    def _paths(algorithm_name: str, directory: Path, model: PredictionAlgorithm) -> tuple[Path, Path]:
        directory = Path(directory)
        return (
            directory / f"{algorithm_name}.json",
            directory / f"{algorithm_name}_model{model.artifact_suffix}",
        )

    async def save_model(self, algorithm_name: str, directory: Path) -> None:
        """Write ``{dir}/{name}.json`` (ModelInfo) next to the model artifact."""
        async with self._lock.read():
            model = self._trained.get(algorithm_name)
            info = self._registry.get(algorithm_name)
            if model is None or info is None:
                raise AlgorithmError(f"Model {algorithm_name} not trained or found")
            info_path, model_path = self._paths(algorithm_name, directory, model)
            model.save_model(model_path)
            try:
                info_path.write_text(info.model_dump_json())
            except OSError as e:
                raise AlgorithmError(f"Failed to save model info to {info_path}: {e}") from e

    async def load_model(self, algorithm_name: str, directory: Path) -> None:
        info_path = Path(directory) / f"{algorithm_name}.json"
        try:
            info = ModelInfo.model_validate(json.loads(info_path.read_text()))
        except (OSError, ValueError) as e:
            raise AlgorithmError(f"Failed to load model info from {info_path}: {e}") from e

        model = self.create_algorithm(algorithm_name, info.config)
        _, model_path = self._paths(algorithm_name, directory, model)
        model.load_model(model_path)
        await self.register_model(algorithm_name, model, info.metrics, info.config)

    # ── comparison and ranking ───────────────────────────────────────

    async def compare_algorithms(self, test_data: TrainingData) -> dict[str, EvaluationMetrics]:
        """Evaluate every trained model; models that cannot score the set are skipped."""
        comparison = {}
        async with self._lock.read():
            for name, model in self._trained.items():
                try:
                    comparison[name] = model.evaluate(test_data)
                except LotteryError as e:
                    logger.warning("Comparison skipped {}: {}", name, e)
        return comparison

    def get_best_algorithm_by_accuracy(self) -> str | None:
        rankings = self.get_algorithm_rankings()
        return rankings[0][0] if rankings else None

    def get_algorithm_rankings(self) -> list[tuple[str, float]]:
        """(name, stored accuracy), best first; ties keep registration order."""
        return sorted(
            ((name, info.metrics.accuracy) for name, info in self._registry.items()),
            key=lambda item: -item[1],
        )

    async def ensemble_predict(self, algorithms: list[str], input: PredictionInput) -> PredictionOutput:
        """Majority vote over the named trained models; failing models are skipped."""
        predictions = []
        async with self._lock.read():
            for name in algorithms:
                model = self._trained.get(name)
                if model is None:
                    continue
                try:
                    predictions.append((name, model.predict(input)))
                except LotteryError as e:
                    logger.warning("Ensemble: {} failed to predict: {}", name, e)

        if not predictions:
            raise AlgorithmError("No models available for ensemble prediction")
        return majority_vote(predictions, self.lottery_type)
