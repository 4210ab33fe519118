"""Model trainer — trains algorithms by name and keeps the results."""

from pathlib import Path

from loguru import logger

from lottery_engine.errors import AlgorithmError, LotteryError
from lottery_engine.ml.inference.algorithm_factory import (
    MODEL_CLASSES,
    create_algorithm,
    majority_vote,
)
from lottery_engine.ml.inference.rw_lock import ReadWriteLock
from lottery_engine.ml.models.base_model import PredictionAlgorithm
from lottery_engine.schemas.lottery import LotteryType
from lottery_engine.schemas.ml import (
    AlgorithmConfig,
    EvaluationMetrics,
    PredictionInput,
    PredictionOutput,
    TrainingData,
)

ENSEMBLE_CONFIDENCE = 0.75


class ModelTrainer:
    """Holds one untrained prototype per algorithm and the models trained from them."""

    def __init__(
        self,
        lottery_type: LotteryType = LotteryType.SSQ,
        algorithms: dict[str, PredictionAlgorithm] | None = None,
    ):
        self.lottery_type = LotteryType(lottery_type)
        if algorithms is None:
            config = AlgorithmConfig(lottery_type=self.lottery_type)
            algorithms = {name: create_algorithm(name, config) for name in MODEL_CLASSES}
        self.algorithms = algorithms
        self.trained_models: dict[str, PredictionAlgorithm] = {}
        self.model_performance: dict[str, EvaluationMetrics] = {}
        self._lock = ReadWriteLock()

    async def train_algorithm(
        self, algorithm_name: str, data: TrainingData, config: AlgorithmConfig
    ) -> float:
        prototype = self.algorithms.get(algorithm_name)
        if prototype is None:
            raise AlgorithmError(f"Algorithm {algorithm_name} not found")

        model = prototype.box_clone()
        async with self._lock.write():
            accuracy = model.train(data, config)
            self.trained_models[algorithm_name] = model
        logger.info("Trained {} for {}: accuracy={:.4f}", algorithm_name, self.lottery_type.value, accuracy)
        return accuracy

    async def train_all_algorithms(
        self,
        data: TrainingData,
        config: AlgorithmConfig,
        algorithm_names: list[str] | None = None,
    ) -> tuple[dict[str, float], dict[str, str]]:
        """Train each algorithm; failures are collected per name instead of raised."""
        accuracies: dict[str, float] = {}
        failures: dict[str, str] = {}
        for name in algorithm_names or list(self.algorithms):
            try:
                accuracies[name] = await self.train_algorithm(name, data, config)
            except LotteryError as e:
                logger.error("Failed to train {}: {}", name, e)
                failures[name] = str(e)
        return accuracies, failures

    def get_trained_model(self, algorithm_name: str) -> PredictionAlgorithm | None:
        return self.trained_models.get(algorithm_name)

    async def predict_with_algorithm(
        self, algorithm_name: str, input: PredictionInput
    ) -> PredictionOutput:
        async with self._lock.read():
            model = self.trained_models.get(algorithm_name)
            if model is None:
                raise AlgorithmError(f"Model {algorithm_name} not trained or found")
            return model.predict(input)

    async def compare_algorithms(self, test_data: TrainingData) -> dict[str, EvaluationMetrics]:
        comparison = {}
        async with self._lock.read():
            for name, model in self.trained_models.items():
                try:
                    comparison[name] = model.evaluate(test_data)
                except LotteryError as e:
                    logger.warning("Comparison skipped {}: {}", name, e)
        self.model_performance.update(comparison)
        return comparison

    def get_best_algorithm(self) -> str | None:
        if not self.model_performance:
            return None
        return max(self.model_performance, key=lambda name: self.model_performance[name].accuracy)

    def list_available_algorithms(self) -> list[str]:
        return list(self.algorithms)

    def list_trained_models(self) -> list[str]:
        return list(self.trained_models)

    def get_model_performance(self, algorithm_name: str) -> EvaluationMetrics | None:
        return self.model_performance.get(algorithm_name)

    # ── persistence ──────────────────────────────────────────────────

    def _artifact_path(self, directory: Path, name: str, model: PredictionAlgorithm) -> Path:
        return Path(directory) / f"{name}_{self.lottery_type.value}{model.artifact_suffix}"

    async def save_all_models(self, directory: Path) -> None:
        try:
            Path(directory).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AlgorithmError(f"Failed to create directory {directory}: {e}") from e
        async with self._lock.read():
            for name, model in self.trained_models.items():
                model.save_model(self._artifact_path(directory, name, model))

    async def load_all_models(self, directory: Path) -> list[str]:
        """Load every artifact present in ``directory``; returns the loaded names."""
        loaded = []
        async with self._lock.write():
            for name, prototype in self.algorithms.items():
                path = self._artifact_path(directory, name, prototype)
                if not path.exists():
                    continue
                model = prototype.box_clone()
                model.load_model(path)
                self.trained_models[name] = model
                loaded.append(name)
        logger.info("Loaded {} model(s) from {}", len(loaded), directory)
        return loaded

    async def ensemble_predict(self, algorithms: list[str], input: PredictionInput) -> PredictionOutput:
        predictions = []
        async with self._lock.read():
            for name in algorithms:
                model = self.trained_models.get(name)
                if model is None:
                    continue
                try:
                    predictions.append((name, model.predict(input)))
                except LotteryError as e:
                    logger.warning("Ensemble: {} failed to predict: {}", name, e)

        if not predictions:
            raise AlgorithmError("No valid predictions from specified algorithms")
        return majority_vote(predictions, self.lottery_type, confidence=ENSEMBLE_CONFIDENCE)
