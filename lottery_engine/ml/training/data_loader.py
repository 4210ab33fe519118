"""Data loader for ML training — turns draw history into TrainingData."""

from typing import Protocol

from lottery_engine.errors import InvalidParameterError
from lottery_engine.ml.features.feature_extractor import FeatureConfig, FeatureExtractor
from lottery_engine.schemas.lottery import Drawing, LotteryType
from lottery_engine.schemas.ml import TrainingData


class DrawingSource(Protocol):
    async def load_history(
        self, lottery_type: LotteryType, limit: int | None = None
    ) -> list[Drawing]:
        """Drawings for ``lottery_type`` in chronological order, newest last."""
        ...


class StaticDrawingSource:
    """In-memory drawings per lottery variant."""

    def __init__(self, drawings: dict[LotteryType, list[Drawing]] | None = None):
        self._drawings: dict[LotteryType, list[Drawing]] = {}
        for lottery_type, history in (drawings or {}).items():
            self.add(lottery_type, history)

    def add(self, lottery_type: LotteryType, drawings: list[Drawing]) -> None:
        lottery_type = LotteryType(lottery_type)
        merged = self._drawings.get(lottery_type, []) + list(drawings)
        self._drawings[lottery_type] = sorted(merged, key=lambda d: (d.draw_date, d.draw_number))

    async def load_history(
        self, lottery_type: LotteryType, limit: int | None = None
    ) -> list[Drawing]:
        history = self._drawings.get(LotteryType(lottery_type), [])
        return list(history[-limit:]) if limit else list(history)


async def load_training_data(
    source: DrawingSource,
    lottery_type: LotteryType,
    training_window: int | None = None,
    feature_config: FeatureConfig | None = None,
) -> tuple[TrainingData, list[Drawing]]:
    """Load the most recent ``training_window`` draws and extract features.

    Returns:
        (training_data, drawings)
    """
    drawings = await source.load_history(lottery_type, training_window)
    if not drawings:
        raise InvalidParameterError(f"No drawings available for {LotteryType(lottery_type).value}")
    data = FeatureExtractor(feature_config).extract_features(drawings)
    return data, drawings
