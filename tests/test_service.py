import sys
from datetime import date

import pytest
from loguru import logger

from conftest import WINDOW, assert_valid_prediction, fast_models, make_drawings
from lottery_engine.config import settings
from lottery_engine.errors import AlgorithmError, InvalidParameterError
from lottery_engine.main import create_service
from lottery_engine.ml.features.feature_extractor import FeatureConfig
from lottery_engine.ml.training.data_loader import StaticDrawingSource, load_training_data
from lottery_engine.ml.training.model_trainer import ModelTrainer
from lottery_engine.services.prediction_service import PredictionService, derived_metrics
from lottery_engine.schemas.lottery import LotteryType


@pytest.fixture
def source(drawings):
    return StaticDrawingSource({LotteryType.SSQ: drawings})


@pytest.fixture
def service(source):
    return PredictionService(
        source,
        feature_config=FeatureConfig(window_size=WINDOW),
        trainers={LotteryType.SSQ: ModelTrainer(LotteryType.SSQ, algorithms=fast_models())},
    )


async def test_source_keeps_chronological_order(drawings):
    source = StaticDrawingSource()
    source.add(LotteryType.SSQ, list(reversed(drawings[50:])))
    source.add("ssq", drawings[:50])
    history = await source.load_history(LotteryType.SSQ)
    assert [d.draw_number for d in history] == [d.draw_number for d in drawings]
    assert (await source.load_history(LotteryType.SSQ, 5))[-1] == drawings[-1]
    assert await source.load_history(LotteryType.DLT) == []


async def test_load_training_data(source, feature_config):
    data, drawings = await load_training_data(source, LotteryType.SSQ, 30, feature_config)
    assert len(drawings) == 30
    assert len(data) == 30 - WINDOW

    with pytest.raises(InvalidParameterError):
        await load_training_data(source, LotteryType.DLT)


def test_derived_metrics():
    m = derived_metrics(0.8)
    assert m.precision == pytest.approx(0.76)
    assert m.recall == pytest.approx(0.784)
    assert m.cross_validation_scores == pytest.approx([0.76, 0.776, 0.768])


async def test_train_registers_models(service):
    response = await service.train(LotteryType.SSQ, ["random_forest", "statistical", "magic"])

    assert set(response.accuracies) == {"random_forest", "statistical"}
    assert "magic" in response.failures
    assert response.training_samples == 110
    assert sorted(await service.list_trained(LotteryType.SSQ)) == ["random_forest", "statistical"]

    comparisons = {c.algorithm_name: c for c in await service.compare(LotteryType.SSQ)}
    rf = comparisons["random_forest"]
    assert rf.accuracy == pytest.approx(response.accuracies["random_forest"])
    assert rf.precision == pytest.approx(rf.accuracy * 0.95)

    rankings = await service.rankings(LotteryType.SSQ)
    assert [name for name, _ in rankings] == sorted(
        response.accuracies, key=lambda name: -response.accuracies[name]
    )


async def test_train_without_names_counts_every_algorithm(service):
    response = await service.train(LotteryType.SSQ, [])
    attempted = len(response.accuracies) + len(response.failures)
    assert attempted == 5
    assert response.message == f"Trained {len(response.accuracies)} of 5 algorithms for ssq"


async def test_train_rejects_history_inside_feature_window(service):
    with pytest.raises(InvalidParameterError):
        await service.train(LotteryType.SSQ, ["statistical"], training_window=WINDOW)


async def test_predict_with_trained_and_untrained_models(service):
    await service.train(LotteryType.SSQ, ["random_forest", "statistical"])

    output = await service.predict(LotteryType.SSQ, "random_forest", history_window=60)
    assert_valid_prediction(output)

    with pytest.raises(AlgorithmError, match="not trained"):
        await service.predict(LotteryType.SSQ, "lstm")
    with pytest.raises(AlgorithmError, match="Unknown algorithm"):
        await service.predict(LotteryType.SSQ, "magic")
    with pytest.raises(InvalidParameterError):
        await service.predict(LotteryType.DLT, "statistical")


async def test_ensemble_prediction(service):
    await service.train(LotteryType.SSQ, ["random_forest", "statistical"])
    output = await service.predict(
        LotteryType.SSQ, "", use_ensemble=True, target_date=date(2024, 1, 6)
    )
    assert_valid_prediction(output)
    # neural_network is in the default set but was never trained
    assert output.algorithm_metadata["algorithms"] == "random_forest,statistical"


async def test_listing_and_recommendations(service):
    available = await service.list_available(LotteryType.SSQ)
    assert "hybrid" in available and len(available) == 6
    assert await service.recommend(LotteryType.SSQ, 100, 0.8) == ["random_forest", "arima"]


async def test_dlt_service_end_to_end():
    drawings = make_drawings(LotteryType.DLT, n=50)
    service = PredictionService(
        StaticDrawingSource({LotteryType.DLT: drawings}),
        feature_config=FeatureConfig(window_size=WINDOW),
        trainers={LotteryType.DLT: ModelTrainer(LotteryType.DLT, algorithms=fast_models(LotteryType.DLT))},
    )
    response = await service.train(LotteryType.DLT, ["statistical", "arima"])
    assert set(response.accuracies) == {"statistical"}
    assert_valid_prediction(await service.predict(LotteryType.DLT, "statistical"), LotteryType.DLT)


def test_create_service_configures_logging(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr(settings, "MODEL_ARTIFACTS_DIR", tmp_path / "artifacts")
    try:
        service = create_service()
        assert isinstance(service.source, StaticDrawingSource)
        assert (tmp_path / "artifacts").is_dir()
        assert (tmp_path / "logs" / "engine.log").exists()
    finally:
        logger.remove()
        logger.add(sys.stderr)
