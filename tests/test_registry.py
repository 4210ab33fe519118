import asyncio

import pytest

from conftest import assert_valid_prediction, fast_models
from lottery_engine.errors import AlgorithmError
from lottery_engine.ml.inference.algorithm_factory import (
    ALGORITHM_METADATA,
    AlgorithmFactory,
    create_algorithm,
    majority_vote,
)
from lottery_engine.ml.inference.rw_lock import ReadWriteLock
from lottery_engine.ml.models.random_forest import RandomForestModel
from lottery_engine.ml.training.model_trainer import ModelTrainer
from lottery_engine.schemas.lottery import LotteryType
from lottery_engine.schemas.ml import AlgorithmConfig, EvaluationMetrics, PredictionOutput


def metrics(accuracy):
    return EvaluationMetrics(accuracy=accuracy)


def trained(name, training_data, algorithm_config):
    model = fast_models()[name]
    model.train(training_data, algorithm_config)
    return model


# ── factory ──────────────────────────────────────────────────────────


def test_create_known_and_unknown_algorithms():
    config = AlgorithmConfig(lottery_type=LotteryType.DLT, parameters={"n_estimators": 7, "bogus": 1})
    model = create_algorithm("random_forest", config)
    assert isinstance(model, RandomForestModel)
    assert model.config.n_estimators == 7
    assert model.lottery_type == LotteryType.DLT

    with pytest.raises(AlgorithmError, match="Unknown algorithm: magic"):
        create_algorithm("magic", config)


def test_metadata_describes_every_algorithm():
    assert set(ALGORITHM_METADATA) == {
        "random_forest", "neural_network", "lstm", "arima", "statistical", "hybrid",
    }
    assert ALGORITHM_METADATA["arima"].required_data_size == 50
    assert ALGORITHM_METADATA["lstm"].config_schema["sequence_length"]["default"] == 10

    factory = AlgorithmFactory()
    assert factory.is_algorithm_supported("lstm", LotteryType.PL5)
    assert not factory.is_algorithm_supported("lstm", LotteryType.CUSTOM)
    assert not factory.is_algorithm_supported("magic", LotteryType.SSQ)


def test_recommendations():
    assert AlgorithmFactory(LotteryType.SSQ).recommend_algorithms(100, 0.8) == ["random_forest", "arima"]
    assert AlgorithmFactory(LotteryType.CUSTOM).recommend_algorithms(10_000, 0.0) == []


async def test_registry_returns_independent_copies(training_data, algorithm_config):
    factory = AlgorithmFactory()
    assert await factory.get_model("statistical") is None

    model = trained("statistical", training_data, algorithm_config)
    await factory.register_model("statistical", model, metrics(0.5), algorithm_config)
    assert await factory.list_trained_algorithms() == ["statistical"]
    assert factory.get_model_info("statistical").metrics.accuracy == 0.5

    copy = await factory.get_model("statistical")
    assert copy is not model
    assert copy.is_trained()


async def test_rankings_keep_registration_order_on_ties(algorithm_config):
    factory = AlgorithmFactory()
    assert factory.get_best_algorithm_by_accuracy() is None
    for name, accuracy in [("arima", 0.6), ("statistical", 0.7), ("lstm", 0.6)]:
        await factory.register_model(name, fast_models()[name], metrics(accuracy), algorithm_config)

    assert factory.get_algorithm_rankings() == [("statistical", 0.7), ("arima", 0.6), ("lstm", 0.6)]
    assert factory.get_best_algorithm_by_accuracy() == "statistical"


async def test_factory_save_and_load(training_data, algorithm_config, ssq_input, tmp_path):
    factory = AlgorithmFactory()
    model = trained("random_forest", training_data, algorithm_config)
    await factory.register_model("random_forest", model, metrics(0.42), algorithm_config)
    await factory.save_model("random_forest", tmp_path)
    assert (tmp_path / "random_forest.json").exists()
    assert (tmp_path / "random_forest_model.json").exists()

    restored = AlgorithmFactory()
    await restored.load_model("random_forest", tmp_path)
    assert restored.get_model_info("random_forest").metrics.accuracy == 0.42
    loaded = await restored.get_model("random_forest")
    assert loaded.predict(ssq_input).predicted_numbers == model.predict(ssq_input).predicted_numbers


async def test_factory_persistence_errors(tmp_path):
    factory = AlgorithmFactory()
    with pytest.raises(AlgorithmError):
        await factory.save_model("random_forest", tmp_path)
    with pytest.raises(AlgorithmError):
        await factory.load_model("random_forest", tmp_path)


async def test_factory_compare(training_data, algorithm_config):
    factory = AlgorithmFactory()
    for name in ("random_forest", "statistical"):
        await factory.register_model(name, trained(name, training_data, algorithm_config), metrics(0.0), algorithm_config)
    comparison = await factory.compare_algorithms(training_data.subset(100, None))
    assert set(comparison) == {"random_forest", "statistical"}
    assert all(0.0 <= m.accuracy <= 1.0 for m in comparison.values())


async def test_factory_compare_skips_models_that_cannot_score(training_data, algorithm_config):
    factory = AlgorithmFactory()
    for name in ("random_forest", "lstm"):
        await factory.register_model(name, trained(name, training_data, algorithm_config), metrics(0.0), algorithm_config)
    # five rows are no longer than the LSTM sequence length, so it scores nothing
    comparison = await factory.compare_algorithms(training_data.subset(105, None))
    assert set(comparison) == {"random_forest"}


async def test_factory_ensemble_skips_missing_models(training_data, algorithm_config, ssq_input):
    factory = AlgorithmFactory()
    for name in ("random_forest", "statistical"):
        await factory.register_model(name, trained(name, training_data, algorithm_config), metrics(0.5), algorithm_config)

    output = await factory.ensemble_predict(["random_forest", "lstm", "statistical"], ssq_input)
    assert_valid_prediction(output)
    assert output.algorithm_metadata == {"method": "ensemble", "algorithms": "random_forest,statistical"}

    with pytest.raises(AlgorithmError):
        await factory.ensemble_predict(["lstm"], ssq_input)


def test_majority_vote_shares_and_specials():
    a = PredictionOutput(predicted_numbers=[1, 2, 3, 4, 5, 6], predicted_special_numbers=[9], confidence_scores=[0.1] * 6)
    b = PredictionOutput(predicted_numbers=[1, 2, 3, 7, 8, 9], predicted_special_numbers=[9], confidence_scores=[0.1] * 6)
    output = majority_vote([("x", a), ("y", b)], LotteryType.SSQ)
    assert output.predicted_numbers == [1, 2, 3, 4, 5, 6]
    assert output.confidence_scores == [1.0, 1.0, 1.0, 0.5, 0.5, 0.5]
    assert output.predicted_special_numbers == [9]

    fixed = majority_vote([("x", a)], LotteryType.SSQ, confidence=0.75)
    assert fixed.confidence_scores == [0.75] * 6


# ── trainer ──────────────────────────────────────────────────────────


async def test_trainer_collects_failures(training_data, algorithm_config):
    trainer = ModelTrainer(LotteryType.SSQ, algorithms=fast_models())
    accuracies, failures = await trainer.train_all_algorithms(training_data.subset(0, 30), algorithm_config)

    assert set(accuracies) == {"random_forest", "neural_network", "lstm", "statistical"}
    assert list(failures) == ["arima"]
    assert "Insufficient" in failures["arima"]
    assert sorted(trainer.list_trained_models()) == sorted(accuracies)
    assert not trainer.algorithms["random_forest"].is_trained()


async def test_trainer_unknown_algorithm(training_data, algorithm_config):
    trainer = ModelTrainer(algorithms=fast_models())
    with pytest.raises(AlgorithmError, match="not found"):
        await trainer.train_algorithm("magic", training_data, algorithm_config)


async def test_trainer_predicts_and_compares(training_data, algorithm_config, ssq_input):
    trainer = ModelTrainer(algorithms=fast_models())
    with pytest.raises(AlgorithmError, match="not trained"):
        await trainer.predict_with_algorithm("statistical", ssq_input)
    assert trainer.get_best_algorithm() is None

    await trainer.train_all_algorithms(training_data, algorithm_config, ["random_forest", "statistical"])
    assert_valid_prediction(await trainer.predict_with_algorithm("statistical", ssq_input))

    comparison = await trainer.compare_algorithms(training_data.subset(90, None))
    assert set(comparison) == {"random_forest", "statistical"}
    best = trainer.get_best_algorithm()
    assert comparison[best].accuracy == max(m.accuracy for m in comparison.values())
    assert trainer.get_model_performance(best) is comparison[best]


async def test_trainer_compare_skips_models_that_cannot_score(training_data, algorithm_config):
    trainer = ModelTrainer(algorithms=fast_models())
    await trainer.train_all_algorithms(training_data, algorithm_config, ["random_forest", "lstm"])
    comparison = await trainer.compare_algorithms(training_data.subset(105, None))
    assert set(comparison) == {"random_forest"}
    assert trainer.get_model_performance("lstm") is None
    assert trainer.get_best_algorithm() == "random_forest"


async def test_trainer_ensemble_uses_fixed_confidence(training_data, algorithm_config, ssq_input):
    trainer = ModelTrainer(algorithms=fast_models())
    await trainer.train_all_algorithms(training_data, algorithm_config, ["random_forest", "statistical"])
    output = await trainer.ensemble_predict(["random_forest", "statistical", "arima"], ssq_input)
    assert output.confidence_scores == [0.75] * 6
    with pytest.raises(AlgorithmError):
        await trainer.ensemble_predict(["arima"], ssq_input)


async def test_trainer_save_and_load_all(training_data, algorithm_config, ssq_input, tmp_path):
    trainer = ModelTrainer(algorithms=fast_models())
    await trainer.train_all_algorithms(training_data, algorithm_config, ["neural_network", "statistical"])
    await trainer.save_all_models(tmp_path)
    assert (tmp_path / "neural_network_ssq.pt").exists()
    assert (tmp_path / "statistical_ssq.json").exists()

    restored = ModelTrainer(algorithms=fast_models())
    assert sorted(await restored.load_all_models(tmp_path)) == ["neural_network", "statistical"]
    before = await trainer.predict_with_algorithm("neural_network", ssq_input)
    after = await restored.predict_with_algorithm("neural_network", ssq_input)
    assert after.predicted_numbers == before.predicted_numbers


# ── read/write lock ──────────────────────────────────────────────────


async def test_readers_share_the_lock():
    lock = ReadWriteLock()
    inside = []

    async def reader(tag):
        async with lock.read():
            inside.append(tag)
            await asyncio.sleep(0.01)
            assert len(inside) == 2

    await asyncio.gather(reader("a"), reader("b"))


async def test_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock()
    order = []

    async def writer():
        async with lock.write():
            order.append("write")

    async def reader():
        async with lock.read():
            order.append("read")

    async with lock.read():
        w = asyncio.create_task(writer())
        await asyncio.sleep(0.01)
        r = asyncio.create_task(reader())
        await asyncio.sleep(0.01)
        assert order == []
    await asyncio.gather(w, r)
    assert order == ["write", "read"]
