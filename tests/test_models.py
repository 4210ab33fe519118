import math

import numpy as np
import pytest
import torch

from conftest import WINDOW, assert_valid_prediction, fast_models, make_drawings, prediction_input
from lottery_engine.errors import AlgorithmError, InvalidParameterError
from lottery_engine.ml.evaluation import compute_metrics
from lottery_engine.ml.features.feature_extractor import FeatureConfig, FeatureExtractor
from lottery_engine.ml.features.scaling import scale
from lottery_engine.ml.models.base_model import rank_numbers, read_json, write_json
from lottery_engine.ml.models.checkpoint import generator_for, load_checkpoint, save_checkpoint
from lottery_engine.ml.models.lstm_model import LstmConfig, LstmModel, LstmNet
from lottery_engine.ml.models.neural_network import NeuralNetworkConfig, NeuralNetworkModel
from lottery_engine.ml.models.random_forest import RandomForestConfig, RandomForestModel
from lottery_engine.ml.models.statistical_model import StatisticalModel
from lottery_engine.schemas.lottery import LotteryType
from lottery_engine.schemas.ml import AlgorithmConfig, PredictionOutput, TrainingData

BASE_MODELS = ["random_forest", "neural_network", "lstm", "arima", "statistical"]


def test_rank_numbers_filters_dedupes_and_pads():
    numbers, confidences = rank_numbers([5, 40, 5, 2], [0.9, 0.8, 0.7, 0.1], 4, 33)
    assert numbers == [5, 2, 1, 3]
    assert confidences == [0.9, 0.1, 0.0, 0.0]


def test_rank_numbers_ties_keep_input_order():
    numbers, _ = rank_numbers([7, 3, 9], [0.5, 0.5, 0.5], 2, 10)
    assert numbers == [7, 3]


def test_compute_metrics_counts_hits_and_skips_missing():
    output = PredictionOutput(predicted_numbers=[1, 2, 3, 4, 5, 6], confidence_scores=[0.5] * 6)
    metrics = compute_metrics([None, output], [[1, 2, 3, 4, 5, 6], [1, 2, 3, 10, 11, 12]])
    assert metrics.accuracy == pytest.approx(0.5)
    assert metrics.precision == pytest.approx(0.5)
    assert metrics.recall == pytest.approx(0.5)
    assert metrics.f1_score == pytest.approx(0.5)
    assert metrics.mean_absolute_error == pytest.approx(3.0)
    assert metrics.root_mean_squared_error == pytest.approx(math.sqrt(18.0))


def test_compute_metrics_without_scored_samples_fails():
    with pytest.raises(AlgorithmError):
        compute_metrics([None], [[1, 2, 3]])


@pytest.mark.parametrize("name", BASE_MODELS)
def test_predict_before_train_fails(name, ssq_input):
    model = fast_models()[name]
    assert not model.is_trained()
    with pytest.raises(AlgorithmError, match="not trained"):
        model.predict(ssq_input)


@pytest.mark.parametrize("name", BASE_MODELS)
def test_empty_training_data_rejected(name, algorithm_config):
    with pytest.raises(InvalidParameterError):
        fast_models()[name].train(TrainingData(features=[], targets=[]), algorithm_config)


@pytest.mark.parametrize("name", BASE_MODELS)
def test_trained_model_predicts_valid_numbers(name, training_data, algorithm_config, ssq_input):
    model = fast_models()[name]
    accuracy = model.train(training_data, algorithm_config)
    assert model.is_trained()
    assert np.isfinite(accuracy)

    output = model.predict(ssq_input)
    assert_valid_prediction(output)
    assert len(output.confidence_scores) == len(output.predicted_numbers)
    assert output.algorithm_metadata["algorithm"] == name


@pytest.mark.parametrize("name", BASE_MODELS)
def test_save_load_round_trip(name, training_data, algorithm_config, ssq_input, tmp_path):
    model = fast_models()[name]
    model.train(training_data, algorithm_config)
    path = tmp_path / f"{name}{model.artifact_suffix}"
    model.save_model(path)

    restored = type(model)()
    restored.load_model(path)
    assert restored.is_trained()
    before, after = model.predict(ssq_input), restored.predict(ssq_input)
    assert after.predicted_numbers == before.predicted_numbers
    assert after.predicted_special_numbers == before.predicted_special_numbers
    assert after.confidence_scores == pytest.approx(before.confidence_scores)


@pytest.mark.parametrize("name", BASE_MODELS)
def test_save_before_train_fails(name, tmp_path):
    with pytest.raises(AlgorithmError):
        fast_models()[name].save_model(tmp_path / "model.bin")


def test_load_missing_file_fails(tmp_path):
    with pytest.raises(AlgorithmError):
        RandomForestModel().load_model(tmp_path / "missing.json")
    with pytest.raises(AlgorithmError):
        NeuralNetworkModel().load_model(tmp_path / "missing.pt")


def test_load_rejects_other_algorithm_snapshot(training_data, algorithm_config, tmp_path):
    model = StatisticalModel()
    model.train(training_data, algorithm_config)
    model.save_model(tmp_path / "stat.json")
    with pytest.raises(AlgorithmError):
        RandomForestModel().load_model(tmp_path / "stat.json")


MODEL_SPECIFIC_KEY = {
    "random_forest": "trees",
    "neural_network": "scaler",
    "lstm": "classes",
    "arima": "residuals",
    "statistical": "trend_scores",
}


@pytest.mark.parametrize("name", BASE_MODELS)
def test_failed_load_leaves_model_untouched(name, training_data, algorithm_config, ssq_input, tmp_path):
    model = fast_models()[name]
    model.train(training_data, algorithm_config)
    before = model.predict(ssq_input)
    path = tmp_path / f"{name}{model.artifact_suffix}"
    model.save_model(path)

    torch_snapshot = model.artifact_suffix == ".pt"
    state = load_checkpoint(path) if torch_snapshot else read_json(path)
    state["lottery_type"] = "dlt"
    state["feature_config"]["window_size"] = 3
    del state[MODEL_SPECIFIC_KEY[name]]
    if torch_snapshot:
        save_checkpoint(path, state)
    else:
        write_json(path, state)

    with pytest.raises(AlgorithmError, match="Corrupt"):
        model.load_model(path)
    assert model.is_trained()
    assert model.lottery_type == LotteryType.SSQ
    assert model.feature_config.window_size == WINDOW
    after = model.predict(ssq_input)
    assert after.predicted_numbers == before.predicted_numbers
    assert after.predicted_special_numbers == before.predicted_special_numbers


def test_box_clone_is_independent(training_data, algorithm_config, ssq_input):
    model = fast_models()["random_forest"]
    model.train(training_data, algorithm_config)
    clone = model.box_clone()
    clone.trees = []
    assert model.trees
    assert model.predict(ssq_input).predicted_numbers


def test_prediction_for_other_variant_fails(training_data, algorithm_config, drawings):
    model = StatisticalModel()
    model.train(training_data, algorithm_config)
    with pytest.raises(AlgorithmError):
        model.predict(prediction_input(drawings, LotteryType.DLT))


@pytest.mark.parametrize(
    "lottery_type",
    [LotteryType.SSQ, LotteryType.DLT, LotteryType.FC3D, LotteryType.PL3, LotteryType.PL5, LotteryType.CUSTOM],
)
@pytest.mark.parametrize("name", ["random_forest", "statistical"])
def test_every_variant_gets_valid_numbers(lottery_type, name):
    drawings = make_drawings(lottery_type, n=40)
    data = FeatureExtractor(FeatureConfig(window_size=10)).extract_features(drawings)
    model = fast_models(lottery_type)[name]
    model.train(data, AlgorithmConfig(lottery_type=lottery_type, feature_config={"window_size": 10}))
    assert_valid_prediction(model.predict(prediction_input(drawings, lottery_type)), lottery_type)


# ── random forest ────────────────────────────────────────────────────


def test_random_forest_on_fixed_label_rows(ssq_input):
    rng = np.random.default_rng(0)
    data = TrainingData(
        features=rng.random((100, 33)).tolist(),
        targets=[[1, 2, 3, 4, 5, 6]] * 100,
    )
    model = RandomForestModel(RandomForestConfig(n_estimators=10, max_depth=5))
    model.train(data, AlgorithmConfig(lottery_type=LotteryType.SSQ))

    assert model.is_trained()
    assert len(model.trees) == 10
    output = model.predict(ssq_input)
    assert sorted(output.predicted_numbers) == [1, 2, 3, 4, 5, 6]


def test_random_forest_needs_ten_samples(algorithm_config):
    data = TrainingData(features=[[0.0]] * 5, targets=[[1, 2, 3, 4, 5, 6]] * 5)
    with pytest.raises(AlgorithmError):
        RandomForestModel().train(data, algorithm_config)


def test_random_forest_trees_draw_distinct_feature_subsets(training_data, algorithm_config):
    model = RandomForestModel(RandomForestConfig(n_estimators=4, max_depth=2))
    model.train(training_data, algorithm_config)
    subsets = {tuple(t.feature_indices) for t in model.trees}
    assert len(subsets) > 1
    assert model.get_feature_importance() == {}


def test_algorithm_config_parameters_override_model_config(training_data):
    model = RandomForestModel(RandomForestConfig(n_estimators=5))
    config = AlgorithmConfig(
        lottery_type=LotteryType.SSQ,
        parameters={"n_estimators": 3, "max_depth": 2},
        feature_config={"window_size": 10},
    )
    model.train(training_data, config)
    assert len(model.trees) == 3
    assert model.config.max_depth == 2


# ── neural network ───────────────────────────────────────────────────


def test_neural_network_records_losses(training_data, algorithm_config):
    model = fast_models()["neural_network"]
    accuracy = model.train(training_data, algorithm_config)
    assert 0.65 <= accuracy <= 1.0
    assert 1 <= len(model.loss_history) <= 3
    assert len(model.validation_loss) == len(model.loss_history)
    assert model.output_size == 33


def test_neural_network_stops_after_patience_epochs(training_data, algorithm_config):
    # a zero learning rate keeps the loss flat, so only the first epoch improves
    model = NeuralNetworkModel(NeuralNetworkConfig(
        hidden_layers=[16], learning_rate=0.0, dropout_rate=0.0, epochs=50, patience=2,
    ))
    model.train(training_data, algorithm_config)
    assert len(model.loss_history) == 3


def test_neural_network_without_early_stopping_runs_every_epoch(training_data, algorithm_config):
    model = NeuralNetworkModel(NeuralNetworkConfig(
        hidden_layers=[16], learning_rate=0.0, dropout_rate=0.0, epochs=8, patience=2,
        early_stopping=False,
    ))
    model.train(training_data, algorithm_config)
    assert len(model.loss_history) == 8


def test_neural_network_dropout_is_off_at_inference(training_data, algorithm_config, ssq_input):
    model = NeuralNetworkModel(NeuralNetworkConfig(hidden_layers=[16], epochs=2, dropout_rate=0.5))
    model.train(training_data, algorithm_config)
    assert not model.net.training

    features = training_data.features[-1]
    assert np.array_equal(model.output_activations(features), model.output_activations(features))
    first, second = model.predict(ssq_input), model.predict(ssq_input)
    assert first.predicted_numbers == second.predicted_numbers
    assert first.confidence_scores == second.confidence_scores


def test_neural_network_honours_disabled_feature_scaling(training_data, ssq_input):
    model = fast_models()["neural_network"]
    config = AlgorithmConfig(
        lottery_type=LotteryType.SSQ,
        feature_config={"window_size": WINDOW, "feature_scaling": False},
    )
    model.train(training_data, config)
    X = np.asarray(training_data.features, dtype=np.float64)
    assert np.array_equal(scale(model.scaler, X), X)
    assert_valid_prediction(model.predict(ssq_input))


# ── lstm ─────────────────────────────────────────────────────────────


def test_lstm_needs_ten_sequences(algorithm_config):
    drawings = make_drawings(n=24)
    data = FeatureExtractor(FeatureConfig(window_size=10)).extract_features(drawings)
    model = LstmModel(LstmConfig(hidden_size=4, sequence_length=5, epochs=1))
    with pytest.raises(AlgorithmError, match="sequences"):
        model.train(data, algorithm_config)


def test_lstm_needs_sequence_length_history(training_data, algorithm_config, drawings):
    model = fast_models()["lstm"]
    model.train(training_data, algorithm_config)
    with pytest.raises(AlgorithmError):
        model.predict(prediction_input(drawings[:3]))


def test_lstm_samples_without_lookback_are_skipped(training_data, algorithm_config):
    model = fast_models()["lstm"]
    model.train(training_data, algorithm_config)
    samples = model.predict_samples(training_data)
    assert samples[:5] == [None] * 5
    assert all(s is not None for s in samples[5:])
    assert model.encoder.classes == sorted({n for row in training_data.targets for n in row})


def test_lstm_trains_only_the_output_projection(training_data, algorithm_config):
    model = fast_models()["lstm"]
    model.train(training_data, algorithm_config)
    fresh = LstmNet(model.input_size, 8, 2, len(model.encoder.classes), generator_for(42))
    for trained_cell, initial_cell in zip(model.net.cells, fresh.cells):
        assert torch.equal(trained_cell.weight_ih, initial_cell.weight_ih)
        assert torch.equal(trained_cell.weight_hh, initial_cell.weight_hh)
    assert not torch.equal(model.net.output.weight, fresh.output.weight)


# ── statistical ──────────────────────────────────────────────────────


def test_statistical_hot_cold_partition(training_data, algorithm_config):
    model = StatisticalModel()
    model.train(training_data, algorithm_config)
    assert len(model.hot_numbers) == 11
    assert len(model.cold_numbers) == 11
    assert not set(model.hot_numbers) & set(model.cold_numbers)
    assert set(model.pattern_weights) == {"consecutive", "odd_even", "sum"}
    assert sum(model.frequency_distribution.values()) == pytest.approx(1.0)


def test_statistical_trend_is_regression_slope(algorithm_config):
    # number 1 appears at draws 0, 2, 4, 6, 8 -> slope 2 against occurrence order
    targets = [[1, 2, 3, 4, 5, 6] if i % 2 == 0 else [7, 8, 9, 10, 11, 12] for i in range(10)]
    data = TrainingData(features=[[0.0]] * 10, targets=targets)
    model = StatisticalModel()
    model.train(data, algorithm_config)
    assert model.trend_scores[1] == pytest.approx(2.0)
    assert 13 not in model.trend_scores


def test_statistical_prediction_ignores_history(training_data, algorithm_config):
    model = StatisticalModel()
    model.train(training_data, algorithm_config)
    a = model.predict(prediction_input(make_drawings(n=15, seed=1)))
    b = model.predict(prediction_input(make_drawings(n=15, seed=2)))
    assert a.predicted_numbers == b.predicted_numbers
    assert a.confidence_scores == [0.6] * 6
