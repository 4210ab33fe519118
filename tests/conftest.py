import random
from datetime import date, timedelta

import pytest

from lottery_engine.ml.features.feature_extractor import FeatureConfig, FeatureExtractor
from lottery_engine.ml.models.arima_model import ArimaModel
from lottery_engine.ml.models.lstm_model import LstmConfig, LstmModel
from lottery_engine.ml.models.neural_network import NeuralNetworkConfig, NeuralNetworkModel
from lottery_engine.ml.models.random_forest import RandomForestConfig, RandomForestModel
from lottery_engine.ml.models.statistical_model import StatisticalModel
from lottery_engine.schemas.lottery import (
    Drawing,
    LotteryType,
    main_count,
    max_number,
    special_count,
    special_max,
)
from lottery_engine.schemas.ml import AlgorithmConfig, PredictionInput

WINDOW = 10


def make_drawings(lottery_type=LotteryType.SSQ, n=120, seed=7, start=date(2023, 1, 1)):
    """Chronological random draws obeying the variant's pool sizes."""
    rng = random.Random(seed)
    drawings = []
    for i in range(n):
        specials = None
        if special_count(lottery_type):
            specials = sorted(rng.sample(range(1, special_max(lottery_type) + 1), special_count(lottery_type)))
        drawings.append(Drawing(
            lottery_type=lottery_type,
            draw_number=f"{i + 1:05d}",
            draw_date=start + timedelta(days=2 * i),
            winning_numbers=sorted(rng.sample(range(1, max_number(lottery_type) + 1), main_count(lottery_type))),
            special_numbers=specials,
        ))
    return drawings


def fast_models(lottery_type=LotteryType.SSQ):
    """Small configurations of every base model so tests train in seconds."""
    return {
        "random_forest": RandomForestModel(
            RandomForestConfig(n_estimators=5, max_depth=4), lottery_type=lottery_type
        ),
        "neural_network": NeuralNetworkModel(
            NeuralNetworkConfig(hidden_layers=[16], epochs=3), lottery_type=lottery_type
        ),
        "lstm": LstmModel(
            LstmConfig(hidden_size=8, num_layers=2, sequence_length=5, epochs=5),
            lottery_type=lottery_type,
        ),
        "arima": ArimaModel(lottery_type=lottery_type),
        "statistical": StatisticalModel(lottery_type=lottery_type),
    }


def prediction_input(drawings, lottery_type=LotteryType.SSQ):
    return PredictionInput(
        lottery_type=lottery_type,
        historical_data=drawings,
        target_date=drawings[-1].draw_date + timedelta(days=2),
    )


def assert_valid_prediction(output, lottery_type=LotteryType.SSQ):
    numbers = output.predicted_numbers
    assert len(numbers) == main_count(lottery_type)
    assert len(set(numbers)) == len(numbers)
    assert all(1 <= n <= max_number(lottery_type) for n in numbers)
    if special_count(lottery_type):
        specials = output.predicted_special_numbers
        assert specials is not None
        assert len(specials) == special_count(lottery_type)
        assert len(set(specials)) == len(specials)
        assert all(1 <= n <= special_max(lottery_type) for n in specials)
    else:
        assert output.predicted_special_numbers is None


@pytest.fixture
def feature_config():
    return FeatureConfig(window_size=WINDOW)


@pytest.fixture
def drawings():
    return make_drawings()


@pytest.fixture
def training_data(drawings, feature_config):
    return FeatureExtractor(feature_config).extract_features(drawings)


@pytest.fixture
def algorithm_config():
    return AlgorithmConfig(lottery_type=LotteryType.SSQ, feature_config={"window_size": WINDOW})


@pytest.fixture
def ssq_input(drawings):
    return prediction_input(drawings)
