"""Stacked LSTM over sliding windows of per-draw feature vectors.

Only the output projection is fitted. The recurrent cells keep their random
initialization, so the hidden states are a fixed random encoding of each
window and training reduces to a logistic readout on top of them.
"""

import math
from pathlib import Path

import numpy as np
import torch
import torch.nn as nn
from loguru import logger
from sklearn.preprocessing import StandardScaler

from lottery_engine.config import settings
from lottery_engine.errors import AlgorithmError
from lottery_engine.ml.features.feature_extractor import FeatureExtractor
from lottery_engine.ml.features.scaling import fit_scaler, scale, scaler_from_dict, scaler_to_dict
from lottery_engine.ml.models.base_model import PredictionAlgorithm, rank_numbers
from lottery_engine.ml.models.checkpoint import generator_for, load_checkpoint, save_checkpoint
from lottery_engine.schemas.lottery import LotteryType, special_count, special_max
from lottery_engine.schemas.ml import (
    AlgorithmConfig,
    LooseConfig,
    PredictionInput,
    PredictionOutput,
    TrainingData,
)

DTYPE = torch.float64
MIN_SEQUENCES = 10


class LstmConfig(LooseConfig):
    hidden_size: int = 128
    num_layers: int = 2
    sequence_length: int = 10
    learning_rate: float = 0.001
    epochs: int = 100
    dropout: float = 0.2
    early_stopping: bool = True
    patience: int = 10
    random_state: int = 42


class MultiHotEncoder:
    """Maps target number sets onto the sorted classes seen at fit time."""

    def __init__(self, classes: list[int] | None = None):
        self.classes = list(classes or [])

    def fit(self, targets: list[list[int]]) -> "MultiHotEncoder":
        self.classes = sorted({n for row in targets for n in row})
        return self

    def transform(self, targets: list[list[int]]) -> np.ndarray:
        index = {c: i for i, c in enumerate(self.classes)}
        encoded = np.zeros((len(targets), len(self.classes)), dtype=np.float64)
        for i, row in enumerate(targets):
            for n in row:
                if n in index:
                    encoded[i, index[n]] = 1.0
        return encoded


class LstmNet(nn.Module):
    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        num_layers: int,
        output_size: int,
        generator: torch.Generator | None = None,
    ):
        super().__init__()
        self.cells = nn.ModuleList()
        size = input_size
        for _ in range(num_layers):
            self.cells.append(nn.LSTMCell(size, hidden_size, dtype=DTYPE))
            size = hidden_size
        self.output = nn.Linear(hidden_size, output_size, dtype=DTYPE)

        with torch.no_grad():
            for cell in self.cells:
                cell.weight_ih.copy_(torch.randn(cell.weight_ih.shape, generator=generator, dtype=DTYPE))
                cell.weight_hh.copy_(torch.randn(cell.weight_hh.shape, generator=generator, dtype=DTYPE))
                cell.bias_ih.zero_()
                cell.bias_hh.zero_()
            self.output.weight.copy_(
                torch.randn(self.output.weight.shape, generator=generator, dtype=DTYPE)
                / math.sqrt(hidden_size)
            )
            self.output.bias.zero_()
        self.requires_grad_(False)

    def encode(self, x: torch.Tensor) -> torch.Tensor:
        """Last hidden state of the top layer; state starts at zero per sequence."""
        batch = x.shape[0]
        states = [
            (
                torch.zeros(batch, cell.hidden_size, dtype=DTYPE, device=x.device),
                torch.zeros(batch, cell.hidden_size, dtype=DTYPE, device=x.device),
            )
            for cell in self.cells
        ]
        for t in range(x.shape[1]):
            inp = x[:, t, :]
            for layer, cell in enumerate(self.cells):
                states[layer] = cell(inp, states[layer])
                inp = states[layer][0]
        return states[-1][0]

    def readout(self, hidden: torch.Tensor) -> torch.Tensor:
        return torch.sigmoid(self.output(hidden))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.readout(self.encode(x))


class LstmModel(PredictionAlgorithm):
    """Recurrent model over the last ``sequence_length`` feature vectors."""

    algorithm_name = "lstm"
    display_name = "LSTM"
    min_samples = 1
    artifact_suffix = ".pt"

    def __init__(
        self,
        config: LstmConfig | None = None,
        lottery_type: LotteryType = LotteryType.SSQ,
        device: str | None = None,
    ):
        super().__init__(lottery_type)
        self.config = config or LstmConfig()
        self.device = torch.device(device or settings.TORCH_DEVICE)
        self.net: LstmNet | None = None
        self.scaler: StandardScaler | None = None
        self.encoder = MultiHotEncoder()
        self.input_size = 0
        self.loss_history: list[float] = []

    def _build_net(self, generator: torch.Generator | None = None) -> LstmNet:
        return LstmNet(
            self.input_size,
            self.config.hidden_size,
            self.config.num_layers,
            len(self.encoder.classes),
            generator,
        ).to(self.device)

    def _sequences(self, scaled: np.ndarray) -> np.ndarray:
        """Windows features[i:i+L] for every i with a following target."""
        L = self.config.sequence_length
        n = max(0, len(scaled) - L)
        if n == 0:
            return np.zeros((0, L, scaled.shape[1]))
        return np.stack([scaled[i:i + L] for i in range(n)])

    def train(self, data: TrainingData, config: AlgorithmConfig) -> float:
        self._validate_training_data(data)
        self._apply_common_config(config)

        L = self.config.sequence_length
        if len(data) - L < MIN_SEQUENCES:
            raise AlgorithmError(
                f"Insufficient data for LSTM training: {max(0, len(data) - L)} sequences, "
                f"need at least {MIN_SEQUENCES}"
            )

        X_np = np.asarray(data.features, dtype=np.float64)
        self.scaler = fit_scaler(X_np, self.feature_config.feature_scaling)
        self.encoder = MultiHotEncoder().fit(data.targets)
        self.input_size = X_np.shape[1]

        X = torch.tensor(self._sequences(scale(self.scaler, X_np)), dtype=DTYPE, device=self.device)
        y = torch.tensor(self.encoder.transform(data.targets[L:]), dtype=DTYPE, device=self.device)

        generator = generator_for(self.config.random_state)
        self.net = self._build_net(generator)

        logger.info(
            "Training LSTM: {} sequences of length {}, hidden={}, layers={}",
            X.shape[0], L, self.config.hidden_size, self.config.num_layers,
        )

        with torch.no_grad():
            hidden = self.net.encode(X)
            weight = self.net.output.weight
            best_loss = math.inf
            patience_counter = 0
            self.loss_history = []
            p = self.config.dropout

            for epoch in range(self.config.epochs):
                h = hidden
                if p > 0:
                    keep = torch.rand(hidden.shape, generator=generator, dtype=DTYPE).to(self.device) >= p
                    h = torch.where(keep, hidden / (1.0 - p), torch.zeros_like(hidden))
                preds = self.net.readout(h)
                loss = float(torch.mean((preds - y) ** 2))
                # full-batch step on the output projection only
                weight.sub_(self.config.learning_rate * (preds - y).t() @ h)
                self.loss_history.append(loss)

                if loss < best_loss:
                    best_loss = loss
                    patience_counter = 0
                else:
                    patience_counter += 1
                if self.config.early_stopping and patience_counter >= self.config.patience:
                    logger.debug("Early stopping LSTM at epoch {}", epoch + 1)
                    break

            final = self.net.readout(hidden)
            accuracy = 1.0 - float(torch.mean((final - y) ** 2))

        self._fit_special_distribution(data)
        self._is_trained = True
        return accuracy

    # ── inference ────────────────────────────────────────────────────

    def output_activations(self, sequence: np.ndarray) -> np.ndarray:
        """Readout activations for one (sequence_length, n_features) window."""
        try:
            scaled = scale(self.scaler, sequence)
        except ValueError as e:
            raise AlgorithmError(f"LSTM input mismatch: {e}") from e
        x = torch.tensor(scaled[None, :, :], dtype=DTYPE, device=self.device)
        with torch.no_grad():
            return self.net(x)[0].cpu().numpy()

    def _special_numbers(self, activations: np.ndarray) -> list[int] | None:
        count = special_count(self.lottery_type)
        if count == 0:
            return None
        # ascending by the main-output activation at the same position
        candidates = list(range(1, special_max(self.lottery_type) + 1))
        key = {n: activations[n - 1] if n - 1 < len(activations) else 0.0 for n in candidates}
        candidates.sort(key=lambda n: key[n])
        return candidates[:count]

    def _output(self, activations: np.ndarray) -> PredictionOutput:
        numbers, confidences = rank_numbers(
            self.encoder.classes, activations.tolist(), self.main_count, self.max_number
        )
        return PredictionOutput(
            predicted_numbers=numbers,
            predicted_special_numbers=self._special_numbers(activations),
            confidence_scores=confidences,
            algorithm_metadata={
                "algorithm": self.algorithm_name,
                "sequence_length": self.config.sequence_length,
                "hidden_size": self.config.hidden_size,
                "num_layers": self.config.num_layers,
            },
        )

    def _predict(self, input: PredictionInput) -> PredictionOutput:
        history = input.historical_data
        L = self.config.sequence_length
        if len(history) < L:
            raise AlgorithmError(
                f"LSTM requires at least {L} historical draws, got {len(history)}"
            )

        extractor = FeatureExtractor(self.feature_config)
        window_size = self.feature_config.window_size
        rows = []
        for k in range(len(history) - L, len(history)):
            window = history[max(0, k - window_size):k]
            rows.append(extractor.extract_single_features(
                history[k].draw_date, window, self.lottery_type,
            ))
        return self._output(self.output_activations(np.asarray(rows, dtype=np.float64)))

    def predict_samples(self, data: TrainingData) -> list[PredictionOutput | None]:
        self._require_trained()
        L = self.config.sequence_length
        X = np.asarray(data.features, dtype=np.float64)
        outputs: list[PredictionOutput | None] = []
        for j in range(len(data)):
            if j < L:
                outputs.append(None)
            else:
                outputs.append(self._output(self.output_activations(X[j - L:j])))
        return outputs

    def get_feature_importance(self) -> dict[str, float] | None:
        return {
            "sequence_length": float(self.config.sequence_length),
            "hidden_size": float(self.config.hidden_size),
            "learning_rate": self.config.learning_rate,
        }

    # ── persistence ──────────────────────────────────────────────────

    def save_model(self, path: Path) -> None:
        self._require_trained()
        save_checkpoint(path, {
            **self._base_state(),
            "config": self.config.model_dump(),
            "model_state": self.net.state_dict(),
            "input_size": self.input_size,
            "classes": self.encoder.classes,
            "scaler": scaler_to_dict(self.scaler),
            "loss_history": self.loss_history,
        })

    def load_model(self, path: Path) -> None:
        checkpoint = load_checkpoint(path, self.device)
        try:
            base = self._decode_base_state(checkpoint)
            config = LstmConfig.model_validate(checkpoint["config"])
            input_size = int(checkpoint["input_size"])
            encoder = MultiHotEncoder([int(c) for c in checkpoint["classes"]])
            scaler = scaler_from_dict(checkpoint["scaler"])
            net = LstmNet(
                input_size, config.hidden_size, config.num_layers, len(encoder.classes),
            ).to(self.device)
            net.load_state_dict(checkpoint["model_state"])
            loss_history = list(checkpoint.get("loss_history", []))
        except (KeyError, TypeError, ValueError, RuntimeError) as e:
            raise AlgorithmError(f"Corrupt LSTM snapshot {path}: {e}") from e
        self._restore_base_state(base)
        self.config, self.input_size, self.encoder = config, input_size, encoder
        self.scaler, self.net = scaler, net
        self.loss_history = loss_history
        self._is_trained = True
