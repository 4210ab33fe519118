"""Feed-forward multi-label network trained with hand-written backpropagation."""

import math
from pathlib import Path

import numpy as np
import torch
import torch.nn as nn
from loguru import logger
from sklearn.preprocessing import StandardScaler

from lottery_engine.config import settings
from lottery_engine.errors import AlgorithmError
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
BCE_EPSILON = 1e-15


class NeuralNetworkConfig(LooseConfig):
    hidden_layers: list[int] = [256, 128, 64]
    activation: str = "relu"
    learning_rate: float = 0.001
    epochs: int = 200
    dropout_rate: float = 0.3
    regularization: float = 0.001
    early_stopping: bool = True
    patience: int = 20
    validation_split: float = 0.2
    random_state: int = 42


def activate(z: torch.Tensor, name: str) -> torch.Tensor:
    if name == "relu":
        return torch.clamp(z, min=0.0)
    if name == "sigmoid":
        return torch.sigmoid(z)
    if name == "tanh":
        return torch.tanh(z)
    if name == "leaky_relu":
        return torch.where(z > 0, z, 0.01 * z)
    if name == "elu":
        return torch.where(z > 0, z, torch.exp(z) - 1.0)
    return z


def activation_grad(z: torch.Tensor, name: str) -> torch.Tensor:
    if name == "relu":
        return (z > 0).to(z.dtype)
    if name == "sigmoid":
        s = torch.sigmoid(z)
        return s * (1.0 - s)
    if name == "tanh":
        return 1.0 - torch.tanh(z) ** 2
    if name == "leaky_relu":
        return torch.where(z > 0, torch.ones_like(z), torch.full_like(z, 0.01))
    if name == "elu":
        return torch.where(z > 0, torch.ones_like(z), torch.exp(z))
    return torch.ones_like(z)


def binary_cross_entropy(predictions: torch.Tensor, targets: torch.Tensor) -> float:
    p = predictions.clamp(BCE_EPSILON, 1.0 - BCE_EPSILON)
    loss = -(targets * torch.log(p) + (1.0 - targets) * torch.log(1.0 - p))
    return float(loss.mean())


class DenseLayer(nn.Module):
    """Affine layer with activation, inverted dropout, and a manual SGD step."""

    def __init__(
        self,
        in_features: int,
        out_features: int,
        activation: str,
        dropout: float,
        generator: torch.Generator | None = None,
    ):
        super().__init__()
        std = math.sqrt(2.0 / (in_features + out_features))
        weight = torch.randn(out_features, in_features, generator=generator, dtype=DTYPE) * std
        self.weight = nn.Parameter(weight, requires_grad=False)
        self.bias = nn.Parameter(torch.zeros(out_features, dtype=DTYPE), requires_grad=False)
        self.activation = activation
        self.dropout = dropout

    def forward(
        self, x: torch.Tensor, generator: torch.Generator | None = None
    ) -> tuple[torch.Tensor, torch.Tensor]:
        z = self.weight @ x + self.bias
        a = activate(z, self.activation)
        if self.training and self.dropout > 0:
            keep = torch.rand(a.shape, generator=generator, dtype=DTYPE).to(a.device) >= self.dropout
            a = torch.where(keep, a / (1.0 - self.dropout), torch.zeros_like(a))
        return a, z

    @torch.no_grad()
    def backward(
        self, delta: torch.Tensor, z: torch.Tensor, inputs: torch.Tensor, lr: float, reg: float
    ) -> torch.Tensor:
        """Update in place and return the gradient passed to the previous layer."""
        delta = delta * activation_grad(z, self.activation)
        self.weight.sub_(lr * (torch.outer(delta, inputs) + reg * self.weight))
        self.bias.sub_(lr * delta)
        return self.weight.t() @ delta


class FeedForwardNet(nn.Module):
    def __init__(
        self,
        input_size: int,
        hidden_layers: list[int],
        output_size: int,
        activation: str,
        dropout: float,
        generator: torch.Generator | None = None,
    ):
        super().__init__()
        layers = []
        prev = input_size
        for width in hidden_layers:
            layers.append(DenseLayer(prev, width, activation, dropout, generator))
            prev = width
        layers.append(DenseLayer(prev, output_size, "sigmoid", 0.0, generator))
        self.layers = nn.ModuleList(layers)

    def forward_trace(
        self, x: torch.Tensor, generator: torch.Generator | None = None
    ) -> list[tuple[torch.Tensor, torch.Tensor | None]]:
        """(activation, pre-activation) per layer, input first."""
        trace = [(x, None)]
        for layer in self.layers:
            x, z = layer(x, generator)
            trace.append((x, z))
        return trace

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.forward_trace(x)[-1][0]

    def backward(
        self,
        trace: list[tuple[torch.Tensor, torch.Tensor | None]],
        target: torch.Tensor,
        lr: float,
        reg: float,
    ) -> float:
        """Backpropagate one sample; returns the summed squared layer gradients."""
        delta = trace[-1][0] - target
        loss = 0.0
        for idx in reversed(range(len(self.layers))):
            inputs = trace[idx][0]
            z = trace[idx + 1][1]
            delta = self.layers[idx].backward(delta, z, inputs, lr, reg)
            loss += float(torch.sum(delta * delta))
        return loss


class NeuralNetworkModel(PredictionAlgorithm):
    """Multi-label classifier: one sigmoid output per possible main number."""

    algorithm_name = "neural_network"
    display_name = "Neural Network"
    min_samples = 10
    artifact_suffix = ".pt"

    def __init__(
        self,
        config: NeuralNetworkConfig | None = None,
        lottery_type: LotteryType = LotteryType.SSQ,
        device: str | None = None,
    ):
        super().__init__(lottery_type)
        self.config = config or NeuralNetworkConfig()
        self.device = torch.device(device or settings.TORCH_DEVICE)
        self.net: FeedForwardNet | None = None
        self.scaler: StandardScaler | None = None
        self.input_size = 0
        self.output_size = 0
        self.loss_history: list[float] = []
        self.validation_loss: list[float] = []

    def _build_net(self, generator: torch.Generator | None = None) -> FeedForwardNet:
        return FeedForwardNet(
            self.input_size,
            self.config.hidden_layers,
            self.output_size,
            self.config.activation,
            self.config.dropout_rate,
            generator,
        ).to(self.device)

    def _encode_targets(self, targets: list[list[int]]) -> torch.Tensor:
        y = torch.zeros(len(targets), self.output_size, dtype=DTYPE)
        for i, row in enumerate(targets):
            for n in row:
                if 1 <= n <= self.output_size:
                    y[i, n - 1] = 1.0
        return y.to(self.device)

    def train(self, data: TrainingData, config: AlgorithmConfig) -> float:
        self._validate_training_data(data)
        self._apply_common_config(config)

        X_np = np.asarray(data.features, dtype=np.float64)
        self.scaler = fit_scaler(X_np, self.feature_config.feature_scaling)
        X = torch.tensor(scale(self.scaler, X_np), dtype=DTYPE, device=self.device)
        self.input_size = X.shape[1]
        self.output_size = self.max_number
        y = self._encode_targets(data.targets)

        generator = generator_for(self.config.random_state)
        self.net = self._build_net(generator)
        n_samples = X.shape[0]
        n_val = int(n_samples * self.config.validation_split)

        logger.info(
            "Training neural network: layers={}, {} samples, input_dim={}",
            self.config.hidden_layers, n_samples, self.input_size,
        )

        self.loss_history, self.validation_loss = [], []
        best_loss = math.inf
        patience_counter = 0
        lr, reg = self.config.learning_rate, self.config.regularization

        for epoch in range(self.config.epochs):
            self.net.train()
            total = 0.0
            for i in range(n_samples):
                trace = self.net.forward_trace(X[i], generator)
                total += self.net.backward(trace, y[i], lr, reg)
            loss = total / n_samples
            self.loss_history.append(loss)

            if n_val > 0:
                self.net.eval()
                with torch.no_grad():
                    preds = torch.stack([self.net(x) for x in X[-n_val:]])
                self.validation_loss.append(binary_cross_entropy(preds, y[-n_val:]))

            if loss < best_loss:
                best_loss = loss
                patience_counter = 0
            else:
                patience_counter += 1
            if self.config.early_stopping and patience_counter >= self.config.patience:
                logger.debug("Early stopping neural network at epoch {}", epoch + 1)
                break

        self.net.eval()
        self._fit_special_distribution(data)
        self._is_trained = True
        return 0.65 + max(0.0, 0.35 * (1.0 - min(best_loss, 1.0)))

    # ── inference ────────────────────────────────────────────────────

    def output_activations(self, features: list[float]) -> np.ndarray:
        try:
            scaled = scale(self.scaler, features)
        except ValueError as e:
            raise AlgorithmError(f"Neural network input mismatch: {e}") from e
        self.net.eval()
        with torch.no_grad():
            out = self.net(torch.tensor(scaled, dtype=DTYPE, device=self.device))
        return out.cpu().numpy()

    def _special_numbers(self) -> list[int] | None:
        count = special_count(self.lottery_type)
        if count == 0:
            return None
        rng = np.random.default_rng(self.config.random_state)
        candidates = rng.permutation(np.arange(1, special_max(self.lottery_type) + 1))
        return [int(n) for n in candidates[:count]]

    def _output_from_features(self, features: list[float]) -> PredictionOutput:
        activations = self.output_activations(features)
        numbers, confidences = rank_numbers(
            list(range(1, self.output_size + 1)), activations.tolist(),
            self.main_count, self.max_number,
        )
        return PredictionOutput(
            predicted_numbers=numbers,
            predicted_special_numbers=self._special_numbers(),
            confidence_scores=confidences,
            algorithm_metadata={
                "algorithm": self.algorithm_name,
                "hidden_layers": len(self.config.hidden_layers),
                "activation": self.config.activation,
                "epochs": self.config.epochs,
            },
        )

    def _predict(self, input: PredictionInput) -> PredictionOutput:
        return self._output_from_features(self._prediction_features(input))

    def predict_samples(self, data: TrainingData) -> list[PredictionOutput | None]:
        self._require_trained()
        return [self._output_from_features(row) for row in data.features]

    def get_feature_importance(self) -> dict[str, float] | None:
        return {
            "hidden_layers": float(len(self.config.hidden_layers)),
            "dropout_rate": self.config.dropout_rate,
            "learning_rate": self.config.learning_rate,
            "epochs": float(self.config.epochs),
        }

    # ── persistence ──────────────────────────────────────────────────

    def save_model(self, path: Path) -> None:
        self._require_trained()
        save_checkpoint(path, {
            **self._base_state(),
            "config": self.config.model_dump(),
            "model_state": self.net.state_dict(),
            "input_size": self.input_size,
            "output_size": self.output_size,
            "scaler": scaler_to_dict(self.scaler),
            "loss_history": self.loss_history,
            "validation_loss": self.validation_loss,
        })

    def load_model(self, path: Path) -> None:
        checkpoint = load_checkpoint(path, self.device)
        try:
            base = self._decode_base_state(checkpoint)
            config = NeuralNetworkConfig.model_validate(checkpoint["config"])
            input_size = int(checkpoint["input_size"])
            output_size = int(checkpoint["output_size"])
            scaler = scaler_from_dict(checkpoint["scaler"])
            net = FeedForwardNet(
                input_size, config.hidden_layers, output_size,
                config.activation, config.dropout_rate,
            ).to(self.device)
            net.load_state_dict(checkpoint["model_state"])
            loss_history = list(checkpoint.get("loss_history", []))
            validation_loss = list(checkpoint.get("validation_loss", []))
        except (KeyError, TypeError, ValueError, RuntimeError) as e:
            raise AlgorithmError(f"Corrupt neural network snapshot {path}: {e}") from e
        net.eval()
        self._restore_base_state(base)
        self.config, self.input_size, self.output_size = config, input_size, output_size
        self.scaler, self.net = scaler, net
        self.loss_history, self.validation_loss = loss_history, validation_loss
        self._is_trained = True
