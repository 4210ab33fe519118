"""ARIMA over the per-draw sum of winning numbers.

The forecast sum only anchors a neighborhood of candidate numbers; the
numbers themselves are a seeded shuffle of that neighborhood.
"""

import math
from pathlib import Path
from typing import Sequence

import numpy as np
from loguru import logger

from lottery_engine.errors import AlgorithmError
from lottery_engine.ml.models.base_model import (
    PredictionAlgorithm,
    pad_selection,
    read_json,
    write_json,
)
from lottery_engine.schemas.lottery import Drawing, LotteryType, special_count, special_max
from lottery_engine.schemas.ml import (
    AlgorithmConfig,
    LooseConfig,
    PredictionInput,
    PredictionOutput,
    TrainingData,
)

PIVOT_EPSILON = 1e-10
SIGMA_FLOOR = 1e-12
MAX_AUTO_ORDER = 5
NEIGHBORHOOD = 10
CONFIDENCE = 0.6


class ArimaConfig(LooseConfig):
    p: int = 2
    d: int = 1
    q: int = 1
    seasonal_p: int = 1
    seasonal_d: int = 0
    seasonal_q: int = 1
    seasonal_period: int = 7
    forecast_horizon: int = 1
    auto_order: bool = False
    random_state: int = 42


# ── series helpers ───────────────────────────────────────────────────


def difference(series: Sequence[float], order: int = 1) -> list[float]:
    result = list(series)
    for _ in range(order):
        if len(result) <= 1:
            return [0.0]
        result = [result[i] - result[i - 1] for i in range(1, len(result))]
    return result


def seasonal_difference(series: Sequence[float], period: int, order: int = 1) -> list[float]:
    result = list(series)
    for _ in range(order):
        if len(result) <= period:
            return [0.0]
        result = [result[i] - result[i - period] for i in range(period, len(result))]
    return result


def inverse_difference(
    original: Sequence[float], differenced: Sequence[float], order: int = 1
) -> list[float]:
    """Undo ``order`` rounds of first differencing.

    ``differenced`` is a suffix of ``difference(original, order)``; the result
    is the matching suffix of ``original``.
    """
    levels = [list(original)]
    for _ in range(order - 1):
        levels.append(difference(levels[-1], 1))

    result = list(differenced)
    for level in reversed(levels):
        anchor_idx = len(level) - len(result) - 1
        if anchor_idx < 0:
            raise ValueError("differenced series is longer than the original allows")
        restored = [level[anchor_idx]]
        for value in result:
            restored.append(restored[-1] + value)
        result = restored[1:]
    return result


def acf(series: Sequence[float], max_lag: int) -> list[float]:
    """Sample autocorrelation for lags 0..max_lag."""
    x = np.asarray(series, dtype=np.float64)
    n = len(x)
    if n == 0:
        return [1.0] + [0.0] * max_lag
    centered = x - x.mean()
    variance = float(np.dot(centered, centered)) / n
    if variance == 0.0:
        return [1.0] + [0.0] * max_lag
    values = []
    for lag in range(max_lag + 1):
        if lag >= n:
            values.append(0.0)
            continue
        cov = float(np.dot(centered[:n - lag], centered[lag:])) / n
        values.append(cov / variance)
    return values


def matrix_inverse(matrix: np.ndarray) -> np.ndarray | None:
    """Gauss-Jordan inverse; ``None`` when a pivot is numerically zero."""
    matrix = np.asarray(matrix, dtype=np.float64)
    n, m = matrix.shape
    if n != m:
        return None
    augmented = np.hstack([matrix, np.eye(n)])
    for i in range(n):
        pivot = augmented[i, i]
        if abs(pivot) < PIVOT_EPSILON:
            return None
        augmented[i] /= pivot
        for k in range(n):
            if k != i:
                augmented[k] -= augmented[k, i] * augmented[i]
    return augmented[:, n:]


def pacf(series: Sequence[float], max_lag: int) -> list[float]:
    """Partial autocorrelation by solving the Yule-Walker system at each lag."""
    r = acf(series, max_lag)
    values = []
    for k in range(1, max_lag + 1):
        R = np.array([[r[abs(i - j)] for j in range(k)] for i in range(k)])
        inv = matrix_inverse(R)
        if inv is None:
            values.append(0.0)
            continue
        phi = inv @ np.asarray(r[1:k + 1])
        values.append(float(phi[-1]))
    return values


def _cutoff(values: Sequence[float], n: int) -> int:
    """First lag whose value falls inside the 95% band, capped."""
    band = 1.96 / math.sqrt(max(n, 1))
    for lag, value in enumerate(values, start=1):
        if abs(value) < band:
            return min(lag - 1, MAX_AUTO_ORDER)
    return min(len(values), MAX_AUTO_ORDER)


def draw_sums(rows: Sequence[Sequence[int]]) -> list[float]:
    return [float(sum(row)) for row in rows]


class ArimaModel(PredictionAlgorithm):
    """Non-seasonal ARIMA(p, d, q) with placeholder seasonal terms."""

    algorithm_name = "arima"
    display_name = "ARIMA Time Series"
    min_samples = 50

    def __init__(
        self,
        config: ArimaConfig | None = None,
        lottery_type: LotteryType = LotteryType.SSQ,
    ):
        super().__init__(lottery_type)
        self.config = config or ArimaConfig()
        self.ar_coefficients: list[float] = []
        self.ma_coefficients: list[float] = []
        self.seasonal_ar_coefficients: list[float] = []
        self.seasonal_ma_coefficients: list[float] = []
        self.intercept = 0.0
        self.sigma_squared = 1.0
        self.aic = 0.0
        self.bic = 0.0
        self.residuals: list[float] = []
        self.fitted_values: list[float] = []

    # ── differencing stages ──────────────────────────────────────────

    def _lags(self) -> list[int]:
        return [1] * self.config.d + [self.config.seasonal_period] * self.config.seasonal_d

    def _min_history(self) -> int:
        return sum(self._lags()) + 1

    def _stages(self, series: Sequence[float]) -> list[list[float]]:
        """Series after each differencing round, original first."""
        stages = [list(series)]
        for lag in self._lags():
            prev = stages[-1]
            stages.append([prev[i] - prev[i - lag] for i in range(lag, len(prev))])
        return stages

    def _ar_term(self, values: Sequence[float], i: int) -> float:
        total = 0.0
        for j, coeff in enumerate(self.ar_coefficients):
            if i > j:
                total += coeff * (values[i - 1 - j] - self.intercept)
        return total

    def _one_step_fit(self, z: Sequence[float]) -> tuple[list[float], list[float]]:
        fitted, residuals = [], []
        for i in range(len(z)):
            value = self.intercept + self._ar_term(z, i)
            for j, coeff in enumerate(self.ma_coefficients):
                if i > j:
                    value += coeff * residuals[i - 1 - j]
            fitted.append(value)
            residuals.append(z[i] - value)
        return fitted, residuals

    # ── estimation ───────────────────────────────────────────────────

    def _estimate_ar(self, z: np.ndarray, p: int) -> list[float]:
        n = len(z)
        if p == 0 or n <= p:
            return [0.0] * p
        centered = z - self.intercept
        y = centered[p:]
        X = np.column_stack([centered[p - 1 - j:n - 1 - j] for j in range(p)])
        inv = matrix_inverse(X.T @ X)
        if inv is None:
            logger.warning("ARIMA: singular AR normal equations, using zero coefficients")
            return [0.0] * p
        return [float(c) for c in inv @ (X.T @ y)]

    @staticmethod
    def _estimate_ma(residuals: Sequence[float], q: int) -> list[float]:
        """Innovations-algorithm MA estimate from the residual autocorrelation."""
        if q == 0 or len(residuals) <= q:
            return [0.0] * q
        r = acf(residuals, q)
        psi = [0.0] * (q + 1)
        v = [r[0]]
        for k in range(1, q + 1):
            psi[k] = r[k]
            for j in range(1, k):
                psi[k] -= psi[j] * v[k - j] * psi[k - j]
            psi[k] /= v[0]
            v.append(r[0] - sum(psi[j] ** 2 * v[k - j] for j in range(1, k + 1)))
        return psi[1:]

    def _fit(self, series: list[float]) -> float:
        stages = self._stages(series)
        z = stages[-1]

        if self.config.auto_order:
            self.config.p = _cutoff(pacf(z, MAX_AUTO_ORDER), len(z))
            self.config.q = _cutoff(acf(z, MAX_AUTO_ORDER)[1:], len(z))
            logger.debug("ARIMA auto order: p={}, q={}", self.config.p, self.config.q)

        if len(z) < self.config.p + self.config.q + 10:
            raise AlgorithmError(
                f"Insufficient data for ARIMA model: {len(z)} points after differencing, "
                f"need at least {self.config.p + self.config.q + 10}"
            )

        z_arr = np.asarray(z, dtype=np.float64)
        self.intercept = float(z_arr.mean())
        self.ar_coefficients = self._estimate_ar(z_arr, self.config.p)
        ar_residuals = [z[i] - self.intercept - self._ar_term(z, i) for i in range(len(z))]
        self.ma_coefficients = self._estimate_ma(ar_residuals, self.config.q)
        self.seasonal_ar_coefficients = [0.0] * self.config.seasonal_p
        self.seasonal_ma_coefficients = [0.0] * self.config.seasonal_q

        fitted, self.residuals = self._one_step_fit(z)
        self.sigma_squared = max(
            float(np.mean(np.square(self.residuals))), SIGMA_FLOOR
        )
        n = len(series)
        k = self.config.p + self.config.q + self.config.seasonal_p + self.config.seasonal_q
        self.aic = n * math.log(self.sigma_squared) + 2 * k
        self.bic = n * math.log(self.sigma_squared) + k * math.log(n)

        self.fitted_values = self._restore_fitted(stages, fitted)
        actual = series[len(series) - len(self.fitted_values):]
        return self._accuracy(actual, self.fitted_values)

    def _restore_fitted(self, stages: list[list[float]], fitted: list[float]) -> list[float]:
        """Map one-step fitted values of the last stage back onto the original series."""
        lags = self._lags()
        restored = []
        for t, value in enumerate(fitted):
            idx = t
            for stage, lag in zip(reversed(stages[:-1]), reversed(lags)):
                value += stage[idx]
                idx += lag
            restored.append(value)
        return restored

    @staticmethod
    def _accuracy(actual: Sequence[float], fitted: Sequence[float]) -> float:
        if len(actual) != len(fitted) or not actual:
            return 0.0
        total = sum(actual)
        if total <= 0:
            return 0.0
        abs_error = sum(abs(a - f) for a, f in zip(actual, fitted))
        return 1.0 - abs_error / total

    def train(self, data: TrainingData, config: AlgorithmConfig) -> float:
        self._validate_training_data(data)
        self._apply_common_config(config)

        series = draw_sums(data.targets)
        logger.info(
            "Training ARIMA({},{},{}) on {} draw sums",
            self.config.p, self.config.d, self.config.q, len(series),
        )
        accuracy = self._fit(series)
        self._fit_special_distribution(data)
        self._is_trained = True
        return accuracy

    # ── forecasting ──────────────────────────────────────────────────

    def forecast(self, series: Sequence[float], steps: int | None = None) -> list[float]:
        """AR-recursive forecast of the next ``steps`` values on the original scale."""
        steps = steps or self.config.forecast_horizon
        if len(series) < self._min_history():
            raise AlgorithmError(
                f"ARIMA requires at least {self._min_history()} historical draws, got {len(series)}"
            )
        stages = self._stages(series)
        z = list(stages[-1])
        forecasts = []
        for _ in range(steps):
            value = self.intercept + self._ar_term(z + [0.0], len(z))
            z.append(value)
            forecasts.append(value)

        for stage, lag in zip(reversed(stages[:-1]), reversed(self._lags())):
            extended = list(stage)
            for value in forecasts:
                extended.append(value + extended[-lag])
            forecasts = extended[len(stage):]
        return forecasts

    def lottery_numbers(self, forecast: float) -> tuple[list[int], list[int] | None]:
        """Seeded pick from a ±10 neighborhood around the rounded forecast."""
        top = self.max_number
        base = min(max(int(round(forecast)), 1), top)
        candidates = np.arange(max(1, base - NEIGHBORHOOD), min(top, base + NEIGHBORHOOD) + 1)
        rng = np.random.default_rng(self.config.random_state)
        picked = [int(n) for n in rng.permutation(candidates)[:self.main_count]]
        numbers, _ = pad_selection(picked, [CONFIDENCE] * len(picked), self.main_count, top)

        specials = None
        count = special_count(self.lottery_type)
        if count > 0:
            pool = rng.permutation(np.arange(1, special_max(self.lottery_type) + 1))
            specials = [int(n) for n in pool[:count]]
        return numbers, specials

    def _output(self, series: Sequence[float]) -> PredictionOutput:
        forecasts = self.forecast(series)
        numbers, specials = self.lottery_numbers(forecasts[0])
        return PredictionOutput(
            predicted_numbers=numbers,
            predicted_special_numbers=specials,
            confidence_scores=[CONFIDENCE] * len(numbers),
            algorithm_metadata={
                "algorithm": self.algorithm_name,
                "p": self.config.p,
                "d": self.config.d,
                "q": self.config.q,
                "aic": self.aic,
                "bic": self.bic,
                "forecast": forecasts,
            },
        )

    def _predict(self, input: PredictionInput) -> PredictionOutput:
        history: list[Drawing] = input.historical_data
        return self._output(draw_sums([d.winning_numbers for d in history]))

    def predict_samples(self, data: TrainingData) -> list[PredictionOutput | None]:
        self._require_trained()
        series = draw_sums(data.targets)
        need = self._min_history()
        return [
            self._output(series[:j]) if j >= need else None
            for j in range(len(series))
        ]

    def get_feature_importance(self) -> dict[str, float] | None:
        return {
            "ar_order": float(self.config.p),
            "differencing_order": float(self.config.d),
            "ma_order": float(self.config.q),
            "aic": self.aic,
            "bic": self.bic,
        }

    # ── persistence ──────────────────────────────────────────────────

    def save_model(self, path: Path) -> None:
        self._require_trained()
        write_json(path, {
            **self._base_state(),
            "config": self.config.model_dump(),
            "ar_coefficients": self.ar_coefficients,
            "ma_coefficients": self.ma_coefficients,
            "seasonal_ar_coefficients": self.seasonal_ar_coefficients,
            "seasonal_ma_coefficients": self.seasonal_ma_coefficients,
            "intercept": self.intercept,
            "sigma_squared": self.sigma_squared,
            "aic": self.aic,
            "bic": self.bic,
            "residuals": self.residuals,
            "fitted_values": self.fitted_values,
        })

    def load_model(self, path: Path) -> None:
        state = read_json(path)
        try:
            base = self._decode_base_state(state)
            config = ArimaConfig.model_validate(state["config"])
            ar = [float(c) for c in state["ar_coefficients"]]
            ma = [float(c) for c in state["ma_coefficients"]]
            seasonal_ar = list(state["seasonal_ar_coefficients"])
            seasonal_ma = list(state["seasonal_ma_coefficients"])
            intercept = float(state["intercept"])
            sigma_squared = float(state["sigma_squared"])
            aic, bic = float(state["aic"]), float(state["bic"])
            residuals = list(state["residuals"])
            fitted_values = list(state["fitted_values"])
        except (KeyError, TypeError, ValueError) as e:
            raise AlgorithmError(f"Corrupt ARIMA snapshot {path}: {e}") from e
        self._restore_base_state(base)
        self.config = config
        self.ar_coefficients, self.ma_coefficients = ar, ma
        self.seasonal_ar_coefficients, self.seasonal_ma_coefficients = seasonal_ar, seasonal_ma
        self.intercept, self.sigma_squared = intercept, sigma_squared
        self.aic, self.bic = aic, bic
        self.residuals, self.fitted_values = residuals, fitted_values
        self._is_trained = True
