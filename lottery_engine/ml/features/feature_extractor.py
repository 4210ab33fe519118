"""Feature extraction: turns windows of historical draws into numeric vectors."""

import math
from collections import Counter
from datetime import date

import numpy as np
from loguru import logger

from lottery_engine.errors import InvalidParameterError
from lottery_engine.schemas.lottery import Drawing, LotteryType, max_number, special_max
from lottery_engine.schemas.ml import LooseConfig, TrainingData


class FeatureConfig(LooseConfig):
    enable_frequency_analysis: bool = True
    enable_trend_analysis: bool = True
    enable_statistical_analysis: bool = True
    enable_pattern_analysis: bool = True
    enable_temporal_analysis: bool = True
    window_size: int = 50
    include_special_numbers: bool = True
    feature_scaling: bool = True


def _is_prime(n: int) -> bool:
    if n < 2:
        return False
    if n < 4:
        return True
    if n % 2 == 0:
        return False
    for i in range(3, math.isqrt(n) + 1, 2):
        if n % i == 0:
            return False
    return True


class FeatureExtractor:
    """Extract fixed-width feature vectors from lottery draw history."""

    def __init__(self, config: FeatureConfig | None = None):
        self.config = config or FeatureConfig()

    def extract_features(
        self, drawings: list[Drawing], config: FeatureConfig | None = None
    ) -> TrainingData:
        """Build one sample per draw that has a full window of predecessors.

        Sample i is described by drawings[i - window_size:i] plus drawing i's
        date, and labelled with drawing i's numbers. Later samples get larger
        weights.
        """
        if not drawings:
            raise InvalidParameterError("No drawings provided for feature extraction")

        config = config or self.config
        window_size = config.window_size
        lottery_type = drawings[0].lottery_type
        total = len(drawings)

        features, targets, special_targets, weights = [], [], [], []
        for i in range(window_size, total):
            drawing = drawings[i]
            window = drawings[i - window_size:i]
            vector = self.extract_single_features(drawing.draw_date, window, lottery_type, config)
            features.append(vector)
            targets.append(list(drawing.winning_numbers))
            special_targets.append(list(drawing.special_numbers or []))
            weights.append((i + 1) / total)

        logger.debug(
            "Extracted {} samples from {} {} draws (window={})",
            len(features), total, lottery_type.value, window_size,
        )
        return TrainingData(
            features=features,
            targets=targets,
            special_targets=special_targets if config.include_special_numbers else None,
            weights=weights,
        )

    def extract_single_features(
        self,
        target_date: date,
        window: list[Drawing],
        lottery_type: LotteryType,
        config: FeatureConfig | None = None,
    ) -> list[float]:
        """Feature vector for a draw on ``target_date`` preceded by ``window``."""
        config = config or self.config
        top = max_number(lottery_type)
        parts: list[np.ndarray] = []

        if config.enable_frequency_analysis:
            parts.append(self.compute_frequency_features(window, top))
        if config.enable_trend_analysis:
            parts.append(self.compute_trend_features(window))
        if config.enable_statistical_analysis:
            parts.append(self.compute_statistical_features(window))
        if config.enable_pattern_analysis:
            parts.append(self.compute_pattern_features(window))
        if config.enable_temporal_analysis:
            parts.append(self.compute_temporal_features(target_date))
        parts.append(self.compute_hot_cold_features(window, top))
        parts.append(self.compute_gap_features(window, top))
        parts.append(self.compute_sum_features(window))
        parts.append(self.compute_parity_features(window))
        parts.append(self.compute_special_features(window, special_max(lottery_type)))

        return np.concatenate(parts).astype(np.float64).tolist()

    def get_feature_names(
        self, lottery_type: LotteryType, config: FeatureConfig | None = None
    ) -> list[str]:
        config = config or self.config
        top = max_number(lottery_type)
        names: list[str] = []
        if config.enable_frequency_analysis:
            names += [f"freq_{n}" for n in range(1, top + 1)]
        if config.enable_trend_analysis:
            names += ["trend_up", "trend_down", "trend_stable"]
        if config.enable_statistical_analysis:
            names += ["mean", "std", "min", "max", "median"]
        if config.enable_pattern_analysis:
            names += ["consecutive_count", "odd_count", "even_count", "prime_count"]
        if config.enable_temporal_analysis:
            names += ["day_of_week", "day_of_month", "month", "is_weekend"]
        names += [f"hot_cold_{n}" for n in range(1, top + 1)]
        names += [f"gap_{n}" for n in range(1, top + 1)]
        names += ["sum_mean", "sum_std", "sum_last"]
        names += ["odd_ratio", "even_ratio"]
        names += [f"special_freq_{n}" for n in range(1, special_max(lottery_type) + 1)]
        return names

    @staticmethod
    def validate_features(features: list[float] | np.ndarray) -> bool:
        """False for empty vectors or any NaN / infinite component."""
        arr = np.asarray(features, dtype=np.float64)
        if arr.size == 0:
            return False
        return bool(np.isfinite(arr).all())

    # ── frequency features ────────────────────────────────────────────

    def compute_frequency_features(self, window: list[Drawing], top: int) -> np.ndarray:
        """Occurrences of each number 1..top divided by the window length."""
        counts = np.zeros(top + 1, dtype=np.float64)
        for drawing in window:
            for n in drawing.winning_numbers:
                if 0 <= n <= top:
                    counts[n] += 1
        if window:
            counts /= len(window)
        return counts[1:]

    # ── trend features ───────────────────────────────────────────────

    def compute_trend_features(self, window: list[Drawing]) -> np.ndarray:
        """Fractions of consecutive draws whose mean rose, fell, or held."""
        if len(window) < 2:
            return np.array([0.0, 0.0, 1.0])

        means = [np.mean(d.winning_numbers) if d.winning_numbers else 0.0 for d in window]
        up = down = stable = 0
        for prev, curr in zip(means, means[1:]):
            if curr > prev:
                up += 1
            elif curr < prev:
                down += 1
            else:
                stable += 1
        transitions = len(window) - 1
        return np.array([up, down, stable], dtype=np.float64) / transitions

    # ── summary statistics ───────────────────────────────────────────

    def compute_statistical_features(self, window: list[Drawing]) -> np.ndarray:
        """mean, population std, min, max, median over every drawn number."""
        values = np.array(
            [n for d in window for n in d.winning_numbers], dtype=np.float64
        )
        if values.size == 0:
            return np.zeros(5)
        return np.array([
            values.mean(), values.std(), values.min(), values.max(), np.median(values),
        ])

    # ── pattern counts ───────────────────────────────────────────────

    def compute_pattern_features(self, window: list[Drawing]) -> np.ndarray:
        """Consecutive pairs, odd, even and prime counts per draw."""
        if not window:
            return np.zeros(4)
        consecutive = odd = even = prime = 0
        for drawing in window:
            nums = drawing.winning_numbers
            # pairs are checked in draw order, not sorted order
            consecutive += sum(1 for a, b in zip(nums, nums[1:]) if b == a + 1)
            for n in nums:
                if n % 2 == 1:
                    odd += 1
                else:
                    even += 1
                if _is_prime(n):
                    prime += 1
        return np.array([consecutive, odd, even, prime], dtype=np.float64) / len(window)

    # ── temporal features ────────────────────────────────────────────

    def compute_temporal_features(self, target_date: date) -> np.ndarray:
        weekday = target_date.weekday()
        return np.array([
            weekday / 7.0,
            target_date.day / 31.0,
            target_date.month / 12.0,
            1.0 if weekday >= 5 else 0.0,
        ])

    # ── hot / cold differential ──────────────────────────────────────

    def compute_hot_cold_features(self, window: list[Drawing], top: int) -> np.ndarray:
        """Recent-10 share minus older share, per number.

        The older slice only excludes the recent draws once the window holds
        more than 20 draws.
        """
        recent = window[-10:] if len(window) > 10 else window
        older = window[:-10] if len(window) > 20 else window

        hot = np.zeros(top + 1, dtype=np.float64)
        cold = np.zeros(top + 1, dtype=np.float64)
        for drawing in recent:
            for n in drawing.winning_numbers:
                if 0 <= n <= top:
                    hot[n] += 1
        for drawing in older:
            for n in drawing.winning_numbers:
                if 0 <= n <= top:
                    cold[n] += 1

        if hot.sum() > 0:
            hot /= hot.sum()
        if cold.sum() > 0:
            cold /= cold.sum()
        return hot[1:] - cold[1:]

    # ── recency gaps ─────────────────────────────────────────────────

    def compute_gap_features(self, window: list[Drawing], top: int) -> np.ndarray:
        """Distance between the last two sightings of each number, max-normalized."""
        last_seen = np.full(top + 1, float(len(window)))
        gaps = np.zeros(top + 1, dtype=np.float64)
        for i, drawing in enumerate(window):
            for n in drawing.winning_numbers:
                if 0 <= n <= top:
                    gaps[n] = abs(i - last_seen[n])
                    last_seen[n] = i

        max_gap = gaps.max()
        if max_gap > 0:
            gaps /= max_gap
        return gaps[1:]

    # ── draw sums ────────────────────────────────────────────────────

    def compute_sum_features(self, window: list[Drawing]) -> np.ndarray:
        if not window:
            return np.zeros(3)
        sums = np.array([d.numbers_sum for d in window], dtype=np.float64)
        return np.array([sums.mean(), sums.std(), sums[-1]])

    # ── parity ───────────────────────────────────────────────────────

    def compute_parity_features(self, window: list[Drawing]) -> np.ndarray:
        """Mean odd and even share per draw."""
        ratios = []
        for drawing in window:
            nums = drawing.winning_numbers
            if not nums:
                continue
            odd = sum(1 for n in nums if n % 2 == 1)
            ratios.append((odd / len(nums), (len(nums) - odd) / len(nums)))
        if not ratios:
            return np.zeros(2)
        return np.asarray(ratios, dtype=np.float64).mean(axis=0)

    # ── special numbers ──────────────────────────────────────────────

    def compute_special_features(self, window: list[Drawing], top: int) -> np.ndarray:
        """Per-draw frequency of each special number; empty without a special pool."""
        if top == 0:
            return np.zeros(0)
        counter = Counter()
        for drawing in window:
            counter.update(n for n in (drawing.special_numbers or []) if 1 <= n <= top)
        total = max(len(window), 1)
        return np.array([counter.get(n, 0) / total for n in range(1, top + 1)], dtype=np.float64)
