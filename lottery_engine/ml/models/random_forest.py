"""Random forest of bootstrap-sampled Gini decision trees over observed numbers."""

import math
from dataclasses import asdict, dataclass
from pathlib import Path

import numpy as np
from loguru import logger

from lottery_engine.errors import AlgorithmError
from lottery_engine.ml.models.base_model import (
    PredictionAlgorithm,
    rank_numbers,
    read_json,
    write_json,
)
from lottery_engine.schemas.lottery import LotteryType
from lottery_engine.schemas.ml import (
    AlgorithmConfig,
    LooseConfig,
    PredictionInput,
    PredictionOutput,
    TrainingData,
)


class RandomForestConfig(LooseConfig):
    n_estimators: int = 100
    max_depth: int = 10
    min_samples_split: int = 2
    min_samples_leaf: int = 1
    max_features: int | None = None
    random_state: int = 42
    bootstrap: bool = True


@dataclass
class TreeNode:
    """Arena node; leaves carry ``value``, splits carry feature/threshold/children."""

    feature_index: int | None = None
    threshold: float | None = None
    left: int | None = None
    right: int | None = None
    value: list[float] | None = None
    samples: int = 0
    gini: float = 1.0


class DecisionTree:
    def __init__(self, feature_indices: list[int], nodes: list[TreeNode] | None = None):
        self.feature_indices = feature_indices
        self.nodes: list[TreeNode] = nodes or []

    def add(self, node: TreeNode) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def predict(self, features: list[float] | np.ndarray, n_classes: int) -> np.ndarray:
        """Walk to a leaf; a split on a missing column yields a zero vector."""
        idx = 0
        while self.nodes:
            node = self.nodes[idx]
            if node.value is not None:
                return np.asarray(node.value, dtype=np.float64)
            if node.feature_index >= len(features):
                break
            idx = node.left if features[node.feature_index] <= node.threshold else node.right
        return np.zeros(n_classes)

    def to_dict(self) -> dict:
        return {
            "feature_indices": self.feature_indices,
            "nodes": [asdict(n) for n in self.nodes],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DecisionTree":
        return cls(data["feature_indices"], [TreeNode(**n) for n in data["nodes"]])


class RandomForestModel(PredictionAlgorithm):
    """Ensemble of decision trees voting over the numbers seen in training targets."""

    algorithm_name = "random_forest"
    display_name = "Random Forest"
    min_samples = 10

    def __init__(
        self,
        config: RandomForestConfig | None = None,
        lottery_type: LotteryType = LotteryType.SSQ,
    ):
        super().__init__(lottery_type)
        self.config = config or RandomForestConfig()
        self.trees: list[DecisionTree] = []
        self.classes: list[int] = []
        self.feature_importance: dict[str, float] = {}

    def train(self, data: TrainingData, config: AlgorithmConfig) -> float:
        self._validate_training_data(data)
        self._apply_common_config(config)

        X = np.asarray(data.features, dtype=np.float64)
        targets = data.targets
        self.classes = sorted({n for row in targets for n in row})
        class_pos = {c: i for i, c in enumerate(self.classes)}
        # (n_samples, n_classes) count matrix; gini and leaf values read from it
        Y = np.zeros((len(targets), len(self.classes)), dtype=np.float64)
        for i, row in enumerate(targets):
            for n in row:
                Y[i, class_pos[n]] += 1

        rng = np.random.default_rng(self.config.random_state)
        n_samples, n_features = X.shape
        max_features = self.config.max_features or int(math.sqrt(n_features))
        max_features = max(1, min(max_features, n_features))

        logger.info(
            "Training random forest: {} trees, {} samples, {} features ({} per tree)",
            self.config.n_estimators, n_samples, n_features, max_features,
        )

        self.trees = []
        for _ in range(self.config.n_estimators):
            if self.config.bootstrap:
                indices = rng.integers(0, n_samples, size=n_samples)
            else:
                indices = np.arange(n_samples)
            feature_indices = sorted(
                int(f) for f in rng.permutation(n_features)[:max_features]
            )
            tree = DecisionTree(feature_indices)
            self._build_node(tree, X, Y, indices, 0)
            self.trees.append(tree)

        self._fit_special_distribution(data)
        self._is_trained = True
        return self.evaluate(data).accuracy

    # ── tree growing ─────────────────────────────────────────────────

    @staticmethod
    def _gini(Y: np.ndarray, indices: np.ndarray) -> float:
        counts = Y[indices].sum(axis=0)
        total = counts.sum()
        if total == 0:
            return 1.0
        p = counts / total
        return float(1.0 - np.sum(p * p))

    @staticmethod
    def _distribution(Y: np.ndarray, indices: np.ndarray) -> list[float]:
        counts = Y[indices].sum(axis=0)
        total = counts.sum()
        if total > 0:
            counts = counts / total
        return counts.tolist()

    def _leaf(self, tree: DecisionTree, Y: np.ndarray, indices: np.ndarray) -> int:
        return tree.add(TreeNode(
            value=self._distribution(Y, indices),
            samples=len(indices),
            gini=self._gini(Y, indices),
        ))

    def _build_node(
        self, tree: DecisionTree, X: np.ndarray, Y: np.ndarray, indices: np.ndarray, depth: int
    ) -> int:
        if len(indices) == 0:
            return tree.add(TreeNode(value=[0.0] * Y.shape[1], samples=0, gini=1.0))
        if depth >= self.config.max_depth or len(indices) < self.config.min_samples_split:
            return self._leaf(tree, Y, indices)

        feature, threshold, best_gini = self._find_best_split(
            X, Y, indices, tree.feature_indices
        )
        if feature is None:
            return self._leaf(tree, Y, indices)

        mask = X[indices, feature] <= threshold
        left_idx, right_idx = indices[mask], indices[~mask]
        leaf_min = self.config.min_samples_leaf
        if len(left_idx) < leaf_min or len(right_idx) < leaf_min:
            return self._leaf(tree, Y, indices)

        node_id = tree.add(TreeNode(
            feature_index=feature, threshold=threshold, samples=len(indices), gini=best_gini,
        ))
        left = self._build_node(tree, X, Y, left_idx, depth + 1)
        right = self._build_node(tree, X, Y, right_idx, depth + 1)
        tree.nodes[node_id].left = left
        tree.nodes[node_id].right = right
        return node_id

    def _find_best_split(
        self, X: np.ndarray, Y: np.ndarray, indices: np.ndarray, feature_indices: list[int]
    ) -> tuple[int | None, float | None, float]:
        """Try the midpoint and quartile thresholds of each candidate feature."""
        best_gini, best_feature, best_threshold = 1.0, None, None
        n = len(indices)

        for feature in feature_indices:
            values = X[indices, feature]
            lo, hi = values.min(), values.max()
            if lo >= hi:
                continue
            for threshold in ((lo + hi) / 2.0, lo + (hi - lo) * 0.25, lo + (hi - lo) * 0.75):
                mask = values <= threshold
                left_idx, right_idx = indices[mask], indices[~mask]
                if len(left_idx) == 0 or len(right_idx) == 0:
                    continue
                weighted = (
                    len(left_idx) * self._gini(Y, left_idx)
                    + len(right_idx) * self._gini(Y, right_idx)
                ) / n
                if weighted < best_gini:
                    best_gini, best_feature, best_threshold = weighted, feature, float(threshold)

        return best_feature, best_threshold, best_gini

    # ── inference ────────────────────────────────────────────────────

    def class_probabilities(self, features: list[float]) -> np.ndarray:
        """Leaf distributions averaged over all trees."""
        probs = np.zeros(len(self.classes), dtype=np.float64)
        for tree in self.trees:
            leaf = tree.predict(features, len(self.classes))
            k = min(len(leaf), len(probs))
            probs[:k] += leaf[:k]
        return probs / max(len(self.trees), 1)

    def _output_from_features(self, features: list[float]) -> PredictionOutput:
        probs = self.class_probabilities(features)
        numbers, confidences = rank_numbers(
            self.classes, probs.tolist(), self.main_count, self.max_number
        )
        return PredictionOutput(
            predicted_numbers=numbers,
            predicted_special_numbers=self._predict_special_numbers(),
            confidence_scores=confidences,
            algorithm_metadata={
                "algorithm": self.algorithm_name,
                "n_estimators": len(self.trees),
                "max_depth": self.config.max_depth,
            },
        )

    def _predict(self, input: PredictionInput) -> PredictionOutput:
        return self._output_from_features(self._prediction_features(input))

    def predict_samples(self, data: TrainingData) -> list[PredictionOutput | None]:
        self._require_trained()
        return [self._output_from_features(row) for row in data.features]

    def get_feature_importance(self) -> dict[str, float] | None:
        # Split-based importance is not accumulated while growing trees.
        return dict(self.feature_importance)

    # ── persistence ──────────────────────────────────────────────────

    def save_model(self, path: Path) -> None:
        self._require_trained()
        write_json(path, {
            **self._base_state(),
            "config": self.config.model_dump(),
            "classes": self.classes,
            "trees": [t.to_dict() for t in self.trees],
        })

    def load_model(self, path: Path) -> None:
        state = read_json(path)
        try:
            base = self._decode_base_state(state)
            config = RandomForestConfig.model_validate(state["config"])
            trees = [DecisionTree.from_dict(t) for t in state["trees"]]
            classes = [int(c) for c in state["classes"]]
        except (KeyError, TypeError, ValueError) as e:
            raise AlgorithmError(f"Corrupt random forest snapshot {path}: {e}") from e
        self._restore_base_state(base)
        self.config, self.trees, self.classes = config, trees, classes
        self.feature_importance = {}
        self._is_trained = True
