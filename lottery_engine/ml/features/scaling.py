"""Feature standardization shared by the network models."""

import numpy as np
from sklearn.preprocessing import StandardScaler


def fit_scaler(X: np.ndarray, enabled: bool = True) -> StandardScaler:
    """Zero-mean / unit-variance scaler; constant columns keep scale 1.

    With ``enabled`` off the fitted scaler is the identity transform.
    """
    return StandardScaler(with_mean=enabled, with_std=enabled).fit(np.asarray(X, dtype=np.float64))


def scale(scaler: StandardScaler, X) -> np.ndarray:
    """Standardize rows; a single vector is treated as one row."""
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        return scaler.transform(X.reshape(1, -1))[0]
    return scaler.transform(X)


def scaler_to_dict(scaler: StandardScaler) -> dict:
    return {
        "with_mean": scaler.with_mean,
        "with_std": scaler.with_std,
        "n_features": int(scaler.n_features_in_),
        "mean": scaler.mean_.tolist() if scaler.mean_ is not None else None,
        "scale": scaler.scale_.tolist() if scaler.scale_ is not None else None,
    }


def scaler_from_dict(data: dict) -> StandardScaler:
    scaler = StandardScaler(
        with_mean=bool(data.get("with_mean", True)),
        with_std=bool(data.get("with_std", True)),
    )
    mean, scale_ = data["mean"], data["scale"]
    scaler.mean_ = np.asarray(mean, dtype=np.float64) if mean is not None else None
    scaler.scale_ = np.asarray(scale_, dtype=np.float64) if scale_ is not None else None
    scaler.var_ = scaler.scale_ ** 2 if scaler.scale_ is not None else None
    n_features = data.get("n_features")
    if n_features is None:
        n_features = len(scaler.mean_)
    scaler.n_features_in_ = int(n_features)
    scaler.n_samples_seen_ = 0
    return scaler
