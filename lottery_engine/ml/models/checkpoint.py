"""torch checkpoint I/O for the network models."""

from pathlib import Path
from typing import Any

import torch

from lottery_engine.errors import AlgorithmError


def save_checkpoint(path: Path, payload: dict[str, Any]) -> None:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        torch.save(payload, path)
    except (OSError, RuntimeError) as e:
        raise AlgorithmError(f"Failed to save model to {path}: {e}") from e


def load_checkpoint(path: Path, device: str | torch.device = "cpu") -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise AlgorithmError(f"Model file not found: {path}")
    try:
        checkpoint = torch.load(path, map_location=device, weights_only=False)
    except Exception as e:
        raise AlgorithmError(f"Failed to load model from {path}: {e}") from e
    if not isinstance(checkpoint, dict):
        raise AlgorithmError(f"Unexpected checkpoint format in {path}")
    return checkpoint


def generator_for(seed: int) -> torch.Generator:
    g = torch.Generator()
    g.manual_seed(seed)
    return g
