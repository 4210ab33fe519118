"""Hit-based evaluation of predicted number sets against actual draws."""

import numpy as np

from lottery_engine.errors import AlgorithmError
from lottery_engine.schemas.ml import EvaluationMetrics, PredictionOutput

CV_FOLDS = 5


def hit_rate(predicted: list[int], actual: list[int]) -> float:
    """Fraction of the actual numbers that were predicted."""
    if not actual:
        return 0.0
    return len(set(predicted) & set(actual)) / len(set(actual))


def compute_metrics(
    predictions: list[PredictionOutput | None],
    targets: list[list[int]],
) -> EvaluationMetrics:
    """Aggregate per-sample hits into accuracy/precision/recall/F1/MAE/RMSE.

    Samples a model could not score (``None``) are skipped. MAE and RMSE
    compare sorted predicted numbers with sorted actual numbers position by
    position.
    """
    accuracies, precisions, recalls = [], [], []
    abs_errors, sq_errors = [], []

    for output, actual in zip(predictions, targets):
        if output is None or not actual:
            continue
        predicted = output.predicted_numbers
        hits = len(set(predicted) & set(actual))
        accuracies.append(hit_rate(predicted, actual))
        precisions.append(hits / max(len(predicted), 1))
        recalls.append(hits / len(actual))

        diffs = np.array(sorted(predicted)[:len(actual)], dtype=np.float64) - np.array(
            sorted(actual)[:len(predicted)], dtype=np.float64
        )
        abs_errors.extend(np.abs(diffs).tolist())
        sq_errors.extend((diffs ** 2).tolist())

    if not accuracies:
        raise AlgorithmError("No samples could be scored for evaluation")

    precision = float(np.mean(precisions))
    recall = float(np.mean(recalls))
    f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0

    folds = np.array_split(np.asarray(accuracies), min(CV_FOLDS, len(accuracies)))
    return EvaluationMetrics(
        accuracy=float(np.mean(accuracies)),
        precision=precision,
        recall=recall,
        f1_score=f1,
        mean_absolute_error=float(np.mean(abs_errors)) if abs_errors else 0.0,
        root_mean_squared_error=float(np.sqrt(np.mean(sq_errors))) if sq_errors else 0.0,
        cross_validation_scores=[round(float(f.mean()), 6) for f in folds],
    )
