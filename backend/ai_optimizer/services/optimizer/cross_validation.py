"""K-fold cross validation over contiguous slices of a training set."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .config import CrossValidationConfig
from .entities import METRIC_NAMES, EvaluationMetrics, TrainingExample
from .errors import InsufficientDataError

LOGGER = logging.getLogger(__name__)

TrainFn = Callable[[Any, Sequence[TrainingExample]], Any]
EvalFn = Callable[[Any, Sequence[TrainingExample]], Union[EvaluationMetrics, Mapping[str, float]]]


def fold_indices(n: int, k: int) -> List[Tuple[int, int]]:
    """Validation ranges ``[start, end)`` for each fold; the last absorbs the remainder."""

    if k <= 0:
        raise ValueError("k must be positive")
    if n < k:
        raise InsufficientDataError(
            f"Cross validation needs at least {k} examples, received {n}",
            hint="Lower the fold count or collect more training data",
        )
    size = n // k
    ranges = []
    for index in range(k):
        start = index * size
        end = n if index == k - 1 else start + size
        ranges.append((start, end))
    return ranges


@dataclass(slots=True)
class CrossValidationResult:
    mean: Dict[str, float]
    std: Dict[str, float]
    folds_used: int
    fold_metrics: List[EvaluationMetrics] = field(default_factory=list)

    @property
    def has_signal(self) -> bool:
        return self.folds_used > 0

    def as_dict(self) -> Dict[str, Dict[str, float]]:
        return {name: {"mean": self.mean[name], "std": self.std[name]} for name in METRIC_NAMES}


class CrossValidator:
    """Retrain and evaluate a model once per fold and aggregate the metrics."""

    def __init__(self, config: Optional[CrossValidationConfig] = None) -> None:
        self._config = config or CrossValidationConfig()
        self._config.validate()

    def cross_validate(
        self,
        model: Any,
        training_set: Sequence[TrainingExample],
        k: Optional[int] = None,
        train_fn: Optional[TrainFn] = None,
        eval_fn: Optional[EvalFn] = None,
    ) -> CrossValidationResult:
        if train_fn is None or eval_fn is None:
            raise ValueError("train_fn and eval_fn are required")
        k = k or self._config.folds
        examples = list(training_set)
        fold_metrics: List[EvaluationMetrics] = []

        for index, (start, end) in enumerate(fold_indices(len(examples), k)):
            validation = examples[start:end]
            training = examples[:start] + examples[end:]
            if not training:
                LOGGER.debug("Skipping fold %s: no training examples", index)
                continue
            try:
                train_fn(model, training)
                metrics = eval_fn(model, validation)
            except Exception:
                LOGGER.exception("Fold %s/%s failed; excluding it from aggregation", index + 1, k)
                continue
            if not isinstance(metrics, EvaluationMetrics):
                metrics = EvaluationMetrics.from_mapping(metrics)
            fold_metrics.append(metrics)
            LOGGER.debug("Fold %s/%s metrics: %s", index + 1, k, metrics.as_dict())

        return self._aggregate(fold_metrics)

    @staticmethod
    def _aggregate(fold_metrics: List[EvaluationMetrics]) -> CrossValidationResult:
        if not fold_metrics:
            LOGGER.warning("Every cross validation fold failed; returning zeroed metrics")
            zeros = {name: 0.0 for name in METRIC_NAMES}
            return CrossValidationResult(mean=dict(zeros), std=dict(zeros), folds_used=0)

        table = np.asarray([[getattr(item, name) for name in METRIC_NAMES] for item in fold_metrics])
        # population statistics: denominator is the fold count
        means = table.mean(axis=0)
        stds = table.std(axis=0)
        return CrossValidationResult(
            mean={name: float(value) for name, value in zip(METRIC_NAMES, means)},
            std={name: float(value) for name, value in zip(METRIC_NAMES, stds)},
            folds_used=len(fold_metrics),
            fold_metrics=fold_metrics,
        )


__all__ = ["CrossValidator", "CrossValidationResult", "fold_indices"]
