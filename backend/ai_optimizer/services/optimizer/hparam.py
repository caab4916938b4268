"""Hyperparameter advice driven by dataset size and dimensionality."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

from .config import AdvisorConfig
from .entities import TrainingExample

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Suggestion:
    current: Any
    suggested: Any
    reason: str

    @property
    def changed(self) -> bool:
        return self.current != self.suggested


@dataclass(slots=True)
class HyperparameterSuggestions:
    learning_rate: Suggestion
    batch_size: Suggestion
    epochs: Suggestion
    architecture: Suggestion

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {"current": item.current, "suggested": item.suggested, "reason": item.reason}
            for name, item in (
                ("learning_rate", self.learning_rate),
                ("batch_size", self.batch_size),
                ("epochs", self.epochs),
                ("architecture", self.architecture),
            )
        }


class HyperparameterAdvisor:
    """Recommend learning rate, batch size, epochs and architecture.

    The four suggestions are computed independently and always returned
    together; an unchanged value carries a reason explaining why.
    """

    def __init__(self, config: Optional[AdvisorConfig] = None) -> None:
        self._config = config or AdvisorConfig()
        self._config.validate()

    def suggest(
        self,
        training_set: Sequence[TrainingExample],
        current: Optional[Mapping[str, Any]] = None,
    ) -> HyperparameterSuggestions:
        current = dict(current or {})
        size = len(training_set)
        dimension = len(training_set[0].features) if size else 0
        suggestions = HyperparameterSuggestions(
            learning_rate=self._learning_rate(size, float(current.get("learning_rate", self._config.learning_rate))),
            batch_size=self._batch_size(size, int(current.get("batch_size", self._config.batch_size))),
            epochs=self._epochs(size, int(current.get("epochs", self._config.epochs))),
            architecture=self._architecture(dimension, str(current.get("architecture", self._config.architecture))),
        )
        LOGGER.debug("Hyperparameter suggestions for %s examples: %s", size, suggestions.as_dict())
        return suggestions

    def _learning_rate(self, size: int, rate: float) -> Suggestion:
        cfg = self._config
        floor, ceiling = cfg.min_learning_rate, cfg.min_learning_rate * 10
        if size < cfg.small_dataset:
            if rate <= floor:
                return Suggestion(rate, rate, "Learning rate is already at or below the small-data floor")
            return Suggestion(rate, max(rate * 0.5, floor), "Reduce to avoid overfitting small data")
        if size > cfg.large_dataset:
            if rate >= ceiling:
                return Suggestion(rate, rate, "Learning rate is already at or above the large-data ceiling")
            return Suggestion(rate, min(rate * 1.5, ceiling), "Increase to speed convergence on large data")
        return Suggestion(rate, rate, "Learning rate is appropriate for the dataset size")

    def _batch_size(self, size: int, batch: int) -> Suggestion:
        cfg = self._config
        if size < cfg.small_batch_dataset:
            return Suggestion(batch, max(batch // 2, cfg.min_batch_size), "Use smaller batches for small datasets")
        if size > cfg.large_batch_dataset:
            return Suggestion(batch, min(batch * 2, cfg.max_batch_size), "Use larger batches for faster training")
        return Suggestion(batch, batch, "Batch size is appropriate for the dataset size")

    def _epochs(self, size: int, epochs: int) -> Suggestion:
        cfg = self._config
        if size < cfg.small_dataset:
            return Suggestion(epochs, min(epochs * 2, cfg.max_epochs), "Train longer to ensure convergence")
        if size > cfg.large_dataset:
            return Suggestion(epochs, max(epochs // 2, cfg.min_epochs), "Train for fewer epochs to avoid overfitting")
        return Suggestion(epochs, epochs, "Epoch count is appropriate for the dataset size")

    def _architecture(self, dimension: int, architecture: str) -> Suggestion:
        cfg = self._config
        if dimension > cfg.high_dimension:
            return Suggestion(architecture, "neural-network", "High-dimensional features benefit from a neural network")
        if 0 < dimension < cfg.low_dimension:
            return Suggestion(architecture, "neural-network", "Few features; a compact neural network is sufficient")
        return Suggestion(architecture, architecture, "Architecture matches the feature dimensionality")


__all__ = ["HyperparameterAdvisor", "HyperparameterSuggestions", "Suggestion"]
