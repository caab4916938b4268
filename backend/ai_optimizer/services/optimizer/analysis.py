"""Diagnostics over completed training runs."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from .config import AnalyzerConfig
from .entities import TrainingHistory

LOGGER = logging.getLogger(__name__)

CURVE_STABLE = "stable"
CURVE_UNSTABLE = "unstable"
CURVE_OSCILLATING = "oscillating"
CURVE_PLATEAUING = "plateauing"
CURVE_INSUFFICIENT = "insufficient-data"


@dataclass(slots=True)
class TrainingAnalysis:
    overfitting: bool = False
    underfitting: bool = False
    convergence: bool = False
    learning_curve: str = CURVE_INSUFFICIENT
    recommendations: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "overfitting": self.overfitting,
            "underfitting": self.underfitting,
            "convergence": self.convergence,
            "learning_curve": self.learning_curve,
            "recommendations": list(self.recommendations),
        }


class TrainingAnalyzer:
    """Classify a loss history and suggest remedies.

    Each check runs independently, so a single history can be flagged as
    overfitting and oscillating at the same time.
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None) -> None:
        self._config = config or AnalyzerConfig()
        self._config.validate()

    def analyze(self, history: Union[TrainingHistory, Mapping[str, Sequence[float]]]) -> TrainingAnalysis:
        if not isinstance(history, TrainingHistory):
            history = TrainingHistory.from_dict(history)
        result = TrainingAnalysis()
        result.overfitting = self._check_overfitting(history, result.recommendations)
        result.underfitting = self._check_underfitting(history.loss, result.recommendations)
        result.convergence = self._check_convergence(history.loss, result.recommendations)
        result.learning_curve = self._classify_curve(history.loss, result.recommendations)
        LOGGER.debug("Training analysis over %s epochs: %s", len(history), result.as_dict())
        return result

    def _check_overfitting(self, history: TrainingHistory, recommendations: List[str]) -> bool:
        if not history.loss or not history.val_loss:
            return False
        if history.val_loss[-1] > self._config.overfitting_ratio * history.loss[-1]:
            recommendations.append("Consider adding dropout layers or regularization")
            recommendations.append("Reduce model complexity or increase training data")
            return True
        return False

    def _check_underfitting(self, loss: Sequence[float], recommendations: List[str]) -> bool:
        cfg = self._config
        if len(loss) <= cfg.underfitting_min_epochs:
            return False
        early = loss[cfg.underfitting_early_epoch]
        if loss[-1] >= cfg.underfitting_ratio * early:
            recommendations.append("Increase model capacity or training time")
            recommendations.append("Check if learning rate is too low")
            return True
        return False

    def _check_convergence(self, loss: Sequence[float], recommendations: List[str]) -> bool:
        window = self._config.convergence_window
        if len(loss) <= window:
            return False
        tail = np.asarray(loss[-window:], dtype=np.float64)
        if tail.var() < self._config.convergence_tolerance * tail.mean():
            recommendations.append("Model has converged, consider early stopping")
            return True
        return False

    def _classify_curve(self, loss: Sequence[float], recommendations: List[str]) -> str:
        cfg = self._config
        if len(loss) <= cfg.curve_window:
            return CURVE_INSUFFICIENT
        tail = np.asarray(loss[-cfg.curve_window:], dtype=np.float64)
        variance, mean = tail.var(), tail.mean()

        if variance > cfg.unstable_ratio * mean:
            recommendations.append("Learning rate may be too high, consider reducing it")
            return CURVE_UNSTABLE
        if variance < cfg.plateau_ratio * mean:
            recommendations.append("Learning rate may be too low, consider increasing it")
            return CURVE_PLATEAUING

        interior = tail[1:-1]
        peaks = (interior > tail[:-2]) & (interior > tail[2:])
        troughs = (interior < tail[:-2]) & (interior < tail[2:])
        extrema = int(np.count_nonzero(peaks | troughs))
        if extrema > cfg.oscillation_ratio * len(interior):
            recommendations.append("Consider using learning rate scheduling")
            return CURVE_OSCILLATING
        return CURVE_STABLE


__all__ = [
    "TrainingAnalyzer",
    "TrainingAnalysis",
    "CURVE_STABLE",
    "CURVE_UNSTABLE",
    "CURVE_OSCILLATING",
    "CURVE_PLATEAUING",
    "CURVE_INSUFFICIENT",
]
