"""Model training and evaluation for the scaling optimizer."""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import ModelConfig, TrainingConfig
from .entities import EvaluationMetrics, TokenRule, TrainingExample, TrainingHistory
from .errors import ModelError, ModelNotInitializedError
from .model import DenseNetwork, PathLike, TrainableModel, archive_path, ensure_model, load_model

LOGGER = logging.getLogger(__name__)

LABEL_TOKENS = ("font_size", "spacing", "radius", "line_height", "shadow", "border")
PERFORMANCE_SCORES = ("render_time", "bundle_size", "memory_usage", "layout_shift")
ACCESSIBILITY_SCORES = ("font_size_compliance", "tap_target_compliance")


@dataclass(slots=True)
class ModelLabels:
    """Ground truth gathered for one configuration/usage observation."""

    optimal_tokens: Dict[str, TokenRule] = field(default_factory=dict)
    performance_scores: Dict[str, float] = field(default_factory=dict)
    satisfaction_ratings: List[float] = field(default_factory=list)
    accessibility_scores: Dict[str, float] = field(default_factory=dict)

    def to_vector(self, dimension: int = 32) -> np.ndarray:
        vector: List[float] = []
        for name in LABEL_TOKENS:
            rule = self.optimal_tokens.get(name)
            if rule is None:
                vector.extend([0.85, 8.0, 100.0, 1.0])
                continue
            vector.extend(
                [
                    rule.scale if rule.scale is not None else 0.85,
                    rule.min_value if rule.min_value is not None else 8.0,
                    rule.max_value if rule.max_value is not None else 100.0,
                    rule.step if rule.step is not None else 1.0,
                ]
            )
        vector.extend(float(self.performance_scores.get(name, 0.0)) for name in PERFORMANCE_SCORES)
        ratings = np.asarray(self.satisfaction_ratings, dtype=np.float64)
        vector.append(float(ratings.mean()) if ratings.size else 0.5)
        vector.append(float(ratings.std()) if ratings.size else 0.0)
        vector.extend(float(self.accessibility_scores.get(name, 0.0)) for name in ACCESSIBILITY_SCORES)
        vector = vector[:dimension]
        return np.asarray(vector + [0.0] * (dimension - len(vector)), dtype=np.float64)


class Normalizer:
    """Column-wise feature scaling fitted on training data."""

    def __init__(self, method: str = "standard") -> None:
        self.method = method
        self.center: Optional[np.ndarray] = None
        self.scale: Optional[np.ndarray] = None

    @property
    def fitted(self) -> bool:
        return self.center is not None

    def fit(self, x: np.ndarray) -> "Normalizer":
        if self.method == "minmax":
            center = x.min(axis=0)
            scale = x.max(axis=0) - center
        elif self.method == "robust":
            center = np.median(x, axis=0)
            scale = np.percentile(x, 75, axis=0) - np.percentile(x, 25, axis=0)
        else:
            center = x.mean(axis=0)
            scale = x.std(axis=0)
        scale = np.where(scale == 0, 1.0, scale)
        self.center, self.scale = center, scale
        return self

    def transform(self, x: np.ndarray) -> np.ndarray:
        if not self.fitted:
            return x
        return (x - self.center) / self.scale

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "center": None if self.center is None else self.center.tolist(),
            "scale": None if self.scale is None else self.scale.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Normalizer":
        normalizer = cls(data.get("method", "standard"))
        if data.get("center") is not None:
            normalizer.center = np.asarray(data["center"], dtype=np.float64)
            normalizer.scale = np.asarray(data["scale"], dtype=np.float64)
        return normalizer


def compute_metrics(predictions: np.ndarray, targets: np.ndarray, tolerance: float) -> EvaluationMetrics:
    """Regression metrics projected onto classification-style [0, 1] scores."""

    if targets.size == 0:
        return EvaluationMetrics()
    errors = predictions - targets
    mse = float(np.mean(errors**2))
    accuracy = float(np.mean(np.abs(errors) <= tolerance))

    mae = float(np.mean(np.abs(errors)))
    peak = float(np.max(np.abs(targets)))
    if peak == 0:
        precision = 1.0 if mae == 0 else 0.0
    else:
        precision = max(0.0, 1.0 - mae / peak)

    flat_predictions, flat_targets = predictions.ravel(), targets.ravel()
    if flat_predictions.std() == 0 or flat_targets.std() == 0:
        recall = 0.0
    else:
        recall = abs(float(np.corrcoef(flat_predictions, flat_targets)[0, 1]))

    f1 = 0.0 if precision + recall == 0 else 2 * precision * recall / (precision + recall)
    return EvaluationMetrics(
        accuracy=accuracy,
        precision=min(precision, 1.0),
        recall=min(recall, 1.0),
        f1=min(f1, 1.0),
        mse=mse,
    )


def stack_examples(examples: Sequence[TrainingExample]) -> Tuple[np.ndarray, np.ndarray]:
    x = np.asarray([example.features for example in examples], dtype=np.float64)
    y = np.asarray([example.labels for example in examples], dtype=np.float64)
    return x, y


class ModelTrainer:
    """Own a trainable model and expose fit/predict/evaluate/save.

    A trainer is not meant to be shared between concurrent training calls;
    ``fit`` holds a lock so accidental concurrent use serializes instead of
    interleaving weight updates.
    """

    def __init__(
        self,
        model_config: Optional[ModelConfig] = None,
        training_config: Optional[TrainingConfig] = None,
        *,
        feature_dimension: int = 128,
        model_factory: Optional[Callable[[int, ModelConfig], Any]] = None,
    ) -> None:
        self._model_config = model_config or ModelConfig()
        self._training_config = training_config or TrainingConfig()
        self._model_config.validate()
        self._training_config.validate()
        self._feature_dimension = feature_dimension
        self._model_factory = model_factory or DenseNetwork
        self._model: Optional[TrainableModel] = None
        self._normalizer = Normalizer(self._training_config.normalization)
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._model is not None

    @property
    def model(self) -> TrainableModel:
        if self._model is None:
            raise ModelNotInitializedError("Model is not initialized", hint="Call initialize() first")
        return self._model

    def initialize(self, model_path: Optional[PathLike] = None) -> TrainableModel:
        """Load ``model_path`` when given, otherwise build a fresh model.

        Load failures never propagate: the trainer logs a warning and builds a
        new model instead.  Built models lacking ``fit``/``predict`` are swapped
        for a stub.
        """

        if model_path is not None:
            try:
                self._model = load_model(model_path)
                self._load_normalizer(model_path)
                LOGGER.info("Loaded pretrained model from %s", model_path)
                return self._model
            except Exception as exc:
                LOGGER.warning("Failed to load model from %s (%s); building a new one", model_path, exc)

        try:
            candidate = self._model_factory(self._feature_dimension, self._model_config)
        except Exception as exc:
            LOGGER.warning("Model construction failed (%s); falling back to a stub model", exc)
            candidate = None
        self._model = ensure_model(
            candidate,
            input_dim=self._feature_dimension,
            output_dim=self._model_config.label_dimension,
        )
        self._normalizer = Normalizer(self._training_config.normalization)
        LOGGER.info("Initialized %s", type(self._model).__name__)
        return self._model

    def fit(self, examples: Sequence[TrainingExample], options: Optional[Mapping[str, Any]] = None) -> TrainingHistory:
        model = self.model
        if not examples:
            raise ModelError("Cannot train without examples")
        options = dict(options or {})
        epochs = int(options.get("epochs", self._training_config.epochs))
        batch_size = int(options.get("batch_size", self._training_config.batch_size))
        validation_split = float(options.get("validation_split", self._training_config.validation_split))

        with self._lock:
            try:
                x, y = stack_examples(examples)
                normalizer = Normalizer(self._training_config.normalization).fit(x)
                history = model.fit(
                    normalizer.transform(x),
                    y,
                    epochs=epochs,
                    batch_size=batch_size,
                    validation_split=validation_split,
                    accuracy_tolerance=self._training_config.accuracy_tolerance,
                )
            except ModelNotInitializedError:
                raise
            except Exception as exc:
                LOGGER.error("Training failed: %s", exc)
                raise ModelError("Model training failed", hint=str(exc)) from exc
            self._normalizer = normalizer
        LOGGER.info("Trained on %s examples for %s epochs", len(examples), len(history))
        return history

    def predict(self, vector: Sequence[float]) -> np.ndarray:
        model = self.model
        x = np.asarray(vector, dtype=np.float64)
        single = x.ndim == 1
        try:
            output = model.predict(self._normalizer.transform(x.reshape(1, -1) if single else x))
        except Exception as exc:
            raise ModelError("Prediction failed", hint=str(exc)) from exc
        output = np.asarray(output, dtype=np.float64)
        return output[0] if single else output

    def evaluate(self, examples: Sequence[TrainingExample]) -> EvaluationMetrics:
        if self._model is None:
            raise ModelNotInitializedError("Model is not initialized", hint="Call initialize() first")
        if not examples:
            return EvaluationMetrics()
        x, y = stack_examples(examples)
        predictions = self.predict(x)
        return compute_metrics(predictions, y, self._training_config.accuracy_tolerance)

    def prediction_intervals(self, examples: Sequence[TrainingExample]) -> Tuple[np.ndarray, np.ndarray]:
        """95% bands around predictions using the residual standard deviation."""

        x, y = stack_examples(examples)
        predictions = self.predict(x)
        margin = 1.96 * float(np.std(y - predictions))
        return predictions - margin, predictions + margin

    def save(self, path: PathLike) -> Path:
        target = self.model.save(path)
        sidecar = self._normalizer_path(target)
        sidecar.write_text(json.dumps(self._normalizer.to_dict()))
        return target

    def dispose(self) -> None:
        self._model = None
        self._normalizer = Normalizer(self._training_config.normalization)
        LOGGER.info("Disposed model resources")

    def model_info(self) -> Dict[str, Any]:
        if self._model is None:
            return {"architecture": None, "parameters": 0, "layers": 0, "initialized": False}
        summary = self._model.describe() if hasattr(self._model, "describe") else {}
        return {
            "architecture": summary.get("architecture", summary.get("type", type(self._model).__name__)),
            "parameters": int(getattr(self._model, "parameter_count", 0)),
            "layers": int(getattr(self._model, "layer_count", 0)),
            "initialized": True,
        }

    @staticmethod
    def _normalizer_path(target: Path) -> Path:
        return target.with_name(target.stem + ".normalizer.json")

    def _load_normalizer(self, model_path: PathLike) -> None:
        sidecar = self._normalizer_path(archive_path(model_path))
        if sidecar.exists():
            self._normalizer = Normalizer.from_dict(json.loads(sidecar.read_text()))
        else:
            self._normalizer = Normalizer(self._training_config.normalization)


__all__ = ["ModelTrainer", "ModelLabels", "Normalizer", "compute_metrics", "stack_examples", "LABEL_TOKENS"]
