"""Trainable models for scaling predictions.

Two implementations share the :class:`TrainableModel` interface:

* :class:`DenseNetwork` - a small multilayer perceptron written against numpy
  (two L2-regularized hidden blocks with dropout, a third hidden layer and a
  linear output) trained with Adam on a mean-squared-error objective.
* :class:`StubModel` - a no-op model that predicts zeros.  It keeps degraded
  environments functional when no usable model can be built or loaded.

Models persist as ``.npz`` archives holding the weight tensors plus a JSON
metadata entry describing the architecture.
"""
from __future__ import annotations

import abc
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from .config import ModelConfig
from .entities import TrainingHistory

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


def archive_path(path: PathLike) -> Path:
    path = Path(path)
    return path if path.suffix == ".npz" else path.with_name(path.name + ".npz")


def _as_matrix(values: Any) -> np.ndarray:
    array = np.asarray(values, dtype=np.float64)
    if array.ndim == 1:
        array = array.reshape(1, -1)
    return array


def _accuracy(predictions: np.ndarray, targets: np.ndarray, tolerance: float) -> float:
    if targets.size == 0:
        return 0.0
    return float(np.mean(np.abs(predictions - targets) <= tolerance))


class TrainableModel(abc.ABC):
    """Contract every model owned by the trainer has to satisfy."""

    input_dim: int
    output_dim: int

    @abc.abstractmethod
    def fit(
        self,
        x: np.ndarray,
        y: np.ndarray,
        *,
        epochs: int,
        batch_size: int,
        validation_split: float = 0.0,
        accuracy_tolerance: float = 0.1,
    ) -> TrainingHistory:
        ...

    @abc.abstractmethod
    def predict(self, x: np.ndarray) -> np.ndarray:
        ...

    def evaluate(self, x: np.ndarray, y: np.ndarray) -> float:
        predictions = self.predict(x)
        return float(np.mean((predictions - _as_matrix(y)) ** 2))

    @abc.abstractmethod
    def save(self, path: PathLike) -> Path:
        ...

    @property
    @abc.abstractmethod
    def parameter_count(self) -> int:
        ...

    @property
    @abc.abstractmethod
    def layer_count(self) -> int:
        ...

    def describe(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "input_dim": self.input_dim,
            "output_dim": self.output_dim,
            "parameters": self.parameter_count,
            "layers": self.layer_count,
        }


class DenseNetwork(TrainableModel):
    """Feed-forward regressor trained with mini-batch Adam."""

    _PARAMS = ("W1", "b1", "W2", "b2", "W3", "b3", "W4", "b4")
    _BETA1 = 0.9
    _BETA2 = 0.999
    _EPSILON = 1e-7

    def __init__(self, input_dim: int, config: Optional[ModelConfig] = None) -> None:
        self.config = config or ModelConfig()
        self.config.validate()
        self.input_dim = int(input_dim)
        self.output_dim = self.config.label_dimension
        self._rng = np.random.default_rng(self.config.seed)
        self.params = self._initialize_parameters()
        self._moments = {name: np.zeros_like(value) for name, value in self.params.items()}
        self._velocities = {name: np.zeros_like(value) for name, value in self.params.items()}
        self._step = 0

    def _initialize_parameters(self) -> Dict[str, np.ndarray]:
        sizes = [self.input_dim, *self.config.hidden_units, self.output_dim]
        params: Dict[str, np.ndarray] = {}
        for index, (fan_in, fan_out) in enumerate(zip(sizes[:-1], sizes[1:]), start=1):
            scale = np.sqrt(2.0 / fan_in)
            params[f"W{index}"] = self._rng.normal(0.0, scale, size=(fan_in, fan_out))
            params[f"b{index}"] = np.zeros(fan_out)
        return params

    @property
    def parameter_count(self) -> int:
        return int(sum(value.size for value in self.params.values()))

    @property
    def layer_count(self) -> int:
        # four dense layers plus two dropout layers
        return 6

    def describe(self) -> Dict[str, Any]:
        summary = super().describe()
        units = list(self.config.hidden_units)
        summary["architecture"] = [
            {"type": "dense", "units": units[0], "activation": "relu", "l2": self.config.l2_strength},
            {"type": "dropout", "rate": self.config.dropout},
            {"type": "dense", "units": units[1], "activation": "relu", "l2": self.config.l2_strength},
            {"type": "dropout", "rate": self.config.dropout},
            {"type": "dense", "units": units[2], "activation": "relu"},
            {"type": "dense", "units": self.output_dim, "activation": "linear"},
        ]
        return summary

    def _forward(self, x: np.ndarray, *, training: bool) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
        p = self.params
        cache: Dict[str, np.ndarray] = {"x": x}
        hidden = x
        for index in (1, 2):
            z = hidden @ p[f"W{index}"] + p[f"b{index}"]
            activation = np.maximum(z, 0.0)
            if training and self.config.dropout > 0:
                keep = 1.0 - self.config.dropout
                mask = (self._rng.random(activation.shape) < keep) / keep
            else:
                mask = np.ones_like(activation)
            cache[f"z{index}"] = z
            cache[f"mask{index}"] = mask
            hidden = activation * mask
            cache[f"h{index}"] = hidden
        cache["z3"] = hidden @ p["W3"] + p["b3"]
        cache["h3"] = np.maximum(cache["z3"], 0.0)
        output = cache["h3"] @ p["W4"] + p["b4"]
        return output, cache

    def _backward(self, output: np.ndarray, y: np.ndarray, cache: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        p = self.params
        l2 = self.config.l2_strength
        grads: Dict[str, np.ndarray] = {}

        delta = 2.0 * (output - y) / output.size
        grads["W4"] = cache["h3"].T @ delta
        grads["b4"] = delta.sum(axis=0)

        delta = (delta @ p["W4"].T) * (cache["z3"] > 0)
        grads["W3"] = cache["h2"].T @ delta
        grads["b3"] = delta.sum(axis=0)

        delta = (delta @ p["W3"].T) * cache["mask2"] * (cache["z2"] > 0)
        grads["W2"] = cache["h1"].T @ delta + 2.0 * l2 * p["W2"]
        grads["b2"] = delta.sum(axis=0)

        delta = (delta @ p["W2"].T) * cache["mask1"] * (cache["z1"] > 0)
        grads["W1"] = cache["x"].T @ delta + 2.0 * l2 * p["W1"]
        grads["b1"] = delta.sum(axis=0)
        return grads

    def _apply_gradients(self, grads: Dict[str, np.ndarray]) -> None:
        self._step += 1
        lr = self.config.learning_rate
        correction1 = 1.0 - self._BETA1 ** self._step
        correction2 = 1.0 - self._BETA2 ** self._step
        for name in self._PARAMS:
            self._moments[name] = self._BETA1 * self._moments[name] + (1 - self._BETA1) * grads[name]
            self._velocities[name] = self._BETA2 * self._velocities[name] + (1 - self._BETA2) * grads[name] ** 2
            m_hat = self._moments[name] / correction1
            v_hat = self._velocities[name] / correction2
            self.params[name] -= lr * m_hat / (np.sqrt(v_hat) + self._EPSILON)

    def fit(
        self,
        x: np.ndarray,
        y: np.ndarray,
        *,
        epochs: int,
        batch_size: int,
        validation_split: float = 0.0,
        accuracy_tolerance: float = 0.1,
    ) -> TrainingHistory:
        x = _as_matrix(x)
        y = _as_matrix(y)
        if x.shape[0] != y.shape[0]:
            raise ValueError(f"Feature rows ({x.shape[0]}) and label rows ({y.shape[0]}) differ")
        if x.shape[1] != self.input_dim:
            raise ValueError(f"Expected {self.input_dim} features, received {x.shape[1]}")

        # hold out the tail as validation data, keeping at least one training row
        n_val = int(x.shape[0] * validation_split)
        n_val = min(n_val, x.shape[0] - 1)
        x_train, y_train = x[: x.shape[0] - n_val], y[: y.shape[0] - n_val]
        x_val, y_val = x[x.shape[0] - n_val :], y[y.shape[0] - n_val :]

        history = TrainingHistory()
        batch_size = max(1, int(batch_size))
        for epoch in range(1, epochs + 1):
            order = self._rng.permutation(x_train.shape[0])
            batch_losses: List[float] = []
            for start in range(0, len(order), batch_size):
                index = order[start : start + batch_size]
                output, cache = self._forward(x_train[index], training=True)
                batch_losses.append(float(np.mean((output - y_train[index]) ** 2)))
                self._apply_gradients(self._backward(output, y_train[index], cache))

            loss = float(np.mean(batch_losses))
            if not np.isfinite(loss):
                raise FloatingPointError(f"Training diverged at epoch {epoch}")
            train_predictions = self.predict(x_train)
            accuracy = _accuracy(train_predictions, y_train, accuracy_tolerance)
            if n_val:
                val_predictions = self.predict(x_val)
                val_loss = float(np.mean((val_predictions - y_val) ** 2))
                val_accuracy = _accuracy(val_predictions, y_val, accuracy_tolerance)
            else:
                val_loss, val_accuracy = loss, accuracy
            history.append(loss, val_loss, accuracy, val_accuracy)
            LOGGER.debug("Epoch %s/%s loss=%.6f val_loss=%.6f", epoch, epochs, loss, val_loss)
        return history

    def predict(self, x: np.ndarray) -> np.ndarray:
        output, _ = self._forward(_as_matrix(x), training=False)
        return output

    def save(self, path: PathLike) -> Path:
        target = archive_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        metadata = {
            "kind": "dense",
            "input_dim": self.input_dim,
            "label_dimension": self.output_dim,
            "hidden_units": list(self.config.hidden_units),
            "dropout": self.config.dropout,
            "l2_strength": self.config.l2_strength,
            "learning_rate": self.config.learning_rate,
            "seed": self.config.seed,
        }
        np.savez(target, metadata=np.array(json.dumps(metadata)), **self.params)
        LOGGER.info("Saved dense network with %s parameters to %s", self.parameter_count, target)
        return target

    @classmethod
    def load(cls, path: PathLike) -> "DenseNetwork":
        target = archive_path(path)
        with np.load(target, allow_pickle=False) as archive:
            metadata = json.loads(archive["metadata"].item())
            if metadata.get("kind") != "dense":
                raise ValueError(f"{target} does not contain a dense network")
            config = ModelConfig(
                label_dimension=int(metadata["label_dimension"]),
                hidden_units=tuple(int(units) for units in metadata["hidden_units"]),
                dropout=float(metadata["dropout"]),
                l2_strength=float(metadata["l2_strength"]),
                learning_rate=float(metadata["learning_rate"]),
                seed=int(metadata["seed"]),
            )
            model = cls(int(metadata["input_dim"]), config)
            for name in cls._PARAMS:
                if archive[name].shape != model.params[name].shape:
                    raise ValueError(f"Weight {name} in {target} has an unexpected shape")
                model.params[name] = archive[name].astype(np.float64)
        return model


class StubModel(TrainableModel):
    """Interface-conformant stand-in that predicts zeros."""

    def __init__(self, input_dim: int, output_dim: int) -> None:
        self.input_dim = int(input_dim)
        self.output_dim = int(output_dim)

    @property
    def parameter_count(self) -> int:
        return 0

    @property
    def layer_count(self) -> int:
        return 0

    def fit(
        self,
        x: np.ndarray,
        y: np.ndarray,
        *,
        epochs: int,
        batch_size: int,
        validation_split: float = 0.0,
        accuracy_tolerance: float = 0.1,
    ) -> TrainingHistory:
        LOGGER.debug("Stub model ignoring fit over %s rows", len(_as_matrix(x)))
        return TrainingHistory()

    def predict(self, x: np.ndarray) -> np.ndarray:
        return np.zeros((_as_matrix(x).shape[0], self.output_dim))

    def save(self, path: PathLike) -> Path:
        target = archive_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        metadata = {"kind": "stub", "input_dim": self.input_dim, "label_dimension": self.output_dim}
        np.savez(target, metadata=np.array(json.dumps(metadata)))
        return target


def ensure_model(candidate: Any, *, input_dim: int, output_dim: int) -> Any:
    """Return ``candidate`` if it exposes fit/predict, otherwise a :class:`StubModel`."""

    if callable(getattr(candidate, "fit", None)) and callable(getattr(candidate, "predict", None)):
        return candidate
    LOGGER.warning(
        "Model %s lacks fit/predict; substituting a stub model", type(candidate).__name__
    )
    return StubModel(input_dim, output_dim)


def load_model(path: PathLike) -> TrainableModel:
    """Load whichever model kind was saved at ``path``."""

    target = archive_path(path)
    with np.load(target, allow_pickle=False) as archive:
        metadata = json.loads(archive["metadata"].item())
    if metadata.get("kind") == "stub":
        return StubModel(int(metadata["input_dim"]), int(metadata["label_dimension"]))
    return DenseNetwork.load(target)


__all__ = ["TrainableModel", "DenseNetwork", "StubModel", "ensure_model", "load_model", "archive_path"]
