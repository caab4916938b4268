"""Error hierarchy for the scaling optimization engine.

Centralized exceptions let the HTTP layer and the batch/experiment machinery
classify failures into the categories callers act upon: rejected input,
model trouble, missing data, or a batch item that exhausted its retries.
"""

from __future__ import annotations

import textwrap
from typing import Optional


class OptimizerError(RuntimeError):
    """Base error for all optimizer related failures."""

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        final_message = message
        if hint:
            final_message = f"{message}\n{self._format_hint(hint)}"
        super().__init__(final_message)
        self.message = message
        self.hint = hint

    @staticmethod
    def _format_hint(hint: str) -> str:
        return textwrap.indent(f"Hint: {hint}", prefix="  ")


class ValidationError(OptimizerError):
    """Raised when caller supplied telemetry has the wrong shape."""


class ConfigurationError(OptimizerError):
    """Raised when a scaling configuration violates its invariants."""


class ModelError(OptimizerError):
    """Raised when training or prediction fails on an initialized model."""


class ModelNotInitializedError(ModelError):
    """Raised when the model is used before ``initialize`` or after ``dispose``."""


class InsufficientDataError(OptimizerError):
    """Raised when there are fewer training examples than folds."""


class BatchItemError(OptimizerError):
    """Raised when a batch function fails or breaks the index correspondence."""


class BatchTimeoutError(OptimizerError):
    """Raised when ``process_all`` exceeds its global deadline."""


class BatchCancelledError(OptimizerError):
    """Raised on handles whose item was dropped by ``cancel``."""


class ExperimentStateError(OptimizerError):
    """Raised internally on an invalid experiment state transition."""


class StreamError(OptimizerError):
    """Raised when the streaming manager is used while disconnected."""


__all__ = [
    "OptimizerError",
    "ValidationError",
    "ConfigurationError",
    "ModelError",
    "ModelNotInitializedError",
    "InsufficientDataError",
    "BatchItemError",
    "BatchTimeoutError",
    "BatchCancelledError",
    "ExperimentStateError",
    "StreamError",
]
