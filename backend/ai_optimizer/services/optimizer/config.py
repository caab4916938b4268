"""Configuration schemas for the scaling optimization pipeline."""
from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

NORMALIZATION_METHODS = ("standard", "minmax", "robust")


def _ensure_positive(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive, received {value!r}")
    return value


def _ensure_ratio(name: str, value: float) -> float:
    if not 0 <= value <= 1:
        raise ValueError(f"{name} must be within [0, 1], received {value!r}")
    return value


def _ensure_enum(name: str, value: str, options: Iterable[str]) -> str:
    if value not in options:
        allowed = ", ".join(sorted(options))
        raise ValueError(f"{name} must be one of {allowed}, received {value!r}")
    return value


@dataclass(slots=True)
class FeatureConfig:
    """Layout of the fixed-length feature vector."""

    dimension: int = 128
    breakpoint_slots: int = 8
    top_values: int = 10
    component_slots: int = 10
    property_slots: int = 10

    def validate(self) -> None:
        for name in ("dimension", "breakpoint_slots", "top_values", "component_slots", "property_slots"):
            _ensure_positive(name, getattr(self, name))


@dataclass(slots=True)
class ModelConfig:
    """Architecture and optimizer settings for the dense network."""

    label_dimension: int = 32
    hidden_units: Tuple[int, int, int] = (256, 128, 64)
    dropout: float = 0.2
    l2_strength: float = 0.001
    learning_rate: float = 0.001
    seed: int = 23

    def validate(self) -> None:
        _ensure_positive("label_dimension", self.label_dimension)
        if len(self.hidden_units) != 3:
            raise ValueError("hidden_units must describe exactly three hidden layers")
        for units in self.hidden_units:
            _ensure_positive("hidden_units", units)
        if not 0 <= self.dropout < 1:
            raise ValueError("dropout must be within [0, 1)")
        if self.l2_strength < 0:
            raise ValueError("l2_strength cannot be negative")
        _ensure_positive("learning_rate", self.learning_rate)


@dataclass(slots=True)
class TrainingConfig:
    """Configuration for a single training run."""

    epochs: int = 100
    batch_size: int = 32
    validation_split: float = 0.2
    normalization: str = "standard"
    accuracy_tolerance: float = 0.1

    def validate(self) -> None:
        if self.epochs <= 0:
            raise ValueError("epochs must be positive")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if not 0 <= self.validation_split < 1:
            raise ValueError("validation_split must be within [0, 1)")
        _ensure_enum("normalization", self.normalization, NORMALIZATION_METHODS)
        _ensure_positive("accuracy_tolerance", self.accuracy_tolerance)


@dataclass(slots=True)
class CrossValidationConfig:
    folds: int = 5

    def validate(self) -> None:
        if self.folds < 2:
            raise ValueError("folds must be at least 2")


@dataclass(slots=True)
class AnalyzerConfig:
    """Thresholds used to classify a training history."""

    overfitting_ratio: float = 1.5
    underfitting_ratio: float = 0.9
    underfitting_min_epochs: int = 10
    underfitting_early_epoch: int = 5
    convergence_window: int = 5
    convergence_tolerance: float = 0.01
    curve_window: int = 10
    unstable_ratio: float = 0.5
    plateau_ratio: float = 0.01
    oscillation_ratio: float = 0.3

    def validate(self) -> None:
        _ensure_positive("overfitting_ratio", self.overfitting_ratio)
        _ensure_ratio("underfitting_ratio", self.underfitting_ratio)
        _ensure_positive("convergence_window", self.convergence_window)
        if self.curve_window < 3:
            raise ValueError("curve_window must be at least 3")
        if not 0 <= self.underfitting_early_epoch < self.underfitting_min_epochs:
            raise ValueError("underfitting_early_epoch must be in [0, underfitting_min_epochs)")
        _ensure_ratio("oscillation_ratio", self.oscillation_ratio)


@dataclass(slots=True)
class AdvisorConfig:
    """Defaults and bounds for hyperparameter suggestions."""

    learning_rate: float = 0.001
    batch_size: int = 32
    epochs: int = 100
    architecture: str = "neural-network"
    min_learning_rate: float = 2e-4
    min_batch_size: int = 8
    max_batch_size: int = 128
    max_epochs: int = 500
    min_epochs: int = 50
    small_dataset: int = 100
    large_dataset: int = 10000
    small_batch_dataset: int = 50
    large_batch_dataset: int = 5000
    high_dimension: int = 50
    low_dimension: int = 10

    def validate(self) -> None:
        _ensure_positive("learning_rate", self.learning_rate)
        _ensure_positive("min_learning_rate", self.min_learning_rate)
        if self.min_batch_size > self.max_batch_size:
            raise ValueError("min_batch_size cannot exceed max_batch_size")
        if self.min_epochs > self.max_epochs:
            raise ValueError("min_epochs cannot exceed max_epochs")
        if self.small_dataset >= self.large_dataset:
            raise ValueError("small_dataset must be below large_dataset")


@dataclass(slots=True)
class BatchConfig:
    """Configuration for the asynchronous batch processor."""

    max_batch_size: int = 100
    min_batch_size: int = 10
    max_wait: timedelta = timedelta(seconds=5)
    max_concurrent_batches: int = 4
    retry_delay: timedelta = timedelta(seconds=1)
    enable_priority: bool = True
    memory_threshold_mb: float = 2048.0
    sample_memory: bool = True
    max_retries: int = 3
    process_timeout: timedelta = timedelta(seconds=300)

    def validate(self) -> None:
        if self.min_batch_size <= 0:
            raise ValueError("min_batch_size must be positive")
        if self.max_batch_size < self.min_batch_size:
            raise ValueError("max_batch_size must be >= min_batch_size")
        if self.max_concurrent_batches <= 0:
            raise ValueError("max_concurrent_batches must be positive")
        if self.max_wait < timedelta(0) or self.retry_delay < timedelta(0):
            raise ValueError("max_wait and retry_delay cannot be negative")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.process_timeout <= timedelta(0):
            raise ValueError("process_timeout must be positive")
        _ensure_positive("memory_threshold_mb", self.memory_threshold_mb)


@dataclass(slots=True)
class ABTestConfig:
    """Configuration for A/B testing experiments."""

    significance_level: float = 0.05
    target_power: float = 0.8
    interim_interval: int = 100
    early_stopping: bool = True
    small_sample: int = 100
    wide_interval: float = 0.1

    def validate(self) -> None:
        if not 0 < self.significance_level < 0.5:
            raise ValueError("significance_level must be in (0, 0.5)")
        if not 0 < self.target_power < 1:
            raise ValueError("target_power must be in (0, 1)")
        if self.interim_interval <= 0:
            raise ValueError("interim_interval must be positive")


@dataclass(slots=True)
class StreamingConfig:
    heartbeat_interval: timedelta = timedelta(seconds=30)
    latency_window: int = 50

    def validate(self) -> None:
        if self.heartbeat_interval <= timedelta(0):
            raise ValueError("heartbeat_interval must be positive")
        if self.latency_window <= 0:
            raise ValueError("latency_window must be positive")


@dataclass(slots=True)
class OptimizerConfig:
    """Aggregate configuration for the optimizer facade."""

    features: FeatureConfig = field(default_factory=FeatureConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    cross_validation: CrossValidationConfig = field(default_factory=CrossValidationConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    advisor: AdvisorConfig = field(default_factory=AdvisorConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    abtest: ABTestConfig = field(default_factory=ABTestConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)

    def validate(self) -> None:
        self.features.validate()
        self.model.validate()
        self.training.validate()
        self.cross_validation.validate()
        self.analyzer.validate()
        self.advisor.validate()
        self.batch.validate()
        self.abtest.validate()
        self.streaming.validate()

    def with_overrides(self, **sections: object) -> "OptimizerConfig":
        """Return a copy with whole sections replaced."""

        unknown = set(sections) - {name for name in self.__dataclass_fields__}
        if unknown:
            raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")
        return replace(self, **sections)


@dataclass(frozen=True)
class ConfigSnapshot:
    version: int
    created_at: datetime
    _config: OptimizerConfig = field(repr=False)

    @property
    def config(self) -> OptimizerConfig:
        """A private copy; mutating it never changes the stored snapshot."""

        return copy.deepcopy(self._config)


class ConfigStore:
    """Owned store of optimizer configuration with immutable, numbered snapshots.

    ``update`` never mutates an existing snapshot: it validates a modified copy
    and appends it as the next version.  Components read ``current().config``
    when they are built, so a later update does not change them mid-flight.
    """

    def __init__(self, initial: Optional[OptimizerConfig] = None) -> None:
        config = copy.deepcopy(initial) if initial is not None else OptimizerConfig()
        config.validate()
        self._lock = threading.Lock()
        self._snapshots: List[ConfigSnapshot] = [ConfigSnapshot(1, datetime.utcnow(), config)]

    @property
    def version(self) -> int:
        return self._snapshots[-1].version

    def current(self) -> ConfigSnapshot:
        return self._snapshots[-1]

    def update(self, **sections: object) -> ConfigSnapshot:
        """Replace whole configuration sections and record a new version.

        Raises ``ValueError`` for unknown sections or invalid values; the
        store is left unchanged in that case.
        """

        with self._lock:
            candidate = copy.deepcopy(self._snapshots[-1].config.with_overrides(**sections))
            candidate.validate()
            snapshot = ConfigSnapshot(self._snapshots[-1].version + 1, datetime.utcnow(), candidate)
            self._snapshots.append(snapshot)
            return snapshot

    def snapshot(self, version: int) -> ConfigSnapshot:
        for item in self._snapshots:
            if item.version == version:
                return item
        raise KeyError(f"Unknown configuration version {version}")

    def history(self) -> List[int]:
        return [item.version for item in self._snapshots]
