"""Responsive scaling optimization services."""

from .ab_testing import ABTestingFramework, ExperimentConfig, ExperimentRepository, ExperimentResult, Variant
from .analysis import TrainingAnalysis, TrainingAnalyzer
from .batching import BatchProcessor, BatchResult, BatchSizeOptimizer, MemoryMonitor
from .config import ConfigStore, OptimizerConfig
from .cross_validation import CrossValidationResult, CrossValidator
from .entities import EvaluationMetrics, ScalingConfig, TrainingExample, TrainingHistory
from .errors import (
    BatchCancelledError,
    BatchItemError,
    BatchTimeoutError,
    ConfigurationError,
    ExperimentStateError,
    InsufficientDataError,
    ModelError,
    ModelNotInitializedError,
    OptimizerError,
    StreamError,
    ValidationError,
)
from .features import FeatureExtractor
from .hparam import HyperparameterAdvisor
from .optimizer import AIOptimizer
from .streaming import StreamingManager, StreamMessage
from .suggestions import OptimizationSuggestions, SuggestionGenerator
from .trainer import ModelTrainer

__all__ = [
    "AIOptimizer",
    "ABTestingFramework",
    "BatchCancelledError",
    "BatchItemError",
    "BatchProcessor",
    "BatchResult",
    "BatchSizeOptimizer",
    "BatchTimeoutError",
    "ConfigStore",
    "ConfigurationError",
    "CrossValidationResult",
    "CrossValidator",
    "EvaluationMetrics",
    "ExperimentConfig",
    "ExperimentRepository",
    "ExperimentResult",
    "ExperimentStateError",
    "FeatureExtractor",
    "HyperparameterAdvisor",
    "InsufficientDataError",
    "MemoryMonitor",
    "ModelError",
    "ModelNotInitializedError",
    "ModelTrainer",
    "OptimizationSuggestions",
    "OptimizerConfig",
    "OptimizerError",
    "ScalingConfig",
    "StreamError",
    "StreamMessage",
    "StreamingManager",
    "SuggestionGenerator",
    "TrainingAnalysis",
    "TrainingAnalyzer",
    "TrainingExample",
    "TrainingHistory",
    "ValidationError",
    "Variant",
]
