"""
AI Optimizer - facade over the scaling optimization pipeline.
Wires feature extraction, the model trainer, diagnostics, suggestions,
batch processing and A/B testing behind one object.
"""
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from loguru import logger

from . import metrics
from .ab_testing import (
    ABTestingFramework,
    ExperimentAnalysis,
    ExperimentConfig,
    ExperimentRepository,
    ExperimentResult,
    PowerAnalysis,
)
from .analysis import TrainingAnalysis, TrainingAnalyzer
from .batching import BatchProcessor, BatchResult
from .config import ConfigStore
from .cross_validation import CrossValidationResult, CrossValidator
from .entities import EvaluationMetrics, ScalingConfig, TrainingExample, TrainingHistory
from .errors import ValidationError
from .features import FeatureExtractor
from .hparam import HyperparameterAdvisor, HyperparameterSuggestions
from .model import PathLike
from .streaming import StreamingManager
from .suggestions import OptimizationSuggestions, SuggestionGenerator
from .trainer import ModelTrainer
from .validation import validate_scaling_config, validate_usage_data


class AIOptimizer:
    """
    Entry point used by the API layer:
    1. Validates and featurizes configuration + telemetry
    2. Predicts optimized scaling parameters with the trained model
    3. Decodes predictions into suggestions
    4. Runs experiments that check whether a suggestion helps
    """

    def __init__(
        self,
        config_store: Optional[ConfigStore] = None,
        *,
        repository: Optional[ExperimentRepository] = None,
        model_factory: Optional[Callable[..., Any]] = None,
    ):
        self.config_store = config_store or ConfigStore()
        self.config_version = self.config_store.version
        config = self.config_store.current().config
        self.config = config
        self._model_factory = model_factory

        self.feature_extractor = FeatureExtractor(config.features)
        self.trainer = self._new_trainer()
        self.cross_validator = CrossValidator(config.cross_validation)
        self.analyzer = TrainingAnalyzer(config.analyzer)
        self.advisor = HyperparameterAdvisor(config.advisor)
        self.suggestion_generator = SuggestionGenerator()
        self.ab_testing = ABTestingFramework(config.abtest, repository)
        self.last_history: Optional[TrainingHistory] = None

    @property
    def initialized(self) -> bool:
        return self.trainer.initialized

    def initialize(self, model_path: Optional[PathLike] = None) -> None:
        """Load a pretrained model or build a new one."""
        self.trainer.initialize(model_path)
        logger.info(f"AI optimizer initialized (config version {self.config_version})")

    def optimize_scaling(
        self,
        config: Union[ScalingConfig, Mapping[str, Any]],
        usage_data: Sequence[Mapping[str, Any]],
    ) -> OptimizationSuggestions:
        """
        Produce optimization suggestions for one configuration.

        Args:
            config: Scaling configuration (dataclass or plain mapping)
            usage_data: Usage records collected for the configuration

        Returns:
            Suggestions decoded from the model prediction

        Raises:
            ValidationError: malformed configuration or usage data
            ModelNotInitializedError: ``initialize`` has not been called
        """
        try:
            scaling_config = validate_scaling_config(config)
            records = validate_usage_data(usage_data)
            features = self.feature_extractor.extract(scaling_config, records)
            predictions = self.trainer.predict(features)
            suggestions = self.suggestion_generator.generate(scaling_config, records, features, predictions)
        except Exception as e:
            metrics.optimizations_total.labels(status="error").inc()
            logger.error(f"Optimization failed: {e}")
            raise
        metrics.optimizations_total.labels(status="success").inc()
        logger.info(f"Optimized configuration from {len(records)} usage records")
        return suggestions

    def train_model(
        self,
        examples: Sequence[TrainingExample],
        options: Optional[Mapping[str, Any]] = None,
    ) -> EvaluationMetrics:
        """
        Train on ``examples`` and report metrics on the same data.

        Fewer than two examples cannot be split for validation; zeroed metrics
        are returned without touching the model.
        """
        model = self.trainer.model
        if len(examples) < 2:
            logger.warning("Insufficient data points for training, returning default metrics")
            return EvaluationMetrics()

        logger.info(f"Starting model training on {len(examples)} examples")
        self.last_history = self.trainer.fit(examples, options)
        evaluation = self.trainer.evaluate(examples)
        logger.info(
            f"Model training completed: accuracy={evaluation.accuracy:.2%} f1={evaluation.f1:.3f} "
            f"({type(model).__name__})"
        )
        return evaluation

    def evaluate_model(self, examples: Sequence[TrainingExample]) -> EvaluationMetrics:
        return self.trainer.evaluate(examples)

    def save_model(self, path: PathLike) -> str:
        target = self.trainer.save(path)
        logger.info(f"Model saved to {target}")
        return str(target)

    def cross_validate(
        self,
        examples: Sequence[TrainingExample],
        k: Optional[int] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> CrossValidationResult:
        """K-fold validation on a scratch trainer; the serving model is untouched."""
        scratch = self._new_trainer()

        def train_fn(trainer: ModelTrainer, training: List[TrainingExample]) -> None:
            trainer.initialize()
            trainer.fit(training, options)

        def eval_fn(trainer: ModelTrainer, validation: List[TrainingExample]) -> EvaluationMetrics:
            return trainer.evaluate(validation)

        result = self.cross_validator.cross_validate(scratch, examples, k, train_fn, eval_fn)
        scratch.dispose()
        logger.info(f"Cross validation used {result.folds_used} folds: mean={result.mean}")
        return result

    def analyze_training(
        self, history: Optional[Union[TrainingHistory, Mapping[str, Sequence[float]]]] = None
    ) -> TrainingAnalysis:
        history = history if history is not None else self.last_history
        if history is None:
            raise ValidationError("No training history available", hint="Train the model or pass a history")
        return self.analyzer.analyze(history)

    def suggest_hyperparameters(
        self,
        examples: Sequence[TrainingExample],
        current: Optional[Mapping[str, Any]] = None,
    ) -> HyperparameterSuggestions:
        return self.advisor.suggest(examples, current)

    async def batch_optimize(
        self,
        requests: Sequence[Mapping[str, Any]],
        timeout: Optional[float] = None,
    ) -> List[BatchResult]:
        """
        Optimize many configurations through the batch processor.

        Args:
            requests: Mappings with ``config``, ``usage_data`` and optional
                ``priority``/``metadata``
            timeout: Overall deadline in seconds (defaults to the batch config)

        Returns:
            One ``BatchResult`` per request, in request order
        """
        for index, request in enumerate(requests):
            if not request.get("config"):
                raise ValidationError(f"Request {index}: configuration is required")
            try:
                validate_scaling_config(request["config"])
                validate_usage_data(request.get("usage_data"))
            except ValidationError as e:
                raise ValidationError(f"Request {index}: {e}") from e

        # every request is queued up front, so a batch never waits for stragglers
        batch_config = replace(
            self.config.batch,
            min_batch_size=max(1, min(self.config.batch.min_batch_size, len(requests))),
        )
        processor = BatchProcessor(self._optimize_many, batch_config)
        handles = [
            processor.add_item(
                {"config": request["config"], "usage_data": request["usage_data"]},
                priority=int(request.get("priority", 0)),
                metadata=request.get("metadata"),
            )
            for request in requests
        ]
        results = await processor.process_all(timeout)
        stats = processor.statistics()
        logger.info(
            f"Batch optimization finished: {stats.successful_items} succeeded, "
            f"{stats.failed_items} failed in {stats.total_batches} batches"
        )
        return [results[handle.id] for handle in handles]

    def _optimize_many(self, payloads: List[Dict[str, Any]]) -> List[OptimizationSuggestions]:
        return [self.optimize_scaling(payload["config"], payload["usage_data"]) for payload in payloads]

    def create_stream_manager(self) -> StreamingManager:
        return StreamingManager(self.optimize_scaling, self.config.streaming)

    # A/B testing passthroughs

    def create_experiment(self, config: ExperimentConfig) -> str:
        return self.ab_testing.create_experiment(config)

    def start_experiment(self, experiment_id: str) -> bool:
        return self.ab_testing.start_experiment(experiment_id)

    def stop_experiment(self, experiment_id: str, reason: str = "manual") -> bool:
        return self.ab_testing.stop_experiment(experiment_id, reason)

    def assign_user_to_variant(self, user_id: str, experiment_id: str) -> Optional[str]:
        return self.ab_testing.assign_user_to_variant(user_id, experiment_id)

    def record_experiment_result(self, result: ExperimentResult) -> bool:
        return self.ab_testing.record_result(result)

    def get_experiment_analysis(self, experiment_id: str) -> Optional[ExperimentAnalysis]:
        return self.ab_testing.get_experiment_analysis(experiment_id)

    def perform_power_analysis(self, effect_size: float, **kwargs: Any) -> PowerAnalysis:
        return self.ab_testing.perform_power_analysis(effect_size, **kwargs)

    def model_info(self) -> Dict[str, Any]:
        info = self.trainer.model_info()
        info["config_version"] = self.config_version
        return info

    def dispose(self) -> None:
        self.trainer.dispose()
        logger.info("AI optimizer disposed")

    def _new_trainer(self) -> ModelTrainer:
        return ModelTrainer(
            self.config.model,
            self.config.training,
            feature_dimension=self.config.features.dimension,
            model_factory=self._model_factory,
        )


__all__ = ["AIOptimizer"]
