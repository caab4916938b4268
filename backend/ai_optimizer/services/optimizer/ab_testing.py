"""A/B testing for optimization suggestions.

Experiments move ``draft -> running -> stopped | completed``; the terminal
states are final.  Users are assigned to variants by hashing the
``(experiment, user)`` pair into ``[0, 1)`` and walking the cumulative
variant weights, so assignment is stable without any stored state.
"""
from __future__ import annotations

import hashlib
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from scipy import stats
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ai_optimizer.models.database import ExperimentRecord, ExperimentResultRecord, ExperimentStatus

from . import metrics
from .config import ABTestConfig
from .errors import ExperimentStateError

LOGGER = logging.getLogger(__name__)

STATUS_DRAFT = ExperimentStatus.DRAFT.value
STATUS_RUNNING = ExperimentStatus.RUNNING.value
STATUS_STOPPED = ExperimentStatus.STOPPED.value
STATUS_COMPLETED = ExperimentStatus.COMPLETED.value

RECOMMEND_CONTINUE = "continue"
RECOMMEND_STOP = "stop"
RECOMMEND_EXTEND = "extend"
RECOMMEND_IMPLEMENT = "implement"

_WEIGHT_TOLERANCE = 0.01
_CI_Z = 1.96


@dataclass(slots=True)
class Variant:
    name: str
    weight: float
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExperimentConfig:
    name: str
    variants: List[Variant]
    metric: str
    minimum_sample_size: int = 0
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    description: str = ""
    hypothesis: str = ""


@dataclass(slots=True)
class ExperimentResult:
    experiment_id: str
    variant: str
    user_id: str
    value: float
    timestamp: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class VariantAnalysis:
    sample_size: int = 0
    conversion_rate: float = 0.0
    average_value: float = 0.0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)
    is_winner: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sample_size": self.sample_size,
            "conversion_rate": self.conversion_rate,
            "average_value": self.average_value,
            "confidence_interval": list(self.confidence_interval),
            "is_winner": self.is_winner,
        }


@dataclass(slots=True)
class StatisticalTest:
    p_value: float
    effect_size: float
    power: float
    sample_size: int
    is_significant: bool
    test_type: str = "welch-t-test"

    @property
    def conclusion(self) -> str:
        if self.sample_size == 0:
            return "Insufficient data for statistical test"
        if self.is_significant:
            return "Statistically significant difference detected"
        return "No significant difference detected"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "test_type": self.test_type,
            "p_value": self.p_value,
            "effect_size": self.effect_size,
            "power": self.power,
            "sample_size": self.sample_size,
            "is_significant": self.is_significant,
            "conclusion": self.conclusion,
        }


@dataclass(slots=True)
class ExperimentAnalysis:
    experiment_id: str
    variants: Dict[str, VariantAnalysis]
    tests: Dict[str, StatisticalTest]
    winner: Optional[str]
    recommendation: str
    confidence: float
    expected_lift: float
    risk_level: str
    risk_factors: List[str]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "variants": {name: item.as_dict() for name, item in self.variants.items()},
            "tests": {name: test.as_dict() for name, test in self.tests.items()},
            "winner": self.winner,
            "recommendation": self.recommendation,
            "confidence": self.confidence,
            "expected_lift": self.expected_lift,
            "risk": {"level": self.risk_level, "factors": list(self.risk_factors)},
        }


@dataclass(slots=True)
class PowerAnalysis:
    effect_size: float
    alpha: float
    power: float
    sample_size: int
    minimum_detectable_effect: float
    recommended_duration_days: Optional[float]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "effect_size": self.effect_size,
            "alpha": self.alpha,
            "power": self.power,
            "sample_size": self.sample_size,
            "minimum_detectable_effect": self.minimum_detectable_effect,
            "recommended_duration_days": self.recommended_duration_days,
        }


@dataclass(slots=True)
class Experiment:
    id: str
    config: ExperimentConfig
    status: str = STATUS_DRAFT
    created_at: datetime = field(default_factory=datetime.utcnow)
    stop_reason: Optional[str] = None
    final_analysis: Optional[ExperimentAnalysis] = None


class ExperimentRepository:
    """Persist experiments and results through SQLAlchemy.

    Every method swallows ``SQLAlchemyError`` after logging it: persistence is
    best effort and never fails the in-memory operation that triggered it.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def save_experiment(self, experiment: Experiment) -> bool:
        session = self._session_factory()
        try:
            record = (
                session.query(ExperimentRecord)
                .filter(ExperimentRecord.experiment_id == experiment.id)
                .one_or_none()
            )
            if record is None:
                record = ExperimentRecord(experiment_id=experiment.id)
                session.add(record)
            config = experiment.config
            record.name = config.name
            record.description = config.description
            record.metric = config.metric
            record.variants = [
                {"name": variant.name, "weight": variant.weight, "config": variant.config}
                for variant in config.variants
            ]
            record.minimum_sample_size = config.minimum_sample_size
            record.start_at = config.start_at
            record.end_at = config.end_at
            record.status = ExperimentStatus(experiment.status)
            record.stop_reason = experiment.stop_reason
            record.final_analysis = experiment.final_analysis.as_dict() if experiment.final_analysis else None
            session.commit()
            return True
        except SQLAlchemyError as exc:
            session.rollback()
            LOGGER.warning("Failed to persist experiment %s: %s", experiment.id, exc)
            return False
        finally:
            session.close()

    def save_result(self, result: ExperimentResult) -> bool:
        session = self._session_factory()
        try:
            record = (
                session.query(ExperimentRecord)
                .filter(ExperimentRecord.experiment_id == result.experiment_id)
                .one_or_none()
            )
            if record is None:
                LOGGER.warning("Result for unknown experiment %s not persisted", result.experiment_id)
                return False
            session.add(
                ExperimentResultRecord(
                    experiment_pk=record.id,
                    variant=result.variant,
                    user_id=result.user_id,
                    value=float(result.value),
                    extra=dict(result.metadata),
                    recorded_at=result.timestamp,
                )
            )
            session.commit()
            return True
        except SQLAlchemyError as exc:
            session.rollback()
            LOGGER.warning("Failed to persist result for %s: %s", result.experiment_id, exc)
            return False
        finally:
            session.close()

    def load_experiments(self) -> List[Dict[str, Any]]:
        session = self._session_factory()
        try:
            return [
                {
                    "experiment_id": record.experiment_id,
                    "name": record.name,
                    "metric": record.metric,
                    "status": record.status.value if record.status else None,
                    "variants": record.variants,
                    "stop_reason": record.stop_reason,
                    "result_count": len(record.results),
                }
                for record in session.query(ExperimentRecord).order_by(ExperimentRecord.id)
            ]
        except SQLAlchemyError as exc:
            LOGGER.warning("Failed to load experiments: %s", exc)
            return []
        finally:
            session.close()


def assignment_bucket(experiment_id: str, user_id: str) -> float:
    """Map an ``(experiment, user)`` pair onto ``[0, 1)``."""

    digest = hashlib.sha256(f"{experiment_id}:{user_id}".encode("utf-8")).hexdigest()
    return int(digest[:16], 16) / float(1 << 64)


def _normal_quantile(p: float) -> float:
    return float(stats.norm.ppf(p))


class ABTestingFramework:
    """Manage experiments, assignment and statistical analysis."""

    def __init__(self, config: Optional[ABTestConfig] = None, repository: Optional[ExperimentRepository] = None) -> None:
        self._config = config or ABTestConfig()
        self._config.validate()
        self._repository = repository
        self._experiments: Dict[str, Experiment] = {}
        self._results: Dict[str, List[ExperimentResult]] = {}

    def create_experiment(self, config: ExperimentConfig) -> str:
        experiment_id = f"exp_{uuid.uuid4().hex}"
        experiment = Experiment(id=experiment_id, config=config)
        self._experiments[experiment_id] = experiment
        self._results[experiment_id] = []
        LOGGER.info("Created experiment %s (%s)", experiment_id, config.name)
        self._persist(experiment)
        return experiment_id

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        return self._experiments.get(experiment_id)

    def get_experiment_results(self, experiment_id: str) -> List[ExperimentResult]:
        return list(self._results.get(experiment_id, []))

    def start_experiment(self, experiment_id: str) -> bool:
        try:
            experiment = self._require(experiment_id, STATUS_DRAFT)
            self._validate(experiment.config)
        except ExperimentStateError as exc:
            LOGGER.info("Cannot start %s: %s", experiment_id, exc)
            return False
        experiment.status = STATUS_RUNNING
        LOGGER.info("Started experiment %s", experiment_id)
        self._persist(experiment)
        return True

    def stop_experiment(self, experiment_id: str, reason: str = "manual") -> bool:
        return self._finish(experiment_id, STATUS_STOPPED, reason)

    def complete_due_experiments(self, now: Optional[datetime] = None) -> List[str]:
        """Complete running experiments whose end time has passed."""

        now = now or datetime.utcnow()
        due = [
            experiment.id
            for experiment in self._experiments.values()
            if experiment.status == STATUS_RUNNING
            and experiment.config.end_at is not None
            and now >= experiment.config.end_at
        ]
        return [experiment_id for experiment_id in due if self._finish(experiment_id, STATUS_COMPLETED, "duration_completed")]

    def assign_user_to_variant(self, user_id: str, experiment_id: str) -> Optional[str]:
        experiment = self._experiments.get(experiment_id)
        if experiment is None or experiment.status != STATUS_RUNNING:
            return None
        variants = experiment.config.variants
        bucket = assignment_bucket(experiment_id, user_id)
        cumulative = 0.0
        for variant in variants:
            cumulative += variant.weight
            if bucket < cumulative:
                return variant.name
        return variants[-1].name

    def record_result(self, result: ExperimentResult) -> bool:
        experiment = self._experiments.get(result.experiment_id)
        if experiment is None or experiment.status not in (STATUS_RUNNING, STATUS_STOPPED):
            return False
        results = self._results[result.experiment_id]
        results.append(result)
        metrics.experiment_results_total.inc()
        if self._repository is not None:
            self._repository.save_result(result)

        if experiment.status == STATUS_RUNNING and len(results) % self._config.interim_interval == 0:
            analysis = self.get_experiment_analysis(result.experiment_id)
            LOGGER.debug("Interim analysis for %s after %s results", result.experiment_id, len(results))
            if (
                self._config.early_stopping
                and analysis is not None
                and analysis.recommendation in (RECOMMEND_IMPLEMENT, RECOMMEND_STOP)
            ):
                self.stop_experiment(result.experiment_id, "early_stopping")
        return True

    def get_experiment_analysis(self, experiment_id: str) -> Optional[ExperimentAnalysis]:
        experiment = self._experiments.get(experiment_id)
        results = self._results.get(experiment_id)
        if experiment is None or not results:
            return None
        return self._analyze(experiment, results)

    def perform_power_analysis(
        self,
        effect_size: float,
        alpha: Optional[float] = None,
        power: Optional[float] = None,
        *,
        daily_traffic: Optional[int] = None,
    ) -> PowerAnalysis:
        """Per-group sample size for a two-sample comparison."""

        if effect_size <= 0:
            raise ValueError("effect_size must be positive")
        alpha = self._config.significance_level if alpha is None else alpha
        power = self._config.target_power if power is None else power
        if not 0 < alpha < 1 or not 0 < power < 1:
            raise ValueError("alpha and power must be in (0, 1)")

        z_total = _normal_quantile(1 - alpha / 2) + _normal_quantile(power)
        sample_size = max(1, math.ceil(2 * z_total ** 2 / effect_size ** 2))
        duration = sample_size / daily_traffic if daily_traffic else None
        return PowerAnalysis(
            effect_size=effect_size,
            alpha=alpha,
            power=power,
            sample_size=sample_size,
            minimum_detectable_effect=math.sqrt(2 * z_total ** 2 / sample_size),
            recommended_duration_days=duration,
        )

    def get_statistics(self) -> Dict[str, int]:
        experiments = list(self._experiments.values())
        finished = [item for item in experiments if item.status in (STATUS_STOPPED, STATUS_COMPLETED)]
        return {
            "total_experiments": len(experiments),
            "active_experiments": sum(1 for item in experiments if item.status == STATUS_RUNNING),
            "completed_experiments": len(finished),
            "successful_experiments": sum(
                1
                for item in finished
                if item.final_analysis is not None and item.final_analysis.recommendation == RECOMMEND_IMPLEMENT
            ),
        }

    def _require(self, experiment_id: str, status: str) -> Experiment:
        experiment = self._experiments.get(experiment_id)
        if experiment is None:
            raise ExperimentStateError(f"Unknown experiment {experiment_id}")
        if experiment.status != status:
            raise ExperimentStateError(
                f"Experiment {experiment_id} is {experiment.status}",
                hint=f"This transition requires status {status!r}",
            )
        return experiment

    def _validate(self, config: ExperimentConfig) -> None:
        if not config.variants:
            raise ExperimentStateError("Experiment has no variants")
        if not config.metric:
            raise ExperimentStateError("Experiment has no target metric")
        total = sum(variant.weight for variant in config.variants)
        if abs(total - 1.0) > _WEIGHT_TOLERANCE:
            raise ExperimentStateError(f"Variant weights sum to {total:.3f}, expected 1.0")
        if config.start_at is not None and config.end_at is not None and config.start_at >= config.end_at:
            raise ExperimentStateError("Experiment start must precede its end")

    def _finish(self, experiment_id: str, status: str, reason: str) -> bool:
        try:
            experiment = self._require(experiment_id, STATUS_RUNNING)
        except ExperimentStateError as exc:
            LOGGER.info("Cannot stop %s: %s", experiment_id, exc)
            return False
        experiment.status = status
        experiment.stop_reason = reason
        experiment.final_analysis = self.get_experiment_analysis(experiment_id)
        LOGGER.info("Experiment %s %s (%s)", experiment_id, status, reason)
        self._persist(experiment)
        return True

    def _persist(self, experiment: Experiment) -> None:
        if self._repository is not None:
            self._repository.save_experiment(experiment)

    def _analyze(self, experiment: Experiment, results: List[ExperimentResult]) -> ExperimentAnalysis:
        cfg = self._config
        names = [variant.name for variant in experiment.config.variants]
        grouped: Dict[str, List[float]] = {name: [] for name in names}
        for result in results:
            grouped.setdefault(result.variant, []).append(float(result.value))

        variants = {name: self._analyze_variant(grouped[name]) for name in names}
        control = names[0]
        tests = {name: self._compare(grouped[control], grouped[name]) for name in names[1:]}

        winner = self._winner(names, variants)
        if winner is not None:
            variants[winner].is_winner = True

        if any(test.is_significant for test in tests.values()):
            recommendation = RECOMMEND_IMPLEMENT if winner is not None and winner != control else RECOMMEND_STOP
        elif tests and min(test.power for test in tests.values()) < cfg.target_power:
            recommendation = RECOMMEND_EXTEND
        else:
            recommendation = RECOMMEND_CONTINUE

        confidence = (
            float(np.clip(np.mean([1.0 - test.p_value for test in tests.values()]), 0.0, 1.0)) if tests else 0.0
        )
        control_rate = variants[control].conversion_rate
        if winner is None or control_rate == 0:
            lift = 0.0
        else:
            lift = (variants[winner].conversion_rate - control_rate) / control_rate * 100.0

        risk_level, factors = self._assess_risk(variants, tests)
        return ExperimentAnalysis(
            experiment_id=experiment.id,
            variants=variants,
            tests=tests,
            winner=winner,
            recommendation=recommendation,
            confidence=confidence,
            expected_lift=lift,
            risk_level=risk_level,
            risk_factors=factors,
        )

    @staticmethod
    def _analyze_variant(values: List[float]) -> VariantAnalysis:
        n = len(values)
        if n == 0:
            return VariantAnalysis()
        rate = sum(1 for value in values if value > 0) / n
        margin = _CI_Z * math.sqrt(rate * (1 - rate) / n)
        return VariantAnalysis(
            sample_size=n,
            conversion_rate=rate,
            average_value=sum(values) / n,
            confidence_interval=(max(0.0, rate - margin), min(1.0, rate + margin)),
        )

    def _compare(self, control: List[float], treatment: List[float]) -> StatisticalTest:
        if len(control) < 2 or len(treatment) < 2:
            return StatisticalTest(
                p_value=1.0, effect_size=0.0, power=0.0, sample_size=0, is_significant=False
            )
        alpha = self._config.significance_level
        outcome = stats.ttest_ind(treatment, control, equal_var=False)
        p_value = float(outcome.pvalue)
        if math.isnan(p_value):
            p_value = 1.0

        a = np.asarray(control, dtype=np.float64)
        b = np.asarray(treatment, dtype=np.float64)
        pooled = math.sqrt(((len(a) - 1) * a.var(ddof=1) + (len(b) - 1) * b.var(ddof=1)) / (len(a) + len(b) - 2))
        effect = float((b.mean() - a.mean()) / pooled) if pooled > 0 else 0.0

        n = min(len(a), len(b))
        power = 1.0 - float(stats.norm.cdf(_normal_quantile(1 - alpha / 2) - abs(effect) * math.sqrt(n / 2)))
        return StatisticalTest(
            p_value=p_value,
            effect_size=effect,
            power=min(max(power, 0.0), 1.0),
            sample_size=len(a) + len(b),
            is_significant=p_value < alpha,
        )

    @staticmethod
    def _winner(names: List[str], variants: Dict[str, VariantAnalysis]) -> Optional[str]:
        # strict comparison keeps the earliest declared variant on ties
        winner: Optional[str] = None
        for name in names:
            if variants[name].sample_size == 0:
                continue
            if winner is None or variants[name].conversion_rate > variants[winner].conversion_rate:
                winner = name
        return winner

    def _assess_risk(
        self, variants: Dict[str, VariantAnalysis], tests: Dict[str, StatisticalTest]
    ) -> Tuple[str, List[str]]:
        cfg = self._config
        score = 0
        factors: List[str] = []
        for name, variant in variants.items():
            if variant.sample_size < cfg.small_sample:
                factors.append(f"Small sample size for variant {name}")
                score += 2
        for name, test in tests.items():
            if test.power < cfg.target_power:
                factors.append(f"Low statistical power for variant {name}")
                score += 1
        for name, variant in variants.items():
            low, high = variant.confidence_interval
            if high - low > cfg.wide_interval:
                factors.append(f"Wide confidence interval for variant {name}")
                score += 1
        if score <= 2:
            return "low", factors
        if score <= 5:
            return "medium", factors
        return "high", factors


__all__ = [
    "ABTestingFramework",
    "Experiment",
    "ExperimentConfig",
    "ExperimentRepository",
    "ExperimentResult",
    "ExperimentAnalysis",
    "PowerAnalysis",
    "StatisticalTest",
    "Variant",
    "VariantAnalysis",
    "assignment_bucket",
]
