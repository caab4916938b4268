"""
Test suite for the A/B testing framework.
"""
from datetime import datetime, timedelta

import pytest

from ai_optimizer.models.database import ExperimentRecord, ExperimentResultRecord
from ai_optimizer.services.optimizer.ab_testing import (
    RECOMMEND_EXTEND,
    RECOMMEND_IMPLEMENT,
    STATUS_COMPLETED,
    STATUS_DRAFT,
    STATUS_RUNNING,
    STATUS_STOPPED,
    ABTestingFramework,
    ExperimentConfig,
    ExperimentRepository,
    ExperimentResult,
    Variant,
    assignment_bucket,
)
from ai_optimizer.services.optimizer.config import ABTestConfig


def _config(**overrides):
    values = {
        "name": "Tighter font scaling",
        "variants": [Variant("control", 0.5), Variant("treatment", 0.5, {"scale": 0.9})],
        "metric": "interaction_rate",
    }
    values.update(overrides)
    return ExperimentConfig(**values)


def _running(framework, **overrides):
    experiment_id = framework.create_experiment(_config(**overrides))
    assert framework.start_experiment(experiment_id)
    return experiment_id


def _record(framework, experiment_id, variant, values):
    for index, value in enumerate(values):
        framework.record_result(ExperimentResult(experiment_id, variant, f"{variant}-{index}", value))


class TestLifecycle:
    """Test experiment state transitions."""

    def test_create_is_draft(self):
        """Test that new experiments start as drafts."""
        framework = ABTestingFramework()
        experiment_id = framework.create_experiment(_config())

        assert framework.get_experiment(experiment_id).status == STATUS_DRAFT

    def test_start_and_stop(self):
        """Test draft -> running -> stopped."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)

        assert framework.get_experiment(experiment_id).status == STATUS_RUNNING
        assert framework.stop_experiment(experiment_id, "manual")
        experiment = framework.get_experiment(experiment_id)
        assert experiment.status == STATUS_STOPPED
        assert experiment.stop_reason == "manual"

    def test_terminal_states_are_final(self):
        """Test that stopped experiments cannot restart or stop again."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        framework.stop_experiment(experiment_id)

        assert framework.start_experiment(experiment_id) is False
        assert framework.stop_experiment(experiment_id) is False

    def test_start_rejects_bad_weights(self):
        """Test that weights must sum to one within tolerance."""
        framework = ABTestingFramework()
        experiment_id = framework.create_experiment(
            _config(variants=[Variant("control", 0.5), Variant("treatment", 0.3)])
        )

        assert framework.start_experiment(experiment_id) is False
        assert framework.get_experiment(experiment_id).status == STATUS_DRAFT

    def test_start_accepts_weights_within_tolerance(self):
        """Test weights summing to 0.995."""
        framework = ABTestingFramework()
        experiment_id = framework.create_experiment(
            _config(variants=[Variant("control", 0.5), Variant("treatment", 0.495)])
        )

        assert framework.start_experiment(experiment_id) is True

    def test_start_rejects_inverted_window(self):
        """Test start after end."""
        framework = ABTestingFramework()
        now = datetime.utcnow()
        experiment_id = framework.create_experiment(_config(start_at=now, end_at=now - timedelta(days=1)))

        assert framework.start_experiment(experiment_id) is False

    def test_unknown_experiment(self):
        """Test transitions on unknown ids."""
        framework = ABTestingFramework()

        assert framework.start_experiment("missing") is False
        assert framework.stop_experiment("missing") is False
        assert framework.get_experiment_analysis("missing") is None

    def test_complete_due_experiments(self):
        """Test end time expiry."""
        framework = ABTestingFramework()
        end = datetime.utcnow() + timedelta(hours=1)
        due = _running(framework, end_at=end)
        open_ended = _running(framework)

        completed = framework.complete_due_experiments(end + timedelta(seconds=1))

        assert completed == [due]
        assert framework.get_experiment(due).status == STATUS_COMPLETED
        assert framework.get_experiment(due).stop_reason == "duration_completed"
        assert framework.get_experiment(open_ended).status == STATUS_RUNNING


class TestAssignment:
    """Test deterministic variant assignment."""

    def test_assignment_is_deterministic(self):
        """Test that repeated calls agree."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)

        first = [framework.assign_user_to_variant(f"user-{index}", experiment_id) for index in range(50)]
        second = [framework.assign_user_to_variant(f"user-{index}", experiment_id) for index in range(50)]

        assert first == second
        assert set(first) <= {"control", "treatment"}

    def test_draft_assigns_nothing(self):
        """Test that only running experiments assign users."""
        framework = ABTestingFramework()
        experiment_id = framework.create_experiment(_config())

        assert framework.assign_user_to_variant("user-1", experiment_id) is None

    def test_stopped_assigns_nothing(self):
        """Test assignment after stop."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        framework.stop_experiment(experiment_id)

        assert framework.assign_user_to_variant("user-1", experiment_id) is None

    def test_split_follows_weights(self):
        """Test that a 90/10 split lands roughly 90/10."""
        framework = ABTestingFramework()
        experiment_id = _running(
            framework, variants=[Variant("control", 0.9), Variant("treatment", 0.1)]
        )

        assignments = [framework.assign_user_to_variant(f"user-{index}", experiment_id) for index in range(2000)]

        share = assignments.count("control") / len(assignments)
        assert 0.85 < share < 0.95

    def test_bucket_range(self):
        """Test that buckets fall in [0, 1)."""
        buckets = [assignment_bucket("exp", f"user-{index}") for index in range(100)]

        assert all(0.0 <= bucket < 1.0 for bucket in buckets)
        assert assignment_bucket("exp", "user-1") == assignment_bucket("exp", "user-1")


class TestResults:
    """Test result recording."""

    def test_draft_rejects_results(self):
        """Test that drafts do not accept results."""
        framework = ABTestingFramework()
        experiment_id = framework.create_experiment(_config())

        accepted = framework.record_result(ExperimentResult(experiment_id, "control", "u1", 1.0))

        assert accepted is False
        assert framework.get_experiment_results(experiment_id) == []

    def test_stopped_accepts_late_results(self):
        """Test that stopped experiments still collect results."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        framework.stop_experiment(experiment_id)

        assert framework.record_result(ExperimentResult(experiment_id, "control", "u1", 1.0)) is True

    def test_no_results_no_analysis(self):
        """Test that analysis needs data."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)

        assert framework.get_experiment_analysis(experiment_id) is None

    def test_interim_analysis_stops_early(self):
        """Test early stopping on a clear winner."""
        framework = ABTestingFramework(ABTestConfig(interim_interval=40))
        experiment_id = _running(framework)

        _record(framework, experiment_id, "control", [0.0, 1.0] * 10)
        _record(framework, experiment_id, "treatment", [1.0] * 19 + [0.9])

        experiment = framework.get_experiment(experiment_id)
        assert experiment.status == STATUS_STOPPED
        assert experiment.stop_reason == "early_stopping"
        assert experiment.final_analysis.recommendation == RECOMMEND_IMPLEMENT

    def test_early_stopping_disabled(self):
        """Test that interim analysis alone does not stop the experiment."""
        framework = ABTestingFramework(ABTestConfig(interim_interval=40, early_stopping=False))
        experiment_id = _running(framework)

        _record(framework, experiment_id, "control", [0.0, 1.0] * 10)
        _record(framework, experiment_id, "treatment", [1.0] * 19 + [0.9])

        assert framework.get_experiment(experiment_id).status == STATUS_RUNNING


class TestAnalysis:
    """Test the statistical analysis."""

    def test_significant_winner(self):
        """Test a treatment that clearly converts better."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        _record(framework, experiment_id, "control", [0.0, 1.0] * 30)
        _record(framework, experiment_id, "treatment", [1.0] * 55 + [0.0] * 5)

        analysis = framework.get_experiment_analysis(experiment_id)

        assert analysis.winner == "treatment"
        assert analysis.variants["treatment"].is_winner
        assert analysis.tests["treatment"].is_significant
        assert analysis.tests["treatment"].effect_size > 0
        assert analysis.recommendation == RECOMMEND_IMPLEMENT
        assert analysis.expected_lift == pytest.approx((55 / 60 - 0.5) / 0.5 * 100)

    def test_variant_statistics(self):
        """Test conversion rate, average and interval."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        _record(framework, experiment_id, "control", [0.0, 2.0, 4.0, 0.0])

        control = framework.get_experiment_analysis(experiment_id).variants["control"]

        assert control.sample_size == 4
        assert control.conversion_rate == 0.5
        assert control.average_value == 1.5
        low, high = control.confidence_interval
        assert 0.0 <= low < 0.5 < high <= 1.0

    def test_too_few_samples(self):
        """Test comparisons with fewer than two samples per group."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        _record(framework, experiment_id, "control", [1.0])
        _record(framework, experiment_id, "treatment", [1.0])

        test = framework.get_experiment_analysis(experiment_id).tests["treatment"]

        assert test.p_value == 1.0
        assert test.power == 0.0
        assert test.sample_size == 0
        assert test.conclusion == "Insufficient data for statistical test"

    def test_constant_groups_do_not_produce_nan(self):
        """Test identical constant samples."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        _record(framework, experiment_id, "control", [1.0] * 5)
        _record(framework, experiment_id, "treatment", [1.0] * 5)

        analysis = framework.get_experiment_analysis(experiment_id)

        assert analysis.tests["treatment"].p_value == 1.0
        assert analysis.tests["treatment"].effect_size == 0.0

    def test_tie_goes_to_control(self):
        """Test that the earliest declared variant wins ties."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        _record(framework, experiment_id, "control", [0.0, 1.0] * 3)
        _record(framework, experiment_id, "treatment", [1.0, 0.0] * 3)

        analysis = framework.get_experiment_analysis(experiment_id)

        assert analysis.winner == "control"
        assert analysis.expected_lift == 0.0
        assert analysis.recommendation == RECOMMEND_EXTEND

    def test_risk_assessment(self):
        """Test that small samples raise risk."""
        framework = ABTestingFramework()
        experiment_id = _running(framework)
        _record(framework, experiment_id, "control", [0.0, 1.0] * 3)
        _record(framework, experiment_id, "treatment", [1.0, 0.0] * 3)

        analysis = framework.get_experiment_analysis(experiment_id)

        assert analysis.risk_level == "high"
        assert "Small sample size for variant control" in analysis.risk_factors
        assert analysis.as_dict()["risk"]["level"] == "high"

    def test_statistics(self):
        """Test framework counters."""
        framework = ABTestingFramework()
        running = _running(framework)
        finished = _running(framework)
        framework.create_experiment(_config())
        _record(framework, finished, "control", [0.0, 1.0] * 30)
        _record(framework, finished, "treatment", [1.0] * 55 + [0.0] * 5)
        framework.stop_experiment(finished)

        stats = framework.get_statistics()

        assert running != finished
        assert stats == {
            "total_experiments": 3,
            "active_experiments": 1,
            "completed_experiments": 1,
            "successful_experiments": 1,
        }


class TestPowerAnalysis:
    """Test sample size planning."""

    def test_known_value(self):
        """Test the textbook medium effect size."""
        analysis = ABTestingFramework().perform_power_analysis(0.5)

        assert analysis.sample_size == 63
        assert analysis.alpha == 0.05
        assert analysis.power == 0.8

    def test_monotonic_in_effect_size(self):
        """Test that smaller effects need more samples."""
        framework = ABTestingFramework()
        sizes = [framework.perform_power_analysis(effect).sample_size for effect in (0.1, 0.2, 0.5, 1.0)]

        assert sizes == sorted(sizes, reverse=True)
        assert len(set(sizes)) == 4

    def test_higher_power_needs_more_samples(self):
        """Test power monotonicity."""
        framework = ABTestingFramework()

        assert framework.perform_power_analysis(0.3, power=0.9).sample_size > framework.perform_power_analysis(
            0.3, power=0.8
        ).sample_size

    def test_duration(self):
        """Test duration estimate from daily traffic."""
        analysis = ABTestingFramework().perform_power_analysis(0.5, daily_traffic=21)

        assert analysis.recommended_duration_days == pytest.approx(3.0)

    def test_invalid_effect_size(self):
        """Test non-positive effect sizes."""
        with pytest.raises(ValueError):
            ABTestingFramework().perform_power_analysis(0.0)


class TestRepository:
    """Test SQLAlchemy persistence."""

    def test_experiment_and_results_persisted(self, session_factory):
        """Test that lifecycle changes and results reach the database."""
        repository = ExperimentRepository(session_factory)
        framework = ABTestingFramework(repository=repository)
        experiment_id = _running(framework)
        _record(framework, experiment_id, "control", [1.0, 0.0])
        framework.stop_experiment(experiment_id, "manual")

        session = session_factory()
        try:
            record = session.query(ExperimentRecord).filter_by(experiment_id=experiment_id).one()
            assert record.status.value == STATUS_STOPPED
            assert record.stop_reason == "manual"
            assert record.final_analysis["experiment_id"] == experiment_id
            assert session.query(ExperimentResultRecord).count() == 2
        finally:
            session.close()

    def test_load_experiments(self, session_factory):
        """Test the stored experiment listing."""
        repository = ExperimentRepository(session_factory)
        framework = ABTestingFramework(repository=repository)
        experiment_id = _running(framework)
        _record(framework, experiment_id, "treatment", [1.0])

        loaded = repository.load_experiments()

        assert len(loaded) == 1
        assert loaded[0]["experiment_id"] == experiment_id
        assert loaded[0]["status"] == STATUS_RUNNING
        assert loaded[0]["result_count"] == 1

    def test_result_for_unknown_experiment(self, session_factory):
        """Test that orphan results are not stored."""
        repository = ExperimentRepository(session_factory)

        assert repository.save_result(ExperimentResult("missing", "control", "u1", 1.0)) is False
