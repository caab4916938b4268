"""
Test suite for the trainable models and the model trainer.
"""
import numpy as np
import pytest

from ai_optimizer.services.optimizer.config import ModelConfig, TrainingConfig
from ai_optimizer.services.optimizer.entities import TokenRule, TrainingExample
from ai_optimizer.services.optimizer.errors import ModelError, ModelNotInitializedError
from ai_optimizer.services.optimizer.model import DenseNetwork, StubModel, ensure_model, load_model
from ai_optimizer.services.optimizer.trainer import ModelLabels, ModelTrainer, Normalizer, compute_metrics

SMALL_MODEL = ModelConfig(label_dimension=4, hidden_units=(8, 8, 8), dropout=0.0)
SHORT_TRAINING = TrainingConfig(epochs=5, batch_size=4)


def _trainer(**kwargs):
    return ModelTrainer(SMALL_MODEL, SHORT_TRAINING, feature_dimension=6, **kwargs)


class TestDenseNetwork:
    """Test the numpy network."""

    def test_predict_shape(self):
        """Test output shape for single rows and matrices."""
        network = DenseNetwork(6, SMALL_MODEL)

        assert network.predict(np.zeros(6)).shape == (1, 4)
        assert network.predict(np.zeros((3, 6))).shape == (3, 4)

    def test_fit_records_history(self, training_examples):
        """Test one history entry per epoch."""
        network = DenseNetwork(6, SMALL_MODEL)
        x = np.asarray([example.features for example in training_examples])
        y = np.asarray([example.labels for example in training_examples])

        history = network.fit(x, y, epochs=4, batch_size=4, validation_split=0.25)

        assert len(history) == 4
        assert len(history.val_loss) == 4
        assert all(np.isfinite(history.loss))

    def test_fit_rejects_wrong_width(self):
        """Test feature width validation."""
        network = DenseNetwork(6, SMALL_MODEL)

        with pytest.raises(ValueError):
            network.fit(np.zeros((4, 5)), np.zeros((4, 4)), epochs=1, batch_size=2)

    def test_describe(self):
        """Test architecture summary."""
        summary = DenseNetwork(6, SMALL_MODEL).describe()

        assert summary["layers"] == 6
        assert len(summary["architecture"]) == 6
        assert summary["parameters"] == 6 * 8 + 8 + 8 * 8 + 8 + 8 * 8 + 8 + 8 * 4 + 4

    def test_save_and_load(self, tmp_path):
        """Test that weights survive a round trip."""
        network = DenseNetwork(6, SMALL_MODEL)
        target = network.save(tmp_path / "model")

        restored = load_model(target)

        assert isinstance(restored, DenseNetwork)
        sample = np.ones((2, 6))
        np.testing.assert_allclose(restored.predict(sample), network.predict(sample))


class TestStubModel:
    """Test the fallback model."""

    def test_predicts_zeros(self):
        """Test zero predictions of the right shape."""
        stub = StubModel(6, 4)

        assert np.all(stub.predict(np.ones((2, 6))) == 0.0)
        assert stub.predict(np.ones((2, 6))).shape == (2, 4)

    def test_ensure_model_substitutes_stub(self):
        """Test that objects without fit/predict are replaced."""
        model = ensure_model(object(), input_dim=6, output_dim=4)

        assert isinstance(model, StubModel)

    def test_ensure_model_keeps_valid_candidate(self):
        """Test that a conforming model is returned as is."""
        network = DenseNetwork(6, SMALL_MODEL)

        assert ensure_model(network, input_dim=6, output_dim=4) is network


class TestModelTrainer:
    """Test trainer lifecycle."""

    def test_uninitialized_calls_raise(self, training_examples):
        """Test that every model call needs initialize first."""
        trainer = _trainer()

        with pytest.raises(ModelNotInitializedError):
            trainer.predict(np.zeros(6))
        with pytest.raises(ModelNotInitializedError):
            trainer.fit(training_examples)
        with pytest.raises(ModelNotInitializedError):
            trainer.evaluate(training_examples)

    def test_initialize_fit_predict(self, training_examples):
        """Test the normal training path."""
        trainer = _trainer()
        trainer.initialize()

        history = trainer.fit(training_examples)
        prediction = trainer.predict(training_examples[0].features)

        assert trainer.initialized
        assert len(history) == 5
        assert prediction.shape == (4,)

    def test_fit_options_override_config(self, training_examples):
        """Test per-call training options."""
        trainer = _trainer()
        trainer.initialize()

        history = trainer.fit(training_examples, {"epochs": 2})

        assert len(history) == 2

    def test_fit_without_examples(self):
        """Test empty training set."""
        trainer = _trainer()
        trainer.initialize()

        with pytest.raises(ModelError):
            trainer.fit([])

    def test_evaluate_metric_ranges(self, training_examples):
        """Test that classification style metrics stay within [0, 1]."""
        trainer = _trainer()
        trainer.initialize()
        trainer.fit(training_examples)

        metrics = trainer.evaluate(training_examples)

        for name in ("accuracy", "precision", "recall", "f1"):
            assert 0.0 <= getattr(metrics, name) <= 1.0
        assert metrics.mse >= 0.0

    def test_dispose_then_predict_raises(self):
        """Test that disposal releases the model."""
        trainer = _trainer()
        trainer.initialize()
        trainer.dispose()

        assert not trainer.initialized
        with pytest.raises(ModelNotInitializedError):
            trainer.predict(np.zeros(6))

    def test_bad_factory_falls_back_to_stub(self):
        """Test stub substitution when construction fails."""

        def broken_factory(input_dim, config):
            raise RuntimeError("no backend")

        trainer = _trainer(model_factory=broken_factory)
        trainer.initialize()

        assert isinstance(trainer.model, StubModel)
        assert np.all(trainer.predict(np.ones(6)) == 0.0)

    def test_failed_fit_keeps_previous_normalizer(self, training_examples):
        """Test that a failed training run leaves feature scaling untouched."""

        class FlakyModel:
            def __init__(self):
                self.calls = 0

            def fit(self, x, y, **kwargs):
                self.calls += 1
                if self.calls > 1:
                    raise RuntimeError("diverged")
                return {"loss": [1.0]}

            def predict(self, x):
                return x[:, :4]

        trainer = _trainer(model_factory=lambda input_dim, config: FlakyModel())
        trainer.initialize()
        trainer.fit(training_examples)
        sample = training_examples[0].features
        before = trainer.predict(sample)

        shifted = [
            TrainingExample(features=[value * 100.0 + 5.0 for value in example.features], labels=example.labels)
            for example in training_examples
        ]
        with pytest.raises(ModelError):
            trainer.fit(shifted)

        np.testing.assert_allclose(trainer.predict(sample), before)

    def test_missing_model_file_builds_new_model(self, tmp_path):
        """Test that a failed load never propagates."""
        trainer = _trainer()
        trainer.initialize(tmp_path / "does-not-exist")

        assert isinstance(trainer.model, DenseNetwork)

    def test_save_and_reload_with_normalizer(self, training_examples, tmp_path):
        """Test that a reloaded trainer predicts identically."""
        trainer = _trainer()
        trainer.initialize()
        trainer.fit(training_examples)
        target = trainer.save(tmp_path / "scaling")

        reloaded = _trainer()
        reloaded.initialize(target)

        sample = training_examples[3].features
        np.testing.assert_allclose(reloaded.predict(sample), trainer.predict(sample))

    def test_model_info(self):
        """Test model summary before and after initialization."""
        trainer = _trainer()
        assert trainer.model_info()["initialized"] is False

        trainer.initialize()
        info = trainer.model_info()
        assert info["initialized"] is True
        assert info["layers"] == 6
        assert info["parameters"] > 0

    def test_prediction_intervals(self, training_examples):
        """Test that the interval brackets the prediction."""
        trainer = _trainer()
        trainer.initialize()
        lower, upper = trainer.prediction_intervals(training_examples)

        assert np.all(lower <= upper)


class TestMetricsAndNormalization:
    """Test metric computation and feature scaling."""

    def test_perfect_predictions(self):
        """Test metrics for exact predictions."""
        targets = np.array([[1.0, 2.0], [3.0, 4.0]])
        metrics = compute_metrics(targets.copy(), targets, tolerance=0.1)

        assert metrics.accuracy == 1.0
        assert metrics.precision == 1.0
        assert metrics.recall == pytest.approx(1.0)
        assert metrics.mse == 0.0

    def test_empty_targets(self):
        """Test zeroed metrics for empty input."""
        metrics = compute_metrics(np.zeros((0, 2)), np.zeros((0, 2)), tolerance=0.1)

        assert metrics.as_dict() == {"accuracy": 0.0, "precision": 0.0, "recall": 0.0, "f1": 0.0, "mse": 0.0}

    @pytest.mark.parametrize("method", ["standard", "minmax", "robust"])
    def test_normalizer_handles_constant_columns(self, method):
        """Test that constant columns do not divide by zero."""
        x = np.array([[1.0, 5.0], [3.0, 5.0], [5.0, 5.0]])
        normalized = Normalizer(method).fit(x).transform(x)

        assert np.all(np.isfinite(normalized))
        assert np.all(normalized[:, 1] == 0.0)

    def test_label_vector_defaults(self):
        """Test label encoding with missing tokens."""
        labels = ModelLabels(optimal_tokens={"font_size": TokenRule(scale=0.9, min_value=12, max_value=48, step=1)})
        vector = labels.to_vector()

        assert vector.shape == (32,)
        assert list(vector[:4]) == [0.9, 12.0, 48.0, 1.0]
        assert list(vector[4:8]) == [0.85, 8.0, 100.0, 1.0]
        assert vector[28] == 0.5
