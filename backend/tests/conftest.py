"""Pytest configuration and fixtures."""
import numpy as np
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ai_optimizer.models.database import Base
from ai_optimizer.services.optimizer.config import (
    ConfigStore,
    ModelConfig,
    OptimizerConfig,
    TrainingConfig,
)
from ai_optimizer.services.optimizer.entities import ScalingConfig, TrainingExample


@pytest.fixture
def session_factory():
    """Session factory bound to a shared in-memory database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    yield Session
    engine.dispose()


@pytest.fixture
def sample_config():
    """Scaling configuration as sent by a client."""
    return {
        "base": {"width": 1440, "height": 900},
        "breakpoints": [
            {"name": "mobile", "width": 375, "height": 667},
            {"name": "tablet", "width": 768, "height": 1024},
            {"name": "desktop", "width": 1440, "height": 900},
        ],
        "strategy": {
            "origin": "width",
            "rounding": "nearest",
            "min_font_size": 16,
            "min_tap_target": 44,
            "tokens": {
                "font_size": {"scale": 0.9, "min": 12, "max": 48, "step": 1},
                "spacing": {"scale": 0.8, "min": 4},
            },
        },
    }


@pytest.fixture
def scaling_config(sample_config):
    return ScalingConfig.from_dict(sample_config)


@pytest.fixture
def sample_usage():
    """Usage records in the snake_case form the services consume."""
    return [
        {
            "component_type": "ProductCard",
            "responsive_values": [
                {"token": "font_size", "property": "fontSize", "base_value": 16},
                {"token": "spacing", "property": "padding", "base_value": 8},
            ],
            "performance": {"render_time": 12.0, "bundle_size": 2048, "memory_usage": 3.5, "layout_shift": 0.01},
            "interactions": {"interaction_rate": 0.4, "accessibility_score": 88, "view_time": 6200},
            "context": {"position": "main"},
        },
        {
            "component_type": "PriceTag",
            "responsive_values": [
                {"token": "font_size", "property": "fontSize", "base_value": 16},
            ],
            "performance": {"render_time": 8.0, "bundle_size": 1024, "memory_usage": 1.5, "layout_shift": 0.0},
            "interactions": {"interaction_rate": 0.2, "accessibility_score": 92, "view_time": 3100},
            "context": {"position": "header"},
        },
    ]


@pytest.fixture
def small_optimizer_config():
    """Optimizer configuration with a tiny network for fast tests."""
    return OptimizerConfig(
        model=ModelConfig(hidden_units=(16, 8, 8)),
        training=TrainingConfig(epochs=3, batch_size=4),
    )


@pytest.fixture
def config_store(small_optimizer_config):
    return ConfigStore(small_optimizer_config)


def _make_examples(count, feature_dim, label_dim, seed=7):
    """Linear synthetic data: labels are a fixed projection of the features."""
    rng = np.random.default_rng(seed)
    projection = rng.normal(0.0, 0.3, size=(feature_dim, label_dim))
    examples = []
    for _ in range(count):
        features = rng.normal(0.0, 1.0, size=feature_dim)
        examples.append(TrainingExample(features=features.tolist(), labels=(features @ projection).tolist()))
    return examples


@pytest.fixture
def training_examples():
    """Twelve small examples: 6 features, 4 labels."""
    return _make_examples(12, 6, 4)


@pytest.fixture
def optimizer_examples():
    """Examples shaped for the default 128 feature / 32 label layout."""
    return _make_examples(10, 128, 32)


@pytest.fixture
def make_examples():
    return _make_examples
