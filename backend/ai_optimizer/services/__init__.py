"""Services module."""

from .optimizer import AIOptimizer, OptimizerConfig

__all__ = [
    "AIOptimizer",
    "OptimizerConfig",
]
