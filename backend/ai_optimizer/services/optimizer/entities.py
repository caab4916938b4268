"""Shared dataclasses used across the optimization pipeline."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import ConfigurationError

ORIGINS = ("width", "height", "min", "max", "diagonal", "area")
ROUNDING_MODES = ("nearest", "floor", "ceil", "none")
METRIC_NAMES = ("accuracy", "precision", "recall", "f1", "mse")


@dataclass(slots=True)
class Viewport:
    width: float
    height: float


@dataclass(slots=True)
class Breakpoint:
    name: str
    width: float
    height: float
    alias: Optional[str] = None


@dataclass(slots=True)
class TokenRule:
    """Scaling rule for a single design token."""

    scale: float = 1.0
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    step: Optional[float] = None
    responsive: bool = True


@dataclass(slots=True)
class ScalingStrategy:
    origin: str = "width"
    tokens: Dict[str, TokenRule] = field(default_factory=dict)
    rounding: str = "nearest"
    min_font_size: float = 16.0
    min_tap_target: float = 44.0


@dataclass(slots=True)
class ScalingConfig:
    """Configuration descriptor consumed by the feature extractor.

    Invariants: base and breakpoint widths are positive and the origin axis is
    one of :data:`ORIGINS`.  Violations raise :class:`ConfigurationError`.
    """

    base: Viewport
    breakpoints: List[Breakpoint] = field(default_factory=list)
    strategy: ScalingStrategy = field(default_factory=ScalingStrategy)

    def __post_init__(self) -> None:
        if self.base.width <= 0:
            raise ConfigurationError(f"Base width must be positive, received {self.base.width!r}")
        for item in self.breakpoints:
            if item.width <= 0:
                raise ConfigurationError(
                    f"Breakpoint {item.name!r} width must be positive, received {item.width!r}"
                )
        if self.strategy.origin not in ORIGINS:
            raise ConfigurationError(
                f"Unknown scaling origin {self.strategy.origin!r}",
                hint=f"Use one of {', '.join(ORIGINS)}",
            )
        if self.strategy.rounding not in ROUNDING_MODES:
            raise ConfigurationError(f"Unknown rounding mode {self.strategy.rounding!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScalingConfig":
        try:
            base = data["base"]
            strategy = data.get("strategy") or {}
            tokens = {
                name: TokenRule(
                    scale=float(rule.get("scale", 1.0)),
                    min_value=rule.get("min"),
                    max_value=rule.get("max"),
                    step=rule.get("step"),
                    responsive=rule.get("responsive", True) is not False,
                )
                for name, rule in (strategy.get("tokens") or {}).items()
            }
            return cls(
                base=Viewport(width=float(base["width"]), height=float(base.get("height", 0))),
                breakpoints=[
                    Breakpoint(
                        name=str(item["name"]),
                        width=float(item["width"]),
                        height=float(item.get("height", 0)),
                        alias=item.get("alias"),
                    )
                    for item in data.get("breakpoints") or []
                ],
                strategy=ScalingStrategy(
                    origin=strategy.get("origin", "width"),
                    tokens=tokens,
                    rounding=strategy.get("rounding", "nearest"),
                    min_font_size=float(strategy.get("min_font_size", 16.0)),
                    min_tap_target=float(strategy.get("min_tap_target", 44.0)),
                ),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ConfigurationError("Malformed scaling configuration", hint=str(exc)) from exc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": asdict(self.base),
            "breakpoints": [asdict(item) for item in self.breakpoints],
            "strategy": {
                "origin": self.strategy.origin,
                "rounding": self.strategy.rounding,
                "min_font_size": self.strategy.min_font_size,
                "min_tap_target": self.strategy.min_tap_target,
                "tokens": {
                    name: {
                        "scale": rule.scale,
                        "min": rule.min_value,
                        "max": rule.max_value,
                        "step": rule.step,
                        "responsive": rule.responsive,
                    }
                    for name, rule in self.strategy.tokens.items()
                },
            },
        }


@dataclass(slots=True)
class TrainingExample:
    """A feature vector paired with its label vector."""

    features: Sequence[float]
    labels: Sequence[float]


@dataclass(slots=True)
class TrainingHistory:
    """Per-epoch training curves; all series share the same length."""

    loss: List[float] = field(default_factory=list)
    val_loss: List[float] = field(default_factory=list)
    accuracy: List[float] = field(default_factory=list)
    val_accuracy: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.loss)

    def append(self, loss: float, val_loss: float, accuracy: float, val_accuracy: float) -> None:
        self.loss.append(float(loss))
        self.val_loss.append(float(val_loss))
        self.accuracy.append(float(accuracy))
        self.val_accuracy.append(float(val_accuracy))

    def to_dict(self) -> Dict[str, List[float]]:
        return {
            "loss": list(self.loss),
            "val_loss": list(self.val_loss),
            "accuracy": list(self.accuracy),
            "val_accuracy": list(self.val_accuracy),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Sequence[float]]) -> "TrainingHistory":
        return cls(
            loss=[float(value) for value in data.get("loss", [])],
            val_loss=[float(value) for value in data.get("val_loss", [])],
            accuracy=[float(value) for value in data.get("accuracy", [])],
            val_accuracy=[float(value) for value in data.get("val_accuracy", [])],
        )


@dataclass(slots=True)
class EvaluationMetrics:
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1: float = 0.0
    mse: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in METRIC_NAMES}

    @classmethod
    def from_mapping(cls, data: Mapping[str, float]) -> "EvaluationMetrics":
        return cls(**{name: float(data.get(name, 0.0)) for name in METRIC_NAMES})


__all__ = [
    "ORIGINS",
    "METRIC_NAMES",
    "Viewport",
    "Breakpoint",
    "TokenRule",
    "ScalingStrategy",
    "ScalingConfig",
    "TrainingExample",
    "TrainingHistory",
    "EvaluationMetrics",
]
