"""Feature extraction from scaling configurations and usage telemetry.

The extractor turns a :class:`ScalingConfig` plus a collection of usage
records into a fixed-length ``float64`` vector made of four contiguous blocks:

* configuration features (breakpoints, token complexity, origin axis),
* usage features (frequent base values, component mix, property counts),
* performance features (five summary statistics per tracked metric),
* context features (app archetype, device mix, behaviour signals, industry).

The concatenation is padded with zeros or truncated to
:attr:`FeatureConfig.dimension` because the model input layer has a static
width.  Usage records arrive as plain mappings straight from telemetry
collection; any optional field that is missing or malformed is skipped and the
affected block falls back to zeros.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from .config import FeatureConfig
from .entities import ORIGINS, ScalingConfig
from .validation import is_number

LOGGER = logging.getLogger(__name__)

PERFORMANCE_METRICS = ("render_time", "bundle_size", "memory_usage", "layout_shift")
SUMMARY_STATISTICS = ("mean", "median", "min", "max", "std")

APP_TYPE_COMPONENTS = (
    ("e-commerce", ("ProductCard", "ShoppingCart", "PriceTag")),
    ("dashboard", ("Chart", "DataTable", "Widget")),
    ("blog", ("Article", "BlogPost", "Comment")),
    ("social", ("Post", "Profile", "Feed")),
)
APP_TYPE_CODES = {"e-commerce": 1, "dashboard": 2, "blog": 3, "social": 4, "general": 5}

INDUSTRY_CODES = {
    "retail": 1,
    "technology": 2,
    "media": 3,
    "social-media": 4,
    "finance": 5,
    "healthcare": 6,
    "education": 7,
    "general": 8,
}
INDUSTRY_BY_APP_TYPE = {
    "e-commerce": "retail",
    "dashboard": "technology",
    "blog": "media",
    "social": "social-media",
    "general": "general",
}

DEVICE_BY_POSITION = {
    "main": "desktop",
    "sidebar": "tablet",
    "header": "mobile",
    "footer": "other",
    "modal": "other",
}
DEVICES = ("desktop", "tablet", "mobile", "other")


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _finite(value: Any) -> bool:
    return is_number(value) and math.isfinite(value)


def _pad(values: Sequence[float], size: int, fill: float = 0.0) -> List[float]:
    values = list(values)[:size]
    return values + [fill] * (size - len(values))


def summarize(values: Sequence[float]) -> List[float]:
    """Return mean, median, min, max and population std, or zeros when empty."""

    if not values:
        return [0.0] * len(SUMMARY_STATISTICS)
    array = np.asarray(values, dtype=np.float64)
    ordered = np.sort(array)
    return [
        float(array.mean()),
        float(ordered[len(ordered) // 2]),
        float(ordered[0]),
        float(ordered[-1]),
        float(array.std()),
    ]


class FeatureExtractor:
    """Build fixed-length feature vectors for the scaling model."""

    def __init__(self, config: Optional[FeatureConfig] = None) -> None:
        self._config = config or FeatureConfig()
        self._config.validate()

    @property
    def dimension(self) -> int:
        return self._config.dimension

    def extract(self, config: ScalingConfig, usage_records: Iterable[Any]) -> np.ndarray:
        records = [_mapping(record) for record in (usage_records or [])]
        blocks = (
            self.configuration_features(config),
            self.usage_features(records),
            self.performance_features(records),
            self.context_features(records),
        )
        vector: List[float] = []
        for block in blocks:
            vector.extend(block)
        LOGGER.debug("Extracted %s raw features from %s usage records", len(vector), len(records))
        return np.asarray(_pad(vector, self._config.dimension), dtype=np.float64)

    def configuration_features(self, config: ScalingConfig) -> List[float]:
        base_width = config.base.width
        ratios = [item.width / base_width for item in config.breakpoints]

        complexity = 0
        for rule in config.strategy.tokens.values():
            complexity += int(rule.min_value is not None)
            complexity += int(rule.max_value is not None)
            complexity += int(rule.step is not None)
            complexity += int(rule.responsive is not False)

        origin = [1.0 if config.strategy.origin == name else 0.0 for name in ORIGINS]
        return (
            [float(len(config.breakpoints))]
            + _pad(ratios, self._config.breakpoint_slots, fill=1.0)
            + [float(complexity)]
            + origin
        )

    def usage_features(self, records: Sequence[Mapping[str, Any]]) -> List[float]:
        values: Counter = Counter()
        components: Counter = Counter()
        properties: Counter = Counter()

        for record in records:
            component = record.get("component_type")
            if isinstance(component, str):
                components[component] += 1
            entries = record.get("responsive_values")
            if not isinstance(entries, (list, tuple)):
                continue
            for entry in entries:
                entry = _mapping(entry)
                base_value = entry.get("base_value")
                if _finite(base_value):
                    values[float(base_value)] += 1
                prop = entry.get("property")
                if isinstance(prop, str):
                    properties[prop] += 1

        # sorted() is stable, so equal counts keep first-seen order
        common = [value for value, _ in sorted(values.items(), key=lambda item: -item[1])]

        total = sum(components.values())
        frequencies = [count / total for count in components.values()] if total else []

        # property counts stay unnormalized; trained weights depend on this scale
        counts = [float(count) for count in properties.values()]

        return (
            _pad(common, self._config.top_values)
            + _pad(frequencies, self._config.component_slots)
            + _pad(counts, self._config.property_slots)
        )

    def performance_features(self, records: Sequence[Mapping[str, Any]]) -> List[float]:
        features: List[float] = []
        for metric in PERFORMANCE_METRICS:
            samples = [
                float(value)
                for value in (_mapping(record.get("performance")).get(metric) for record in records)
                if _finite(value)
            ]
            features.extend(summarize(samples))
        return features

    def context_features(self, records: Sequence[Mapping[str, Any]]) -> List[float]:
        app_type = self.infer_app_type(records)
        devices = self.device_distribution(records)
        behaviour = self.user_behavior(records)
        industry = INDUSTRY_BY_APP_TYPE[app_type]
        return (
            [float(APP_TYPE_CODES[app_type])]
            + [devices[name] for name in DEVICES]
            + [behaviour["engagement"], behaviour["accessibility"], behaviour["performance"]]
            + [float(INDUSTRY_CODES[industry])]
        )

    def infer_app_type(self, records: Sequence[Mapping[str, Any]]) -> str:
        component_types = {
            record.get("component_type")
            for record in records
            if isinstance(record.get("component_type"), str)
        }
        for app_type, components in APP_TYPE_COMPONENTS:
            if component_types.intersection(components):
                return app_type
        return "general"

    def device_distribution(self, records: Sequence[Mapping[str, Any]]) -> Dict[str, float]:
        distribution = {name: 0.0 for name in DEVICES}
        if not records:
            return distribution
        for record in records:
            position = _mapping(record.get("context")).get("position")
            device = DEVICE_BY_POSITION.get(position) if isinstance(position, str) else None
            if device is not None:
                distribution[device] += 1
        return {name: count / len(records) for name, count in distribution.items()}

    def user_behavior(self, records: Sequence[Mapping[str, Any]]) -> Dict[str, float]:
        def mean_of(field: str) -> float:
            samples = [
                float(value)
                for value in (_mapping(record.get("interactions")).get(field) for record in records)
                if _finite(value)
            ]
            return float(np.mean(samples)) if samples else 0.0

        engagement = min(max(mean_of("interaction_rate"), 0.0), 1.0)
        accessibility = min(max(mean_of("accessibility_score"), 0.0), 100.0)
        performance = 1.0 if mean_of("view_time") > 5000 else 0.0
        return {"engagement": engagement, "accessibility": accessibility, "performance": performance}

    def feature_names(self) -> List[str]:
        """Names of the populated slots, in vector order."""

        cfg = self._config
        names = ["breakpoint_count"]
        names += [f"breakpoint_ratio_{index}" for index in range(cfg.breakpoint_slots)]
        names += ["token_complexity"]
        names += [f"origin_{name}" for name in ORIGINS]
        names += [f"common_value_{index}" for index in range(cfg.top_values)]
        names += [f"component_frequency_{index}" for index in range(cfg.component_slots)]
        names += [f"property_count_{index}" for index in range(cfg.property_slots)]
        names += [f"{metric}_{stat}" for metric in PERFORMANCE_METRICS for stat in SUMMARY_STATISTICS]
        names += ["app_type"]
        names += [f"device_{name}" for name in DEVICES]
        names += ["engagement", "accessibility", "performance_concern", "industry"]
        return names[: cfg.dimension]


__all__ = ["FeatureExtractor", "PERFORMANCE_METRICS", "summarize"]
