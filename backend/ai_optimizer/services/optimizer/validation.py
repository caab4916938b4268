"""Caller-facing validation of telemetry and configuration payloads.

The feature extractor tolerates missing or malformed optional fields; this
module is the single place where wrongly shaped input is rejected outright.
"""
from __future__ import annotations

import numbers
from typing import Any, Mapping, Sequence

from .entities import ScalingConfig
from .errors import ValidationError


def is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def validate_usage_data(data: Any) -> Sequence[Mapping[str, Any]]:
    """Check the minimal shape of a usage record collection and return it."""

    if not isinstance(data, (list, tuple)):
        raise ValidationError(
            f"Usage data must be a list, received {type(data).__name__}",
            hint="Send an array of usage records",
        )
    if not data:
        raise ValidationError("Usage data must contain at least one record")

    for index, record in enumerate(data):
        if not isinstance(record, Mapping):
            raise ValidationError(f"Usage record {index} must be an object")
        values = record.get("responsive_values")
        if not isinstance(values, (list, tuple)):
            raise ValidationError(f"Usage record {index} requires a responsive_values list")
        for position, entry in enumerate(values):
            if not isinstance(entry, Mapping):
                raise ValidationError(f"Usage record {index} responsive value {position} must be an object")
            if not isinstance(entry.get("token"), str):
                raise ValidationError(f"Usage record {index} responsive value {position} requires a string token")
            if not isinstance(entry.get("property"), str):
                raise ValidationError(f"Usage record {index} responsive value {position} requires a string property")
            if not is_number(entry.get("base_value")):
                raise ValidationError(f"Usage record {index} responsive value {position} requires a numeric base_value")
    return data


def validate_scaling_config(data: Any) -> ScalingConfig:
    """Build a :class:`ScalingConfig`, raising ``ConfigurationError`` on bad values."""

    if isinstance(data, ScalingConfig):
        return data
    if not isinstance(data, Mapping):
        raise ValidationError("Scaling configuration must be an object")
    if not isinstance(data.get("base"), Mapping):
        raise ValidationError("Scaling configuration requires a base viewport")
    if not isinstance(data.get("breakpoints", []), (list, tuple)):
        raise ValidationError("Scaling configuration breakpoints must be a list")
    return ScalingConfig.from_dict(data)


__all__ = ["is_number", "validate_usage_data", "validate_scaling_config"]
