"""
Pydantic schemas for API validation and serialization.

Request bodies accept both camelCase (as sent by browser telemetry) and
snake_case field names; responses are emitted in camelCase.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class APIModel(BaseModel):
    """Base schema with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


# Enums
class OriginEnum(str, Enum):
    WIDTH = "width"
    HEIGHT = "height"
    MIN = "min"
    MAX = "max"
    DIAGONAL = "diagonal"
    AREA = "area"


class ExperimentStatusEnum(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"


# Scaling configuration
class Viewport(APIModel):
    width: float = Field(..., gt=0)
    height: float = Field(0, ge=0)


class Breakpoint(APIModel):
    name: str
    width: float = Field(..., gt=0)
    height: float = Field(0, ge=0)
    alias: Optional[str] = None


class TokenRule(APIModel):
    scale: float = 1.0
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    responsive: bool = True


class ScalingStrategy(APIModel):
    origin: OriginEnum = OriginEnum.WIDTH
    tokens: Dict[str, TokenRule] = Field(default_factory=dict)
    rounding: str = "nearest"
    min_font_size: float = 16.0
    min_tap_target: float = 44.0


class ScalingConfig(APIModel):
    """Schema for a scaling configuration descriptor."""
    base: Viewport
    breakpoints: List[Breakpoint] = Field(default_factory=list)
    strategy: ScalingStrategy = Field(default_factory=ScalingStrategy)

    def to_service(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# Usage telemetry
class ResponsiveValue(APIModel):
    token: str
    property: str
    base_value: float


class UsageRecord(APIModel):
    """One observation of a component instance.

    ``performance``, ``interactions`` and ``context`` stay free-form: missing
    or malformed telemetry is resolved to defaults by the feature extractor.
    """
    component_type: Optional[str] = None
    responsive_values: List[ResponsiveValue]
    performance: Dict[str, Any] = Field(default_factory=dict)
    interactions: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("performance", "interactions", mode="before")
    @classmethod
    def snake_case_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {_to_snake(key): item for key, item in value.items()}
        return value


def _to_snake(name: str) -> str:
    return "".join(f"_{char.lower()}" if char.isupper() else char for char in name).lstrip("_")


# Optimization
class OptimizationRequest(APIModel):
    """Schema for a single optimization request."""
    config: ScalingConfig
    usage_data: List[UsageRecord]
    priority: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_service(self) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        return self.config.to_service(), [record.model_dump(mode="json") for record in self.usage_data]


class OptimizationSuggestionsResponse(APIModel):
    suggested_tokens: Dict[str, Dict[str, Any]]
    curve_recommendations: List[Dict[str, Any]]
    performance_impacts: List[Dict[str, Any]]
    accessibility_warnings: List[Dict[str, Any]]
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    estimated_improvements: Dict[str, Dict[str, float]]


class BatchOptimizationRequest(APIModel):
    requests: List[OptimizationRequest] = Field(..., min_length=1)
    timeout: Optional[float] = Field(None, gt=0)


class BatchItemResponse(APIModel):
    id: str
    success: bool
    suggestions: Optional[OptimizationSuggestionsResponse] = None
    error: Optional[str] = None
    processing_time: float
    retry_count: int


class BatchOptimizationResponse(APIModel):
    results: List[BatchItemResponse]
    succeeded: int
    failed: int


# Experiments
class VariantSchema(APIModel):
    name: str
    weight: float = Field(..., ge=0.0, le=1.0)
    config: Dict[str, Any] = Field(default_factory=dict)


class ExperimentCreate(APIModel):
    """Schema for creating an experiment."""
    name: str = Field(..., max_length=200)
    variants: List[VariantSchema] = Field(..., min_length=1)
    metric: str
    minimum_sample_size: int = Field(0, ge=0)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    description: str = ""
    hypothesis: str = ""


class ExperimentResponse(APIModel):
    experiment_id: str
    name: str
    metric: str
    status: ExperimentStatusEnum
    variants: List[VariantSchema]
    stop_reason: Optional[str] = None
    created_at: datetime


class ExperimentTransition(APIModel):
    experiment_id: str
    status: ExperimentStatusEnum
    changed: bool


class ExperimentResultCreate(APIModel):
    user_id: str
    variant: str
    value: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AssignmentResponse(APIModel):
    experiment_id: str
    user_id: str
    variant: Optional[str]


class ExperimentAnalysisResponse(APIModel):
    experiment_id: str
    variants: Dict[str, Dict[str, Any]]
    tests: Dict[str, Dict[str, Any]]
    winner: Optional[str]
    recommendation: str
    confidence: float
    expected_lift: float
    risk: Dict[str, Any]


class PowerAnalysisResponse(APIModel):
    effect_size: float
    alpha: float
    power: float
    sample_size: int
    minimum_detectable_effect: float
    recommended_duration_days: Optional[float] = None


class ExperimentStatistics(APIModel):
    total_experiments: int
    active_experiments: int
    completed_experiments: int
    successful_experiments: int


# System
class ModelInfo(APIModel):
    architecture: Optional[Any] = None
    parameters: int
    layers: int
    initialized: bool
    config_version: int


class HealthCheck(APIModel):
    """Health check response."""
    status: str
    version: str
    model_initialized: bool
    config_version: int
    timestamp: datetime
