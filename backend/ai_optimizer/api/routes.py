"""
API endpoints for scaling optimization, batch processing, experiments and
the streaming channel.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from loguru import logger
from pydantic import ValidationError as SchemaValidationError

from ai_optimizer.models import schemas
from ai_optimizer.services.optimizer import AIOptimizer
from ai_optimizer.services.optimizer.ab_testing import Experiment, ExperimentConfig, ExperimentResult, Variant
from ai_optimizer.services.optimizer.errors import OptimizerError

router = APIRouter()


def get_optimizer(request: Request) -> AIOptimizer:
    return request.app.state.optimizer


def _experiment_response(experiment: Experiment) -> schemas.ExperimentResponse:
    config = experiment.config
    return schemas.ExperimentResponse(
        experiment_id=experiment.id,
        name=config.name,
        metric=config.metric,
        status=experiment.status,
        variants=[
            schemas.VariantSchema(name=variant.name, weight=variant.weight, config=variant.config)
            for variant in config.variants
        ],
        stop_reason=experiment.stop_reason,
        created_at=experiment.created_at,
    )


def _require_experiment(optimizer: AIOptimizer, experiment_id: str) -> Experiment:
    # expired experiments are completed lazily on access
    optimizer.ab_testing.complete_due_experiments()
    experiment = optimizer.ab_testing.get_experiment(experiment_id)
    if experiment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Experiment {experiment_id} not found"
        )
    return experiment


# ==================== OPTIMIZATION ====================

@router.post("/optimize", response_model=schemas.OptimizationSuggestionsResponse)
async def optimize(
    request: schemas.OptimizationRequest,
    optimizer: AIOptimizer = Depends(get_optimizer)
):
    """Generate optimization suggestions for one configuration."""
    config, usage_data = request.to_service()
    suggestions = optimizer.optimize_scaling(config, usage_data)
    return suggestions.as_dict()


@router.post("/optimize/batch", response_model=schemas.BatchOptimizationResponse)
async def optimize_batch(
    batch: schemas.BatchOptimizationRequest,
    http_request: Request,
    optimizer: AIOptimizer = Depends(get_optimizer)
):
    """Optimize many configurations through the priority batch processor."""
    requests = []
    for item in batch.requests:
        config, usage_data = item.to_service()
        requests.append({
            "config": config,
            "usage_data": usage_data,
            "priority": item.priority,
            "metadata": item.metadata,
        })

    timeout = batch.timeout or http_request.app.state.settings.BATCH_TIMEOUT_SECONDS
    results = await optimizer.batch_optimize(requests, timeout=timeout)
    items = [
        schemas.BatchItemResponse(
            id=result.id,
            success=result.success,
            suggestions=result.result.as_dict() if result.success else None,
            error=result.error,
            processing_time=result.processing_time,
            retry_count=result.retry_count,
        )
        for result in results
    ]
    succeeded = sum(1 for item in items if item.success)
    logger.info(f"Batch request finished: {succeeded}/{len(items)} succeeded")
    return schemas.BatchOptimizationResponse(
        results=items,
        succeeded=succeeded,
        failed=len(items) - succeeded,
    )


@router.get("/model", response_model=schemas.ModelInfo)
async def model_info(optimizer: AIOptimizer = Depends(get_optimizer)):
    """Describe the serving model."""
    return optimizer.model_info()


# ==================== EXPERIMENTS ====================

@router.post(
    "/experiments",
    response_model=schemas.ExperimentResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_experiment(
    experiment: schemas.ExperimentCreate,
    optimizer: AIOptimizer = Depends(get_optimizer)
):
    """Create a draft experiment."""
    experiment_id = optimizer.create_experiment(
        ExperimentConfig(
            name=experiment.name,
            variants=[Variant(name=v.name, weight=v.weight, config=v.config) for v in experiment.variants],
            metric=experiment.metric,
            minimum_sample_size=experiment.minimum_sample_size,
            start_at=experiment.start_at,
            end_at=experiment.end_at,
            description=experiment.description,
            hypothesis=experiment.hypothesis,
        )
    )
    return _experiment_response(optimizer.ab_testing.get_experiment(experiment_id))


@router.get("/experiments/power", response_model=schemas.PowerAnalysisResponse)
async def power_analysis(
    effect_size: float,
    alpha: Optional[float] = None,
    power: Optional[float] = None,
    daily_traffic: Optional[int] = None,
    optimizer: AIOptimizer = Depends(get_optimizer)
):
    """Required sample size per variant for a target effect size."""
    try:
        analysis = optimizer.perform_power_analysis(
            effect_size, alpha=alpha, power=power, daily_traffic=daily_traffic
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return analysis.as_dict()


@router.get("/experiments/statistics", response_model=schemas.ExperimentStatistics)
async def experiment_statistics(optimizer: AIOptimizer = Depends(get_optimizer)):
    """Experiment counters."""
    optimizer.ab_testing.complete_due_experiments()
    return optimizer.ab_testing.get_statistics()


@router.get("/experiments/{experiment_id}", response_model=schemas.ExperimentResponse)
async def get_experiment(experiment_id: str, optimizer: AIOptimizer = Depends(get_optimizer)):
    return _experiment_response(_require_experiment(optimizer, experiment_id))


@router.post("/experiments/{experiment_id}/start", response_model=schemas.ExperimentTransition)
async def start_experiment(experiment_id: str, optimizer: AIOptimizer = Depends(get_optimizer)):
    """Move a draft experiment to running."""
    experiment = _require_experiment(optimizer, experiment_id)
    changed = optimizer.start_experiment(experiment_id)
    if not changed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Experiment {experiment_id} cannot be started from status {experiment.status}"
        )
    return schemas.ExperimentTransition(experiment_id=experiment_id, status=experiment.status, changed=changed)


@router.post("/experiments/{experiment_id}/stop", response_model=schemas.ExperimentTransition)
async def stop_experiment(
    experiment_id: str,
    reason: str = "manual",
    optimizer: AIOptimizer = Depends(get_optimizer)
):
    """Stop a running experiment."""
    experiment = _require_experiment(optimizer, experiment_id)
    changed = optimizer.stop_experiment(experiment_id, reason)
    if not changed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Experiment {experiment_id} cannot be stopped from status {experiment.status}"
        )
    return schemas.ExperimentTransition(experiment_id=experiment_id, status=experiment.status, changed=changed)


@router.get(
    "/experiments/{experiment_id}/assignment/{user_id}",
    response_model=schemas.AssignmentResponse
)
async def assign_variant(experiment_id: str, user_id: str, optimizer: AIOptimizer = Depends(get_optimizer)):
    """Deterministic variant for a user; null unless the experiment is running."""
    _require_experiment(optimizer, experiment_id)
    return schemas.AssignmentResponse(
        experiment_id=experiment_id,
        user_id=user_id,
        variant=optimizer.assign_user_to_variant(user_id, experiment_id),
    )


@router.post(
    "/experiments/{experiment_id}/results",
    status_code=status.HTTP_202_ACCEPTED
)
async def record_result(
    experiment_id: str,
    result: schemas.ExperimentResultCreate,
    optimizer: AIOptimizer = Depends(get_optimizer)
):
    """Append an observed outcome."""
    experiment = _require_experiment(optimizer, experiment_id)
    accepted = optimizer.record_experiment_result(
        ExperimentResult(
            experiment_id=experiment_id,
            variant=result.variant,
            user_id=result.user_id,
            value=result.value,
            metadata=result.metadata,
        )
    )
    if not accepted:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Experiment {experiment_id} does not accept results in status {experiment.status}"
        )
    return {"accepted": True, "status": experiment.status}


@router.get("/experiments/{experiment_id}/analysis", response_model=schemas.ExperimentAnalysisResponse)
async def experiment_analysis(experiment_id: str, optimizer: AIOptimizer = Depends(get_optimizer)):
    """Analysis recomputed from all recorded results."""
    _require_experiment(optimizer, experiment_id)
    analysis = optimizer.get_experiment_analysis(experiment_id)
    if analysis is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No results recorded for experiment {experiment_id}"
        )
    return analysis.as_dict()


# ==================== STREAMING ====================

@router.websocket("/stream")
async def stream(websocket: WebSocket):
    """
    Duplex optimization channel.

    Client messages: ``{"action": "optimize", "requestId", "config", "usageData"}``,
    ``{"action": "cancel", "requestId"}`` and ``{"action": "status"}``.
    """
    optimizer: AIOptimizer = websocket.app.state.optimizer
    manager = optimizer.create_stream_manager()
    await websocket.accept()

    async def forward(message) -> None:
        await websocket.send_json(message.as_dict())

    manager.subscribe(forward)
    await manager.connect()
    try:
        while True:
            message: Dict[str, Any] = await websocket.receive_json()
            action = message.get("action")
            request_id = str(message.get("requestId") or message.get("request_id") or "")
            if action == "optimize":
                try:
                    request = schemas.OptimizationRequest.model_validate(message)
                    config, usage_data = request.to_service()
                    manager.stream_optimization(request_id, config, usage_data)
                except (SchemaValidationError, OptimizerError) as e:
                    await websocket.send_json({"type": "error", "request_id": request_id, "payload": {"error": str(e)}})
            elif action == "cancel":
                manager.cancel(request_id)
            elif action == "status":
                await websocket.send_json({
                    "type": "status",
                    "request_id": None,
                    "payload": {**manager.status(), **manager.performance_metrics()},
                })
            else:
                await websocket.send_json({"type": "error", "request_id": request_id, "payload": {"error": f"Unknown action {action!r}"}})
    except WebSocketDisconnect:
        logger.info("Stream client disconnected")
    finally:
        await manager.disconnect()
