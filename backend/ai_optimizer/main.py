"""
Main FastAPI application for the Responsive Scaling Optimizer.
"""
import sys
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ai_optimizer.api.routes import router
from ai_optimizer.core.config import Settings, settings
from ai_optimizer.core.database import SessionLocal, init_db
from ai_optimizer.models import schemas
from ai_optimizer.services.optimizer import AIOptimizer, ExperimentRepository
from ai_optimizer.services.optimizer.errors import (
    BatchTimeoutError,
    ConfigurationError,
    ModelNotInitializedError,
    OptimizerError,
    ValidationError,
)
from ai_optimizer.services.optimizer.metrics import expose_metrics


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def build_optimizer(config: Settings) -> AIOptimizer:
    """Create and initialize the optimizer described by ``config``."""
    repository = None
    if config.PERSIST_EXPERIMENTS:
        init_db()
        repository = ExperimentRepository(SessionLocal)
    optimizer = AIOptimizer(repository=repository)
    optimizer.initialize(config.MODEL_PATH)
    return optimizer


def create_app(optimizer: Optional[AIOptimizer] = None, config: Settings = settings) -> FastAPI:
    configure_logging(config.LOG_LEVEL)

    app = FastAPI(
        title=config.APP_NAME,
        version=config.APP_VERSION,
        description="Learned optimization of responsive scaling configurations"
    )
    app.state.settings = config
    app.state.optimizer = optimizer or build_optimizer(config)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==================== ERROR MAPPING ====================

    def _error(status_code: int, exc: OptimizerError) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)

    @app.exception_handler(ModelNotInitializedError)
    async def model_not_initialized(request: Request, exc: ModelNotInitializedError):
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc)

    @app.exception_handler(BatchTimeoutError)
    async def batch_timeout(request: Request, exc: BatchTimeoutError):
        return _error(status.HTTP_504_GATEWAY_TIMEOUT, exc)

    @app.exception_handler(OptimizerError)
    async def optimizer_error(request: Request, exc: OptimizerError):
        logger.error(f"Unhandled optimizer error on {request.url.path}: {exc}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)

    # ==================== HEALTH & STATUS ====================

    @app.get("/health", response_model=schemas.HealthCheck)
    async def health_check():
        """Health check endpoint."""
        current: AIOptimizer = app.state.optimizer
        return schemas.HealthCheck(
            status="healthy" if current.initialized else "degraded",
            version=config.APP_VERSION,
            model_initialized=current.initialized,
            config_version=current.config_version,
            timestamp=datetime.utcnow()
        )

    if config.ENABLE_PROMETHEUS_METRICS:
        @app.get("/metrics")
        async def prometheus_metrics():
            payload, content_type = expose_metrics()
            return Response(content=payload, media_type=content_type)

    app.include_router(router, prefix=config.API_V1_PREFIX, tags=["optimizer"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "ai_optimizer.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
