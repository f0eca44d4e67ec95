"""FastAPI application for the feedback suggestion pipeline."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException

from src.api.dependencies import PipelineComponents, build_components, get_components
from src.api.feedback import router as feedback_router
from src.api.suggestions import router as suggestions_router
from src.common.env import load_env
from src.common.logging import get_logger, log_error

logger = get_logger(__name__)


def create_app(components: Optional[PipelineComponents] = None) -> FastAPI:
    """Create the API app.

    Args:
        components: Prebuilt pipeline components. When omitted they are built
            from environment configuration at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if components is None:
            load_env()
        app.state.components = components or build_components()
        await app.state.components.worker_pool.start()
        logger.info(
            "Pipeline API started",
            extra={"storage_backend": app.state.components.storage_backend},
        )
        try:
            yield
        finally:
            await app.state.components.worker_pool.stop()

    app = FastAPI(title="Feedback Suggestion Pipeline API", lifespan=lifespan)
    app.include_router(feedback_router)
    app.include_router(suggestions_router)

    @app.get("/health")
    def health(components: PipelineComponents = Depends(get_components)):
        try:
            stats = components.repository.pipeline_stats()
        except Exception as exc:
            log_error(logger, "Health check failed", error=exc)
            raise HTTPException(status_code=500, detail="unhealthy") from exc

        return {
            "status": "ok",
            "storageBackend": components.storage_backend,
            "workerPool": {
                "running": components.worker_pool.running,
                "queueDepth": components.worker_pool.queue_depth,
            },
            "pipeline": stats,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
