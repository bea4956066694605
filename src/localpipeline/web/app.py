"""FastAPI application factory for the localpipeline webhook server.

The application carries one PipelineRuntime on ``app.state``. Components
are built when the app is created so that agent state is recovered before
the first request; the lifespan only starts and stops the background work
(retry supervisor, subprocess watchers).

Example usage:
    >>> from localpipeline.config import load_config
    >>> from localpipeline.web.app import create_app
    >>>
    >>> app = create_app(load_config())
    >>> import uvicorn
    >>> uvicorn.run(app, host="127.0.0.1", port=3000)
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI

from localpipeline import __version__
from localpipeline.config import PipelineConfig
from localpipeline.logging import get_logger
from localpipeline.runtime import PipelineRuntime, build_runtime
from localpipeline.web.ingestion import WebhookIngestion
from localpipeline.web.middleware import RequestLoggingMiddleware
from localpipeline.web.routes.health import create_health_router
from localpipeline.web.routes.webhooks import create_webhooks_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the retry supervisor on startup, stop it and detach watchers on shutdown."""
    runtime: PipelineRuntime = app.state.runtime
    config = runtime.config

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)
    await runtime.supervisor.start()

    yield

    logger.info("app_shutdown_begin")
    await runtime.supervisor.stop()
    await runtime.dispatcher.shutdown()
    logger.info("app_shutdown_complete")


def create_app(
    config: PipelineConfig | None = None,
    collaborators: Sequence[Any] | None = None,
    runtime: PipelineRuntime | None = None,
) -> FastAPI:
    """Create the webhook server application.

    Args:
        config: Configuration; defaults to ``PipelineConfig()``. Ignored when
            ``runtime`` is given.
        collaborators: Tracker collaborators overriding the configured ones.
        runtime: Prebuilt runtime (tests inject one with a fake provisioner).

    Returns:
        Configured FastAPI application.
    """
    if runtime is None:
        runtime = build_runtime(config or PipelineConfig(), collaborators=collaborators)

    app = FastAPI(
        title="localpipeline",
        version=__version__,
        description="Dispatches tracker work items to a local pool of coding agents",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.state.ingestion = WebhookIngestion(
        runtime.dispatcher, runtime.queue, runtime.synchronizer
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_webhooks_router())
    app.include_router(create_health_router())

    logger.info(
        "app_created",
        version=__version__,
        webhook_secret_configured=bool(runtime.config.web.webhook_secret),
    )
    return app
