"""Health and read-only state endpoints.

Routes:
    GET /health - Liveness check
    GET /agents - Snapshot of the agent pool
    GET /queue - Pending work items, oldest first
    HEAD /{any} - Always 200 (tracker URL verification)
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from localpipeline.runtime import PipelineRuntime


class HealthResponse(BaseModel):
    status: str


def get_runtime(request: Request) -> PipelineRuntime:
    return request.app.state.runtime  # type: ignore[no-any-return]


def create_health_router() -> APIRouter:
    """Create the health and state router."""
    router = APIRouter(tags=["health"])

    @router.get("/health", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    @router.get("/agents")
    async def agents(request: Request) -> dict[str, Any]:
        runtime = get_runtime(request)
        runtime.registry.refresh()
        return {"agents": [record.to_storage() for record in runtime.registry.get_all()]}

    @router.get("/queue")
    async def queue(request: Request) -> dict[str, Any]:
        items = get_runtime(request).queue.list_items()
        return {"items": [item.to_storage() for item in items], "length": len(items)}

    @router.api_route("/{path:path}", methods=["HEAD"], include_in_schema=False)
    async def head(path: str) -> Response:
        return Response(status_code=200)

    return router
