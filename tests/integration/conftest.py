"""Pytest fixtures for integration tests.

Provides a webhook server application wired to on-disk stores in a temp
data dir, a stand-in coding agent script and recording fake trackers, plus
an HTTP client talking to it in-process.
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from fakes import FakeProvisioner, FakeTracker
from localpipeline.config import PipelineConfig
from localpipeline.runtime import PipelineRuntime, build_runtime
from localpipeline.web.app import create_app


@pytest.fixture
def trackers() -> list[FakeTracker]:
    """Linear and GitHub collaborators recording every call."""
    return [FakeTracker("Linear"), FakeTracker("GitHub")]


@pytest.fixture
def server_config(pipeline_config: PipelineConfig, agent_script) -> PipelineConfig:
    """Configuration running the stand-in agent script, no webhook secret."""
    agents = pipeline_config.agents.model_copy(
        update={"command": agent_script(exit_code=0), "command_args": []}
    )
    return pipeline_config.model_copy(update={"agents": agents})


@pytest.fixture
def make_runtime(server_config: PipelineConfig, trackers: list[FakeTracker]):
    def make(webhook_secret: str | None = None) -> PipelineRuntime:
        config = server_config
        if webhook_secret is not None:
            web = config.web.model_copy(update={"webhook_secret": webhook_secret})
            config = config.model_copy(update={"web": web})
        return build_runtime(
            config,
            collaborators=trackers,
            provisioner=FakeProvisioner(config.git),
        )

    return make


@pytest.fixture
def runtime(make_runtime) -> PipelineRuntime:
    return make_runtime()


@pytest.fixture
def app(runtime: PipelineRuntime) -> FastAPI:
    return create_app(runtime=runtime)


@pytest_asyncio.fixture
async def client(app: FastAPI, runtime: PipelineRuntime) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app; waits for spawned agents on teardown."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    for name in runtime.registry.agent_names:
        watcher = runtime.dispatcher.watcher_for(name)
        if watcher is not None:
            await watcher
