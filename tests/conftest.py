"""Pytest fixtures for usage tracking tests."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from usage_tracking.config import Settings
from usage_tracking.lib.metrics import UsageRegistry
from usage_tracking.main import create_app


@pytest.fixture()
def settings() -> Settings:
    """Return a settings snapshot independent of the host environment."""
    return Settings(PORT=0, LOG_LEVEL="info", PPROF=False)


@pytest.fixture()
def registry() -> UsageRegistry:
    """Return an isolated registry so counts never leak between tests."""
    return UsageRegistry()


@pytest.fixture()
def app(settings: Settings, registry: UsageRegistry) -> FastAPI:
    """Return a FastAPI application wired to the per-test registry."""
    return create_app(settings, registry)


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Provide an `httpx.AsyncClient` configured for the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
