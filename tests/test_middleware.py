import asyncio

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.core.middleware import TIMEOUT_MESSAGE, RequestTimingMiddleware


def build_app(finished: list[str]) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestTimingMiddleware, timeout_seconds=0.05, slow_request_ms=500)

    @app.get("/fast")
    async def fast():
        return {"ok": True}

    @app.get("/slow")
    async def slow():
        await asyncio.sleep(0.2)
        finished.append("slow")
        return {"ok": True}

    return app


@pytest.fixture
def finished() -> list[str]:
    return []


@pytest.fixture
async def timing_client(finished):
    async with AsyncClient(
        transport=ASGITransport(app=build_app(finished)), base_url="http://test"
    ) as ac:
        yield ac


@pytest.mark.asyncio
async def test_fast_request_gets_response_time_header(timing_client):
    response = await timing_client.get("/fast")

    assert response.status_code == 200
    assert response.headers["X-Response-Time"].endswith("ms")


@pytest.mark.asyncio
async def test_timeout_answers_408_and_lets_handler_finish(timing_client, finished):
    response = await timing_client.get("/slow")

    assert response.status_code == 408
    assert response.json() == {"success": False, "message": TIMEOUT_MESSAGE, "data": None}
    assert finished == []

    await asyncio.sleep(0.3)
    assert finished == ["slow"]
