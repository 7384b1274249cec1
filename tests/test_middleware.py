"""
Unit tests for middleware — RequestIDMiddleware and RequestTimingMiddleware.

Uses httpx.AsyncClient against a lightweight FastAPI test app to exercise
both middleware classes through their full dispatch cycle.
"""

import logging
import uuid

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from autoinvest import middleware
from autoinvest.middleware import REQUEST_ID_HEADER, RequestIDMiddleware, RequestTimingMiddleware


def _make_test_app() -> FastAPI:
    """Create a minimal FastAPI app with both middleware classes."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RequestTimingMiddleware)

    @app.get("/echo-id")
    async def echo_id(request: Request):
        return {"request_id": request.state.request_id}

    return app


async def _get(app, headers=None):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get("/echo-id", headers=headers)


class TestRequestIDMiddleware:
    @pytest.mark.asyncio
    async def test_generates_uuid_when_absent(self):
        resp = await _get(_make_test_app())

        request_id = resp.headers[REQUEST_ID_HEADER]
        uuid.UUID(request_id)
        assert resp.json()["request_id"] == request_id

    @pytest.mark.asyncio
    async def test_propagates_caller_id(self):
        resp = await _get(_make_test_app(), headers={REQUEST_ID_HEADER: "scheduler-run-42"})

        assert resp.headers[REQUEST_ID_HEADER] == "scheduler-run-42"
        assert resp.json()["request_id"] == "scheduler-run-42"


class TestRequestTimingMiddleware:
    @pytest.mark.asyncio
    async def test_adds_process_time_header(self):
        resp = await _get(_make_test_app())

        value = resp.headers["X-Process-Time"]
        assert value.endswith("ms")
        assert float(value[:-2]) >= 0

    @pytest.mark.asyncio
    async def test_slow_request_logged_as_warning(self, monkeypatch, caplog):
        monkeypatch.setattr(middleware, "SLOW_REQUEST_MS", -1)

        with caplog.at_level(logging.WARNING, logger="autoinvest.middleware"):
            await _get(_make_test_app(), headers={REQUEST_ID_HEADER: "slow-1"})

        records = [r for r in caplog.records if "SLOW" in r.getMessage()]
        assert len(records) == 1
        assert records[0].path == "/echo-id"
        assert records[0].status_code == 200
        assert records[0].request_id == "slow-1"
