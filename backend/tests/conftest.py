from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from keyconsole.core.config import Settings, get_settings
from keyconsole.main import app
from keyconsole.services.gateway_client import GatewayClient, get_gateway_client
from keyconsole.services.metering_client import MeteringClient, get_metering_client


class FakeGateway:
    """In-memory stand-in for the gateway consumers collection, keyed by name."""

    def __init__(self) -> None:
        self.consumers: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.failure: httpx.Response | None = None
        self.list_body: Any = None
        self.unreachable = False
        self._next_id = 1

    def seed(self, name: str, **limits: Any) -> dict[str, Any]:
        record = {
            "id": f"csm_{self._next_id}",
            "name": name,
            "createdOn": "2026-01-01T00:00:00.000Z",
            "updatedOn": "2026-01-01T00:00:00.000Z",
            "description": "",
            "tags": {},
            "metadata": {"limits": limits, "model": "gpt-4o"},
        }
        self._next_id += 1
        self.consumers[name] = record
        return record

    def bodies(self, method: str) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.method == method]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.failure is not None:
            return self.failure

        tail = request.url.path.split("/consumers", 1)[1].lstrip("/")

        if request.method == "GET":
            if self.list_body is not None:
                return httpx.Response(200, json=self.list_body)
            return httpx.Response(
                200,
                json={"data": list(self.consumers.values()), "offset": 0, "limit": 1000},
            )

        if request.method == "POST":
            body = json.loads(request.content)
            record = self.seed(body["name"], **body["metadata"]["limits"])
            record.update(
                description=body["description"],
                tags=body["tags"],
                metadata=body["metadata"],
            )
            return httpx.Response(200, json={**record, "apiKeys": [{"key": "zpka_secret_123"}]})

        record = self.consumers.get(tail)
        if record is None:
            return httpx.Response(404, text=f"Consumer {tail} not found")

        if request.method == "PATCH":
            body = json.loads(request.content)
            record.update(name=body["name"], metadata=body["metadata"])
            return httpx.Response(200, json=record)

        if request.method == "DELETE":
            del self.consumers[tail]
            return httpx.Response(204)

        return httpx.Response(405)


class FakeMetering:
    """Records meter queries and answers with a canned series."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.rows: list[dict[str, Any]] = []
        self.failure: httpx.Response | None = None
        self.unreachable = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.failure is not None:
            return self.failure
        params = request.url.params
        return httpx.Response(
            200,
            json={
                "data": self.rows,
                "from": params.get("from"),
                "to": params.get("to"),
                "windowSize": params.get("windowSize"),
            },
        )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        GATEWAY_API_KEY="gw-test-key",
        GATEWAY_ACCOUNT="acct",
        GATEWAY_BUCKET="bucket",
        GATEWAY_BASE_URL="https://gateway.test/v1",
        METERING_API_KEY="mt-test-key",
        METERING_BASE_URL="https://metering.test",
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def metering() -> FakeMetering:
    return FakeMetering()


def override_settings(target: FastAPI, config: Settings, gateway: FakeGateway, metering: FakeMetering) -> None:
    target.dependency_overrides[get_settings] = lambda: config
    target.dependency_overrides[get_gateway_client] = lambda: GatewayClient(
        config, transport=httpx.MockTransport(gateway)
    )
    target.dependency_overrides[get_metering_client] = lambda: MeteringClient(
        config, transport=httpx.MockTransport(metering)
    )


@pytest.fixture
def console_app(
    test_settings: Settings,
    gateway: FakeGateway,
    metering: FakeMetering,
) -> Iterator[FastAPI]:
    override_settings(app, test_settings, gateway, metering)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(console_app: FastAPI) -> TestClient:
    return TestClient(console_app)
