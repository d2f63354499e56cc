"""Tests for the FastAPI service mode."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from readmeinfo.parser import ReadmeParser
from readmeinfo.service import create_app


class _CountingFactory:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> ReadmeParser:
        self.calls += 1
        return ReadmeParser()


@pytest.fixture
def factory() -> _CountingFactory:
    return _CountingFactory()


@pytest.fixture
def client(factory: _CountingFactory) -> TestClient:
    return TestClient(create_app(factory))


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_parse_endpoint_returns_result(client: TestClient, sample_readme: str) -> None:
    response = client.post("/parse", json={"content": sample_readme})

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["metadata"]["name"] == "Acme Widgets"
    assert payload["errors"] == []


def test_parse_file_endpoint(client: TestClient, write_readme) -> None:
    path = write_readme()

    response = client.post("/parse-file", json={"path": str(path)})

    assert response.status_code == 200
    assert response.json()["data"]["metadata"]["license"] == "MIT"


def test_parse_file_endpoint_missing_file(client: TestClient, tmp_path: Path) -> None:
    response = client.post("/parse-file", json={"path": str(tmp_path / "missing.md")})

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is False
    assert payload["errors"][0]["code"] == "FILE_UNREADABLE"


def test_parse_endpoint_validates_payload(client: TestClient) -> None:
    response = client.post("/parse", json={})
    assert response.status_code == 422


def test_parser_is_built_once_per_app(
    client: TestClient, factory: _CountingFactory, sample_readme: str
) -> None:
    client.post("/parse", json={"content": sample_readme})
    client.post("/parse", json={"content": "# Second\n"})

    assert factory.calls == 1
