"""Tests for the bundle HTTP server."""

from fastapi.testclient import TestClient
import pytest

from opa_bundle_builder.assembler import assemble
from opa_bundle_builder.config import ServerConfig
from opa_bundle_builder.manifest import PolicySource
from opa_bundle_builder.server import BUNDLE_PATH, create_app, etag_matches
from opa_bundle_builder.store import BundleStore


def source(name: str, content: bytes) -> PolicySource:
    return PolicySource(name=name, namespace="opa", entries={"rule.rego": content})


@pytest.fixture
def store() -> BundleStore:
    return BundleStore()


@pytest.fixture
def client(store: BundleStore) -> TestClient:
    return TestClient(create_app(store, ServerConfig(retry_after_seconds=7)))


def test_not_ready(client: TestClient) -> None:
    """Test the transient status before the first bundle is built."""
    response = client.get(BUNDLE_PATH)
    assert response.status_code == 503
    assert response.headers["Retry-After"] == "7"

    response = client.get("/ready")
    assert response.status_code == 503

    response = client.get("/status")
    assert response.status_code == 200
    assert response.json() == {"ready": False, "bundle": None}


def test_get_bundle(client: TestClient, store: BundleStore) -> None:
    """Test retrieving the current bundle."""
    bundle = assemble([source("a", b"package a")])
    store.publish(bundle)

    response = client.get(BUNDLE_PATH)
    assert response.status_code == 200
    assert response.content == bundle.archive
    assert response.headers["Content-Type"] == "application/gzip"
    assert response.headers["ETag"] == bundle.etag
    assert response.headers["X-Bundle-Sequence"] == "1"
    assert response.headers["X-Bundle-Digest"] == bundle.digest


def test_conditional_retrieval(client: TestClient, store: BundleStore) -> None:
    """Test the current digest gives not modified, a new bundle a new body."""
    first = assemble([source("a", b"package a")])
    store.publish(first)

    response = client.get(BUNDLE_PATH, headers={"If-None-Match": first.etag})
    assert response.status_code == 304
    assert response.content == b""
    assert response.headers["ETag"] == first.etag

    second = assemble([source("a", b"package b")], previous=first)
    store.publish(second)

    response = client.get(BUNDLE_PATH, headers={"If-None-Match": first.etag})
    assert response.status_code == 200
    assert response.content == second.archive
    assert response.headers["ETag"] == second.etag
    assert second.etag != first.etag


def test_ready_and_status(client: TestClient, store: BundleStore) -> None:
    """Test the health routes after the first build."""
    bundle = assemble([source("a", b"package a")])
    store.publish(bundle)

    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["digest"] == bundle.digest
    assert response.json()["files"] == ["a/rule.rego"]
    assert response.json()["sources"] == ["opa/a"]

    response = client.get("/status")
    assert response.status_code == 200
    body = response.json()
    assert body["ready"] is True
    assert body["bundle"]["sequence"] == 1


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, False),
        ("", False),
        ('"sha256:abc"', True),
        ('W/"sha256:abc"', True),
        ("sha256:abc", True),
        ("abc", True),
        ('"sha256:other", "sha256:abc"', True),
        ("*", True),
        ('"sha256:abcd"', False),
    ],
)
def test_etag_matches(header: str | None, expected: bool) -> None:
    """Test parsing of If-None-Match headers."""
    assert etag_matches(header, '"sha256:abc"') is expected
