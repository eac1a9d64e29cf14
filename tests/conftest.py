# conftest.py
"""
Shared test fixtures for the scan admission webhook tests
"""

import json
import re
from collections import defaultdict

import httpx
import pytest

from scangate.config import ScannerSettings
from scangate.scanner.client import ScanReportClient


ENGINE_URL = "http://engine.test/v1"
CHECK_PATH = re.compile(r"/v1/images/(?P<digest>[^/]+)/check")


class FakeEngine:
    """In-memory stand-in for the scanning engine's HTTP API."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.registrations: list[str] = []
        self.resolve_attempts = defaultdict(int)
        self.digests: dict[str, str] = {}
        self.not_indexed: dict[str, int] = {}
        self.reports: dict[str, object] = {}
        self.register_status = 200
        self.check_status: dict[str, int] = {}

    def add_image(self, tag, digest, status="pass", not_indexed=0):
        self.digests[tag] = digest
        self.not_indexed[tag] = not_indexed
        self.reports[digest] = [
            {
                digest: {
                    tag: [
                        {
                            "detail": {"result": {"final_action": "go"}},
                            "last_evaluation": "2024-05-01T12:00:00Z",
                            "policyId": "default",
                            "status": status,
                        }
                    ]
                }
            }
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/v1/images" and request.method == "POST":
            tag = json.loads(request.content)["tag"]
            self.registrations.append(tag)
            if self.register_status != 200:
                return httpx.Response(self.register_status)
            return httpx.Response(200, json=[{"imageDigest": self.digests.get(tag, "")}])

        if path == "/v1/images" and request.method == "GET":
            tag = request.url.params["tag"]
            self.resolve_attempts[tag] += 1
            if tag not in self.digests or self.resolve_attempts[tag] <= self.not_indexed[tag]:
                return httpx.Response(404, json={"message": "image not found"})
            return httpx.Response(
                200,
                json=[{"imageDigest": self.digests[tag], "analysis_status": "analyzed"}],
            )

        match = CHECK_PATH.fullmatch(path)
        if match:
            digest = match.group("digest")
            if digest in self.check_status:
                return httpx.Response(self.check_status[digest])
            if digest not in self.reports:
                return httpx.Response(404, json={"message": "no evaluation"})
            body = self.reports[digest]
            if isinstance(body, str):
                return httpx.Response(200, text=body)
            return httpx.Response(200, json=body)

        return httpx.Response(404)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host configuration out of the settings under test."""
    for var in [
        "SCANNER_URL", "SCANNER_TOKEN", "SCANNER_VERIFY_TLS", "SCANNER_TIMEOUT",
        "SCANNER_DIGEST_ATTEMPTS", "SCANNER_DIGEST_INTERVAL", "PORT", "BIND_ADDRESS",
        "UDS_PATH", "TLS_CERT_PATH", "TLS_KEY_PATH", "DEBUG", "ADMISSION_TIMEOUT",
        "PIN_DIGESTS",
    ]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def scanner_settings() -> ScannerSettings:
    return ScannerSettings(url=ENGINE_URL, token="s3cret", digest_interval=0)


@pytest.fixture
def scan_client(engine, scanner_settings) -> ScanReportClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(engine))
    return ScanReportClient(scanner_settings, http_client=http_client)


@pytest.fixture
def valid_pod():
    """A pod whose images all pass."""
    return {
        "kind": "Pod",
        "metadata": {"name": "test-pod"},
        "spec": {
            "containers": [
                {"name": "app", "image": "registry.local/app:1.0"},
                {"name": "sidecar", "image": "registry.local/proxy:2.1"},
            ]
        },
    }


@pytest.fixture
def valid_deployment():
    return {
        "kind": "Deployment",
        "metadata": {"name": "test-deployment"},
        "spec": {
            "template": {
                "metadata": {"labels": {"app": "test"}},
                "spec": {
                    "containers": [
                        {"name": "app", "image": "registry.local/app:1.0"}
                    ]
                },
            }
        },
    }


def create_request(resource_object, kind="Pod", uid="test-uid-123", operation="CREATE"):
    """Helper function to create an AdmissionReview request."""
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "kind": {"group": "", "version": "v1", "kind": kind},
            "namespace": "default",
            "operation": operation,
            "object": resource_object,
        },
    }


@pytest.fixture
def review_factory():
    return create_request
