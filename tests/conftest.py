"""
Pytest configuration and shared fixtures.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import json
import sys
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from didchain.issuer import ChainIssuer
from didchain.publishing import ChainPublisher
from didchain.resolver import Resolver
from didchain.store import ChainStore


IDENTIFIER = "did:web:issuer.example.com"


@pytest.fixture
def store():
    """In-memory issuer store."""
    chain_store = ChainStore(":memory:")
    yield chain_store
    chain_store.close()


@pytest.fixture
def issuer(store):
    return ChainIssuer(store, IDENTIFIER)


@pytest.fixture
def publisher(issuer):
    return ChainPublisher(issuer)


def build_chain(issuer: ChainIssuer, length: int) -> None:
    """Publish versions 1..length."""
    issuer.ensure_genesis()
    while issuer.current_version < length:
        issuer.append_version()


class TamperingTransport(httpx.MockTransport):
    """
    Serves a publisher's chain, letting a test rewrite JSON responses.

    `rewrite(request, payload)` returns the payload to serve instead.
    """

    def __init__(
        self,
        publisher: ChainPublisher,
        rewrite: Optional[Callable[[httpx.Request, object], object]] = None,
    ):
        self.publisher = publisher
        self.rewrite = rewrite
        self.requests: list[httpx.Request] = []
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.publisher.handle(request)
        if self.rewrite is None or response.status_code != 200:
            return response
        payload = self.rewrite(request, json.loads(response.content))
        return httpx.Response(200, json=payload)


class TimeoutTransport(httpx.AsyncBaseTransport):
    """Transport that always times out."""

    def __init__(self):
        self.calls = 0

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        raise httpx.ReadTimeout("Mock timeout", request=request)


class ConnectErrorTransport(httpx.AsyncBaseTransport):
    """Transport that always fails to connect."""

    def __init__(self):
        self.calls = 0

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        raise httpx.ConnectError("Connection refused", request=request)


def make_resolver(transport: httpx.AsyncBaseTransport, max_attempts: int = 3) -> Resolver:
    """Resolver with no retry delay."""
    return Resolver(transport=transport, max_attempts=max_attempts, backoff=0)
