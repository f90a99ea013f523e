"""
Shared fixtures for Gateway service tests.
"""

import os
import sys
from typing import Any, List, Optional

import httpx
import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import get_gateway_config
from shared.metrics import MetricsCollector
from shared.test_helpers import EnvelopeSigner, FakeClock, test_environment


class UpstreamStub:
    """Scripted upstream webhook for ``httpx.MockTransport``.

    Queued items are returned (or raised) in order; once the queue is empty
    the default reply is used.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._queue: List[Any] = []
        self.default: Any = httpx.Response(200, json={"ok": True})

    def reply(self, status_code: int = 200, json: Any = None, text: Optional[str] = None) -> "UpstreamStub":
        if text is not None:
            self._queue.append(httpx.Response(status_code, text=text))
        else:
            self._queue.append(httpx.Response(status_code, json=json if json is not None else {}))
        return self

    def fail(self, exc: Exception, times: int = 1) -> "UpstreamStub":
        self._queue.extend([exc] * times)
        return self

    def always(self, item: Any) -> "UpstreamStub":
        self.default = item
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._queue.pop(0) if self._queue else self.default
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def clock():
    """Fixed clock advanced by hand."""
    return FakeClock()


@pytest.fixture
def envelopes(clock):
    """Signs request envelopes with the test credentials."""
    return EnvelopeSigner(clock=clock)


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
def upstream_transport(upstream):
    return httpx.MockTransport(upstream)


@pytest.fixture
def metrics():
    return MetricsCollector("gateway")


@pytest.fixture
def gateway_config():
    """Gateway settings with known secrets and no retry delay."""
    return get_gateway_config(**test_environment.get_config_overrides())
