from __future__ import annotations

import pytest

from querygate import metrics
from querygate.service import QueryGateway

from fakes import FakeExecutor


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def gateway(executor) -> QueryGateway:
    return QueryGateway([executor])
