import pytest

from tests.fakes import FakeDelivery, FakeJobStore, FakeMetricsSource, FakeRedis


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_store():
    return FakeJobStore()


@pytest.fixture
def fake_delivery():
    return FakeDelivery()


@pytest.fixture
def fake_metrics_source():
    return FakeMetricsSource()
