import pytest

from fake_node import FakeNetwork


@pytest.fixture
def fake_net() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def slow_net() -> FakeNetwork:
    """Every transaction reports Processing twice before settling."""
    return FakeNetwork(pending_polls=2)
