import asyncio

import pytest

from avaworkload.errors import NodeUnhealthy
from avaworkload.network import Network, StaticNetwork


def test_static_network_from_config():
    cfg = {"nodes": {"uris": ["http://a:9650", "http://b:9650"], "request_timeout": 3.0}, "codec": {"encoding": "cb58"}}
    net = StaticNetwork.from_config(cfg)
    assert net.names == ["node0", "node1"]
    assert net.client("node1").uri == "http://b:9650"
    assert net.client("node1") is net.client("node1")
    assert net.client("node0").encoding == "cb58"
    assert isinstance(net, Network)


def test_start_node_requires_unique_name_and_uri():
    net = StaticNetwork()
    net.start_node("n", {"uri": "http://n"})
    with pytest.raises(ValueError, match="already registered"):
        net.start_node("n", {"uri": "http://n"})
    with pytest.raises(ValueError, match="no 'uri'"):
        net.start_node("m", {})
    with pytest.raises(KeyError):
        net.client("missing")


def test_wait_healthy(fake_net):
    net = fake_net.network()
    asyncio.run(net.wait_all_healthy(timeout=1))
    polled = {(n, m) for n, m, _, _ in fake_net.ledger.calls}
    for name in fake_net.nodes:
        assert {(name, "health.getLiveness"), (name, "info.isBootstrapped")} <= polled


def test_wait_healthy_retries_then_times_out(fake_net):
    fake_net.nodes["node1"].health_getLiveness = lambda params: {"healthy": False}
    net = fake_net.network()
    with pytest.raises(NodeUnhealthy, match="node1"):
        asyncio.run(net.wait_all_healthy(timeout=0.05))
    polls = [n for n, m, _, _ in fake_net.ledger.calls if m == "health.getLiveness" and n == "node1"]
    assert len(polls) > 1
