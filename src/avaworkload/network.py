"""The test network the workflows run against.

Provisioning belongs to whatever stands the nodes up (compose, a CI job, a
local script). The harness only needs the three operations on ``Network``.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

import avaworkload.constants as C
from avaworkload.client import AvalancheClient
from avaworkload.errors import NodeUnhealthy, RPCError

log = logging.getLogger("avaworkload.network")


@dataclass(frozen=True, slots=True)
class NodeHandle:
    name: str
    uri: str
    config: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class Network(Protocol):
    def start_node(self, name: str, config: Mapping[str, Any]) -> NodeHandle: ...

    def client(self, name: str) -> AvalancheClient: ...

    async def wait_healthy(self, name: str, timeout: float) -> None: ...


async def probe_node(client: AvalancheClient, retry_delay: float = 2.0) -> None:
    """Poll until the node is live and has bootstrapped the X chain. Retries forever; bound it with a timeout."""
    attempt = 0
    while True:
        attempt += 1
        try:
            if await client.health.get_liveness() and await client.info.is_bootstrapped(C.X_CHAIN_ALIAS):
                log.info("%s healthy (attempt %s)", client.uri, attempt)
                return
            log.info("%s not bootstrapped yet (attempt %s) - retrying in %ss...", client.uri, attempt, retry_delay)
        except RPCError as e:
            log.info("%s not ready yet (attempt %s): %s - retrying in %ss...", client.uri, attempt, e, retry_delay)
        await asyncio.sleep(retry_delay)


class StaticNetwork:
    """Nodes that are already running at known URIs.

    ``start_node`` does not launch anything. It records where a node lives
    (``config["uri"]``) and hands out clients bound to it.
    """

    def __init__(
        self,
        uris: Mapping[str, str] | None = None,
        *,
        request_timeout: float = C.RPC_TIMEOUT,
        encoding: C.Encoding | str = C.Encoding.HEX,
        retry_delay: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.request_timeout = request_timeout
        self.encoding = C.Encoding(encoding)
        self.retry_delay = retry_delay
        self._transport = transport
        self.nodes: dict[str, NodeHandle] = {}
        self._clients: dict[str, AvalancheClient] = {}
        for name, uri in (uris or {}).items():
            self.start_node(name, {"uri": uri})

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], **kwargs) -> "StaticNetwork":
        uris = {f"node{i}": uri for i, uri in enumerate(cfg["nodes"]["uris"])}
        kwargs.setdefault("request_timeout", float(cfg["nodes"].get("request_timeout", C.RPC_TIMEOUT)))
        kwargs.setdefault("encoding", cfg.get("codec", {}).get("encoding", C.Encoding.HEX))
        return cls(uris, **kwargs)

    @property
    def names(self) -> list[str]:
        return list(self.nodes)

    def start_node(self, name: str, config: Mapping[str, Any]) -> NodeHandle:
        if name in self.nodes:
            raise ValueError(f"Node {name!r} already registered")
        try:
            uri = config["uri"]
        except KeyError:
            raise ValueError(f"Node {name!r} has no 'uri' in its config") from None
        node = NodeHandle(name=name, uri=uri, config=dict(config))
        self.nodes[name] = node
        log.debug("Registered %s at %s", name, uri)
        return node

    def client(self, name: str) -> AvalancheClient:
        if name not in self.nodes:
            raise KeyError(f"Unknown node {name!r}")
        if name not in self._clients:
            self._clients[name] = AvalancheClient(
                self.nodes[name].uri,
                timeout=self.request_timeout,
                encoding=self.encoding,
                transport=self._transport,
            )
        return self._clients[name]

    def clients(self) -> list[AvalancheClient]:
        return [self.client(name) for name in self.nodes]

    async def wait_healthy(self, name: str, timeout: float = C.HEALTH_TIMEOUT) -> None:
        try:
            async with asyncio.timeout(timeout):
                await probe_node(self.client(name), self.retry_delay)
        except TimeoutError:
            raise NodeUnhealthy(f"{name} did not become healthy within {timeout:.0f}s") from None

    async def wait_all_healthy(self, timeout: float = C.HEALTH_TIMEOUT) -> None:
        try:
            async with asyncio.TaskGroup() as tg:
                for name in self.nodes:
                    tg.create_task(self.wait_healthy(name, timeout), name=f"health-{name}")
        except ExceptionGroup as eg:
            raise eg.exceptions[0]

    async def aclose(self) -> None:
        for c in self._clients.values():
            await c.aclose()
        self._clients.clear()
