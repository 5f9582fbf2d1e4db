"""Async JSON-RPC client for a single node.

One ``AvalancheClient`` per node API endpoint; the per-chain helpers are thin
wrappers that shape params and pick fields out of ``result``. Integers go over
the wire as strings, as the node's own client does.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any

import httpx

import avaworkload.constants as C
from avaworkload.codec import decode_bytes, encode_bytes
from avaworkload.errors import RPCError

log = logging.getLogger("avaworkload.client")


@dataclass(frozen=True, slots=True)
class UserPass:
    """Keystore credentials. Only suitable for throwaway test users."""

    username: str
    password: str

    def params(self) -> dict[str, str]:
        return {"username": self.username, "password": self.password}

    def __repr__(self) -> str:
        return f"UserPass(username={self.username!r})"


@dataclass(frozen=True, slots=True)
class UTXOIndex:
    """Pagination cursor for getUTXOs."""

    address: str = ""
    utxo: str = ""

    def params(self) -> dict[str, str]:
        return {"address": self.address, "utxo": self.utxo}


@dataclass(frozen=True, slots=True)
class TxStatusReply:
    status: str
    reason: str | None = None


class AvalancheClient:
    def __init__(
        self,
        uri: str,
        *,
        timeout: float = C.RPC_TIMEOUT,
        encoding: C.Encoding | str = C.Encoding.HEX,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.uri = uri.rstrip("/")
        self.encoding = C.Encoding(encoding)
        self._http = httpx.AsyncClient(base_url=self.uri, timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

        self.keystore = KeystoreAPI(self)
        self.xchain = XChainAPI(self)
        self.pchain = PChainAPI(self)
        self.info = InfoAPI(self)
        self.health = HealthAPI(self)

    def __repr__(self) -> str:
        return f"AvalancheClient({self.uri!r})"

    async def __aenter__(self) -> "AvalancheClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def call(self, endpoint: C.Endpoint | str, method: str, params: dict[str, Any] | None = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or {}}
        log.debug("%s %s%s", method, self.uri, endpoint)
        try:
            resp = await self._http.post(str(endpoint), json=payload)
        except httpx.HTTPError as e:
            raise RPCError(method, f"{e.__class__.__name__}: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and (err := body.get("error")):
            raise RPCError(method, err.get("message", "unknown error"), code=err.get("code"), data=err.get("data"))
        if resp.is_error or not isinstance(body, dict) or "result" not in body:
            raise RPCError(method, f"HTTP {resp.status_code}: {resp.text[:200]}")
        return body["result"]


def _pick(method: str, result: Any, key: str) -> Any:
    try:
        return result[key]
    except (KeyError, TypeError):
        raise RPCError(method, f"missing field {key!r} in result {str(result)[:200]}") from None


class _API:
    endpoint: C.Endpoint

    def __init__(self, client: AvalancheClient):
        self._client = client

    async def _call(self, method: str, **params: Any) -> Any:
        return await self._client.call(self.endpoint, method, params)

    async def _field(self, method: str, key: str, **params: Any) -> Any:
        """Call method and pick one field out of its result."""
        return _pick(method, await self._call(method, **params), key)


class KeystoreAPI(_API):
    endpoint = C.Endpoint.KEYSTORE

    async def create_user(self, user: UserPass) -> bool:
        result = await self._call("keystore.createUser", **user.params())
        return bool(result.get("success", True))


class XChainAPI(_API):
    endpoint = C.Endpoint.X_CHAIN

    async def create_address(self, user: UserPass) -> str:
        return await self._field("avm.createAddress", "address", **user.params())

    async def list_addresses(self, user: UserPass) -> list[str]:
        return list(await self._field("avm.listAddresses", "addresses", **user.params()))

    async def import_key(self, user: UserPass, private_key: str) -> str:
        return await self._field("avm.importKey", "address", **user.params(), privateKey=private_key)

    async def export_key(self, user: UserPass, address: str) -> str:
        return await self._field("avm.exportKey", "privateKey", **user.params(), address=address)

    async def get_balance(self, address: str, asset_id: str = C.AVAX_ASSET_ID) -> int:
        return int(await self._field("avm.getBalance", "balance", address=address, assetID=asset_id))

    async def get_utxos(
        self,
        addresses: list[str],
        limit: int,
        start_index: UTXOIndex | None = None,
    ) -> tuple[list[bytes], UTXOIndex]:
        """One page of UTXOs as raw codec bytes, plus the cursor for the next page."""
        enc = self._client.encoding
        result = await self._call(
            "avm.getUTXOs",
            addresses=addresses,
            limit=limit,
            startIndex=(start_index or UTXOIndex()).params(),
            encoding=enc.value,
        )
        utxos = [decode_bytes(u, result.get("encoding", enc)) for u in result.get("utxos") or []]
        end = result.get("endIndex") or {}
        return utxos, UTXOIndex(address=end.get("address", ""), utxo=end.get("utxo", ""))

    async def send(
        self,
        user: UserPass,
        amount: int,
        asset_id: str,
        to: str,
        from_addrs: list[str] | None = None,
        change_addr: str = "",
    ) -> str:
        params: dict[str, Any] = dict(user.params(), amount=str(amount), assetID=asset_id, to=to)
        if from_addrs:
            params["from"] = from_addrs
        if change_addr:
            params["changeAddr"] = change_addr
        return await self._field("avm.send", "txID", **params)

    async def export_avax(self, user: UserPass, amount: int, to: str) -> str:
        return await self._field("avm.exportAVAX", "txID", **user.params(), amount=str(amount), to=to)

    async def import_avax(self, user: UserPass, to: str, source_chain: str) -> str:
        return await self._field("avm.importAVAX", "txID", **user.params(), to=to, sourceChain=source_chain)

    async def issue_tx(self, tx_bytes: bytes) -> str:
        enc = self._client.encoding
        return await self._field("avm.issueTx", "txID", tx=encode_bytes(tx_bytes, enc), encoding=enc.value)

    async def get_tx_status(self, tx_id: str) -> TxStatusReply:
        result = await self._call("avm.getTxStatus", txID=tx_id)
        return TxStatusReply(status=_pick("avm.getTxStatus", result, "status"))


class PChainAPI(_API):
    endpoint = C.Endpoint.P_CHAIN

    async def create_address(self, user: UserPass) -> str:
        return await self._field("platform.createAddress", "address", **user.params())

    async def get_balance(self, address: str) -> int:
        return int(await self._field("platform.getBalance", "balance", address=address))

    async def export_avax(self, user: UserPass, to: str, amount: int) -> str:
        return await self._field("platform.exportAVAX", "txID", **user.params(), to=to, amount=str(amount))

    async def import_avax(self, user: UserPass, to: str, source_chain: str) -> str:
        return await self._field("platform.importAVAX", "txID", **user.params(), to=to, sourceChain=source_chain)

    async def add_validator(
        self,
        user: UserPass,
        reward_address: str,
        node_id: str,
        stake_amount: int,
        start_time: int,
        end_time: int,
        delegation_fee_rate: float,
    ) -> str:
        return await self._field(
            "platform.addValidator",
            "txID",
            **user.params(),
            rewardAddress=reward_address,
            nodeID=node_id,
            stakeAmount=str(stake_amount),
            startTime=str(start_time),
            endTime=str(end_time),
            delegationFeeRate=str(delegation_fee_rate),
        )

    async def add_delegator(
        self,
        user: UserPass,
        reward_address: str,
        node_id: str,
        stake_amount: int,
        start_time: int,
        end_time: int,
    ) -> str:
        return await self._field(
            "platform.addDelegator",
            "txID",
            **user.params(),
            rewardAddress=reward_address,
            nodeID=node_id,
            stakeAmount=str(stake_amount),
            startTime=str(start_time),
            endTime=str(end_time),
        )

    async def get_tx_status(self, tx_id: str) -> TxStatusReply:
        result = await self._call("platform.getTxStatus", txID=tx_id, includeReason=True)
        # Older nodes answer with the bare status string
        if isinstance(result, str):
            return TxStatusReply(status=result)
        return TxStatusReply(status=_pick("platform.getTxStatus", result, "status"), reason=result.get("reason") or None)

    async def get_current_validators(self) -> list[dict[str, Any]]:
        return list(await self._field("platform.getCurrentValidators", "validators"))


class InfoAPI(_API):
    endpoint = C.Endpoint.INFO

    async def get_node_id(self) -> str:
        return await self._field("info.getNodeID", "nodeID")

    async def get_network_id(self) -> int:
        return int(await self._field("info.getNetworkID", "networkID"))

    async def get_blockchain_id(self, alias: str) -> str:
        return await self._field("info.getBlockchainID", "blockchainID", alias=alias)

    async def is_bootstrapped(self, chain: str) -> bool:
        return bool(await self._field("info.isBootstrapped", "isBootstrapped", chain=chain))


class HealthAPI(_API):
    endpoint = C.Endpoint.HEALTH

    async def get_liveness(self) -> bool:
        return bool(await self._field("health.getLiveness", "healthy"))
