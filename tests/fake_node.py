"""In-memory Avalanche network served through httpx.MockTransport.

Every node shares one ledger (UTXO set, P chain balances, atomic memory,
validator set, tx statuses) but keeps its own keystore, like a real network.
Issued transactions are decoded with the real codec and their signatures are
checked, so the whole client stack is exercised.
"""

from __future__ import annotations

import itertools
import json
import secrets
from dataclasses import dataclass, field
from typing import Any

import httpx

import avaworkload.constants as C
from avaworkload.client import AvalancheClient
from avaworkload.codec import (
    UTXO,
    OutputOwners,
    SignedTx,
    TransferOutput,
    cb58_decode,
    cb58_encode,
    decode_bytes,
    encode_bytes,
    format_private_key,
    id_to_str,
    parse_private_key,
    public_key,
    recover_public_key,
    sha256,
)
from avaworkload.network import StaticNetwork

AVAX_ASSET = sha256(b"AVAX")
X_CHAIN_ID = sha256(b"X chain")
GENESIS_AMOUNT = 300_000_000 * 10**9


def short_id(private_key: bytes) -> bytes:
    return sha256(public_key(private_key))[:20]


def x_addr(short: bytes) -> str:
    return f"X-{cb58_encode(short)}"


def p_addr(short: bytes) -> str:
    return f"P-{cb58_encode(short)}"


def parse_addr(address: str) -> bytes:
    return cb58_decode(address.split("-", 1)[1])


class RPCFault(Exception):
    def __init__(self, message: str, code: int = -32000):
        self.code = code
        super().__init__(message)


@dataclass
class Ledger:
    pending_polls: int = 0
    p_status_as_string: bool = False
    utxos: dict[tuple[bytes, int], UTXO] = field(default_factory=dict)
    keys: dict[bytes, bytes] = field(default_factory=dict)  # short id -> private key
    p_balances: dict[bytes, int] = field(default_factory=dict)
    atomic: list[dict[str, Any]] = field(default_factory=list)
    validators: list[dict[str, Any]] = field(default_factory=list)
    statuses: dict[str, str] = field(default_factory=dict)
    reasons: dict[str, str] = field(default_factory=dict)
    polls_left: dict[str, int] = field(default_factory=dict)
    issued: list[str] = field(default_factory=list)
    calls: list[tuple[str, str, dict, Any]] = field(default_factory=list)
    _ids: itertools.count = field(default_factory=itertools.count)

    def __post_init__(self):
        self.genesis_key = parse_private_key(C.GENESIS_PRIVATE_KEY)
        genesis = short_id(self.genesis_key)
        self.keys[genesis] = self.genesis_key
        self.add_utxo(sha256(b"genesis"), 0, genesis, GENESIS_AMOUNT)

    def new_tx_id(self) -> bytes:
        return sha256(f"fake-tx-{next(self._ids)}".encode())

    def add_utxo(self, tx_id: bytes, index: int, owner: bytes, amount: int) -> None:
        self.utxos[(tx_id, index)] = UTXO(
            tx_id=tx_id,
            output_index=index,
            asset_id=AVAX_ASSET,
            output=TransferOutput(amount=amount, owners=OutputOwners.single(owner)),
        )

    def owned(self, owner: bytes) -> list[UTXO]:
        return sorted(
            (u for u in self.utxos.values() if u.output.owners.addresses == (owner,)),
            key=lambda u: (u.tx_id, u.output_index),
        )

    def x_balance(self, owner: bytes) -> int:
        return sum(u.amount for u in self.owned(owner))

    def record(self, tx_id: bytes, status: str, reason: str = "") -> str:
        s = id_to_str(tx_id)
        self.statuses[s] = status
        if reason:
            self.reasons[s] = reason
        self.polls_left[s] = self.pending_polls
        return s

    def poll(self, tx_id: str, processing: str) -> str:
        if tx_id not in self.statuses:
            return "Unknown"
        if self.polls_left[tx_id] > 0:
            self.polls_left[tx_id] -= 1
            return processing
        return self.statuses[tx_id]

    def settled(self, tx_id: str) -> bool:
        return self.polls_left.get(tx_id, 0) == 0

    def spend(self, owners: list[bytes], amount: int) -> int:
        """Consume UTXOs from owners worth at least amount. Returns the change."""
        total = 0
        for owner in owners:
            for u in self.owned(owner):
                if total >= amount:
                    break
                del self.utxos[(u.tx_id, u.output_index)]
                total += u.amount
        if total < amount:
            raise RPCFault(f"insufficient funds: have {total}, need {amount}")
        return total - amount

    def apply_signed(self, raw: bytes) -> str:
        """Validate and apply an issued BaseTx. Bad transactions are recorded as Rejected."""
        tx = SignedTx.from_bytes(raw)
        tx_id = sha256(raw)
        base = tx.unsigned
        if base.network_id != C.LOCAL_NETWORK_ID or base.blockchain_id != X_CHAIN_ID:
            return self.record(tx_id, "Rejected", "wrong chain")
        digest = sha256(base.unsigned_bytes())
        consumed = []
        total_in = 0
        for inp, sigs in zip(base.inputs, tx.credentials, strict=True):
            utxo = self.utxos.get((inp.tx_id, inp.output_index))
            if utxo is None:
                return self.record(tx_id, "Rejected", "missing utxo")
            owner = utxo.output.owners.addresses[0]
            if recover_public_key(digest, sigs[0]) != public_key(self.keys[owner]):
                return self.record(tx_id, "Rejected", "bad signature")
            if inp.amount != utxo.amount:
                return self.record(tx_id, "Rejected", "input amount mismatch")
            consumed.append(utxo)
            total_in += utxo.amount
        total_out = sum(o.output.amount for o in base.outputs)
        if total_out > total_in:
            return self.record(tx_id, "Rejected", "outputs exceed inputs")
        for u in consumed:
            del self.utxos[(u.tx_id, u.output_index)]
        for i, out in enumerate(base.outputs):
            self.add_utxo(tx_id, i, out.output.owners.addresses[0], out.output.amount)
        return self.record(tx_id, "Accepted")


@dataclass
class User:
    password: str
    x: list[bytes] = field(default_factory=list)
    p: list[bytes] = field(default_factory=list)


class FakeNode:
    def __init__(self, name: str, ledger: Ledger):
        self.name = name
        self.node_id = f"NodeID-{name}"
        self.ledger = ledger
        self.users: dict[str, User] = {}
        self.fail_issue = False

    def user(self, params: dict) -> User:
        u = self.users.get(params["username"])
        if u is None or u.password != params["password"]:
            raise RPCFault("incorrect password or user not found")
        return u

    def new_key(self) -> bytes:
        key = secrets.token_bytes(32)
        self.ledger.keys[short_id(key)] = key
        return short_id(key)

    def handle(self, method: str, params: dict) -> Any:
        ns, _, name = method.partition(".")
        handler = getattr(self, f"{ns}_{name}", None)
        if handler is None:
            raise RPCFault(f"the method {method} does not exist/is not available", code=-32601)
        return handler(params)

    # keystore / info / health

    def keystore_createUser(self, params):
        if params["username"] in self.users:
            raise RPCFault("user already exists")
        self.users[params["username"]] = User(password=params["password"])
        return {"success": True}

    def info_getNodeID(self, params):
        return {"nodeID": self.node_id}

    def info_getNetworkID(self, params):
        return {"networkID": str(C.LOCAL_NETWORK_ID)}

    def info_getBlockchainID(self, params):
        return {"blockchainID": id_to_str(X_CHAIN_ID)}

    def info_isBootstrapped(self, params):
        return {"isBootstrapped": True}

    def health_getLiveness(self, params):
        return {"healthy": True, "checks": {}}

    # X chain

    def avm_createAddress(self, params):
        short = self.new_key()
        self.user(params).x.append(short)
        return {"address": x_addr(short)}

    def avm_listAddresses(self, params):
        return {"addresses": [x_addr(a) for a in self.user(params).x]}

    def avm_importKey(self, params):
        key = parse_private_key(params["privateKey"])
        short = short_id(key)
        self.ledger.keys[short] = key
        user = self.user(params)
        if short not in user.x:
            user.x.append(short)
        return {"address": x_addr(short)}

    def avm_exportKey(self, params):
        short = parse_addr(params["address"])
        if short not in self.user(params).x:
            raise RPCFault("problem retrieving private key: not found")
        return {"privateKey": format_private_key(self.ledger.keys[short])}

    def avm_getBalance(self, params):
        return {"balance": str(self.ledger.x_balance(parse_addr(params["address"]))), "utxoIDs": []}

    def avm_getUTXOs(self, params):
        owned = []
        for a in params["addresses"]:
            owned.extend((a, u) for u in self.ledger.owned(parse_addr(a)))
        start = params.get("startIndex") or {}
        if start.get("utxo"):
            keys = [f"{id_to_str(u.tx_id)}:{u.output_index}" for _, u in owned]
            owned = owned[keys.index(start["utxo"]) + 1:]
        page = owned[: int(params["limit"])]
        enc = params.get("encoding", "hex")
        if page:
            last_addr, last = page[-1]
            end = {"address": last_addr, "utxo": f"{id_to_str(last.tx_id)}:{last.output_index}"}
        else:
            end = {"address": start.get("address", ""), "utxo": start.get("utxo", "")}
        return {
            "numFetched": str(len(page)),
            "utxos": [encode_bytes(u.to_bytes(), enc) for _, u in page],
            "endIndex": end,
            "encoding": enc,
        }

    def avm_send(self, params):
        user = self.user(params)
        amount = int(params["amount"])
        change = self.ledger.spend(user.x, amount)
        tx_id = self.ledger.new_tx_id()
        self.ledger.add_utxo(tx_id, 0, parse_addr(params["to"]), amount)
        if change:
            self.ledger.add_utxo(tx_id, 1, user.x[0], change)
        return {"txID": self.ledger.record(tx_id, "Accepted")}

    def avm_exportAVAX(self, params):
        user = self.user(params)
        amount = int(params["amount"])
        change = self.ledger.spend(user.x, amount)
        tx_id = self.ledger.new_tx_id()
        if change:
            self.ledger.add_utxo(tx_id, 0, user.x[0], change)
        s = self.ledger.record(tx_id, "Accepted")
        self.ledger.atomic.append({"export": s, "to": parse_addr(params["to"]), "chain": "P", "amount": amount})
        return {"txID": s}

    def avm_importAVAX(self, params):
        amount = self._take_atomic(parse_addr(params["to"]), "X", params["sourceChain"])
        tx_id = self.ledger.new_tx_id()
        self.ledger.add_utxo(tx_id, 0, parse_addr(params["to"]), amount)
        return {"txID": self.ledger.record(tx_id, "Accepted")}

    def avm_issueTx(self, params):
        if self.fail_issue:
            raise RPCFault("mempool is full")
        raw = decode_bytes(params["tx"], params.get("encoding", "hex"))
        tx_id = self.ledger.apply_signed(raw)
        self.ledger.issued.append(tx_id)
        return {"txID": tx_id}

    def avm_getTxStatus(self, params):
        return {"status": self.ledger.poll(params["txID"], "Processing")}

    # P chain

    def platform_createAddress(self, params):
        short = self.new_key()
        self.user(params).p.append(short)
        return {"address": p_addr(short)}

    def platform_getBalance(self, params):
        bal = str(self.ledger.p_balances.get(parse_addr(params["address"]), 0))
        return {"balance": bal, "unlocked": bal}

    def platform_importAVAX(self, params):
        to = parse_addr(params["to"])
        amount = self._take_atomic(to, "P", params["sourceChain"])
        self.ledger.p_balances[to] = self.ledger.p_balances.get(to, 0) + amount
        user = self.user(params)
        if to not in user.p:
            user.p.append(to)
        return {"txID": self.ledger.record(self.ledger.new_tx_id(), "Committed")}

    def platform_exportAVAX(self, params):
        user = self.user(params)
        amount = int(params["amount"])
        self._debit_p(user, amount)
        s = self.ledger.record(self.ledger.new_tx_id(), "Committed")
        self.ledger.atomic.append({"export": s, "to": parse_addr(params["to"]), "chain": "X", "amount": amount})
        return {"txID": s}

    def platform_addValidator(self, params):
        if int(params["endTime"]) <= int(params["startTime"]):
            raise RPCFault("staking period must be positive")
        self._debit_p(self.user(params), int(params["stakeAmount"]))
        self.ledger.validators.append(
            {
                "nodeID": params["nodeID"],
                "startTime": params["startTime"],
                "endTime": params["endTime"],
                "stakeAmount": params["stakeAmount"],
                "delegationFee": params["delegationFeeRate"],
            }
        )
        return {"txID": self.ledger.record(self.ledger.new_tx_id(), "Committed")}

    def platform_addDelegator(self, params):
        if params["nodeID"] not in {v["nodeID"] for v in self.ledger.validators}:
            raise RPCFault(f"{params['nodeID']} is not a validator")
        self._debit_p(self.user(params), int(params["stakeAmount"]))
        return {"txID": self.ledger.record(self.ledger.new_tx_id(), "Committed")}

    def platform_getTxStatus(self, params):
        status = self.ledger.poll(params["txID"], "Processing")
        if self.ledger.p_status_as_string:
            return status
        out = {"status": status}
        if reason := self.ledger.reasons.get(params["txID"]):
            out["reason"] = reason
        return out

    def platform_getCurrentValidators(self, params):
        return {"validators": list(self.ledger.validators)}

    def _debit_p(self, user: User, amount: int) -> None:
        remaining = amount
        for a in user.p:
            take = min(self.ledger.p_balances.get(a, 0), remaining)
            self.ledger.p_balances[a] = self.ledger.p_balances.get(a, 0) - take
            remaining -= take
        if remaining:
            raise RPCFault(f"insufficient P chain balance: short by {remaining}")

    def _take_atomic(self, to: bytes, chain: str, source: str) -> int:
        """Claim exported funds, but only once the export has been accepted on its source chain."""
        ready = [
            e for e in self.ledger.atomic
            if e["to"] == to and e["chain"] == chain and self.ledger.settled(e["export"])
        ]
        if not ready:
            raise RPCFault(f"no atomic UTXOs to import from {source}")
        for e in ready:
            self.ledger.atomic.remove(e)
        return sum(e["amount"] for e in ready)


class FakeNetwork:
    def __init__(self, size: int = 3, *, pending_polls: int = 0):
        self.ledger = Ledger(pending_polls=pending_polls)
        self.nodes = {f"node{i}": FakeNode(f"node{i}", self.ledger) for i in range(size)}

    def handler(self, request: httpx.Request) -> httpx.Response:
        node = self.nodes[request.url.host]
        body = json.loads(request.content)
        method, params = body["method"], body.get("params") or {}
        try:
            result = node.handle(method, params)
        except RPCFault as e:
            self.ledger.calls.append((node.name, method, params, e))
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": e.code, "message": str(e)}}
            )
        self.ledger.calls.append((node.name, method, params, result))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, name: str = "node0") -> AvalancheClient:
        return AvalancheClient(f"http://{name}", transport=self.transport())

    def network(self) -> StaticNetwork:
        return StaticNetwork({name: f"http://{name}" for name in self.nodes}, retry_delay=0, transport=self.transport())

    def methods(self) -> list[str]:
        return [m for _, m, _, _ in self.ledger.calls]
