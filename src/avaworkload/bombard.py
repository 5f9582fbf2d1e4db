"""Bombard: many independent accounts, each issuing one long dependent chain.

Every secondary node gets a fresh keystore user and X address, funded from the
genesis account with exactly enough to pay for its chain. The chains are built
offline, issued concurrently (one task per account) and then confirmed.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from enum import StrEnum, auto

import avaworkload.constants as C
from avaworkload.client import AvalancheClient, UserPass
from avaworkload.codec import UTXO, id_from_str
from avaworkload.errors import AssertionFailure, ConstructionError, WorkloadError
from avaworkload.txn_factory.builder import (
    ChainContext,
    TxChain,
    check_chain_params,
    create_consecutive_transactions,
    required_seed,
)
from avaworkload.workflow import WorkflowRunner

log = logging.getLogger("avaworkload.bombard")


class Phase(StrEnum):
    SETUP = auto()
    FUND = auto()
    VERIFY = auto()
    BUILD = auto()
    ISSUE = auto()
    CONFIRM = auto()
    DONE = auto()


@dataclass(frozen=True, slots=True)
class BombardResult:
    num_accounts: int
    num_txs: int
    tx_ids: tuple[tuple[str, ...], ...]  # per account, in chain order
    issue_duration: float

    @property
    def total_txs(self) -> int:
        return sum(len(ids) for ids in self.tx_ids)

    @property
    def tps(self) -> float:
        return self.total_txs / self.issue_duration if self.issue_duration > 0 else float("inf")

    def summary(self) -> dict:
        return {
            "accounts": self.num_accounts,
            "txs_per_account": self.num_txs,
            "total_txs": self.total_txs,
            "issue_seconds": round(self.issue_duration, 3),
            "issue_tps": round(self.tps, 1) if self.issue_duration > 0 else None,
        }


def random_user() -> UserPass:
    return UserPass(username=f"rand:{secrets.token_hex(8)}", password=f"rand:{secrets.token_hex(16)}")


class BombardExecutor:
    """Setup -> Fund -> Verify -> Build -> Issue -> Confirm -> Done.

    clients[0] holds the genesis funds; every other client is one account.
    Only the Issue phase is concurrent.
    """

    def __init__(
        self,
        clients: list[AvalancheClient],
        num_txs: int,
        tx_fee: int,
        acceptance_timeout: float = C.ACCEPTANCE_TIMEOUT,
        *,
        poll_interval: float = C.POLL_INTERVAL,
        genesis_private_key: str = C.GENESIS_PRIVATE_KEY,
    ):
        if len(clients) < 2:
            raise ValueError(f"Bombard needs a genesis client and at least one other, got {len(clients)}")
        check_chain_params(num_txs, tx_fee)
        if required_seed(num_txs, tx_fee) - num_txs * tx_fee <= 0:
            raise ConstructionError(f"Chain of {num_txs} transactions with fee {tx_fee} would leave no output to spend")
        self.clients = clients
        self.num_txs = num_txs
        self.tx_fee = tx_fee
        self.acceptance_timeout = acceptance_timeout
        self.poll_interval = poll_interval
        self.genesis_private_key = genesis_private_key
        self.phase = Phase.SETUP

    def _runner(self, client: AvalancheClient, user: UserPass) -> WorkflowRunner:
        return WorkflowRunner(
            client=client,
            user=user,
            acceptance_timeout=self.acceptance_timeout,
            poll_interval=self.poll_interval,
            genesis_private_key=self.genesis_private_key,
        )

    def _enter(self, phase: Phase) -> None:
        log.debug("bombard %s -> %s", self.phase, phase)
        self.phase = phase

    async def execute_test(self) -> BombardResult:
        genesis_client, account_clients = self.clients[0], self.clients[1:]

        # Setup
        self._enter(Phase.SETUP)
        runners = [self._runner(c, random_user()) for c in account_clients]
        x_addrs = []
        for i, runner in enumerate(runners):
            try:
                x_address, _ = await runner.create_default_addresses()
            except WorkloadError as e:
                e.add_note(f"creating default addresses for client {i}")
                raise
            x_addrs.append(x_address)

        genesis = self._runner(genesis_client, random_user())
        await genesis.import_genesis_funds()
        addrs = await genesis.list_x_addresses()
        if len(addrs) != 1:
            raise AssertionFailure("Unexpected number of addresses for genesis client.", expected=1, actual=len(addrs))
        log.info("Imported genesis funds at address: %s", addrs[0])

        # Fund
        self._enter(Phase.FUND)
        seed_amount = required_seed(self.num_txs, self.tx_fee)
        await genesis.fund_x_addresses(x_addrs, seed_amount)
        log.info("Funded %s X chain addresses with seed amount %s.", len(x_addrs), seed_amount)

        # Verify
        self._enter(Phase.VERIFY)
        seeds: list[UTXO] = []
        for i, x_address in enumerate(x_addrs):
            try:
                await runners[i].verify_x_balance(x_address, seed_amount)
                utxos = await genesis.get_utxos(x_address, limit=10)
            except WorkloadError as e:
                e.add_note(f"verifying seed for client {i}")
                raise
            if not utxos:
                raise AssertionFailure(f"No UTXOs found for client {i} at {x_address}.", expected=">=1", actual=0)
            log.info("Decoded %s UTXOs for client %s", len(utxos), i)
            seeds.append(utxos[0])
        log.info("Verified X chain balances and retrieved UTXOs.")

        # Build
        self._enter(Phase.BUILD)
        ctx = await self._chain_context(genesis_client)
        chains: list[TxChain] = []
        for i, runner in enumerate(runners):
            key = await runner.export_private_key(x_addrs[i])
            log.info("Creating string of %s transactions for client %s", self.num_txs, i)
            try:
                chains.append(create_consecutive_transactions(seeds[i], self.num_txs, self.tx_fee, key, ctx))
            except ConstructionError as e:
                e.add_note(f"building transaction list for client {i}")
                raise

        # Issue
        self._enter(Phase.ISSUE)
        log.info("Beginning to issue transactions...")
        start = time.perf_counter()
        await self._issue_all(runners, chains)
        duration = time.perf_counter() - start
        log.info("Finished issuing transaction lists in %.3f seconds.", duration)

        # Confirm
        self._enter(Phase.CONFIRM)
        for i, chain in enumerate(chains):
            try:
                await genesis.await_x_txs(*chain.tx_ids)
            except WorkloadError as e:
                e.add_note(f"confirming transactions for client {i}")
                raise
        log.info("Confirmed all issued transactions.")

        result = BombardResult(
            num_accounts=len(runners),
            num_txs=self.num_txs,
            tx_ids=tuple(tuple(c.tx_ids) for c in chains),
            issue_duration=duration,
        )
        unique = {tx_id for ids in result.tx_ids for tx_id in ids}
        if len(unique) != result.total_txs:
            raise AssertionFailure("Transaction IDs collided across accounts.", expected=result.total_txs, actual=len(unique))

        self._enter(Phase.DONE)
        return result

    async def _chain_context(self, client: AvalancheClient) -> ChainContext:
        network_id = await client.info.get_network_id()
        blockchain_id = await client.info.get_blockchain_id(C.X_CHAIN_ALIAS)
        return ChainContext(network_id=network_id, blockchain_id=id_from_str(blockchain_id))

    async def _issue_all(self, runners: list[WorkflowRunner], chains: list[TxChain]) -> None:
        """One task per account. The first failure cancels the rest and is raised here."""

        async def issue(i: int) -> None:
            try:
                tx_ids = await runners[i].issue_tx_list(chains[i].tx_bytes)
            except WorkloadError as e:
                e.add_note(f"issuing transaction list for client {i}")
                raise
            if tx_ids != chains[i].tx_ids:
                mismatch = AssertionFailure("Node reported different transaction IDs.", expected=chains[i].tx_ids, actual=tx_ids)
                mismatch.add_note(f"issuing transaction list for client {i}")
                raise mismatch

        try:
            async with asyncio.TaskGroup() as tg:
                for i in range(len(runners)):
                    tg.create_task(issue(i), name=f"issue-{i}")
        except ExceptionGroup as eg:
            first = eg.exceptions[0]
            first.add_note(f"{len(eg.exceptions)} of {len(runners)} issuing tasks failed")
            raise first
