"""Standard test workflows against one node.

A WorkflowRunner is an immutable binding of a client, a keystore credential and
an acceptance policy. Every operation submits through the node API and then
blocks on the poller for the resulting transaction before any dependent step
runs. Nothing is retried; the first failing step raises with the step named.

Note: credentials are held in plain text. Only use throwaway test users.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TypeVar

import avaworkload.constants as C
from avaworkload.client import AvalancheClient, UserPass, UTXOIndex
from avaworkload.codec import UTXO, parse_private_key
from avaworkload.errors import BalanceMismatch, RPCError, SubmissionError, ValidatorMismatch
from avaworkload.poller import wait_for_acceptance

log = logging.getLogger("avaworkload.workflow")

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class StakingSchedule:
    staking_delay: float = C.STAKING_DELAY
    staking_period: float = C.STAKING_PERIOD
    delegation_delay: float = C.DELEGATION_DELAY
    delegation_period: float = C.DELEGATION_PERIOD
    synchrony_delay: float = C.STAKING_SYNCHRONY_DELAY
    delegation_fee_rate: float = C.DELEGATION_FEE_RATE

    @classmethod
    def from_config(cls, staking: dict) -> "StakingSchedule":
        return cls(
            staking_delay=float(staking.get("delay", C.STAKING_DELAY)),
            staking_period=float(staking.get("period", C.STAKING_PERIOD)),
            delegation_delay=float(staking.get("delegation_delay", C.DELEGATION_DELAY)),
            delegation_period=float(staking.get("delegation_period", C.DELEGATION_PERIOD)),
            synchrony_delay=float(staking.get("synchrony_delay", C.STAKING_SYNCHRONY_DELAY)),
            delegation_fee_rate=float(staking.get("delegation_fee_rate", C.DELEGATION_FEE_RATE)),
        )


async def _submit(step: str, call: Awaitable[T]) -> T:
    try:
        return await call
    except RPCError as e:
        raise SubmissionError(f"{step}: {e}") from e


@dataclass(frozen=True, slots=True)
class WorkflowRunner:
    client: AvalancheClient
    user: UserPass
    acceptance_timeout: float = C.ACCEPTANCE_TIMEOUT
    poll_interval: float = C.POLL_INTERVAL
    staking: StakingSchedule = field(default_factory=StakingSchedule)
    genesis_private_key: str = C.GENESIS_PRIVATE_KEY

    # ============================================== #
    # ================= Accounts =================== #
    # ============================================== #

    async def import_genesis_funds(self) -> str:
        """Create the keystore user and take control of the pre-funded genesis address."""
        await _submit("Failed to create keystore user", self.client.keystore.create_user(self.user))
        address = await _submit(
            "Failed to take control of genesis account",
            self.client.xchain.import_key(self.user, self.genesis_private_key),
        )
        log.debug("Genesis Address: %s", address)
        return address

    async def create_default_addresses(self) -> tuple[str, str]:
        """Create the keystore user plus one X chain and one P chain address for it."""
        await _submit("Failed to create keystore user", self.client.keystore.create_user(self.user))
        x_address = await _submit("Failed to create X chain address", self.client.xchain.create_address(self.user))
        p_address = await _submit("Failed to create P chain address", self.client.pchain.create_address(self.user))
        return x_address, p_address

    async def list_x_addresses(self) -> list[str]:
        return await _submit("Failed to list X chain addresses", self.client.xchain.list_addresses(self.user))

    async def export_private_key(self, x_address: str) -> bytes:
        pk = await _submit(f"Failed to export key for {x_address}", self.client.xchain.export_key(self.user, x_address))
        return parse_private_key(pk)

    async def get_utxos(self, x_address: str, limit: int = C.UTXO_PAGE_SIZE) -> list[UTXO]:
        """Fetch up to limit UTXOs for x_address, following the pagination cursor."""
        out: list[UTXO] = []
        cursor: UTXOIndex | None = None
        while len(out) < limit:
            page, end = await _submit(
                f"Failed to fetch UTXOs for {x_address}",
                self.client.xchain.get_utxos([x_address], limit - len(out), cursor),
            )
            out.extend(UTXO.from_bytes(b) for b in page)
            if not page or end == cursor:
                break
            cursor = end
        return out

    # ============================================== #
    # ================= Transfers ================== #
    # ============================================== #

    async def fund_x_addresses(self, addresses: list[str], amount: int) -> list[str]:
        """Send amount to each address, waiting for acceptance before the next send.

        Sequential so that input selection never races on the shared source balance.
        """
        tx_ids = []
        for address in addresses:
            tx_id = await _submit(
                f"Failed to send {amount} to {address}",
                self.client.xchain.send(self.user, amount, C.AVAX_ASSET_ID, address),
            )
            await self.await_x_txs(tx_id)
            tx_ids.append(tx_id)
        return tx_ids

    async def send_avax(self, to: str, amount: int) -> str:
        return await _submit(
            f"Failed to send {amount} to {to}",
            self.client.xchain.send(self.user, amount, C.AVAX_ASSET_ID, to),
        )

    async def send_avax_back_and_forth(self, to: str, amount: int, tx_fee: int, num_txs: int) -> list[str]:
        """Send decreasing amounts to ``to``, confirming each before the next."""
        tx_ids = []
        for i in range(1, num_txs):
            tx_id = await self.send_avax(to, amount - tx_fee * i)
            await self.await_x_txs(tx_id)
            log.info("Confirmed Tx: %s", tx_id)
            tx_ids.append(tx_id)
        return tx_ids

    async def transfer_x_to_p(self, p_address: str, amount: int) -> tuple[str, str]:
        """Export from the X chain, then import on the P chain once the export is accepted."""
        export_id = await _submit(
            f"Failed to export AVAX to P chain address {p_address}",
            self.client.xchain.export_avax(self.user, amount, p_address),
        )
        await self._confirm(C.Chain.X, export_id, "export")

        import_id = await _submit(
            f"Failed to import AVAX to P chain address {p_address}",
            self.client.pchain.import_avax(self.user, p_address, C.X_CHAIN_ALIAS),
        )
        await self._confirm(C.Chain.P, import_id, "import")
        return export_id, import_id

    async def transfer_p_to_x(self, x_address: str, amount: int) -> tuple[str, str]:
        """Export from the P chain, then import on the X chain once the export is committed."""
        export_id = await _submit(
            f"Failed to export AVAX to X chain address {x_address}",
            self.client.pchain.export_avax(self.user, x_address, amount),
        )
        await self._confirm(C.Chain.P, export_id, "export")

        import_id = await _submit(
            f"Failed to import AVAX to X chain address {x_address}",
            self.client.xchain.import_avax(self.user, x_address, C.P_CHAIN_ALIAS),
        )
        await self._confirm(C.Chain.X, import_id, "import")
        return export_id, import_id

    # ============================================== #
    # ================== Staking =================== #
    # ============================================== #

    async def add_validator(self, node_id: str, p_address: str, stake_amount: int) -> str:
        """Add node_id as a primary network validator and return once its validation period has begun."""
        start = time.time() + self.staking.staking_delay
        tx_id = await _submit(
            f"Failed to add validator {node_id} to primary network",
            self.client.pchain.add_validator(
                self.user,
                p_address,
                node_id,
                stake_amount,
                int(start),
                int(start + self.staking.staking_period),
                self.staking.delegation_fee_rate,
            ),
        )
        await self._confirm(C.Chain.P, tx_id, "AddValidator")
        await self._sleep_until(start)
        return tx_id

    async def add_delegator(self, node_id: str, p_address: str, stake_amount: int) -> str:
        """Delegate to node_id and return once the delegation period has begun."""
        start = time.time() + self.staking.delegation_delay
        tx_id = await _submit(
            f"Failed to add delegator {p_address}",
            self.client.pchain.add_delegator(
                self.user,
                p_address,
                node_id,
                stake_amount,
                int(start),
                int(start + self.staking.delegation_period),
            ),
        )
        await self._confirm(C.Chain.P, tx_id, "AddDelegator")
        await self._sleep_until(start)
        return tx_id

    async def import_genesis_funds_and_start_validating(self, seed_amount: int, stake_amount: int) -> str:
        """Fund this runner's node from genesis, move seed_amount to the P chain and stake with it."""
        node_id = await _submit("Could not get staker node ID", self.client.info.get_node_id())
        await self.import_genesis_funds()
        p_address = await _submit("Failed to create new address on P chain", self.client.pchain.create_address(self.user))
        await self.transfer_x_to_p(p_address, seed_amount)
        await self.add_validator(node_id, p_address, stake_amount)
        return p_address

    async def _sleep_until(self, start: float) -> None:
        # Staking is time gated independently of the tx being committed
        delay = start - time.time() + self.staking.synchrony_delay
        if delay > 0:
            log.info("Waiting %.1fs for the staking period to begin", delay)
            await asyncio.sleep(delay)

    # ============================================== #
    # ========= Issuance and confirmation ========== #
    # ============================================== #

    async def issue_tx_list(self, tx_list: list[bytes]) -> list[str]:
        """Issue each signed transaction in order without waiting for acceptance in between."""
        tx_ids = []
        for i, tx_bytes in enumerate(tx_list):
            tx_id = await _submit(
                f"Failed to issue transaction {i + 1}/{len(tx_list)}",
                self.client.xchain.issue_tx(tx_bytes),
            )
            tx_ids.append(tx_id)
        return tx_ids

    async def await_x_txs(self, *tx_ids: str) -> None:
        for tx_id in tx_ids:
            await wait_for_acceptance(
                self.client.xchain.get_tx_status,
                tx_id,
                chain=C.Chain.X,
                timeout=self.acceptance_timeout,
                interval=self.poll_interval,
            )

    async def await_p_txs(self, *tx_ids: str) -> None:
        for tx_id in tx_ids:
            await wait_for_acceptance(
                self.client.pchain.get_tx_status,
                tx_id,
                chain=C.Chain.P,
                timeout=self.acceptance_timeout,
                interval=self.poll_interval,
            )

    async def _confirm(self, chain: C.Chain, tx_id: str, what: str) -> None:
        try:
            if chain is C.Chain.X:
                await self.await_x_txs(tx_id)
            else:
                await self.await_p_txs(tx_id)
        except Exception as e:
            e.add_note(f"while confirming {what} transaction {tx_id}")
            raise

    # ============================================== #
    # ================ Assertions ================== #
    # ============================================== #

    async def verify_x_balance(self, x_address: str, expected: int) -> None:
        actual = await _submit(
            "Failed to retrieve X chain balance",
            self.client.xchain.get_balance(x_address, C.AVAX_ASSET_ID),
        )
        if actual != expected:
            raise BalanceMismatch(f"Found unexpected X chain balance for address {x_address}.", expected=expected, actual=actual)

    async def verify_p_balance(self, p_address: str, expected: int) -> None:
        actual = await _submit("Failed to retrieve P chain balance", self.client.pchain.get_balance(p_address))
        if actual != expected:
            raise BalanceMismatch(f"Found unexpected P chain balance for address {p_address}.", expected=expected, actual=actual)

    async def verify_validator(self, node_id: str) -> None:
        validators = await _submit("Failed to fetch current validators", self.client.pchain.get_current_validators())
        node_ids = {v.get("nodeID") for v in validators}
        if node_id not in node_ids:
            raise ValidatorMismatch(f"Node {node_id} is not a current validator.", expected=node_id, actual=sorted(node_ids))

    async def verify_validator_count(self, expected: int) -> None:
        validators = await _submit("Failed to fetch current validators", self.client.pchain.get_current_validators())
        if len(validators) != expected:
            raise ValidatorMismatch("Unexpected number of current validators.", expected=expected, actual=len(validators))
