"""Offline construction of consecutive, dependent X-chain transactions.

Each transaction spends the single output left by the one before it and pays
a fixed fee, so the whole chain can be signed before anything is issued. The
ledger only accepts the chain if it is issued in the order built here.
"""

import logging
from dataclasses import dataclass

from avaworkload.codec import (
    UTXO,
    BaseTx,
    OutputOwners,
    SignedTx,
    TransferOutput,
    TransferableInput,
    TransferableOutput,
    id_to_str,
    sha256,
    sign_hash,
)
from avaworkload.errors import ConstructionError

log = logging.getLogger("avaworkload.txn")


@dataclass(frozen=True, slots=True)
class ChainContext:
    """What every transaction on the target chain must commit to."""

    network_id: int
    blockchain_id: bytes


@dataclass(frozen=True, slots=True)
class BuiltTx:
    tx_id: str
    tx_bytes: bytes
    amount: int  # value of the single output


@dataclass(frozen=True, slots=True)
class TxChain:
    txs: tuple[BuiltTx, ...]

    @property
    def tx_ids(self) -> list[str]:
        return [t.tx_id for t in self.txs]

    @property
    def tx_bytes(self) -> list[bytes]:
        return [t.tx_bytes for t in self.txs]

    @property
    def leftover(self) -> int:
        return self.txs[-1].amount

    def __len__(self) -> int:
        return len(self.txs)


def required_seed(num_txs: int, tx_fee: int) -> int:
    """Smallest UTXO that can pay for num_txs and still hold tx_fee at the end."""
    return (num_txs + 1) * tx_fee


def check_chain_params(num_txs: int, tx_fee: int) -> None:
    if num_txs < 1:
        raise ConstructionError(f"Chain needs at least one transaction, got {num_txs}")
    if tx_fee < 0:
        raise ConstructionError(f"Negative fee {tx_fee}")


def _check_spendable(utxo: UTXO) -> None:
    owners = utxo.output.owners
    if owners.locktime != 0:
        raise ConstructionError(f"UTXO {id_to_str(utxo.tx_id)}:{utxo.output_index} is time locked until {owners.locktime}")
    if owners.threshold != 1 or len(owners.addresses) != 1:
        raise ConstructionError(
            f"UTXO {id_to_str(utxo.tx_id)}:{utxo.output_index} needs a single owner with threshold 1, "
            f"has {len(owners.addresses)} owners with threshold {owners.threshold}"
        )


def create_consecutive_transactions(
    utxo: UTXO,
    num_txs: int,
    tx_fee: int,
    private_key: bytes,
    ctx: ChainContext,
    *,
    change_owner: bytes | None = None,
) -> TxChain:
    """Build num_txs transactions, the k-th spending the output of the (k-1)-th.

    Args:
        utxo: The seed record. Its whole value is consumed by the first transaction.
        num_txs: Chain length.
        tx_fee: Burned by every transaction.
        private_key: Raw 32 byte secp256k1 key controlling the UTXO's owner address.
        ctx: Network and blockchain IDs embedded in every transaction.
        change_owner: 20 byte short ID receiving each output. Defaults to the UTXO's owner.

    Returns:
        TxChain whose entries must be issued in order.

    Raises:
        ConstructionError: on bad fee/balance math, an unspendable UTXO, or a signing failure.
    """
    check_chain_params(num_txs, tx_fee)
    _check_spendable(utxo)

    need = required_seed(num_txs, tx_fee)
    if utxo.amount < need:
        raise ConstructionError(
            f"UTXO holds {utxo.amount} but {num_txs} transactions with fee {tx_fee} need at least {need}"
        )
    if utxo.amount - num_txs * tx_fee <= 0:
        raise ConstructionError(f"Chain of {num_txs} transactions would leave no output to spend")

    owners = OutputOwners.single(change_owner or utxo.output.owners.addresses[0])
    asset_id = utxo.asset_id
    prev_tx_id, prev_index, balance = utxo.tx_id, utxo.output_index, utxo.amount

    txs: list[BuiltTx] = []
    for k in range(1, num_txs + 1):
        out_amount = balance - tx_fee
        unsigned = BaseTx(
            network_id=ctx.network_id,
            blockchain_id=ctx.blockchain_id,
            outputs=(TransferableOutput(asset_id=asset_id, output=TransferOutput(amount=out_amount, owners=owners)),),
            inputs=(TransferableInput(tx_id=prev_tx_id, output_index=prev_index, asset_id=asset_id, amount=balance),),
        )
        digest = sha256(unsigned.unsigned_bytes())
        try:
            sig = sign_hash(private_key, digest)
        except Exception as e:
            raise ConstructionError(f"Failed to sign transaction {k}/{num_txs}: {e}") from e

        signed = SignedTx(unsigned=unsigned, credentials=((sig,),))
        raw = signed.to_bytes()
        tx_id = sha256(raw)
        txs.append(BuiltTx(tx_id=id_to_str(tx_id), tx_bytes=raw, amount=out_amount))

        prev_tx_id, prev_index, balance = tx_id, 0, out_amount

    log.debug("Built chain of %s transactions from %s, leftover %s", num_txs, id_to_str(utxo.tx_id), balance)
    return TxChain(txs=tuple(txs))
