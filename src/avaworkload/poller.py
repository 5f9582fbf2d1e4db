import asyncio
import logging
from collections.abc import Awaitable, Callable

import avaworkload.constants as C
from avaworkload.client import TxStatusReply
from avaworkload.errors import ConfirmationTimeout, TransactionRejected

log = logging.getLogger("avaworkload.poller")

StatusFetcher = Callable[[str], Awaitable[TxStatusReply]]


async def wait_for_acceptance(
    fetch_status: StatusFetcher,
    tx_id: str,
    *,
    chain: C.Chain,
    timeout: float = C.ACCEPTANCE_TIMEOUT,
    interval: float = C.POLL_INTERVAL,
) -> TxStatusReply:
    """Block until tx_id is accepted, rejected, or timeout elapses.

    Returns the accepting status reply. Raises TransactionRejected as soon as a
    terminal failure is observed and ConfirmationTimeout if none of the
    terminal states show up in time. Errors from fetch_status are not retried.
    """
    accepted = C.ACCEPTED_STATES[chain]
    rejected = C.REJECTED_STATES[chain]
    try:
        async with asyncio.timeout(timeout) as deadline:
            while True:
                try:
                    reply = await fetch_status(tx_id)
                except Exception as e:
                    e.add_note(f"while polling status of {tx_id} on the {chain} chain")
                    raise
                log.debug("Status for transaction %s: %s", tx_id, reply.status)
                if reply.status in accepted:
                    return reply
                if reply.status in rejected:
                    raise TransactionRejected(tx_id, chain, reply.status, reply.reason)
                await asyncio.sleep(interval)
    except TimeoutError:
        # Only our own deadline becomes ConfirmationTimeout
        if not deadline.expired():
            raise
        raise ConfirmationTimeout(tx_id, chain, timeout) from None
