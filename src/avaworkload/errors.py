"""Failure taxonomy for workflows.

Nothing here is retried. Callers add context either by chaining a new error
(``raise SubmissionError(...) from e``) or, where the type must survive for the
caller to tell a timeout from a rejection, with ``add_note``.
"""

from typing import Any


class WorkloadError(Exception):
    """Base for everything the harness raises on purpose."""


class ConstructionError(WorkloadError):
    """A transaction could not be built or signed. Raised before any network call."""


class CodecError(WorkloadError, ValueError):
    """Bytes or strings that do not decode into the expected wire structure."""


class RPCError(WorkloadError):
    def __init__(self, method: str, message: str, code: int | None = None, data: Any = None):
        self.method = method
        self.code = code
        self.data = data
        detail = f" (code {code})" if code is not None else ""
        super().__init__(f"{method}: {message}{detail}")


class SubmissionError(WorkloadError):
    """The node refused a request issued by a workflow step."""


class NodeUnhealthy(WorkloadError):
    """A node did not report live and bootstrapped before the startup deadline."""


class ConfirmationTimeout(WorkloadError):
    def __init__(self, tx_id: str, chain: str, timeout: float):
        self.tx_id = tx_id
        self.chain = chain
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.1f}s waiting for transaction {tx_id} to be accepted on the {chain} chain.")


class TransactionRejected(WorkloadError):
    def __init__(self, tx_id: str, chain: str, status: str, reason: str | None = None):
        self.tx_id = tx_id
        self.chain = chain
        self.status = status
        self.reason = reason
        msg = f"Transaction {tx_id} was abandoned on the {chain} chain with status {status}"
        if reason:
            msg += f". Reason: {reason}"
        super().__init__(msg)


class AssertionFailure(WorkloadError):
    def __init__(self, message: str, *, expected: Any, actual: Any):
        self.expected = expected
        self.actual = actual
        super().__init__(f"{message} Expected: {expected}, found: {actual}")


class BalanceMismatch(AssertionFailure):
    pass


class ValidatorMismatch(AssertionFailure):
    pass
