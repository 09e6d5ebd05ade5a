"""
Batch context: correlation data for one inbox application.

Every log line emitted while a batch is applied carries the batch id, and the
JSON formatter also adds the inbox name and the batch signature. The id is
derived from the signature, so applications of identical content share a
prefix; a random suffix keeps forced re-applications apart.
"""

import contextvars
import hashlib
import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class BatchInfo:
    batch_id: str
    inbox: str | None = None
    signature: str | None = None


_batch_var: contextvars.ContextVar[BatchInfo | None] = contextvars.ContextVar(
    "batch", default=None
)


def current_batch() -> BatchInfo | None:
    return _batch_var.get()


def get_batch_id() -> str | None:
    """Get the current batch ID from context."""
    info = _batch_var.get()
    return info.batch_id if info else None


def set_batch_id(batch_id: str) -> contextvars.Token:
    """Set a bare batch ID in context. Returns token for reset."""
    return _batch_var.set(BatchInfo(batch_id))


def generate_batch_id(signature: str | None = None) -> str:
    """
    batch-<content digest>-<run suffix>.

    Without a signature (empty or unreadable inbox) the digest part is "none".
    """
    digest = hashlib.sha1(signature.encode()).hexdigest()[:8] if signature else "none"
    return f"batch-{digest}-{uuid.uuid4().hex[:6]}"


class BatchContext:
    """
    Context manager scoping every log line of one command-batch application.

    Usage:
        with BatchContext(inbox="ai_inbox/commands.jsonl", signature="12:-4711") as ctx:
            logger.info("Applying")  # JSON logs include batch_id, inbox, signature

        with BatchContext(batch_id="batch-abc123"):
            ...
    """

    def __init__(
        self,
        batch_id: str | None = None,
        inbox: str | None = None,
        signature: str | None = None,
    ):
        self.batch_id = batch_id or generate_batch_id(signature)
        self.inbox = inbox
        self.signature = signature
        self._token: contextvars.Token | None = None

    def __enter__(self) -> "BatchContext":
        self._token = _batch_var.set(BatchInfo(self.batch_id, self.inbox, self.signature))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _batch_var.reset(self._token)
