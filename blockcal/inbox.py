"""
Inbox processing - batch ingestion with signature dedup and outbox results.

Flow for one application:
1. Read the inbox blob (READ_FAIL -> one synthetic failed result)
2. Skip an empty batch, or one whose signature matches the last applied one
3. Load tasks/blocks, apply every envelope, save both collections in full
4. Write results to a fresh ai_outbox/result_<stamp>.jsonl
5. Record the signature

The dedup key is the whole batch content. A batch with one new line is
re-applied in full; enable pipeline.skip_seen_command_ids to also skip
envelope ids applied by earlier batches.

Not re-entrant: callers serialize applications (InboxWatcher does).
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from blockcal import config
from blockcal.commands import apply_envelopes
from blockcal.errors import BlockcalError, ReadFailError, ValidationError
from blockcal.models import ApplyResult, dump_jsonl, parse_jsonl
from blockcal.observability import BatchContext
from blockcal.planner import Planner

logger = logging.getLogger(__name__)


# =============================================================================
# SIGNATURE
# =============================================================================


def _utf16_units(text: str) -> list[int]:
    data = text.encode("utf-16-le")
    return [int.from_bytes(data[i : i + 2], "little") for i in range(0, len(data), 2)]


def hash_str(text: str) -> int:
    """32-bit signed rolling hash (h * 31 + unit) over UTF-16 code units."""
    h = 0
    for unit in _utf16_units(text):
        h = (h * 31 + unit) & 0xFFFFFFFF
    return h - (1 << 32) if h & 0x80000000 else h


def batch_signature(raw: str) -> str:
    """Signature "<length>:<hash>" of the raw batch; empty input has an empty signature."""
    if not raw:
        return ""
    return f"{len(_utf16_units(raw))}:{hash_str(raw)}"


def outbox_name(now: datetime | None = None) -> str:
    stamp = (now or datetime.now(UTC)).astimezone(UTC)
    text = stamp.strftime("%Y-%m-%dT%H-%M-%S-") + f"{stamp.microsecond // 1000:03d}Z"
    return f"{config.OUTBOX_DIR}/result_{text}.jsonl"


# =============================================================================
# OUTCOME
# =============================================================================


@dataclass
class BatchOutcome:
    signature: str
    skipped: bool = False
    results: list[ApplyResult] = field(default_factory=list)
    outbox: str | None = None
    empty: bool = False

    @property
    def ok_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def summary(self) -> str:
        if self.skipped:
            return "Inbox empty; skipped." if self.empty else "Inbox unchanged; skipped."
        return f"Done: {self.ok_count} succeeded, {self.failed_count} failed"


# =============================================================================
# PROCESSOR
# =============================================================================


class InboxProcessor:
    """Applies inbox batches through a Planner's load/save path."""

    def __init__(self, planner: Planner):
        self.planner = planner
        self.store = planner.store
        self.settings = planner.settings

    def last_signature(self) -> str:
        if not self.store.exists(config.LAST_SIG_FILE):
            return ""
        return self.store.read_text(config.LAST_SIG_FILE).strip()

    def _applied_ids(self) -> set[str] | None:
        if not self.settings.pipeline.skip_seen_command_ids:
            return None
        if not self.store.exists(config.APPLIED_IDS_FILE):
            return set()
        text = self.store.read_text(config.APPLIED_IDS_FILE)
        return {line.strip() for line in text.splitlines() if line.strip()}

    def _save_applied_ids(self, ids: set[str] | None) -> None:
        if ids is None:
            return
        self.store.write_text(config.APPLIED_IDS_FILE, "".join(f"{i}\n" for i in sorted(ids)))

    def _fresh_outbox_name(self) -> str:
        base = outbox_name()
        name = base
        n = 1
        while self.store.exists(name):
            name = base.replace(".jsonl", f"-{n}.jsonl")
            n += 1
        return name

    def apply(self, inbox: str | None = None, force: bool = False) -> BatchOutcome:
        """
        Apply the inbox batch once.

        Args:
            inbox: Blob name (defaults to settings.pipeline.inbox)
            force: Apply even when the signature is unchanged

        Returns:
            BatchOutcome (skipped=True with no results when empty or unchanged)
        """
        inbox = inbox or self.settings.pipeline.inbox
        self.store.ensure_folders()

        read_error: ReadFailError | None = None
        try:
            raw = self.planner.read_batch(inbox)
        except ReadFailError as e:
            raw = ""
            read_error = e

        signature = batch_signature(raw)
        if not force and read_error is None and not raw.strip():
            logger.debug(f"Inbox {inbox} is empty; skipping")
            return BatchOutcome(signature=signature, skipped=True, empty=True)
        if signature and signature == self.last_signature() and not force:
            logger.info(f"Inbox {inbox} unchanged ({signature}); skipping")
            return BatchOutcome(signature=signature, skipped=True)

        with BatchContext(inbox=inbox, signature=signature or None):
            outcome = self._apply_raw(raw, signature, read_error)
        if signature:
            self.store.write_text(config.LAST_SIG_FILE, signature)
        logger.info(outcome.summary())
        return outcome

    def _apply_raw(self, raw: str, signature: str, read_error: ReadFailError | None) -> BatchOutcome:
        tasks = self.planner.load_tasks()
        blocks = self.planner.load_blocks()
        results: list[ApplyResult] = []

        if read_error is not None:
            logger.warning(f"Inbox read failed: {read_error}")
            results.append(ApplyResult(for_=ApplyResult.NO_ID, ok=False, error=str(read_error)))

        if raw:
            now = self.planner.clock()
            applied_ids = self._applied_ids()
            pending: list = []

            def flush() -> None:
                if pending:
                    results.extend(apply_envelopes(tasks, blocks, pending, now=now, applied_ids=applied_ids))
                    pending.clear()

            for lineno, line in enumerate(raw.splitlines(), 1):
                if not line.strip():
                    continue
                try:
                    pending.extend(parse_jsonl(line))
                except ValueError as e:
                    # Results stay one-per-line and in order
                    err = ValidationError(f"line {lineno}: {e}")
                    logger.warning(f"Inbox {err}")
                    flush()
                    results.append(ApplyResult(for_=ApplyResult.NO_ID, ok=False, error=str(err)))
            flush()
            self._save_applied_ids(applied_ids)

        self.planner.save_tasks(tasks)
        self.planner.save_blocks(blocks)
        name = self._fresh_outbox_name()
        self.planner.write_results(name, dump_jsonl(results))
        return BatchOutcome(signature=signature, results=results, outbox=name)


# =============================================================================
# WATCHER
# =============================================================================


class InboxWatcher:
    """
    Fixed-interval inbox poller.

    Ticks run one at a time on the calling thread; a tick never starts while
    an application is in flight. A missing inbox is ignored silently.
    """

    def __init__(
        self,
        processor: InboxProcessor,
        interval: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.processor = processor
        self.interval = interval if interval is not None else processor.settings.pipeline.poll_seconds
        self.sleep = sleep
        self._busy = False

    def tick(self, inbox: str | None = None) -> BatchOutcome | None:
        if self._busy:
            return None
        inbox = inbox or self.processor.settings.pipeline.inbox
        if not self.processor.store.exists(inbox):
            return None
        self._busy = True
        try:
            outcome = self.processor.apply(inbox)
        except (BlockcalError, OSError, ValueError) as e:
            logger.error(f"Inbox poll failed: {e}")
            return None
        finally:
            self._busy = False
        return None if outcome.skipped else outcome

    def run(self, max_ticks: int | None = None, inbox: str | None = None) -> int:
        """
        Poll until interrupted (or max_ticks). Returns the number of applied batches.
        """
        applied = 0
        ticks = 0
        logger.info(f"Watching inbox every {self.interval}s")
        while max_ticks is None or ticks < max_ticks:
            if self.tick(inbox) is not None:
                applied += 1
            ticks += 1
            if max_ticks is None or ticks < max_ticks:
                self.sleep(self.interval)
        return applied
