"""
Planner - the storage-facing service for tasks and blocks.

Every operation reads the collections in full, mutates them in memory and
writes them back in full (last writer wins over the whole blob). Loading the
block collection runs the recurrence pass first and persists if it changed.

Interactive placement goes through the conflict resolver (commit_drag); the
command pipeline (blockcal.inbox) uses the same load/save path but writes
unconditionally.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from blockcal import config
from blockcal.commands import patch_task
from blockcal.errors import NotFoundError, ValidationError
from blockcal.models import Block, BlockRecurrence, BlockStatus, Task, dump_jsonl, new_id, parse_jsonl
from blockcal.schedule import conflicts, recurrence, series
from blockcal.schedule.conflicts import DragMode, Notifier, Policy, Proposal, Resolution
from blockcal.settings import EngineSettings
from blockcal.store import TextStore
from blockcal.timeutil import (
    at_minutes,
    is_within_sleep,
    iso_for_date_and_minutes,
    parse_date,
    parse_iso,
    time_string_to_minutes,
    to_iso,
)

logger = logging.getLogger(__name__)


@dataclass
class CreatedBlock:
    block_id: str
    sleep_warning: bool = False


def label_for(block: Block, tasks: list[Task]) -> str:
    """Block title override, else the linked task's title, else "Untitled"."""
    if block.title:
        return block.title
    for task in tasks:
        if task.task_id == block.task_id:
            return task.title or config.UNTITLED_BLOCK
    return config.UNTITLED_BLOCK


class Planner:
    """
    Tasks/blocks repository plus the interactive operations.

    Args:
        store: Text blob store (defaults to the user data dir)
        settings: Engine settings (defaults to built-ins)
        clock: Returns "now"; injectable for tests
    """

    def __init__(
        self,
        store: TextStore | None = None,
        settings: EngineSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store or TextStore()
        self.settings = settings or EngineSettings()
        self.clock = clock or (lambda: datetime.now().astimezone())

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    def load_tasks(self) -> list[Task]:
        if not self.store.exists(config.TASKS_FILE):
            return []
        rows = parse_jsonl(self.store.read_text(config.TASKS_FILE))
        return [Task.model_validate(r) for r in rows]

    def load_blocks(self) -> list[Block]:
        """Load blocks, materializing recurring occurrences (saved if changed)."""
        if not self.store.exists(config.BLOCKS_FILE):
            return []
        rows = parse_jsonl(self.store.read_text(config.BLOCKS_FILE))
        blocks = [Block.model_validate(r) for r in rows]
        mutated = recurrence.extend_recurring_blocks(
            blocks,
            now=self.clock(),
            past_days=self.settings.horizon.past_days,
            future_days=self.settings.horizon.future_days,
        )
        if mutated:
            self.save_blocks(blocks)
        return blocks

    def save_tasks(self, tasks: list[Task]) -> None:
        self.store.write_text(config.TASKS_FILE, dump_jsonl(tasks))

    def save_blocks(self, blocks: list[Block]) -> None:
        self.store.write_text(config.BLOCKS_FILE, dump_jsonl(blocks))

    def read_batch(self, name: str) -> str:
        return self.store.read_text(name)

    def write_results(self, name: str, text: str) -> None:
        self.store.write_text(name, text)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        title: str,
        notes: str | None = None,
        tags: list[str] | None = None,
        priority: int = 0,
    ) -> str:
        if not title or not title.strip():
            raise ValidationError("task title is required")
        tasks = self.load_tasks()
        stamp = self.clock().isoformat()
        task = Task(
            task_id=new_id("tsk"),
            title=title.strip(),
            notes=notes,
            tags=[t.strip() for t in tags or [] if t.strip()],
            priority=priority,
            created_at=stamp,
            updated_at=stamp,
            recurrence=None,
        )
        tasks.append(task)
        self.save_tasks(tasks)
        return task.task_id

    def update_task(self, task_id: str, patch: dict[str, Any]) -> Task:
        tasks = self.load_tasks()
        for i, task in enumerate(tasks):
            if task.task_id == task_id:
                tasks[i] = patch_task(task, patch, self.clock().isoformat())
                self.save_tasks(tasks)
                return tasks[i]
        raise NotFoundError("task")

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def create_block(
        self,
        start: str,
        end: str,
        task_id: str | None = None,
        title: str | None = None,
        notes_override: str | None = None,
        recurrence_rule: BlockRecurrence | None = None,
    ) -> CreatedBlock:
        start_dt = parse_iso(start)
        end_dt = parse_iso(end)
        if end_dt <= start_dt:
            raise ValidationError("block end must be after start")
        blocks = self.load_blocks()
        block = Block(
            block_id=new_id("blk"),
            task_id=task_id,
            title=title,
            notes_override=notes_override,
            start=to_iso(start_dt),
            end=to_iso(end_dt),
            status=BlockStatus.PLANNED,
            rev=1,
            recurrence=recurrence_rule.clone() if recurrence_rule else None,
        )
        blocks.append(block)
        if block.recurrence:
            recurrence.extend_recurring_blocks(
                blocks,
                now=self.clock(),
                past_days=self.settings.horizon.past_days,
                future_days=self.settings.horizon.future_days,
            )
        self.save_blocks(blocks)

        sleep = self.settings.sleep
        warn = is_within_sleep(block.start_minute, sleep.start, sleep.end)
        if warn:
            logger.info(f"Block {block.block_id} starts inside the sleep window")
        return CreatedBlock(block.block_id, sleep_warning=warn)

    def schedule_block(
        self,
        day: str | date,
        start_time: str,
        duration: int,
        title: str | None = None,
        task_id: str | None = None,
        notes: str | None = None,
        repeat: str = "none",
        interval: int = 1,
        weekly_days: list[int] | None = None,
        until: str | None = None,
    ) -> CreatedBlock:
        """
        Quick-form block creation from a date, an HH:MM start and a duration.

        repeat is one of none | daily | weekly. Duration is at least one snap
        step.

        Raises:
            ValidationError: missing title/task, bad date or time, bad repeat
        """
        if not (title and title.strip()) and not task_id:
            raise ValidationError("a block needs a title or a linked task")
        if repeat not in ("none", "daily", "weekly"):
            raise ValidationError(f"unknown repeat mode {repeat!r}")
        start_minute = time_string_to_minutes(start_time)
        duration = max(self.settings.snap_minutes, int(duration or 0))
        start = at_minutes(parse_date(day), start_minute)
        end = start + timedelta(minutes=duration)

        rule = None
        if repeat != "none":
            rule = recurrence.make_recurrence(
                repeat, start, duration, interval=interval, days_of_week=weekly_days, until=until
            )
        return self.create_block(
            to_iso(start),
            to_iso(end),
            task_id=task_id,
            title=title.strip() if title else None,
            notes_override=notes.strip() if notes else None,
            recurrence_rule=rule,
        )

    def _mutate_blocks(self, fn: Callable[[list[Block]], Any]) -> Any:
        blocks = self.load_blocks()
        result = fn(blocks)
        self.save_blocks(blocks)
        return result

    def update_block(self, block_id: str, patch: dict[str, Any]) -> Block:
        return self._mutate_blocks(lambda b: series.update_block(b, block_id, patch))

    def toggle_block_done(self, block_id: str) -> BlockStatus:
        return self._mutate_blocks(lambda b: series.toggle_block_done(b, block_id))

    def move_block(self, block_id: str, new_start: str) -> Block:
        return self._mutate_blocks(lambda b: series.move_block(b, block_id, new_start))

    def resize_block(self, block_id: str, new_end: str) -> Block:
        return self._mutate_blocks(lambda b: series.resize_block(b, block_id, new_end))

    def delete_block(self, block_id: str, scope: str = "single") -> list[str]:
        return self._mutate_blocks(lambda b: series.delete_block(b, block_id, scope))

    def duplicate_block(self, block_id: str) -> str:
        return self._mutate_blocks(lambda b: series.duplicate_block(b, block_id).block_id)

    # ------------------------------------------------------------------
    # Interactive placement
    # ------------------------------------------------------------------

    def commit_drag(
        self,
        proposal: Proposal,
        policy: Policy | str | None = None,
        notify: Notifier | None = None,
    ) -> Resolution:
        """
        Resolve a drag proposal under a policy and persist the accepted placement.

        A rejected resolution (block, push without a gap) leaves storage untouched.
        """
        blocks = self.load_blocks()
        blk = series.find_block(blocks, proposal.block_id)
        resolution = conflicts.resolve(
            blocks,
            proposal,
            policy or self.settings.policy,
            notify=notify,
            min_step=self.settings.snap_minutes,
        )
        if not resolution.accepted:
            return resolution

        day = resolution.day
        new_end = iso_for_date_and_minutes(day, resolution.end_minute)
        if proposal.mode == DragMode.MOVE:
            current = blk.end_minute - blk.start_minute
            series.move_block(
                blocks, blk.block_id, iso_for_date_and_minutes(day, resolution.start_minute)
            )
            if resolution.end_minute - resolution.start_minute != current:
                series.resize_block(blocks, blk.block_id, new_end)
        else:
            series.resize_block(blocks, blk.block_id, new_end)
        self.save_blocks(blocks)
        return resolution

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def blocks_by_day(self, days: list[date], blocks: list[Block] | None = None) -> dict[date, list[Block]]:
        """Blocks grouped by start date for the given days, sorted by start."""
        blocks = self.load_blocks() if blocks is None else blocks
        by_day: dict[date, list[Block]] = {d: [] for d in days}
        for blk in blocks:
            try:
                day = blk.day
            except ValidationError:
                continue
            if day in by_day:
                by_day[day].append(blk)
        for day_blocks in by_day.values():
            day_blocks.sort(key=lambda b: b.start_dt)
        return by_day

    def status(self) -> dict:
        """Counts for `blockcal status`."""
        tasks = self.load_tasks()
        blocks = self.load_blocks()
        today = self.clock().date()
        index = recurrence.build_series_index(blocks)
        by_status: dict[str, int] = {}
        for blk in blocks:
            by_status[blk.status.value] = by_status.get(blk.status.value, 0) + 1
        return {
            "tasks": len(tasks),
            "blocks": len(blocks),
            "series": len(index),
            "by_status": by_status,
            "conflicts_today": len(conflicts.detect_conflicts(blocks, today)),
            "policy": self.settings.policy.value,
        }
