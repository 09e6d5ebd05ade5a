"""
Command Pipeline - applies a batch of command envelopes to Task/Block collections.

Each envelope is applied independently and yields exactly one ApplyResult.
A failing command (NOT_FOUND, UNSUPPORTED, VALIDATION) is recorded and the
batch continues. Writes are unconditional: the conflict resolver is never
consulted here.

Persistence, signatures and the outbox live in blockcal.inbox; this module
is a pure function of (collections, envelopes).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from blockcal import config
from blockcal.errors import BlockcalError, NotFoundError, UnsupportedCommandError, ValidationError
from blockcal.models import (
    AddChecklistItemCommand,
    ApplyResult,
    BaseCommand,
    Block,
    BlockStatus,
    ChecklistItem,
    CommandEnvelope,
    CompleteBlockCommand,
    CreateBlockCommand,
    CreateTaskCommand,
    MoveBlockCommand,
    ResizeBlockCommand,
    SetChecklistStateCommand,
    SetRecurrenceCommand,
    Task,
    UpdateTaskCommand,
    new_id,
)
from blockcal.schedule import series

logger = logging.getLogger(__name__)


@dataclass
class Collections:
    """The in-memory state a batch mutates."""

    tasks: list[Task]
    blocks: list[Block]
    now: datetime

    @property
    def stamp(self) -> str:
        return self.now.isoformat()

    def find_task(self, task_id: str) -> Task:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        raise NotFoundError("task")

    def replace_task(self, old: Task, new: Task) -> None:
        idx = next(i for i, t in enumerate(self.tasks) if t is old)
        self.tasks[idx] = new


Effects = list[dict[str, Any]]
Handler = Callable[[Any, Collections], Effects]


# =============================================================================
# HANDLERS
# =============================================================================


def _create_task(cmd: CreateTaskCommand, state: Collections) -> Effects:
    p = cmd.payload
    task_id = p.task_id or new_id("tsk")
    task = Task(
        task_id=task_id,
        title=p.title or config.UNTITLED_TASK,
        notes=p.notes,
        priority=p.priority if p.priority is not None else 0,
        tags=p.tags or [],
        checklist=p.checklist or [],
        recurrence=p.recurrence,
        created_at=state.stamp,
        updated_at=state.stamp,
    )
    # Caller-supplied ids make replays idempotent: the entity is replaced, not duplicated
    try:
        existing = state.find_task(task_id)
    except NotFoundError:
        state.tasks.append(task)
        return [{"task_id": task_id, "created": True}]
    task.created_at = existing.created_at or state.stamp
    state.replace_task(existing, task)
    return [{"task_id": task_id, "created": False}]


def _create_block(cmd: CreateBlockCommand, state: Collections) -> Effects:
    p = cmd.payload
    block_id = p.block_id or new_id("blk")
    block = Block(
        block_id=block_id,
        task_id=p.task_id,
        title=p.title,
        notes_override=p.notes_override,
        start=p.start,
        end=p.end,
        status=BlockStatus.PLANNED,
        rev=1,
        recurrence=p.recurrence.clone() if p.recurrence else None,
    )
    for i, blk in enumerate(state.blocks):
        if blk.block_id == block_id:
            state.blocks[i] = block
            return [{"block_id": block_id, "created": False}]
    state.blocks.append(block)
    return [{"block_id": block_id, "created": True}]


def _move_block(cmd: MoveBlockCommand, state: Collections) -> Effects:
    blk = series.move_block(state.blocks, cmd.payload.block_id, cmd.payload.new_start)
    return [{"block_id": blk.block_id, "new_start": blk.start, "new_end": blk.end}]


def _resize_block(cmd: ResizeBlockCommand, state: Collections) -> Effects:
    blk = series.resize_block(state.blocks, cmd.payload.block_id, cmd.payload.new_end)
    return [{"block_id": blk.block_id, "new_end": blk.end}]


def _complete_block(cmd: CompleteBlockCommand, state: Collections) -> Effects:
    blk = series.complete_block(state.blocks, cmd.payload.block_id)
    return [{"block_id": blk.block_id, "status": blk.status.value}]


def _update_task(cmd: UpdateTaskCommand, state: Collections) -> Effects:
    task = state.find_task(cmd.payload.task_id)
    # payload.rev is advisory and deliberately not compared
    state.replace_task(task, patch_task(task, cmd.payload.patch, state.stamp))
    return [{"task_id": task.task_id, "patched": True}]


def _set_recurrence(cmd: SetRecurrenceCommand, state: Collections) -> Effects:
    task = state.find_task(cmd.payload.task_id)
    task.recurrence = {**(task.recurrence or {}), "rrule": cmd.payload.rrule}
    task.updated_at = state.stamp
    return [{"task_id": task.task_id, "rrule": cmd.payload.rrule}]


def _add_checklist_item(cmd: AddChecklistItemCommand, state: Collections) -> Effects:
    task = state.find_task(cmd.payload.task_id)
    item = ChecklistItem(id=cmd.payload.id or new_id("chk"), text=cmd.payload.text, done=False)
    task.checklist.append(item)
    task.updated_at = state.stamp
    return [{"task_id": task.task_id, "item_id": item.id, "added": True}]


def _set_checklist_state(cmd: SetChecklistStateCommand, state: Collections) -> Effects:
    task = state.find_task(cmd.payload.task_id)
    for item in task.checklist:
        if item.id == cmd.payload.item_id:
            item.done = cmd.payload.done
            task.updated_at = state.stamp
            return [{"task_id": task.task_id, "item_id": item.id, "done": item.done}]
    raise NotFoundError("checklist item")


HANDLERS: dict[str, Handler] = {
    "create_task": _create_task,
    "create_block": _create_block,
    "move_block": _move_block,
    "resize_block": _resize_block,
    "complete_block": _complete_block,
    "update_task": _update_task,
    "set_recurrence": _set_recurrence,
    "add_checklist_item": _add_checklist_item,
    "set_checklist_state": _set_checklist_state,
}


def patch_task(task: Task, patch: dict[str, Any], stamp: str) -> Task:
    """
    Shallow-merge patch into a task and revalidate. task_id is not patchable.

    Raises:
        ValidationError: if the merged task is invalid
    """
    data = task.model_dump()
    data.update({k: v for k, v in patch.items() if k != "task_id"})
    data["updated_at"] = stamp
    try:
        return Task.model_validate(data)
    except ValueError as e:
        raise ValidationError(_first_error(e)) from e


# =============================================================================
# DISPATCH
# =============================================================================


def _first_error(e: ValueError) -> str:
    errors = getattr(e, "errors", None)
    if callable(errors):
        details = errors()
        if details:
            loc = ".".join(str(p) for p in details[0].get("loc", ()))
            return f"{loc}: {details[0].get('msg')}" if loc else str(details[0].get("msg"))
    return str(e)


def apply_command(command: BaseCommand, state: Collections) -> Effects:
    """
    Apply one command.

    Raises:
        UnsupportedCommandError: no handler for command.type
        NotFoundError / ValidationError: from the handler
    """
    handler = HANDLERS.get(command.type)
    if handler is None:
        raise UnsupportedCommandError(command.type)
    return handler(command, state)


def _envelope_id(raw: Any) -> str:
    if isinstance(raw, dict) and raw.get("id") is not None:
        return str(raw["id"])
    return ApplyResult.NO_ID


def apply_envelopes(
    tasks: list[Task],
    blocks: list[Block],
    raw_envelopes: list[Any],
    now: datetime | None = None,
    applied_ids: set[str] | None = None,
) -> list[ApplyResult]:
    """
    Apply an ordered batch of raw envelope dicts.

    Args:
        tasks: Task collection (mutated)
        blocks: Block collection (mutated)
        raw_envelopes: Parsed JSON objects, one per inbox line
        now: Timestamp used for created_at/updated_at
        applied_ids: When given, envelopes whose id is in the set are skipped,
            and ids of successful envelopes are added to it

    Returns:
        One ApplyResult per input envelope, in order
    """
    state = Collections(tasks=tasks, blocks=blocks, now=now or datetime.now().astimezone())
    results: list[ApplyResult] = []

    for raw in raw_envelopes:
        env_id = _envelope_id(raw)
        try:
            envelope = CommandEnvelope.model_validate(raw)
        except ValueError as e:
            err = ValidationError(_first_error(e))
            logger.warning(f"Rejected envelope {env_id}: {err}")
            results.append(ApplyResult(for_=env_id, ok=False, error=str(err)))
            continue

        if applied_ids is not None and envelope.id in applied_ids:
            logger.debug(f"Skipping already-applied envelope {envelope.id}")
            results.append(
                ApplyResult(for_=envelope.id, ok=True, effects=[{"skipped": "duplicate"}])
            )
            continue

        try:
            effects = apply_command(envelope.command, state)
        except BlockcalError as e:
            logger.warning(f"Command {envelope.id} ({envelope.command.type}) failed: {e}")
            results.append(ApplyResult(for_=envelope.id, ok=False, error=str(e)))
            continue

        logger.debug(f"Applied {envelope.command.type} {envelope.id} from {envelope.actor}")
        results.append(ApplyResult(for_=envelope.id, ok=True, effects=effects))
        if applied_ids is not None:
            applied_ids.add(envelope.id)

    return results
