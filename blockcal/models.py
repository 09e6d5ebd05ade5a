"""
Data model - Tasks, Blocks, recurrence rules and command envelopes.

These pydantic models define the persisted JSON-lines shape of tasks.jsonl /
blocks.jsonl and the wire shape of inbox command envelopes.

Invariants:
- block_id / task_id unique within their collection
- Block.end > Block.start is expected; callers maintain it
- All Blocks sharing recurrence.id form one series
- rev is advisory only (never compared before a write)
"""

import json
import random
import string
import time
from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from blockcal.errors import ValidationError
from blockcal.timeutil import minutes_since_midnight, parse_iso

# =============================================================================
# IDS & JSON-LINES CODEC
# =============================================================================

_B36 = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _B36[r] + out
        if not n:
            return out


def new_id(prefix: str) -> str:
    """Time-ordered random id, e.g. blk_lq2x9c0a_k3j9d."""
    suffix = "".join(random.choices(_B36, k=5))
    return f"{prefix}_{_base36(int(time.time() * 1000))}_{suffix}"


def parse_jsonl(text: str) -> list[dict]:
    """One JSON object per non-blank line (CRLF tolerated)."""
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def dump_jsonl(rows: list) -> str:
    """Serialize models or dicts, one compact object per line, trailing newline."""
    lines = [
        json.dumps(to_record(r) if isinstance(r, BaseModel) else r, ensure_ascii=False)
        for r in rows
    ]
    return "\n".join(lines) + "\n"


def to_record(model: BaseModel) -> dict:
    """Wire dict: camelCase aliases, absent optionals omitted."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# TASKS
# =============================================================================


class ChecklistItem(BaseModel):
    id: str
    text: str = ""
    done: bool = False


class Task(BaseModel):
    """A unit of work. Blocks reference it weakly via task_id."""

    model_config = ConfigDict(extra="allow")

    task_id: str
    title: str = ""
    notes: str | None = None
    checklist: list[ChecklistItem] = Field(default_factory=list)
    priority: Literal[0, 1, 2] | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    # Free-form annotation (e.g. {"rrule": "..."}); never expanded by the engine
    recurrence: dict[str, Any] | None = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


# =============================================================================
# BLOCKS
# =============================================================================


class BlockStatus(StrEnum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    SKIPPED = "skipped"


class BlockRecurrence(BaseModel):
    """
    Series rule shared (by value) by every materialized occurrence.

    start_date is kept as text: an unparseable anchor makes the rule inert
    rather than failing the whole collection load.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: Literal["daily", "weekly"]
    interval: int = 1
    days_of_week: list[int] = Field(default_factory=list, alias="daysOfWeek")
    start_date: str = Field(alias="startDate")
    start_minute: int = Field(0, alias="startMinute")
    duration: int
    until: str | None = None
    exceptions: list[str] = Field(default_factory=list)

    def clone(self) -> "BlockRecurrence":
        return self.model_copy(deep=True)

    @property
    def step(self) -> int:
        """Interval with non-positive values treated as 1."""
        return max(1, self.interval)


class Block(BaseModel):
    """One concrete, dated occurrence of scheduled time."""

    model_config = ConfigDict(extra="allow")

    block_id: str
    task_id: str | None = None
    title: str | None = None
    notes_override: str | None = None
    start: str
    end: str
    status: BlockStatus = BlockStatus.PLANNED
    rev: int = 1
    recurrence: BlockRecurrence | None = None

    @property
    def start_dt(self) -> datetime:
        return parse_iso(self.start)

    @property
    def end_dt(self) -> datetime:
        return parse_iso(self.end)

    @property
    def day(self) -> date:
        return self.start_dt.date()

    @property
    def start_minute(self) -> int:
        return minutes_since_midnight(self.start_dt)

    @property
    def end_minute(self) -> int:
        """End as minutes since the start day's midnight (1440 for a day-end block)."""
        end = self.end_dt
        if end.date() > self.day:
            return 24 * 60
        return minutes_since_midnight(end)

    @property
    def series_id(self) -> str | None:
        return self.recurrence.id if self.recurrence else None

    def bump(self) -> None:
        self.rev = (self.rev or 0) + 1


# =============================================================================
# COMMAND ENVELOPES
# =============================================================================


def _check_iso(v: str) -> str:
    try:
        parse_iso(v)
    except ValidationError as e:
        raise ValueError(e.detail) from e
    return v


IsoTimestamp = Annotated[str, AfterValidator(_check_iso)]


class CreateTaskPayload(BaseModel):
    task_id: str | None = None
    title: str | None = None
    notes: str | None = None
    priority: Literal[0, 1, 2] | None = None
    tags: list[str] | None = None
    recurrence: dict[str, Any] | None = None
    checklist: list[ChecklistItem] | None = None


class CreateBlockPayload(BaseModel):
    block_id: str | None = None
    task_id: str | None = None
    title: str | None = None
    notes_override: str | None = None
    start: IsoTimestamp
    end: IsoTimestamp
    recurrence: BlockRecurrence | None = None


class MoveBlockPayload(BaseModel):
    block_id: str
    new_start: IsoTimestamp


class ResizeBlockPayload(BaseModel):
    block_id: str
    new_end: IsoTimestamp


class CompleteBlockPayload(BaseModel):
    block_id: str


class UpdateTaskPayload(BaseModel):
    task_id: str
    patch: dict[str, Any] = Field(default_factory=dict)
    rev: int | None = None  # advisory, never checked


class SetRecurrencePayload(BaseModel):
    task_id: str
    rrule: str


class AddChecklistItemPayload(BaseModel):
    task_id: str
    text: str
    id: str | None = None


class SetChecklistStatePayload(BaseModel):
    task_id: str
    item_id: str
    done: bool = True


class BaseCommand(BaseModel):
    type: str
    payload: Any = None


class CreateTaskCommand(BaseCommand):
    type: Literal["create_task"]
    payload: CreateTaskPayload


class CreateBlockCommand(BaseCommand):
    type: Literal["create_block"]
    payload: CreateBlockPayload


class MoveBlockCommand(BaseCommand):
    type: Literal["move_block"]
    payload: MoveBlockPayload


class ResizeBlockCommand(BaseCommand):
    type: Literal["resize_block"]
    payload: ResizeBlockPayload


class CompleteBlockCommand(BaseCommand):
    type: Literal["complete_block"]
    payload: CompleteBlockPayload


class UpdateTaskCommand(BaseCommand):
    type: Literal["update_task"]
    payload: UpdateTaskPayload


class SetRecurrenceCommand(BaseCommand):
    type: Literal["set_recurrence"]
    payload: SetRecurrencePayload


class AddChecklistItemCommand(BaseCommand):
    type: Literal["add_checklist_item"]
    payload: AddChecklistItemPayload


class SetChecklistStateCommand(BaseCommand):
    type: Literal["set_checklist_state"]
    payload: SetChecklistStatePayload


class UnknownCommand(BaseCommand):
    """Any type tag without a handler; applying it yields UNSUPPORTED."""


KnownCommand = Annotated[
    Union[
        CreateTaskCommand,
        CreateBlockCommand,
        MoveBlockCommand,
        ResizeBlockCommand,
        CompleteBlockCommand,
        UpdateTaskCommand,
        SetRecurrenceCommand,
        AddChecklistItemCommand,
        SetChecklistStateCommand,
    ],
    Field(discriminator="type"),
]

_KNOWN_ADAPTER: TypeAdapter = TypeAdapter(KnownCommand)

COMMAND_TYPES: frozenset[str] = frozenset(
    (
        "create_task",
        "create_block",
        "move_block",
        "resize_block",
        "complete_block",
        "update_task",
        "set_recurrence",
        "add_checklist_item",
        "set_checklist_state",
    )
)


def parse_command(raw: Any) -> BaseCommand:
    """Validate a command body; unknown type tags become UnknownCommand."""
    if isinstance(raw, BaseCommand):
        return raw
    if not isinstance(raw, dict):
        raise ValueError("command must be an object with a type")
    cmd_type = raw.get("type")
    if cmd_type not in COMMAND_TYPES:
        return UnknownCommand(type=str(cmd_type), payload=raw.get("payload"))
    return _KNOWN_ADAPTER.validate_python(raw)


class CommandEnvelope(BaseModel):
    """One external command record: identity, actor, timestamp, payload."""

    id: str
    actor: Literal["ai", "human"] = "ai"
    issued_at: str | None = None
    command: BaseCommand

    @field_validator("command", mode="before")
    @classmethod
    def _parse_command(cls, v: Any) -> BaseCommand:
        return parse_command(v)


class ApplyResult(BaseModel):
    """Per-envelope outcome, written to the outbox as {"for": ..., "ok": ...}."""

    model_config = ConfigDict(populate_by_name=True)

    NO_ID: ClassVar[str] = "N/A"

    for_: str = Field(alias="for")
    ok: bool
    error: str | None = None
    effects: list[dict[str, Any]] | None = None
