"""
Series editing - block mutations that keep a recurring series consistent.

All functions mutate the given collection in place and raise NotFoundError
for an unknown block id.

Invariants:
- A time/duration edit on a series member propagates to every other
  non-done member; done members keep their historical times and rule copy
- Deleting a single occurrence records its date in the shared exceptions
  set so the recurrence pass never regenerates it
- Every mutated block has its rev bumped (advisory only)
"""

import logging
from datetime import timedelta
from enum import StrEnum
from typing import Any

from blockcal.errors import NotFoundError, ValidationError
from blockcal.models import Block, BlockStatus, new_id
from blockcal.schedule.recurrence import set_recurrence_anchor
from blockcal.timeutil import at_minutes, duration_minutes, parse_date, parse_iso, to_iso

logger = logging.getLogger(__name__)


class DeleteScope(StrEnum):
    SINGLE = "single"
    SERIES = "series"


def find_block(blocks: list[Block], block_id: str) -> Block:
    for blk in blocks:
        if blk.block_id == block_id:
            return blk
    raise NotFoundError("block")


def _series_peers(blocks: list[Block], blk: Block) -> list[Block]:
    """Other non-done members of blk's series."""
    return [
        other
        for other in blocks
        if other is not blk
        and other.series_id == blk.series_id
        and other.status != BlockStatus.DONE
    ]


def _shift_weekdays(days: list[int], day_shift: int) -> list[int]:
    """ISO weekdays (1..7) moved by day_shift days."""
    return sorted({(d - 1 + day_shift) % 7 + 1 for d in days})


def move_block(blocks: list[Block], block_id: str, new_start: str) -> Block:
    """
    Move a block to new_start keeping its duration.

    Series members shift by the same delta and adopt the re-anchored rule.
    A cross-day move of a weekly series moves its weekdays with it.

    Raises:
        ValidationError: bad new_start, or a series member with unparseable
            times (nothing is changed)
    """
    blk = find_block(blocks, block_id)
    old_start = blk.start_dt
    old_end = blk.end_dt
    start = parse_iso(new_start)
    dur = old_end - old_start
    delta = start - old_start

    peers = _series_peers(blocks, blk) if blk.recurrence else []
    peer_times = [(other, other.start_dt, other.end_dt) for other in peers]

    blk.start = to_iso(start)
    blk.end = to_iso(start + dur)
    blk.bump()

    if blk.recurrence is None:
        return blk

    rule = blk.recurrence
    try:
        anchor = at_minutes(parse_date(rule.start_date), rule.start_minute) + delta
        set_recurrence_anchor(rule, anchor.astimezone())
    except ValidationError:
        logger.warning(f"Series {rule.id} has an invalid anchor; not re-anchored")
    rule.duration = duration_minutes(start, start + dur)
    day_shift = (start.date() - old_start.date()).days
    if rule.type == "weekly" and day_shift and rule.days_of_week:
        rule.days_of_week = _shift_weekdays(rule.days_of_week, day_shift)

    for other, other_start, other_end in peer_times:
        other.start = to_iso(other_start + delta)
        other.end = to_iso(other_end + delta)
        other.recurrence = rule.clone()
        other.bump()
    logger.debug(f"Moved {block_id} by {delta}; propagated to {len(peers)} occurrence(s)")
    return blk


def resize_block(blocks: list[Block], block_id: str, new_end: str) -> Block:
    """
    Set a block's end.

    Series members take the new duration measured from their own start.
    """
    blk = find_block(blocks, block_id)
    end = parse_iso(new_end)
    start = blk.start_dt
    peers = _series_peers(blocks, blk) if blk.recurrence else []
    peer_starts = [(other, other.start_dt) for other in peers]

    blk.end = to_iso(end)
    blk.bump()

    if blk.recurrence is None:
        return blk

    rule = blk.recurrence
    rule.duration = duration_minutes(start, end)
    for other, other_start in peer_starts:
        other.end = to_iso(other_start + timedelta(minutes=rule.duration))
        other.recurrence = rule.clone()
        other.bump()
    logger.debug(f"Resized {block_id} to {rule.duration} min; propagated to {len(peers)}")
    return blk


def delete_block(
    blocks: list[Block], block_id: str, scope: DeleteScope | str = DeleteScope.SINGLE
) -> list[str]:
    """
    Delete one occurrence or a whole series.

    Returns:
        Ids of removed blocks
    """
    blk = find_block(blocks, block_id)
    scope = DeleteScope(scope)

    if scope == DeleteScope.SERIES and blk.series_id:
        series_id = blk.series_id
        removed = [b.block_id for b in blocks if b.series_id == series_id]
        blocks[:] = [b for b in blocks if b.series_id != series_id]
        logger.info(f"Deleted series {series_id} ({len(removed)} block(s))")
        return removed

    blocks[:] = [b for b in blocks if b is not blk]
    if not blk.series_id:
        return [block_id]

    date_iso = blk.day.isoformat()
    others = [b for b in blocks if b.series_id == blk.series_id]
    if others:
        rule = others[0].recurrence.clone()
        if date_iso not in rule.exceptions:
            rule.exceptions.append(date_iso)
        for other in others:
            # Each member keeps its own timing fields; only the exception set is shared
            other.recurrence.exceptions = list(rule.exceptions)
            other.bump()
    logger.info(f"Deleted occurrence {block_id} ({date_iso}) from series {blk.series_id}")
    return [block_id]


def duplicate_block(blocks: list[Block], block_id: str) -> Block:
    """Standalone copy (fresh id, rev 1, no recurrence) appended to the collection."""
    blk = find_block(blocks, block_id)
    copy = Block(
        block_id=new_id("blk"),
        task_id=blk.task_id,
        title=blk.title,
        notes_override=blk.notes_override,
        start=blk.start,
        end=blk.end,
        status=blk.status,
        rev=1,
        recurrence=None,
    )
    blocks.append(copy)
    return copy


def toggle_block_done(blocks: list[Block], block_id: str) -> BlockStatus:
    """done <-> planned. Returns the new status."""
    blk = find_block(blocks, block_id)
    blk.status = BlockStatus.PLANNED if blk.status == BlockStatus.DONE else BlockStatus.DONE
    blk.bump()
    return blk.status


def complete_block(blocks: list[Block], block_id: str) -> Block:
    blk = find_block(blocks, block_id)
    blk.status = BlockStatus.DONE
    blk.bump()
    return blk


_IMMUTABLE_BLOCK_FIELDS = frozenset(("block_id", "rev"))


def update_block(blocks: list[Block], block_id: str, patch: dict[str, Any]) -> Block:
    """
    Shallow field patch (no series propagation), revalidated.

    Raises:
        ValidationError: if the patched block is not a valid Block
    """
    blk = find_block(blocks, block_id)
    data = blk.model_dump(by_alias=True)
    data.update({k: v for k, v in patch.items() if k not in _IMMUTABLE_BLOCK_FIELDS})
    try:
        updated = Block.model_validate(data)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    updated.bump()
    idx = next(i for i, b in enumerate(blocks) if b is blk)
    blocks[idx] = updated
    return updated
