"""
Conflict Resolver - overlap detection and placement policies for blocks.

Consulted by interactive move/resize only; the command pipeline writes
unconditionally. All positions are minutes since local midnight of a day.

Policies (applied only when the proposal overlaps a sibling):
- allow: commit as proposed
- block: suppress the write, emit a conflict notice
- push:  (moves) relocate to the earliest gap >= duration at/after the
         proposed start; no gap before day-end -> no_gap notice
- clip:  cut the end back to the nearest later-starting overlapping sibling,
         never below start + minimum step

Non-conflicting proposals always commit as given. Notices are expected
outcomes, not errors.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum

from blockcal.config import MINUTES_PER_DAY, SNAP_MIN
from blockcal.errors import ValidationError
from blockcal.models import Block
from blockcal.timeutil import clamp, overlaps, snap_minutes

logger = logging.getLogger(__name__)


class Policy(StrEnum):
    ALLOW = "allow"
    BLOCK = "block"
    PUSH = "push"
    CLIP = "clip"


class DragMode(StrEnum):
    MOVE = "move"
    RESIZE = "resize"


@dataclass
class Interval:
    block_id: str
    start: int
    end: int


@dataclass
class Conflict:
    block_a_id: str
    block_b_id: str
    overlap_start: int
    overlap_end: int


@dataclass
class Proposal:
    """
    A placement to commit for one block.

    For a resize, target_day is the block's own day and start_minute its
    unchanged start.
    """

    block_id: str
    mode: DragMode
    target_day: date
    start_minute: int
    end_minute: int

    @property
    def duration(self) -> int:
        return self.end_minute - self.start_minute


@dataclass
class Notice:
    kind: str  # "conflict" | "no_gap"
    message: str


@dataclass
class Resolution:
    accepted: bool
    day: date
    start_minute: int
    end_minute: int
    overlapping: bool
    policy: Policy
    notice: Notice | None = None
    adjusted: bool = False
    # Sibling ids the raw proposal collided with
    conflicts_with: list[str] = field(default_factory=list)


Notifier = Callable[[Notice], None]


def log_notice(notice: Notice) -> None:
    logger.info(f"Placement {notice.kind}: {notice.message}")


# =============================================================================
# OVERLAP QUERIES
# =============================================================================


def day_intervals(blocks: list[Block], day: date, exclude_id: str | None = None) -> list[Interval]:
    """Blocks starting on day as minute intervals, sorted by start."""
    out = []
    for blk in blocks:
        if blk.block_id == exclude_id:
            continue
        try:
            if blk.day != day:
                continue
            out.append(Interval(blk.block_id, blk.start_minute, blk.end_minute))
        except ValidationError:
            logger.warning(f"Ignoring block {blk.block_id} with unparseable times")
    out.sort(key=lambda it: (it.start, it.end))
    return out


def overlapping_siblings(intervals: list[Interval], start: int, end: int) -> list[Interval]:
    return [it for it in intervals if overlaps(start, end, it.start, it.end)]


def compute_overlap(
    blocks: list[Block], day: date, self_id: str | None, start: int, end: int
) -> bool:
    """Whether [start, end) on day overlaps any block other than self_id."""
    return bool(overlapping_siblings(day_intervals(blocks, day, self_id), start, end))


def detect_conflicts(blocks: list[Block], day: date) -> list[Conflict]:
    """Pairwise overlaps among the blocks of a day."""
    intervals = day_intervals(blocks, day)
    conflicts = []
    for i, a in enumerate(intervals):
        for b in intervals[i + 1 :]:
            if overlaps(a.start, a.end, b.start, b.end):
                conflicts.append(
                    Conflict(
                        block_a_id=a.block_id,
                        block_b_id=b.block_id,
                        overlap_start=max(a.start, b.start),
                        overlap_end=min(a.end, b.end),
                    )
                )
    return conflicts


def find_next_gap(intervals: list[Interval], from_minute: int, duration: int) -> int | None:
    """
    Earliest start >= from_minute of a free gap of at least duration.

    Day boundaries act as occupied sentinels, so a gap must end by 1440.
    """
    items = [Interval("__start", 0, 0)]
    items += sorted(intervals, key=lambda it: (it.start, it.end))
    items.append(Interval("__end", MINUTES_PER_DAY, MINUTES_PER_DAY))

    occupied_until = 0
    for cur, nxt in zip(items, items[1:]):
        occupied_until = max(occupied_until, cur.end)
        candidate = max(occupied_until, from_minute)
        if candidate + duration <= nxt.start:
            return candidate
    return None


def clip_end_to_first_conflict(intervals: list[Interval], start: int, end: int) -> int:
    """Proposed end cut back to the start of the nearest later-starting overlap."""
    limit = end
    for it in intervals:
        if overlaps(start, end, it.start, it.end) and it.start > start:
            limit = min(limit, it.start)
    return limit


# =============================================================================
# DRAG PREVIEW
# =============================================================================


def preview(
    block: Block,
    blocks: list[Block],
    mode: DragMode,
    target_day: date,
    pointer_minutes: float,
    step: int = SNAP_MIN,
) -> tuple[Proposal, bool]:
    """
    Transient placement for a pointer position during a drag.

    Returns:
        (proposal, overlapping) - nothing is persisted
    """
    start_m = block.start_minute
    end_m = block.end_minute
    duration = max(step, end_m - start_m)
    snapped = snap_minutes(pointer_minutes, step)

    if mode == DragMode.RESIZE:
        day = block.day
        new_start = start_m
        new_end = clamp(snapped, start_m + step, MINUTES_PER_DAY)
    else:
        day = target_day
        new_start = clamp(snapped, 0, MINUTES_PER_DAY - duration)
        new_end = new_start + duration

    proposal = Proposal(block.block_id, DragMode(mode), day, new_start, new_end)
    return proposal, compute_overlap(blocks, day, block.block_id, new_start, new_end)


# =============================================================================
# RESOLUTION
# =============================================================================


def resolve(
    blocks: list[Block],
    proposal: Proposal,
    policy: Policy | str,
    notify: Notifier | None = None,
    min_step: int = SNAP_MIN,
) -> Resolution:
    """
    Apply a conflict policy to a proposed placement.

    Args:
        blocks: Current block collection (not mutated)
        proposal: Placement to evaluate
        policy: allow | block | push | clip
        notify: Receives conflict / no_gap notices (defaults to logging)
        min_step: Lower bound of a clipped block's length

    Returns:
        Resolution describing what (if anything) should be committed
    """
    policy = Policy(policy)
    notify = notify or log_notice
    day = proposal.target_day
    start, end = proposal.start_minute, proposal.end_minute

    siblings = day_intervals(blocks, day, proposal.block_id)
    hits = overlapping_siblings(siblings, start, end)

    def accept(s: int, e: int, adjusted: bool = False) -> Resolution:
        return Resolution(
            accepted=True,
            day=day,
            start_minute=s,
            end_minute=e,
            overlapping=bool(hits),
            policy=policy,
            adjusted=adjusted,
            conflicts_with=[h.block_id for h in hits],
        )

    def reject(kind: str, message: str) -> Resolution:
        notice = Notice(kind, message)
        notify(notice)
        return Resolution(
            accepted=False,
            day=day,
            start_minute=start,
            end_minute=end,
            overlapping=True,
            policy=policy,
            notice=notice,
            conflicts_with=[h.block_id for h in hits],
        )

    if not hits or policy == Policy.ALLOW:
        return accept(start, end)

    if policy == Policy.BLOCK:
        return reject("conflict", f"{proposal.block_id} overlaps another block; change not saved")

    if policy == Policy.PUSH:
        if proposal.mode != DragMode.MOVE:
            # push only relocates moves; a conflicting resize commits as-is
            return accept(start, end)
        gap = find_next_gap(siblings, start, proposal.duration)
        if gap is None:
            return reject("no_gap", f"No free gap of {proposal.duration} min left on {day}")
        return accept(gap, gap + proposal.duration, adjusted=gap != start)

    # clip
    limit = clip_end_to_first_conflict(siblings, start, end)
    new_end = max(limit, start + min_step)
    return accept(start, new_end, adjusted=new_end != end)
