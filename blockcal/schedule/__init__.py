"""
Schedule Module - the scheduling engine.

Objects:
- Block / BlockRecurrence (blockcal.models)
- Series (blocks sharing recurrence.id)
- Proposal / Resolution (interactive placement)

Invariants:
- Occurrences are materialized on every load, keyed by date presence
- Overlap is half-open: touching blocks do not conflict
- Series edits skip done occurrences
- Conflict notices leave state unchanged and are not errors
"""

from .conflicts import (
    DragMode,
    Notice,
    Policy,
    Proposal,
    Resolution,
    compute_overlap,
    detect_conflicts,
    find_next_gap,
    preview,
    resolve,
)
from .recurrence import (
    build_series_index,
    extend_recurring_blocks,
    make_recurrence,
    qualifying_dates,
    should_include,
)
from .series import (
    DeleteScope,
    delete_block,
    duplicate_block,
    move_block,
    resize_block,
    toggle_block_done,
    update_block,
)

__all__ = [
    "DragMode",
    "Notice",
    "Policy",
    "Proposal",
    "Resolution",
    "compute_overlap",
    "detect_conflicts",
    "find_next_gap",
    "preview",
    "resolve",
    "build_series_index",
    "extend_recurring_blocks",
    "make_recurrence",
    "qualifying_dates",
    "should_include",
    "DeleteScope",
    "delete_block",
    "duplicate_block",
    "move_block",
    "resize_block",
    "toggle_block_done",
    "update_block",
]
