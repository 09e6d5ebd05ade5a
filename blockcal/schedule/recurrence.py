"""
Recurrence Engine - materializes recurring blocks across a rolling horizon.

Runs on every load of the block collection, before anything else observes it.

For each series (blocks sharing recurrence.id):
1. Walk days from max(anchor, today - past_days) through today + future_days
2. Materialize a planned occurrence for every qualifying day that has none
3. Prune members that start after the rule's `until` date

Invariants:
- Materialization is keyed by date presence, so the pass is idempotent
- An unparseable anchor makes a rule inert (no occurrences, no error)
- interval <= 0 is treated as 1
- Weeks start on Monday
"""

import logging
from datetime import date, datetime, timedelta

from blockcal import config
from blockcal.errors import ValidationError
from blockcal.models import Block, BlockRecurrence, BlockStatus, new_id
from blockcal.timeutil import at_minutes, minutes_since_midnight, parse_date, to_iso, week_start

logger = logging.getLogger(__name__)


# =============================================================================
# RULE EVALUATION
# =============================================================================


def _safe_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return parse_date(value)
    except ValidationError:
        return None


def rule_anchor(rule: BlockRecurrence) -> date | None:
    """Anchor date of a rule, or None when it cannot be parsed."""
    return _safe_date(rule.start_date)


def rule_until(rule: BlockRecurrence) -> date | None:
    """Inclusive end date; an unparseable value means no limit."""
    return _safe_date(rule.until)


def should_include(rule: BlockRecurrence, day: date) -> bool:
    """Whether the rule produces an occurrence on day."""
    anchor = rule_anchor(rule)
    if anchor is None:
        return False
    if day < anchor:
        return False
    until = rule_until(rule)
    if until is not None and day > until:
        return False
    if day.isoformat() in rule.exceptions:
        return False

    if rule.type == "daily":
        return (day - anchor).days % rule.step == 0

    days = rule.days_of_week or [anchor.isoweekday()]
    if day.isoweekday() not in days:
        return False
    diff_weeks = (week_start(day) - week_start(anchor)).days // 7
    return diff_weeks >= 0 and diff_weeks % rule.step == 0


def qualifying_dates(rule: BlockRecurrence, first: date, last: date) -> list[date]:
    """All qualifying dates in [first, last]."""
    out = []
    day = first
    while day <= last:
        if should_include(rule, day):
            out.append(day)
        day += timedelta(days=1)
    return out


# =============================================================================
# SERIES
# =============================================================================


def build_series_index(blocks: list[Block]) -> dict[str, list[Block]]:
    """series id -> member blocks, in collection order."""
    index: dict[str, list[Block]] = {}
    for blk in blocks:
        if blk.series_id:
            index.setdefault(blk.series_id, []).append(blk)
    return index


def series_rule(members: list[Block]) -> BlockRecurrence:
    """
    The governing rule of a series.

    done members keep the rule they had when completed, so the first
    non-done member's copy is the current one.
    """
    for blk in members:
        if blk.status != BlockStatus.DONE:
            return blk.recurrence.clone()
    return members[0].recurrence.clone()


def make_recurrence(
    kind: str,
    start: datetime,
    duration: int,
    interval: int = 1,
    days_of_week: list[int] | None = None,
    until: str | None = None,
) -> BlockRecurrence:
    """New rule anchored at start (its local date and minute of day)."""
    if kind == "weekly":
        days = sorted(set(days_of_week or [start.isoweekday()]))
    else:
        days = []
    return BlockRecurrence(
        id=new_id("rec"),
        type=kind,
        interval=max(1, interval),
        days_of_week=days,
        start_date=start.date().isoformat(),
        start_minute=minutes_since_midnight(start),
        duration=duration,
        until=until,
        exceptions=[],
    )


def set_recurrence_anchor(rule: BlockRecurrence, anchor: datetime) -> None:
    rule.start_date = anchor.date().isoformat()
    rule.start_minute = minutes_since_midnight(anchor)


# =============================================================================
# MATERIALIZATION
# =============================================================================


def _occurrence(template: Block | None, rule: BlockRecurrence, day: date) -> Block:
    start = at_minutes(day, rule.start_minute)
    end = start + timedelta(minutes=rule.duration)
    return Block(
        block_id=new_id("blk"),
        task_id=template.task_id if template else None,
        title=template.title if template else None,
        notes_override=template.notes_override if template else None,
        start=to_iso(start),
        end=to_iso(end),
        status=BlockStatus.PLANNED,
        rev=1,
        recurrence=rule.clone(),
    )


def _member_dates(members: list[Block]) -> set[date]:
    dates = set()
    for blk in members:
        try:
            dates.add(blk.day)
        except ValidationError:
            logger.warning(f"Series member {blk.block_id} has unparseable start {blk.start!r}")
    return dates


def extend_recurring_blocks(
    blocks: list[Block],
    now: datetime | None = None,
    past_days: int = config.HORIZON_PAST_DAYS,
    future_days: int = config.HORIZON_FUTURE_DAYS,
) -> bool:
    """
    Materialize and prune recurring occurrences in place.

    Args:
        blocks: The full block collection (mutated)
        now: Reference time for the horizon (defaults to the current time)
        past_days: Days before today still materialized
        future_days: Days after today materialized

    Returns:
        True if the collection changed
    """
    index = build_series_index(blocks)
    if not index:
        return False

    today = (now or datetime.now()).date()
    horizon = today + timedelta(days=future_days)
    limit_start = today - timedelta(days=past_days)
    mutated = False
    created = 0
    pruned = 0

    for series_id, members in index.items():
        rule = series_rule(members)
        anchor = rule_anchor(rule)
        if anchor is None:
            logger.debug(f"Series {series_id} has an invalid anchor; skipping")
            continue

        existing = _member_dates(members)
        template = members[0]
        for day in qualifying_dates(rule, max(anchor, limit_start), horizon):
            if day in existing:
                continue
            blk = _occurrence(template, rule, day)
            blocks.append(blk)
            members.append(blk)
            existing.add(day)
            created += 1
            mutated = True

        until = rule_until(rule)
        if until is not None:
            for blk in list(members):
                try:
                    beyond = blk.day > until
                except ValidationError:
                    continue
                if not beyond:
                    continue
                idx = next((i for i, b in enumerate(blocks) if b is blk), None)
                if idx is not None:
                    del blocks[idx]
                    pruned += 1
                    mutated = True

    if mutated:
        logger.info(
            f"Recurrence pass: {created} materialized, {pruned} pruned across {len(index)} series"
        )
    return mutated
