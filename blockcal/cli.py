#!/usr/bin/env python3
"""
blockcal CLI - direct control of the scheduling engine.

Commands:
- apply / watch     (command inbox)
- day / status      (read)
- add / add-task    (create)
- move / resize / delete / expand
- policy            (show or persist the default conflict policy)
"""

import argparse
import json
import sys
from pathlib import Path

from blockcal import __version__, paths
from blockcal.errors import BlockcalError
from blockcal.inbox import InboxProcessor, InboxWatcher
from blockcal.observability import configure_log_file, configure_logging
from blockcal.planner import Planner, label_for
from blockcal.schedule import conflicts, recurrence, series
from blockcal.schedule.conflicts import DragMode, Notice, Policy
from blockcal.settings import EngineSettings, load_settings, save_settings
from blockcal.store import TextStore
from blockcal.timeutil import minutes_to_time_string, parse_date, time_string_to_minutes


def print_header(text: str):
    """Print a section header."""
    print(f"\n{'═' * 50}")
    print(f"  {text}")
    print(f"{'═' * 50}")


def print_table(headers: list, rows: list, widths: list = None):
    """Print a simple table."""
    if not widths:
        widths = [max(len(str(row[i])) for row in [headers] + rows) for i in range(len(headers))]

    header_str = " │ ".join(str(h).ljust(w) for h, w in zip(headers, widths))
    print(header_str)
    print("─" * len(header_str))

    for row in rows:
        print(" │ ".join(str(c)[:w].ljust(w) for c, w in zip(row, widths)))


def print_notice(notice: Notice):
    print(f"⚠ {notice.kind}: {notice.message}")


def _planner(args) -> Planner:
    settings = load_settings(Path(args.config) if args.config else None)
    store = TextStore(args.data) if args.data else TextStore()
    return Planner(store=store, settings=settings)


# =============================================================================
# COMMANDS
# =============================================================================


def cmd_apply(args) -> int:
    planner = _planner(args)
    outcome = InboxProcessor(planner).apply(args.inbox, force=args.force)
    if outcome.skipped:
        print(outcome.summary())
        return 0
    for result in outcome.results:
        mark = "✓" if result.ok else "✗"
        detail = json.dumps(result.effects) if result.ok else result.error
        print(f"{mark} {result.for_}: {detail}")
    print(outcome.summary())
    print(f"results: {outcome.outbox}")
    return 0


def cmd_watch(args) -> int:
    configure_log_file(args.log_file)
    planner = _planner(args)
    watcher = InboxWatcher(InboxProcessor(planner), interval=args.interval)
    try:
        applied = watcher.run(max_ticks=args.max_ticks, inbox=args.inbox)
    except KeyboardInterrupt:
        print("\nStopped.")
        return 0
    print(f"Applied {applied} batch(es)")
    return 0


def cmd_day(args) -> int:
    planner = _planner(args)
    day = parse_date(args.date) if args.date else planner.clock().date()
    tasks = planner.load_tasks()
    blocks = planner.load_blocks()
    day_blocks = planner.blocks_by_day([day], blocks)[day]

    print_header(f"{day.isoformat()} ({day.strftime('%A')})")
    if not day_blocks:
        print("No blocks.")
        return 0

    clashing = set()
    for c in conflicts.detect_conflicts(blocks, day):
        clashing.update((c.block_a_id, c.block_b_id))

    rows = []
    for blk in day_blocks:
        rows.append(
            [
                minutes_to_time_string(blk.start_minute),
                minutes_to_time_string(blk.end_minute),
                label_for(blk, tasks)[:30],
                blk.status.value,
                "↻" if blk.series_id else "",
                "!" if blk.block_id in clashing else "",
                blk.block_id,
            ]
        )
    print_table(["Start", "End", "Title", "Status", "R", "C", "ID"], rows)
    return 0


def cmd_expand(args) -> int:
    planner = _planner(args)
    # load_blocks materializes and saves when anything changed
    blocks = planner.load_blocks()
    index = recurrence.build_series_index(blocks)
    print(f"{len(blocks)} block(s), {len(index)} series")
    return 0


def cmd_add(args) -> int:
    planner = _planner(args)
    weekly_days = [int(d) for d in args.days.split(",")] if args.days else None
    created = planner.schedule_block(
        args.date or planner.clock().date(),
        args.start,
        args.duration,
        title=args.title,
        task_id=args.task,
        notes=args.notes,
        repeat=args.repeat,
        interval=args.interval,
        weekly_days=weekly_days,
        until=args.until,
    )
    print(f"✓ Created: {created.block_id}")
    if created.sleep_warning:
        sleep = planner.settings.sleep
        print(f"⚠ Starts inside the sleep window ({sleep.start}-{sleep.end})")
    return 0


def cmd_add_task(args) -> int:
    planner = _planner(args)
    tags = args.tags.split(",") if args.tags else None
    task_id = planner.create_task(args.title, notes=args.notes, tags=tags, priority=args.priority)
    print(f"✓ Created: {task_id}")
    return 0


def _drag(args, mode: DragMode) -> int:
    planner = _planner(args)
    blocks = planner.load_blocks()
    blk = series.find_block(blocks, args.block_id)
    target_day = parse_date(args.date) if getattr(args, "date", None) else blk.day
    proposal, _ = conflicts.preview(
        blk,
        blocks,
        mode,
        target_day,
        time_string_to_minutes(args.time),
        step=planner.settings.snap_minutes,
    )
    resolution = planner.commit_drag(proposal, policy=args.policy, notify=print_notice)
    if not resolution.accepted:
        return 0
    start = minutes_to_time_string(resolution.start_minute)
    end = minutes_to_time_string(resolution.end_minute)
    print(f"✓ {blk.block_id}: {resolution.day.isoformat()} {start}-{end}")
    if resolution.overlapping and not resolution.adjusted:
        print(f"  overlaps: {', '.join(resolution.conflicts_with)}")
    return 0


def cmd_move(args) -> int:
    return _drag(args, DragMode.MOVE)


def cmd_resize(args) -> int:
    return _drag(args, DragMode.RESIZE)


def cmd_delete(args) -> int:
    planner = _planner(args)
    scope = series.DeleteScope.SERIES if args.series else series.DeleteScope.SINGLE
    removed = planner.delete_block(args.block_id, scope)
    print(f"✓ Deleted {len(removed)} block(s)")
    return 0


def cmd_status(args) -> int:
    planner = _planner(args)
    st = planner.status()
    last_sig = InboxProcessor(planner).last_signature()

    print_header("BLOCKCAL STATUS")
    print(f"  Data:        {planner.store.root}")
    print(f"  Tasks:       {st['tasks']}")
    print(f"  Blocks:      {st['blocks']}")
    print(f"  Series:      {st['series']}")
    for status, count in sorted(st["by_status"].items()):
        print(f"    {status:<11} {count}")
    print(f"  Conflicts:   {st['conflicts_today']} today")
    print(f"  Policy:      {st['policy']}")
    print(f"  Last batch:  {last_sig or '-'}")
    return 0


def cmd_policy(args) -> int:
    source = Path(args.config) if args.config else paths.config_path()
    settings = load_settings(source)
    if args.value is None:
        print(settings.policy.value)
        return 0
    # the shipped defaults file is never rewritten
    target = Path(args.config) if args.config else paths.user_config_path()
    updated: EngineSettings = settings.with_policy(args.value)
    save_settings(updated, target)
    print(f"✓ Policy set to {updated.policy.value} ({target})")
    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="blockcal", description="Time-block scheduling engine")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--data", help="Data directory (default: $BLOCKCAL_DATA or ~/.blockcal/data)")
    p.add_argument("--config", help="Settings YAML (default: $BLOCKCAL_CONFIG or config/blockcal.yaml)")
    p.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING, ERROR")
    p.add_argument("--json-logs", action="store_true", default=None, help="Force JSON log lines")
    sub = p.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("apply", help="Apply the command inbox once")
    a.add_argument("--inbox", help="Inbox blob name (default from settings)")
    a.add_argument("--force", action="store_true", help="Apply even if the batch is unchanged")
    a.set_defaults(func=cmd_apply)

    w = sub.add_parser("watch", help="Poll the command inbox")
    w.add_argument("--inbox", help="Inbox blob name (default from settings)")
    w.add_argument("--interval", type=float, help="Seconds between polls")
    w.add_argument("--max-ticks", type=int, help="Stop after this many polls")
    w.add_argument("--log-file", help="Also write JSON logs to this rotating file")
    w.set_defaults(func=cmd_watch)

    d = sub.add_parser("day", help="Show one day's blocks")
    d.add_argument("date", nargs="?", help="YYYY-MM-DD (default: today)")
    d.set_defaults(func=cmd_day)

    e = sub.add_parser("expand", help="Materialize recurring blocks and save")
    e.set_defaults(func=cmd_expand)

    b = sub.add_parser("add", help="Schedule a block")
    b.add_argument("start", help="HH:MM")
    b.add_argument("duration", type=int, help="Minutes")
    b.add_argument("--date", help="YYYY-MM-DD (default: today)")
    b.add_argument("--title")
    b.add_argument("--task", help="Linked task id")
    b.add_argument("--notes")
    b.add_argument("--repeat", choices=["none", "daily", "weekly"], default="none")
    b.add_argument("--interval", type=int, default=1)
    b.add_argument("--days", help="Weekly days as ISO weekdays, e.g. 1,3,5")
    b.add_argument("--until", help="Last date of the series (YYYY-MM-DD)")
    b.set_defaults(func=cmd_add)

    t = sub.add_parser("add-task", help="Create a task")
    t.add_argument("title")
    t.add_argument("--notes")
    t.add_argument("--tags", help="Comma-separated")
    t.add_argument("--priority", type=int, choices=[0, 1, 2], default=0)
    t.set_defaults(func=cmd_add_task)

    m = sub.add_parser("move", help="Move a block (series-aware)")
    m.add_argument("block_id")
    m.add_argument("time", help="New start HH:MM")
    m.add_argument("--date", help="Target day (default: the block's day)")
    m.add_argument("--policy", choices=[p.value for p in Policy])
    m.set_defaults(func=cmd_move)

    r = sub.add_parser("resize", help="Change a block's end (series-aware)")
    r.add_argument("block_id")
    r.add_argument("time", help="New end HH:MM")
    r.add_argument("--policy", choices=[p.value for p in Policy])
    r.set_defaults(func=cmd_resize)

    x = sub.add_parser("delete", help="Delete a block")
    x.add_argument("block_id")
    x.add_argument("--series", action="store_true", help="Delete every occurrence of its series")
    x.set_defaults(func=cmd_delete)

    s = sub.add_parser("status", help="Show counts and settings")
    s.set_defaults(func=cmd_status)

    pol = sub.add_parser("policy", help="Show or set the default conflict policy")
    pol.add_argument("value", nargs="?", choices=[p.value for p in Policy])
    pol.set_defaults(func=cmd_policy)

    return p


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json_format=args.json_logs)
    try:
        return args.func(args)
    except BlockcalError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
