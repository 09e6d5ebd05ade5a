"""
Centralized constants for blockcal.

Values that vary by deployment are read from environment variables where
marked. Tunable engine behaviour lives in blockcal.settings (YAML-backed).
"""

import os

# ============================================================
# Calendar arithmetic
# ============================================================

MINUTES_PER_DAY: int = 24 * 60
"""Length of a day column; also the virtual end sentinel for gap search."""

SNAP_MIN: int = 15
"""Minimum granularity of interactive placement, in minutes."""

WEEK_START_WEEKDAY: int = 1
"""ISO weekday that opens a week (1 = Monday)."""

# ============================================================
# Recurrence horizon
# ============================================================

HORIZON_PAST_DAYS: int = int(os.environ.get("BLOCKCAL_HORIZON_PAST_DAYS", "7"))
"""How far back from today occurrences are materialized."""

HORIZON_FUTURE_DAYS: int = int(os.environ.get("BLOCKCAL_HORIZON_FUTURE_DAYS", "35"))
"""How far ahead of today occurrences are materialized."""

# ============================================================
# Storage layout (names inside the text store)
# ============================================================

TASKS_FILE = "tasks.jsonl"
BLOCKS_FILE = "blocks.jsonl"
INBOX_DIR = "ai_inbox"
OUTBOX_DIR = "ai_outbox"
EXPORT_DIR = "export"
DEFAULT_INBOX = f"{INBOX_DIR}/commands.jsonl"
LAST_SIG_FILE = f"{OUTBOX_DIR}/last_sig.txt"
APPLIED_IDS_FILE = f"{OUTBOX_DIR}/applied_ids.txt"

# ============================================================
# Inbox polling
# ============================================================

POLL_SECONDS: float = float(os.environ.get("BLOCKCAL_POLL_SECONDS", "3"))
"""Interval between inbox polls in watch mode."""

# ============================================================
# Labels
# ============================================================

UNTITLED_TASK = "Untitled task"
UNTITLED_BLOCK = "Untitled"
