"""
Tests for inbox batches: signatures, outbox results, read failures, watching.
"""

import json
from dataclasses import replace
from datetime import UTC, datetime

import pytest

from blockcal import config
from blockcal.inbox import BatchOutcome, InboxProcessor, InboxWatcher, batch_signature, hash_str, outbox_name
from blockcal.models import parse_jsonl
from blockcal.observability import current_batch
from blockcal.planner import Planner
from blockcal.settings import EngineSettings, PipelineSettings
from tests.fixtures import NOW, envelope, write_inbox


@pytest.fixture
def processor(planner):
    return InboxProcessor(planner)


class TestSignature:
    def test_empty_input(self):
        assert batch_signature("") == ""

    def test_known_values(self):
        assert hash_str("a") == 97
        assert hash_str("ab") == 97 * 31 + 98
        assert batch_signature("ab") == f"2:{97 * 31 + 98}"

    def test_wraps_to_signed_32_bit(self):
        h = hash_str("x" * 64)
        assert -(2**31) <= h < 2**31

    def test_counts_utf16_units(self):
        # one astral code point is two UTF-16 units
        assert batch_signature("😀").startswith("2:")

    def test_content_sensitive(self):
        assert batch_signature('{"id":"c1"}\n') != batch_signature('{"id":"c2"}\n')


class TestOutboxName:
    def test_format(self):
        stamp = datetime(2024, 1, 3, 8, 5, 9, 42000, tzinfo=UTC)
        assert outbox_name(stamp) == "ai_outbox/result_2024-01-03T08-05-09-042Z.jsonl"


class TestApply:
    def test_applies_and_persists(self, processor, planner, store):
        write_inbox(store, [envelope("c1", "create_task", task_id="t1", title="Write")])
        outcome = processor.apply()

        assert outcome.skipped is False
        assert outcome.ok_count == 1
        assert [t.task_id for t in planner.load_tasks()] == ["t1"]
        assert store.exists(config.BLOCKS_FILE)

        rows = parse_jsonl(store.read_text(outcome.outbox))
        assert rows == [{"for": "c1", "ok": True, "effects": [{"task_id": "t1", "created": True}]}]
        assert processor.last_signature() == outcome.signature

    def test_unchanged_batch_is_skipped(self, processor, planner, store):
        write_inbox(store, [envelope("c1", "create_task")])
        first = processor.apply()
        second = processor.apply()

        assert first.ok_count == 1
        assert second.skipped is True
        assert second.results == []
        assert len(planner.load_tasks()) == 1
        assert len(store.list_names(config.OUTBOX_DIR)) == 2  # one result file + last_sig.txt

    def test_empty_inbox_is_skipped(self, processor, store):
        store.write_text(config.DEFAULT_INBOX, "")
        outcome = processor.apply()
        assert outcome.skipped is True
        assert outcome.empty is True
        assert outcome.summary() == "Inbox empty; skipped."
        assert store.list_names(config.OUTBOX_DIR) == []
        assert not store.exists(config.BLOCKS_FILE)

    def test_whitespace_only_inbox_is_skipped(self, processor, store):
        store.write_text(config.DEFAULT_INBOX, "\n  \n")
        assert processor.apply().skipped is True

    def test_force_applies_an_empty_inbox(self, processor, store):
        store.write_text(config.DEFAULT_INBOX, "")
        outcome = processor.apply(force=True)
        assert outcome.skipped is False
        assert outcome.results == []
        assert store.exists(outcome.outbox)

    def test_force_reapplies(self, processor, planner, store):
        write_inbox(store, [envelope("c1", "create_task")])
        processor.apply()
        outcome = processor.apply(force=True)
        assert outcome.skipped is False
        assert len(planner.load_tasks()) == 2

    def test_changed_batch_is_reapplied_in_full(self, processor, planner, store):
        write_inbox(store, [envelope("c1", "create_task")])
        processor.apply()
        write_inbox(store, [envelope("c1", "create_task"), envelope("c2", "create_task")])
        outcome = processor.apply()
        assert [r.for_ for r in outcome.results] == ["c1", "c2"]
        assert len(planner.load_tasks()) == 3

    def test_missing_inbox_is_read_fail(self, processor, planner, store):
        outcome = processor.apply()
        assert outcome.skipped is False
        assert len(outcome.results) == 1
        result = outcome.results[0]
        assert result.for_ == "N/A"
        assert result.ok is False
        assert result.error.startswith("READ_FAIL:")
        # collections and results are still written; no signature is recorded
        assert store.exists(config.TASKS_FILE)
        assert store.exists(outcome.outbox)
        assert processor.last_signature() == ""

    def test_non_json_line_gets_a_validation_result(self, processor, store):
        write_inbox(store, [envelope("c1", "create_task"), "{broken", envelope("c3", "create_task")])
        outcome = processor.apply()
        assert [r.ok for r in outcome.results] == [True, False, True]
        assert outcome.results[1].error.startswith("VALIDATION:")
        assert outcome.results[1].for_ == "N/A"
        assert "line 2" in outcome.results[1].error
        assert "Field required" not in outcome.results[1].error

        rows = parse_jsonl(store.read_text(outcome.outbox))
        assert rows[1]["error"] == outcome.results[1].error

    def test_blank_lines_ignored(self, processor, store):
        write_inbox(store, [envelope("c1", "create_task"), "", "   "])
        assert len(processor.apply().results) == 1

    def test_outbox_names_never_collide(self, processor, store, monkeypatch):
        monkeypatch.setattr("blockcal.inbox.outbox_name", lambda now=None: "ai_outbox/result_fixed.jsonl")
        write_inbox(store, [envelope("c1", "create_task")])
        first = processor.apply()
        second = processor.apply(force=True)
        third = processor.apply(force=True)
        assert first.outbox == "ai_outbox/result_fixed.jsonl"
        assert second.outbox == "ai_outbox/result_fixed-1.jsonl"
        assert third.outbox == "ai_outbox/result_fixed-2.jsonl"

    def test_materializes_recurring_blocks_on_load(self, processor, planner, store):
        rule = {"id": "rec_x", "type": "daily", "startDate": "2024-01-03", "startMinute": 540, "duration": 60}
        write_inbox(
            store,
            [envelope("c1", "create_block", start="2024-01-03T09:00:00", end="2024-01-03T10:00:00", recurrence=rule)],
        )
        processor.apply()
        # the next load runs the recurrence pass over the saved series
        assert len(planner.load_blocks()) == 36


class TestSkipSeenCommandIds:
    @pytest.fixture
    def processor(self, store):
        settings = replace(EngineSettings(), pipeline=PipelineSettings(skip_seen_command_ids=True))
        return InboxProcessor(Planner(store=store, settings=settings, clock=lambda: NOW))

    def test_appended_batch_applies_only_new_ids(self, processor, store):
        write_inbox(store, [envelope("c1", "create_task")])
        processor.apply()
        write_inbox(store, [envelope("c1", "create_task"), envelope("c2", "create_task")])
        outcome = processor.apply()

        assert outcome.results[0].effects == [{"skipped": "duplicate"}]
        assert len(processor.planner.load_tasks()) == 2
        assert store.read_text(config.APPLIED_IDS_FILE).split() == ["c1", "c2"]


class TestBatchOutcome:
    def test_summary(self):
        assert BatchOutcome(signature="1:1", skipped=True).summary() == "Inbox unchanged; skipped."
        assert BatchOutcome(signature="").summary() == "Done: 0 succeeded, 0 failed"


class TestWatcher:
    def test_missing_inbox_is_ignored(self, processor):
        sleeps = []
        watcher = InboxWatcher(processor, interval=0.5, sleep=sleeps.append)
        assert watcher.run(max_ticks=3) == 0
        assert sleeps == [0.5, 0.5]

    def test_empty_inbox_is_never_applied(self, processor, store):
        store.write_text(config.DEFAULT_INBOX, "")
        watcher = InboxWatcher(processor, interval=0, sleep=lambda s: None)
        assert watcher.run(max_ticks=5) == 0
        assert [n for n in store.list_names(config.OUTBOX_DIR) if "result_" in n] == []

    def test_applies_once_per_change(self, processor, planner, store):
        write_inbox(store, [envelope("c1", "create_task")])
        watcher = InboxWatcher(processor, interval=0, sleep=lambda s: None)
        assert watcher.run(max_ticks=3) == 1
        assert len(planner.load_tasks()) == 1

    def test_tick_returns_outcome(self, processor, store):
        write_inbox(store, [envelope("c1", "create_task")])
        watcher = InboxWatcher(processor, sleep=lambda s: None)
        outcome = watcher.tick()
        assert outcome is not None and outcome.ok_count == 1
        assert watcher.tick() is None

    def test_busy_tick_is_skipped(self, processor, store):
        write_inbox(store, [envelope("c1", "create_task")])
        watcher = InboxWatcher(processor, sleep=lambda s: None)
        watcher._busy = True
        assert watcher.tick() is None
        assert processor.last_signature() == ""

    def test_failures_are_logged_not_raised(self, processor, store, monkeypatch):
        write_inbox(store, [envelope("c1", "create_task")])

        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(processor, "apply", boom)
        watcher = InboxWatcher(processor, sleep=lambda s: None)
        assert watcher.tick() is None
        assert watcher._busy is False

    def test_default_interval_from_settings(self, processor):
        assert InboxWatcher(processor).interval == processor.settings.pipeline.poll_seconds

    def test_outbox_written_for_each_applied_batch(self, processor, store):
        write_inbox(store, [envelope("c1", "create_task")])
        InboxWatcher(processor, sleep=lambda s: None).run(max_ticks=1)
        results = [n for n in store.list_names(config.OUTBOX_DIR) if "result_" in n]
        assert len(results) == 1
        assert json.loads(store.read_text(results[0]).splitlines()[0])["for"] == "c1"


class TestBatchContext:
    def test_application_runs_inside_a_batch_context(self, processor, store, monkeypatch):
        seen = []
        apply_raw = processor._apply_raw

        def recording(*args):
            seen.append(current_batch())
            return apply_raw(*args)

        monkeypatch.setattr(processor, "_apply_raw", recording)
        write_inbox(store, [envelope("c1", "create_task")])
        outcome = processor.apply()

        batch = seen[0]
        assert batch.inbox == config.DEFAULT_INBOX
        assert batch.signature == outcome.signature
        assert batch.batch_id.startswith("batch-")
        assert current_batch() is None
