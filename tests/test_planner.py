"""
Tests for the Planner service: repository round-trips and interactive edits.
"""

from dataclasses import replace
from datetime import date

import pytest

from blockcal import config
from blockcal.errors import NotFoundError, ValidationError
from blockcal.models import BlockStatus, Task
from blockcal.planner import Planner, label_for
from blockcal.schedule.conflicts import DragMode, Policy, Proposal
from blockcal.settings import EngineSettings, SleepWindow
from tests.fixtures import NOW, make_block, make_rule

DAY = date(2024, 1, 3)


def _seed(planner, *blocks):
    planner.save_blocks(list(blocks))


class TestRepository:
    def test_empty_store(self, planner):
        assert planner.load_tasks() == []
        assert planner.load_blocks() == []

    def test_round_trip(self, planner):
        _seed(planner, make_block("b1", "2024-01-03T09:00:00", "2024-01-03T10:00:00", title="Focus"))
        blocks = planner.load_blocks()
        assert [b.block_id for b in blocks] == ["b1"]
        assert blocks[0].title == "Focus"

    def test_load_materializes_and_saves(self, planner, store):
        rule = make_rule(start_date="2024-01-03")
        _seed(planner, make_block("s0", "2024-01-03T09:00:00", "2024-01-03T10:00:00", recurrence=rule))
        blocks = planner.load_blocks()
        assert len(blocks) == 36
        # persisted, so a raw read sees the occurrences too
        assert store.read_text(config.BLOCKS_FILE).count("\n") == 36

    def test_horizon_from_settings(self, store):
        settings = replace(EngineSettings(), horizon=replace(EngineSettings().horizon, future_days=3))
        planner = Planner(store=store, settings=settings, clock=lambda: NOW)
        rule = make_rule(start_date="2024-01-03")
        _seed(planner, make_block("s0", "2024-01-03T09:00:00", "2024-01-03T10:00:00", recurrence=rule))
        assert len(planner.load_blocks()) == 4


class TestTasks:
    def test_create_requires_title(self, planner):
        with pytest.raises(ValidationError):
            planner.create_task("   ")

    def test_create_and_update(self, planner):
        task_id = planner.create_task(" Write ", tags=["a", " ", "b"], priority=1)
        task = planner.load_tasks()[0]
        assert task.task_id == task_id
        assert task.title == "Write"
        assert task.tags == ["a", "b"]

        updated = planner.update_task(task_id, {"notes": "draft"})
        assert updated.notes == "draft"
        assert planner.load_tasks()[0].notes == "draft"

    def test_update_unknown(self, planner):
        with pytest.raises(NotFoundError):
            planner.update_task("ghost", {})


class TestCreateBlock:
    def test_end_must_follow_start(self, planner):
        with pytest.raises(ValidationError):
            planner.create_block("2024-01-03T10:00:00", "2024-01-03T10:00:00", title="x")

    def test_sleep_warning(self, planner):
        created = planner.create_block("2024-01-03T23:30:00", "2024-01-04T00:00:00", title="Late")
        assert created.sleep_warning is True
        assert planner.create_block("2024-01-03T12:00:00", "2024-01-03T13:00:00").sleep_warning is False

    def test_sleep_window_from_settings(self, store):
        settings = replace(EngineSettings(), sleep=SleepWindow(start="12:00", end="13:00"))
        planner = Planner(store=store, settings=settings, clock=lambda: NOW)
        assert planner.create_block("2024-01-03T12:15:00", "2024-01-03T12:45:00").sleep_warning is True

    def test_recurring_materializes_immediately(self, planner):
        rule = make_rule(start_date="2024-01-03")
        planner.create_block("2024-01-03T09:00:00", "2024-01-03T10:00:00", recurrence_rule=rule)
        raw = planner.store.read_text(config.BLOCKS_FILE)
        assert raw.count("\n") == 36


class TestScheduleBlock:
    def test_quick_form(self, planner):
        created = planner.schedule_block("2024-01-03", "14:30", 45, title="Review")
        blk = planner.load_blocks()[0]
        assert blk.block_id == created.block_id
        assert (blk.day, blk.start_minute, blk.end_minute) == (DAY, 870, 915)

    def test_duration_floored_at_snap(self, planner):
        planner.schedule_block("2024-01-03", "14:00", 5, title="Tiny")
        assert planner.load_blocks()[0].end_minute == 855

    def test_needs_title_or_task(self, planner):
        with pytest.raises(ValidationError):
            planner.schedule_block("2024-01-03", "14:00", 30)

    def test_bad_time(self, planner):
        with pytest.raises(ValidationError):
            planner.schedule_block("2024-01-03", "2pm", 30, title="x")

    def test_bad_repeat(self, planner):
        with pytest.raises(ValidationError):
            planner.schedule_block("2024-01-03", "14:00", 30, title="x", repeat="hourly")

    def test_weekly_series(self, planner):
        planner.schedule_block("2024-01-03", "08:00", 30, title="Gym", repeat="weekly", weekly_days=[3, 5])
        days = sorted(b.day for b in planner.load_blocks())
        assert days[:3] == [date(2024, 1, 3), date(2024, 1, 5), date(2024, 1, 10)]
        assert {d.isoweekday() for d in days} == {3, 5}

    def test_until(self, planner):
        planner.schedule_block("2024-01-03", "08:00", 30, title="Sprint", repeat="daily", until="2024-01-05")
        assert sorted(b.day for b in planner.load_blocks()) == [date(2024, 1, d) for d in (3, 4, 5)]


class TestBlockEdits:
    def test_toggle_and_duplicate(self, planner):
        _seed(planner, make_block("b1", "2024-01-03T09:00:00", "2024-01-03T10:00:00"))
        assert planner.toggle_block_done("b1") == BlockStatus.DONE
        copy_id = planner.duplicate_block("b1")
        ids = [b.block_id for b in planner.load_blocks()]
        assert ids == ["b1", copy_id]

    def test_move_persists(self, planner):
        _seed(planner, make_block("b1", "2024-01-03T09:00:00", "2024-01-03T10:00:00"))
        planner.move_block("b1", "2024-01-04T09:00:00")
        assert planner.load_blocks()[0].day == date(2024, 1, 4)

    def test_delete_occurrence_persists_exception(self, planner):
        planner.schedule_block("2024-01-03", "08:00", 30, title="Daily", repeat="daily")
        victim = next(b for b in planner.load_blocks() if b.day == date(2024, 1, 10))
        planner.delete_block(victim.block_id)
        blocks = planner.load_blocks()
        assert date(2024, 1, 10) not in {b.day for b in blocks}
        assert all(b.recurrence.exceptions == ["2024-01-10"] for b in blocks)

    def test_update_block(self, planner):
        _seed(planner, make_block("b1", "2024-01-03T09:00:00", "2024-01-03T10:00:00"))
        planner.update_block("b1", {"title": "Renamed"})
        assert planner.load_blocks()[0].title == "Renamed"

    def test_resize_unknown(self, planner):
        with pytest.raises(NotFoundError):
            planner.resize_block("ghost", "2024-01-03T10:00:00")


class TestCommitDrag:
    def _seed_day(self, planner):
        _seed(
            planner,
            make_block("a", "2024-01-03T09:00:00", "2024-01-03T10:00:00"),
            make_block("b", "2024-01-03T11:00:00", "2024-01-03T12:00:00"),
            make_block("me", "2024-01-03T13:00:00", "2024-01-03T14:00:00"),
        )

    def _get(self, planner, block_id):
        return next(b for b in planner.load_blocks() if b.block_id == block_id)

    def test_push_persists_relocated_placement(self, planner):
        self._seed_day(planner)
        res = planner.commit_drag(Proposal("me", DragMode.MOVE, DAY, 570, 630), policy=Policy.PUSH)
        assert res.accepted is True
        me = self._get(planner, "me")
        assert (me.start_minute, me.end_minute) == (600, 660)

    def test_block_leaves_storage_untouched(self, planner, store):
        self._seed_day(planner)
        before = store.read_text(config.BLOCKS_FILE)
        notices = []
        res = planner.commit_drag(
            Proposal("me", DragMode.MOVE, DAY, 570, 630), policy="block", notify=notices.append
        )
        assert res.accepted is False
        assert store.read_text(config.BLOCKS_FILE) == before
        assert notices[0].kind == "conflict"

    def test_clip_resize(self, planner):
        _seed(
            planner,
            make_block("me", "2024-01-03T09:00:00", "2024-01-03T09:30:00"),
            make_block("x", "2024-01-03T10:00:00", "2024-01-03T12:00:00"),
        )
        planner.commit_drag(Proposal("me", DragMode.RESIZE, DAY, 540, 660), policy=Policy.CLIP)
        assert self._get(planner, "me").end_minute == 600

    def test_default_policy_from_settings(self, store):
        settings = EngineSettings().with_policy("block")
        planner = Planner(store=store, settings=settings, clock=lambda: NOW)
        self._seed_day(planner)
        res = planner.commit_drag(Proposal("me", DragMode.MOVE, DAY, 570, 630), notify=lambda n: None)
        assert res.accepted is False

    def test_move_to_another_day(self, planner):
        self._seed_day(planner)
        planner.commit_drag(Proposal("me", DragMode.MOVE, date(2024, 1, 4), 600, 660))
        me = self._get(planner, "me")
        assert (me.day, me.start_minute, me.end_minute) == (date(2024, 1, 4), 600, 660)

    def test_series_move_propagates(self, planner):
        planner.schedule_block("2024-01-03", "09:00", 60, title="Standup", repeat="daily")
        target = next(b for b in planner.load_blocks() if b.day == date(2024, 1, 5))
        planner.commit_drag(Proposal(target.block_id, DragMode.MOVE, date(2024, 1, 5), 570, 630))
        assert {b.start_minute for b in planner.load_blocks()} == {570}


class TestQueries:
    def test_blocks_by_day_sorted(self, planner):
        _seed(
            planner,
            make_block("late", "2024-01-03T15:00:00", "2024-01-03T16:00:00"),
            make_block("early", "2024-01-03T08:00:00", "2024-01-03T09:00:00"),
            make_block("other", "2024-01-04T08:00:00", "2024-01-04T09:00:00"),
        )
        by_day = planner.blocks_by_day([DAY])
        assert [b.block_id for b in by_day[DAY]] == ["early", "late"]

    def test_label_for(self):
        tasks = [Task(task_id="t1", title="Write report")]
        assert label_for(make_block("b", "2024-01-03T09:00:00", "2024-01-03T10:00:00", title="Own"), tasks) == "Own"
        assert label_for(make_block("b", "2024-01-03T09:00:00", "2024-01-03T10:00:00", task_id="t1"), tasks) == "Write report"
        assert label_for(make_block("b", "2024-01-03T09:00:00", "2024-01-03T10:00:00", task_id="t9"), tasks) == "Untitled"

    def test_status(self, planner):
        _seed(
            planner,
            make_block("a", "2024-01-03T09:00:00", "2024-01-03T10:00:00"),
            make_block("b", "2024-01-03T09:30:00", "2024-01-03T10:30:00", status=BlockStatus.DONE),
        )
        st = planner.status()
        assert st["blocks"] == 2
        assert st["series"] == 0
        assert st["by_status"] == {"planned": 1, "done": 1}
        assert st["conflicts_today"] == 1
        assert st["policy"] == "allow"
