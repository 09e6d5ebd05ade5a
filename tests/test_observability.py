"""
Tests for structured logging and batch correlation ids.
"""

import json
import logging

from blockcal.observability import (
    BatchContext,
    HumanFormatter,
    JSONFormatter,
    configure_log_file,
    configure_logging,
    current_batch,
    generate_batch_id,
    get_batch_id,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("blockcal.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestBatchContext:
    def test_scoped_id(self):
        assert get_batch_id() is None
        with BatchContext() as ctx:
            assert ctx.batch_id.startswith("batch-")
            assert get_batch_id() == ctx.batch_id
        assert get_batch_id() is None

    def test_explicit_id_and_nesting(self):
        with BatchContext("batch-outer"):
            with BatchContext("batch-inner"):
                assert get_batch_id() == "batch-inner"
            assert get_batch_id() == "batch-outer"

    def test_id_derived_from_signature(self):
        a = BatchContext(signature="12:-4711")
        b = BatchContext(signature="12:-4711")
        c = BatchContext(signature="13:99")
        assert a.batch_id != b.batch_id
        assert a.batch_id[:14] == b.batch_id[:14]
        assert a.batch_id[:14] != c.batch_id[:14]

    def test_id_without_signature(self):
        assert generate_batch_id().startswith("batch-none-")

    def test_current_batch_details(self):
        with BatchContext(inbox="ai_inbox/commands.jsonl", signature="3:1") as ctx:
            batch = current_batch()
        assert batch.batch_id == ctx.batch_id
        assert batch.inbox == "ai_inbox/commands.jsonl"
        assert batch.signature == "3:1"
        assert current_batch() is None


class TestJSONFormatter:
    def test_fields(self):
        line = json.loads(JSONFormatter().format(_record(ok=3)))
        assert line["level"] == "INFO"
        assert line["logger"] == "blockcal.test"
        assert line["message"] == "hello"
        assert line["ok"] == 3
        assert "batch_id" not in line

    def test_includes_batch_id(self):
        with BatchContext("batch-abc"):
            line = json.loads(JSONFormatter().format(_record()))
        assert line["batch_id"] == "batch-abc"
        assert "inbox" not in line

    def test_includes_batch_details(self):
        with BatchContext(inbox="ai_inbox/commands.jsonl", signature="3:1"):
            line = json.loads(JSONFormatter().format(_record()))
        assert line["inbox"] == "ai_inbox/commands.jsonl"
        assert line["signature"] == "3:1"


class TestHumanFormatter:
    def test_format(self):
        with BatchContext("batch-abc"):
            text = HumanFormatter().format(_record("applied"))
        assert "[INFO] blockcal.test: [batch-abc] applied" in text


class TestConfigure:
    def test_replaces_root_handlers(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            configure_logging("DEBUG", json_format=True)
            configure_logging("DEBUG", json_format=True)
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.DEBUG
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])

    def test_log_file(self, tmp_path):
        root = logging.getLogger()
        saved = root.handlers[:]
        try:
            log_file = tmp_path / "logs" / "watch.log"
            configure_log_file(str(log_file))
            assert log_file.parent.is_dir()
            assert len(root.handlers) == len(saved) + 1
        finally:
            for handler in root.handlers[len(saved):]:
                handler.close()
            root.handlers[:] = saved

    def test_log_file_none_is_a_no_op(self):
        before = len(logging.getLogger().handlers)
        configure_log_file(None)
        assert len(logging.getLogger().handlers) == before
