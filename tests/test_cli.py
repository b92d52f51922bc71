"""Tests for the command line interface."""

import json
import logging
import sys

import pytest

from docsync.__main__ import JSONFormatter, main
from docsync.model import History, Record
from docsync.storage import LocalStore


@pytest.fixture
def config_path(tmp_path):
    db_path = tmp_path / "records.db"
    path = tmp_path / "config.yaml"
    path.write_text(
        f"store:\n  db_path: {db_path}\n"
        "sync:\n  record_types: [children]\n"
    )

    store = LocalStore(db_path)
    record = Record.from_dict({"unique_identifier": "child-1", "name": "Foo"}, "children")
    record.history.append(
        History("field_worker", "UNICEF", "2024-01-01 10:00:00", {"name": {"from": "", "to": "Foo"}})
    )
    store.save(record)
    store.close()
    return path


class TestCommands:
    def test_no_command_prints_help(self):
        assert main([]) == 1

    def test_status_json(self, config_path, capsys):
        assert main(["-c", str(config_path), "status", "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["store"]["total_records"] == 1
        assert data["pending_records"] == {"children": 1}

    def test_history(self, config_path, capsys):
        assert main(["-c", str(config_path), "history", "child-1"]) == 0

        out = capsys.readouterr().out
        assert "field_worker (UNICEF)" in out
        assert "name: '' -> 'Foo'" in out

    def test_history_json(self, config_path, capsys):
        assert main(["-c", str(config_path), "history", "child-1", "--json"]) == 0

        entries = json.loads(capsys.readouterr().out)
        assert entries[0]["changes"] == {"name": {"from": "", "to": "Foo"}}

    def test_history_unknown_record(self, config_path):
        assert main(["-c", str(config_path), "history", "missing"]) == 1

    def test_sync_requires_remote(self, config_path, monkeypatch):
        monkeypatch.delenv("DOCSYNC_REMOTE_URL", raising=False)
        assert main(["-c", str(config_path), "sync"]) == 1


class TestJSONFormatter:
    def test_formats_record_as_json(self):
        record = logging.LogRecord("docsync.sync", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["component"] == "docsync.sync"
        assert data["message"] == "hello world"

    def test_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "docsync.sync", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        data = json.loads(JSONFormatter().format(record))

        assert "ValueError: boom" in data["exception"]
