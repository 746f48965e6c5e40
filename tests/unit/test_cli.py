"""Unit tests for the notably CLI against a DuckDB file."""

import json

import pytest
from typer.testing import CliRunner

from notably.cli import app
from notably.common.config import config

runner = CliRunner()


@pytest.fixture
def db(tmp_path):
    """Initialized database path."""
    path = str(tmp_path / "facts.duckdb")
    result = runner.invoke(app, ["--database", path, "init"])
    assert result.exit_code == 0, result.output
    return path


def _invoke(db, *args):
    return runner.invoke(app, ["--database", db, *args])


def _put(db, value, at, *extra):
    result = _invoke(db, "put", "ns", "x", value, "--id", "r1", "--at", at, *extra)
    assert result.exit_code == 0, result.output
    return result


class TestCli:
    def test_init_is_repeatable(self, db):
        result = _invoke(db, "init")
        assert result.exit_code == 0
        assert "Initialized" in result.output

    def test_put_prints_id(self, db):
        result = _put(db, "v1", "2024-05-01T12:00:00")
        assert result.stdout.strip() == "r1"

    def test_put_generates_id(self, db):
        result = _invoke(db, "put", "ns", "x", "v1")
        assert result.exit_code == 0
        assert len(result.stdout.strip()) == 36

    def test_get_json(self, db):
        _put(db, '{"name": "Ada"}', "2024-05-01T12:00:00", "--json")

        result = _invoke(db, "get", "r1", "-o", "json")

        assert result.exit_code == 0
        fact = json.loads(result.stdout)
        assert fact["value"] == {"name": "Ada"}
        assert fact["dataType"] == "json"
        assert fact["timestamp"] == "2024-05-01T12:00:00+00:00"

    def test_get_table(self, db):
        _put(db, "v1", "2024-05-01T12:00:00")
        result = _invoke(db, "get", "r1")
        assert result.exit_code == 0
        assert "r1" in result.output

    def test_get_missing(self, db):
        result = _invoke(db, "get", "nope")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_history_delete_and_snapshot(self, db):
        _put(db, "v1", "2024-05-01T12:00:00")
        _put(db, "v2", "2024-05-01T12:01:00")

        snapshot = _invoke(db, "snapshot", "ns", "--at", "2024-05-01T12:00:30", "-o", "json")
        assert json.loads(snapshot.stdout)["x"]["value"] == "v1"

        deleted = _invoke(db, "delete", "r1")
        assert deleted.exit_code == 0
        assert "Deleted" in deleted.output

        history = json.loads(_invoke(db, "history", "ns", "x", "--asc", "-o", "json").stdout)
        assert [f["value"] for f in history["facts"]] == ["v1", "v2", None]
        assert history["facts"][-1]["isDeleted"] is True
        assert history["continuationToken"] is None

        now = json.loads(_invoke(db, "snapshot", "ns", "-o", "json").stdout)
        assert now == {}

    def test_paging_with_token(self, db):
        for minute in range(3):
            _put(db, f"v{minute}", f"2024-05-01T12:0{minute}:00")

        first = json.loads(_invoke(db, "history", "ns", "x", "-n", "2", "-o", "json").stdout)
        token = first["continuationToken"]
        rest = json.loads(
            _invoke(db, "history", "ns", "x", "-n", "2", "--token", token, "-o", "json").stdout
        )

        assert [f["value"] for f in first["facts"] + rest["facts"]] == ["v2", "v1", "v0"]
        assert rest["continuationToken"] is None

    def test_bad_token(self, db):
        result = _invoke(db, "history", "ns", "x", "--token", "garbage")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_namespace_and_timeline(self, db):
        _put(db, "v1", "2024-05-01T12:00:00")
        _invoke(db, "put", "other", "y", "o1", "--id", "r2", "--at", "2024-05-02")

        namespace = json.loads(_invoke(db, "namespace", "ns", "-o", "json").stdout)
        assert [f["id"] for f in namespace["facts"]] == ["r1"]

        timeline = json.loads(
            _invoke(db, "timeline", "--start", "2024-05-01", "--end", "2024-05-03", "-o", "json").stdout
        )
        assert [f["id"] for f in timeline["facts"]] == ["r2", "r1"]

    def test_global_snapshot_table(self, db):
        _put(db, "v1", "2024-05-01T12:00:00")
        result = _invoke(db, "snapshot")
        assert result.exit_code == 0
        assert "all namespaces" in result.output

        state = json.loads(_invoke(db, "snapshot", "-o", "json").stdout)
        assert state["ns/x"]["value"] == "v1"

    def test_invalid_datetime(self, db):
        result = _invoke(db, "snapshot", "ns", "--at", "yesterday-ish")
        assert result.exit_code != 0

    def test_invalid_json_value(self, db):
        result = _invoke(db, "put", "ns", "x", "{not json", "--json")
        assert result.exit_code != 0

    def test_uninitialized_database(self, tmp_path):
        path = str(tmp_path / "empty.duckdb")
        result = runner.invoke(app, ["--database", path, "put", "ns", "x", "v1"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_log_level_defaults_to_config(self, db, mocker):
        mocker.patch.object(config.observability, "log_level", "DEBUG")
        configure = mocker.patch("notably.cli.configure_logging")

        result = _invoke(db, "init")

        assert result.exit_code == 0
        assert configure.call_args.kwargs["log_level"] == "DEBUG"

    def test_log_level_flag_overrides_config(self, db, mocker):
        mocker.patch.object(config.observability, "log_level", "DEBUG")
        configure = mocker.patch("notably.cli.configure_logging")

        result = runner.invoke(app, ["--database", db, "--log-level", "ERROR", "init"])

        assert result.exit_code == 0
        assert configure.call_args.kwargs["log_level"] == "ERROR"
