"""Tests for the local command line runner."""

import json
import logging
import os
from unittest.mock import patch

import pytest

from stream_ingest.__main__ import main


@pytest.fixture(autouse=True)
def isolated_cli():
    env = {
        k: v
        for k, v in os.environ.items()
        if k not in ("TABLE_NAME", "TABLE_SCHEMA", "INGEST_TRANSPORT", "LOG_LEVEL")
        and not k.startswith("DATABRICKS_")
        and k != "ZEROBUS_ENDPOINT"
    }
    root = logging.getLogger()
    level = root.level
    with patch.dict(os.environ, env, clear=True):
        yield
    for handler in list(root.handlers):
        if handler.get_name() == "stream_ingest_stdout":
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def records_file(tmp_path, sqs_record):
    path = tmp_path / "records.json"
    path.write_text(json.dumps([sqs_record(f"m{i}") for i in range(1, 5)]))
    return path


def test_success(records_file, capsys):
    assert main([str(records_file)]) == 0
    assert '"batchItemFailures": []' in capsys.readouterr().out


def test_failures_exit_one(records_file, capsys):
    code = main([str(records_file), "--reject", "2=bad-row", "--show-rows"])
    out = capsys.readouterr().out
    assert code == 1
    assert '"itemIdentifier": "m2"' in out
    assert '"rows"' in out


def test_recovery_run(records_file, capsys):
    code = main([str(records_file), "--break-after", "2", "--print-metrics"])
    out = capsys.readouterr().out
    assert code == 0
    assert "ingest_stream_recoveries_total" in out


def test_raw_invocation(tmp_path, capsys):
    path = tmp_path / "event.json"
    path.write_text(json.dumps({"detail-type": "ping"}))
    assert main([str(path), "--raw"]) == 0
    assert json.loads(capsys.readouterr().out.splitlines()[0]) == {"result": "Success"}


def test_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "absent.json")]) == 2
    assert "error:" in capsys.readouterr().err


def test_bad_reject_argument(records_file):
    with pytest.raises(SystemExit):
        main([str(records_file), "--reject", "two=bad"])


def test_refuses_to_run_with_endpoint_configured(records_file, capsys):
    with patch.dict(os.environ, {"ZEROBUS_ENDPOINT": "https://1234.zerobus.example.com"}):
        assert main([str(records_file)]) == 2
    assert "process memory" in capsys.readouterr().err
