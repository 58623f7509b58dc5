from __future__ import annotations

import json
import os

import pytest

from orsynth.errors import DataError
from orsynth.metrics.logger import (
    _atomic_write_text,
    _utc_now_hms,
    write_metrics,
    write_run_log,
)
from orsynth.schemas.models import GenerationDetails, GenerationResult

# --------------------------
# write_metrics
# --------------------------


def test_write_metrics_writes_json_and_overwrites(tmp_path):
    """
    @brief
    Verifies that write_metrics() creates and overwrites metrics.json correctly.

    @details
    The second call must replace the previous file without residual content.
    """
    # --- Arrange ---
    out_dir = tmp_path / "out"

    # --- Act ---
    p1 = write_metrics({"b": "x", "a": 1}, out_dir)
    text1 = p1.read_text(encoding="utf-8")

    # --- Assert ---
    assert p1.name == "metrics.json"
    assert json.loads(text1) == {"a": 1, "b": "x"}
    assert text1.index('"a"') < text1.index('"b"')

    # --- Act (overwrite) ---
    p2 = write_metrics({"a": 2, "c": True}, out_dir)

    # --- Assert ---
    assert p2 == p1
    assert json.loads(p2.read_text(encoding="utf-8")) == {"a": 2, "c": True}


def test_write_metrics_rejects_non_dict(tmp_path):
    with pytest.raises(DataError) as ei:
        write_metrics(["not", "a", "dict"], tmp_path)
    assert "metrics must be a dict" in str(ei.value)


def test_write_metrics_non_serializable_raises(tmp_path):
    class Bad:
        pass

    with pytest.raises(DataError) as ei:
        write_metrics({"ok": 1, "bad": Bad()}, tmp_path)
    msg = str(ei.value)
    assert "metrics not JSON-serializable" in msg
    assert "metrics.write_metrics" in msg


# --------------------------
# _atomic_write_text
# --------------------------


def test_atomic_write_text_failure_raises_and_cleans_tmp(tmp_path, monkeypatch):
    """
    @brief
    Forces os.replace() to fail and verifies DataError and cleanup.
    """
    target = tmp_path / "folder" / "file.txt"
    tmp_created = tmp_path / "folder" / "file.txt.tmp-for-test"

    # --- Arrange ---
    def fake_mkstemp(prefix, dir):
        os.makedirs(dir, exist_ok=True)
        tmp_created.touch()
        return os.open(tmp_created, os.O_RDWR), str(tmp_created)

    def boom_replace(src, dst):
        raise OSError("nope")

    monkeypatch.setattr("tempfile.mkstemp", fake_mkstemp)
    monkeypatch.setattr(os, "replace", boom_replace)

    # --- Act & Assert ---
    with pytest.raises(DataError) as ei:
        _atomic_write_text(target, "payload", encoding="utf-8")

    assert "atomic write failed" in str(ei.value)
    assert not tmp_created.exists()


# --------------------------
# write_run_log
# --------------------------


def test_write_run_log_success_lists_parameters_and_details(tmp_path, monkeypatch, generation_config):
    # --- Arrange ---
    monkeypatch.setattr("orsynth.metrics.logger._utc_now_hms", lambda: "2025-01-01 12:34:56")
    result = GenerationResult(
        success=True,
        cases_generated=120,
        details=GenerationDetails(milestones=900, cancelled_count=4),
    )

    # --- Act ---
    path = write_run_log(result, generation_config, tmp_path / "logs")
    text = path.read_text(encoding="utf-8")

    # --- Assert ---
    assert path.name == "generation.log"
    assert "[2025-01-01 12:34:56] INFO Generation for facility fac-1" in text
    assert "history=2m, ahead=1m, seed=7, today=2025-03-03" in text
    assert "surgeons=2" in text
    assert "INFO Generated 120 cases" in text
    assert "INFO milestones=900" in text
    assert "INFO cancelled_count=4" in text
    assert "ERROR" not in text
    assert text.endswith("\n")


def test_write_run_log_failure_records_error(tmp_path, generation_config):
    # --- Arrange ---
    result = GenerationResult(success=False, error="No OR rooms found")

    # --- Act ---
    text = write_run_log(result, generation_config, tmp_path).read_text(encoding="utf-8")

    # --- Assert ---
    assert "ERROR No OR rooms found" in text
    assert "Generated" not in text


def test_utc_now_hms_format():
    s = _utc_now_hms()
    assert len(s) == 19
    assert s[4] == "-" and s[7] == "-" and s[10] == " " and s[13] == ":" and s[16] == ":"
