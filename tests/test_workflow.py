import os
import sys
from datetime import timedelta

import pytest
from sqlalchemy import create_engine

# Ensure project root is on sys.path so tests can import local modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from errors import ExportError
from permissions import PermissionState
from storage import HistoryRepo, to_iso, utcnow
from workflow import EXPORT_FLAG, calculate_and_save, quota_status, run_export, write_report_file

INPUTS = {"current_bg": "180", "target_bg": "100", "carbs": "60", "carb_ratio": "10",
          "correction_factor": "50", "unit": "mg/dL"}


def _history(days_ago=0):
    return [{
        "id": 1,
        "timestamp": to_iso(utcnow() - timedelta(days=days_ago)),
        "inputs": INPUTS,
        "result": {"correction_dose": 1.6, "carb_dose": 6.0, "total_dose": 7.6},
    }]


def _granted(directory, auto_request=True):
    return {"granted": True, "state": PermissionState.GRANTED, "should_show_rationale": False}


def _denied(directory, auto_request=True):
    return {"granted": False, "state": PermissionState.DENIED, "should_show_rationale": False}


def _fake_build(calls):
    def build(history, range_days):
        calls.append((len(history), range_days))
        return b"%PDF-1.4 fake", "insulin_history_2026-03-01.pdf"
    return build


def _no_share(path):
    pass


@pytest.fixture
def dirs(tmp_path):
    return tmp_path / "documents", tmp_path / "cache"


@pytest.fixture
def repo(tmp_path):
    return HistoryRepo(create_engine(f"sqlite:///{tmp_path / 'test.db'}"))


def test_calculate_and_save_records_valid_result(repo):
    result, outcome = calculate_and_save(INPUTS, repo)
    assert result["total_dose"] == pytest.approx(7.6)
    assert outcome.status == "ok"
    assert repo.all()[0]["inputs"]["unit"] == "mg/dL"


def test_calculate_and_save_ignores_invalid_input(repo):
    result, outcome = calculate_and_save(dict(INPUTS, current_bg="invalid"), repo)
    assert result is None and outcome is None
    assert repo.all() == []


def test_export_without_history(dirs):
    calls = []
    state = {}
    s = run_export([], 30, state, _no_share, build=_fake_build(calls),
                   ensure_permission=_granted, directories=dirs)
    assert s["type"] == "error"
    assert s["message"] == "No history to export"
    assert calls == []
    assert state[EXPORT_FLAG] is False


def test_export_with_nothing_in_range_skips_report(dirs):
    calls = []
    s = run_export(_history(days_ago=40), 7, {}, _no_share, build=_fake_build(calls),
                   ensure_permission=_granted, directories=dirs)
    assert s["message"] == "No data in the last 7 days"
    assert calls == []


def test_export_permission_denied(dirs):
    calls = []
    s = run_export(_history(), 7, {}, _no_share, build=_fake_build(calls),
                   ensure_permission=_denied, directories=dirs)
    assert s["type"] == "error"
    assert "To enable" in s["message"]
    assert s["timeout"] == 8
    assert calls == []


def test_export_success_writes_and_shares(dirs):
    calls, shared = [], []
    state = {}
    s = run_export(_history(days_ago=1), 7, state, shared.append, build=_fake_build(calls),
                   ensure_permission=_granted, directories=dirs)

    assert s["type"] == "success"
    assert s["message"] == "PDF exported successfully! (1 entries from last 7 days)"
    assert calls == [(1, 7)]
    assert shared == [dirs[0] / "insulin_history_2026-03-01.pdf"]
    assert shared[0].read_bytes() == b"%PDF-1.4 fake"
    assert state[EXPORT_FLAG] is False


def test_export_ignored_while_running(dirs):
    calls = []
    state = {EXPORT_FLAG: True}
    s = run_export(_history(), 7, state, _no_share, build=_fake_build(calls),
                   ensure_permission=_granted, directories=dirs)
    assert s is None
    assert calls == []
    assert state[EXPORT_FLAG] is True


def test_export_build_failure_resets_flag(dirs):
    def broken_build(history, range_days):
        raise ExportError("Could not build report: no fonts")

    state = {}
    s = run_export(_history(), 7, state, _no_share, build=broken_build,
                   ensure_permission=_granted, directories=dirs)
    assert s["type"] == "error"
    assert s["message"] == "Export failed: Could not build report: no fonts"
    assert state[EXPORT_FLAG] is False
    assert not dirs[0].exists()


def test_export_share_failure(dirs):
    def broken_share(path):
        raise RuntimeError("dialog closed")

    s = run_export(_history(), 7, {}, broken_share, build=_fake_build([]),
                   ensure_permission=_granted, directories=dirs)
    assert s["message"] == "Could not share file. Please try again."


def test_write_report_file_falls_back(tmp_path):
    primary = tmp_path / "blocked"
    primary.write_text("not a directory")
    fallback = tmp_path / "cache"

    path = write_report_file(b"%PDF", "report.pdf", primary, fallback)
    assert path == fallback / "report.pdf"
    assert path.read_bytes() == b"%PDF"


def test_quota_status_messages():
    from storage import SaveOutcome

    assert quota_status(None) is None
    assert quota_status(SaveOutcome("ok", [])) is None

    degraded = quota_status(SaveOutcome("degraded", [], "Older history items were removed."))
    assert degraded["type"] == "warning"
    assert degraded["message"] == "Older history items were removed."
    assert degraded["timeout"] == 5

    fatal = quota_status(SaveOutcome("fatal", [], "Unable to save: storage is full."))
    assert fatal["type"] == "error"


def test_calculate_and_save_reports_degraded_save(tmp_path):
    repo = HistoryRepo(create_engine(f"sqlite:///{tmp_path / 'small.db'}"), max_payload_bytes=50)
    result, outcome = calculate_and_save(INPUTS, repo)
    assert result is not None
    assert quota_status(outcome)["type"] == "warning"
