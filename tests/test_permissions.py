import os
import sys

# Ensure project root is on sys.path so tests can import local modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from permissions import (
    PermissionState,
    check_storage_permission,
    ensure_storage_permission,
    permission_error_message,
)


def test_web_platform_always_granted(tmp_path, monkeypatch):
    monkeypatch.delenv("INSULIN_PLATFORM", raising=False)
    missing = tmp_path / "nope"
    assert check_storage_permission(missing) == PermissionState.GRANTED
    assert ensure_storage_permission(missing)["granted"] is True
    assert not missing.exists()


def test_native_missing_directory_is_requested(tmp_path, monkeypatch):
    monkeypatch.setenv("INSULIN_PLATFORM", "native")
    target = tmp_path / "Documents"

    assert check_storage_permission(target) == PermissionState.PROMPT
    assert ensure_storage_permission(target, auto_request=False)["granted"] is False

    result = ensure_storage_permission(target)
    assert result == {"granted": True, "state": PermissionState.GRANTED, "should_show_rationale": False}
    assert target.is_dir()


def test_native_file_in_the_way_is_denied(tmp_path, monkeypatch):
    monkeypatch.setenv("INSULIN_PLATFORM", "native")
    target = tmp_path / "Documents"
    target.write_text("x")

    assert check_storage_permission(target) == PermissionState.DENIED
    result = ensure_storage_permission(target)
    assert result["granted"] is False
    assert result["state"] == PermissionState.DENIED


def test_permission_error_messages():
    assert "denied" in permission_error_message(PermissionState.DENIED)
    assert "needed" in permission_error_message(PermissionState.PROMPT_WITH_RATIONALE)
    assert "Limited" in permission_error_message(PermissionState.LIMITED)
    assert "Unable to access storage" in permission_error_message("unknown")
