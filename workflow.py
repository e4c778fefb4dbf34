# workflow.py
"""Glue between the UI and the core modules.

Nothing here touches Streamlit: the UI passes in its session state (any
mutable mapping) and a ``share`` callable, and gets back status dicts of
the form {"type": "success" | "error", "message": str, "timeout": seconds}.
"""
import os
import logging
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List, Mapping, MutableMapping, Optional, Tuple

from calculator import calculate_dose
from config import APP, EXPORT, STATUS
from errors import ExportError
from permissions import PermissionState, ensure_storage_permission, permission_error_message
from report import build_report
from storage import HistoryRepo, SaveOutcome, filter_by_range

logger = logging.getLogger(__name__)

EXPORT_FLAG = "is_exporting"


def status(kind: str, message: str, timeout: int = STATUS["short"]) -> Dict:
    return {"type": kind, "message": message, "timeout": timeout}


def calculate_and_save(inputs: Mapping, repo: HistoryRepo) -> Tuple[Optional[Dict], Optional[SaveOutcome]]:
    """Invalid input is a silent no-op: (None, None), nothing is recorded."""
    result = calculate_dose(inputs)
    if result is None:
        return None, None
    return result, repo.append(inputs, result)


def quota_status(outcome: Optional[SaveOutcome]) -> Optional[Dict]:
    """Status for a degraded or fatal save, None when the save went through."""
    if outcome is None or outcome.status == "ok":
        return None
    kind = "warning" if outcome.status == "degraded" else "error"
    return status(kind, outcome.message, STATUS["export"])


def export_dirs() -> Tuple[Path, Path]:
    primary = os.getenv(EXPORT["primary_dir_env"], "").strip()
    fallback = os.getenv(EXPORT["fallback_dir_env"], "").strip()
    return (
        Path(primary) if primary else Path.home() / "Documents",
        Path(fallback) if fallback else Path(tempfile.gettempdir()) / "insulin_calc",
    )


def write_report_file(data: bytes, filename: str, primary: Path, fallback: Path) -> Path:
    try:
        primary.mkdir(parents=True, exist_ok=True)
        path = primary / filename
        path.write_bytes(data)
        logger.info("PDF saved to %s", path)
        return path
    except OSError as exc:
        logger.warning("Could not save to %s, trying %s: %s", primary, fallback, exc)

    fallback.mkdir(parents=True, exist_ok=True)
    path = fallback / filename
    path.write_bytes(data)
    logger.info("PDF saved to %s", path)
    return path


@contextmanager
def exporting(state: MutableMapping):
    """Yields False when an export is already running; the flag is always reset."""
    if state.get(EXPORT_FLAG):
        yield False
        return
    state[EXPORT_FLAG] = True
    try:
        yield True
    finally:
        state[EXPORT_FLAG] = False


def export_error_message(exc: Exception) -> str:
    text = str(exc)
    if isinstance(exc, PermissionError) or "permission" in text.lower():
        return "Permission denied. Please grant storage access in settings."
    if "share" in text.lower():
        return "Could not share file. Please try again."
    return f"Export failed: {text}" if text else "Failed to export PDF"


def permission_status(result: Mapping) -> Dict:
    message = permission_error_message(result["state"])
    if result["state"] == PermissionState.DENIED:
        message += f"\n\nTo enable: Go to {APP['settings_path_hint']}"
    return status("error", message, STATUS["permission"])


def run_export(
    history: List[Dict],
    range_days: int,
    state: MutableMapping,
    share: Callable[[Path], None],
    build: Callable = build_report,
    write: Callable = write_report_file,
    ensure_permission: Callable = ensure_storage_permission,
    directories: Optional[Tuple[Path, Path]] = None,
) -> Optional[Dict]:
    """
    Permission -> filter -> charts + PDF -> file -> share.
    Returns None if an export is already in progress.
    """
    with exporting(state) as acquired:
        if not acquired:
            logger.info("Export already in progress, ignoring")
            return None

        if not history:
            return status("error", "No history to export")

        primary, fallback = directories or export_dirs()
        try:
            permission = ensure_permission(primary, auto_request=True)
            if not permission["granted"]:
                logger.info("Storage permission not granted: %s", permission["state"])
                return permission_status(permission)

            filtered = filter_by_range(history, range_days)
            if not filtered:
                return status("error", f"No data in the last {range_days} days")

            pdf, filename = build(filtered, range_days)
            path = write(pdf, filename, primary, fallback)
            try:
                share(path)
            except Exception as exc:
                raise ExportError(f"Could not share file: {exc}") from exc
        except Exception as exc:
            logger.exception("Error exporting PDF")
            return status("error", export_error_message(exc), STATUS["export"])

        return status(
            "success",
            f"PDF exported successfully! ({len(filtered)} entries from last {range_days} days)",
            STATUS["export"],
        )
