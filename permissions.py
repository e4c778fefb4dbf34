# permissions.py
# Storage access for PDF export. On the web platform there is nothing to
# ask for; natively the export directory has to exist (or be creatable)
# and be writable.
import os
import logging
from pathlib import Path
from typing import Dict

from config import EXPORT

logger = logging.getLogger(__name__)


class PermissionState:
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"
    PROMPT_WITH_RATIONALE = "prompt-with-rationale"
    LIMITED = "limited"


def is_native_platform() -> bool:
    return os.getenv(EXPORT["platform_env"], "web").strip().lower() == "native"


def check_storage_permission(directory) -> str:
    if not is_native_platform():
        return PermissionState.GRANTED
    try:
        path = Path(directory)
        if not path.exists():
            return PermissionState.PROMPT
        if path.is_dir() and os.access(path, os.W_OK):
            return PermissionState.GRANTED
        return PermissionState.DENIED
    except OSError:
        logger.exception("Error checking storage permission")
        return PermissionState.PROMPT


def request_storage_permission(directory) -> Dict:
    if not is_native_platform():
        return {"granted": True, "state": PermissionState.GRANTED}

    logger.info("Requesting storage access for %s", directory)
    try:
        Path(directory).mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.exception("Error requesting storage permission")
        return {"granted": False, "state": PermissionState.DENIED}

    state = PermissionState.GRANTED if os.access(directory, os.W_OK) else PermissionState.DENIED
    return {"granted": state == PermissionState.GRANTED, "state": state}


def ensure_storage_permission(directory, auto_request: bool = True) -> Dict:
    """Returns {"granted", "state", "should_show_rationale"}."""
    state = check_storage_permission(directory)
    if state == PermissionState.GRANTED:
        return {"granted": True, "state": state, "should_show_rationale": False}

    if not auto_request:
        return {
            "granted": False,
            "state": state,
            "should_show_rationale": state == PermissionState.PROMPT_WITH_RATIONALE,
        }

    result = request_storage_permission(directory)
    return {
        "granted": result["granted"],
        "state": result["state"],
        "should_show_rationale": result["state"] == PermissionState.PROMPT_WITH_RATIONALE,
    }


def permission_error_message(state: str) -> str:
    if state == PermissionState.DENIED:
        return "Storage permission denied. Please enable it in your device settings to save files."
    if state == PermissionState.PROMPT_WITH_RATIONALE:
        return "Storage permission is needed to save PDF files to your device."
    if state == PermissionState.LIMITED:
        return "Limited storage access. Some features may not work properly."
    return "Unable to access storage. Please check your device settings."
