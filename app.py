import logging
import time
from pathlib import Path

import streamlit as st
import pandas as pd
import matplotlib.pyplot as plt

from calculator import format_number
from config import APP, DATE_RANGES, DEFAULT_RANGE_DAYS, EXPORT, STATUS, UNITS
from permissions import (
    PermissionState,
    check_storage_permission,
    ensure_storage_permission,
    is_native_platform,
)
from report import history_frame
from storage import HistoryRepo, SettingsRepo, filter_by_range, group_by_day
from workflow import EXPORT_FLAG, calculate_and_save, export_dirs, quota_status, run_export, status

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

st.set_page_config(page_title=APP["title"], layout="centered")


@st.cache_resource
def _repos():
    return HistoryRepo(), SettingsRepo()

history_repo, settings_repo = _repos()

INPUT_FIELDS = ["current_bg", "target_bg", "carbs", "carb_ratio", "correction_factor"]

# -------------------------
# First run: load history + last-used settings
# -------------------------
if "history" not in st.session_state:
    st.session_state["history"] = history_repo.all()
    st.session_state["unit"] = UNITS["MGDL"]
    for field in INPUT_FIELDS:
        st.session_state.setdefault(field, "")

    saved = settings_repo.load()
    if saved:
        if saved.get("unit") in UNITS.values():
            st.session_state["unit"] = saved["unit"]
        for field in ("target_bg", "carb_ratio", "correction_factor"):
            st.session_state[field] = str(saved.get(field) or "")

    if is_native_platform():
        st.session_state["permission_state"] = check_storage_permission(export_dirs()[0])

# -------------------------
# Helpers
# -------------------------
def _set_status(s, tab: str = "history") -> None:
    if s is None:
        return
    st.session_state["status"] = dict(s, tab=tab, expires_at=time.time() + s["timeout"])

def _show_status(tab: str = "history") -> None:
    s = st.session_state.get("status")
    if not s or s["tab"] != tab:
        return
    if time.time() > s["expires_at"]:
        st.session_state.pop("status", None)
        return
    if s["type"] == "success":
        st.success(s["message"])
    elif s["type"] == "warning":
        st.warning(s["message"])
    else:
        st.error(s["message"])

def _share(path: Path) -> None:
    # The download button below plays the role of the share sheet
    st.session_state["last_export"] = {"name": path.name, "path": str(path), "data": path.read_bytes()}

def _save_settings_if_changed() -> None:
    current = {
        "unit": st.session_state["unit"],
        "target_bg": st.session_state["target_bg"],
        "carb_ratio": st.session_state["carb_ratio"],
        "correction_factor": st.session_state["correction_factor"],
    }
    if current != st.session_state.get("saved_settings"):
        settings_repo.save(current)
        st.session_state["saved_settings"] = current

# -------------------------
# Header
# -------------------------
st.title(APP["title"])
st.radio("Unit", list(UNITS.values()), key="unit", horizontal=True)

tabs = st.tabs(["Calculate", "History"])

# -------------------------
# Calculate
# -------------------------
with tabs[0]:
    unit = st.session_state["unit"]
    c1, c2 = st.columns(2)
    with c1:
        st.text_input(f"Current BG ({unit})", key="current_bg")
        st.text_input("Carbs (g)", key="carbs")
        st.text_input(f"Correction factor ({unit} per unit)", key="correction_factor")
    with c2:
        st.text_input(f"Target BG ({unit})", key="target_bg")
        st.text_input("Carb ratio (g per unit)", key="carb_ratio")

    if st.button("Calculate", type="primary"):
        inputs = {field: st.session_state[field] for field in INPUT_FIELDS}
        inputs["unit"] = unit
        result, outcome = calculate_and_save(inputs, history_repo)
        if result is not None:
            st.session_state["result"] = result
            st.session_state["history"] = outcome.history
            _set_status(quota_status(outcome), tab="calculate")

    _show_status("calculate")

    result = st.session_state.get("result")
    if result:
        st.subheader(f"Total: {format_number(result['total_dose'])} Units")
        st.caption(
            f"Carb Dose: {format_number(result['carb_dose'])} • "
            f"Corr. Dose: {format_number(result['correction_dose'])}"
        )

_save_settings_if_changed()

# -------------------------
# History
# -------------------------
with tabs[1]:
    history = st.session_state["history"]

    if is_native_platform() and st.session_state.get("permission_state") != PermissionState.GRANTED:
        st.warning("📁 Storage Permission Required: allow file access to export your history as PDF")
        if st.button("Grant Permission"):
            perm = ensure_storage_permission(export_dirs()[0], auto_request=True)
            st.session_state["permission_state"] = perm["state"]
            if perm["granted"]:
                _set_status(status("success", "Storage permission granted!"))
            else:
                _set_status(status(
                    "error",
                    f"Permission denied. Please enable it in {APP['settings_path_hint']}",
                    STATUS["permission"],
                ))

    range_days = st.radio(
        "Show data for:",
        DATE_RANGES,
        index=DATE_RANGES.index(DEFAULT_RANGE_DAYS),
        format_func=lambda d: f"{d} days",
        horizontal=True,
    )

    b1, b2 = st.columns(2)
    with b1:
        exporting = st.session_state.get(EXPORT_FLAG, False)
        if st.button("Exporting..." if exporting else "Export PDF", disabled=exporting or not history):
            st.session_state.pop("last_export", None)
            with st.spinner("Building PDF..."):
                _set_status(run_export(history, range_days, st.session_state, _share))
    with b2:
        confirm = st.checkbox("Yes, clear all history", disabled=not history)
        if st.button("Clear", disabled=not (history and confirm)):
            st.session_state["history"] = history_repo.clear()
            st.session_state.pop("last_export", None)
            _set_status(status("success", "History cleared"))
            st.rerun()

    _show_status()

    export = st.session_state.get("last_export")
    if export:
        st.caption(f"{EXPORT['share_text']} ({export['path']})")
        st.download_button(
            EXPORT["share_dialog_title"],
            data=export["data"],
            file_name=export["name"],
            mime="application/pdf",
        )

    filtered = filter_by_range(history, range_days)
    if not history:
        st.info("No history yet.")
    elif not filtered:
        st.info(f"No entries in the last {range_days} days.")
    else:
        df = history_frame(list(reversed(filtered)))
        st.write("### Trend")
        fig = plt.figure()
        plt.plot(df["timestamp"], df["total_dose"], marker="o")
        plt.ylabel("Units")
        plt.xticks(rotation=30)
        st.pyplot(fig)
        plt.close(fig)

        for day, items in group_by_day(filtered):
            st.markdown(f"#### {day:%A, %B} {day.day}, {day.year}")
            rows = history_frame(items)
            st.dataframe(
                pd.DataFrame({
                    "Time": rows["time"],
                    "Total (u)": rows["total_dose"],
                    "BG": rows["current_bg"],
                    "Carbs (g)": rows["carbs"],
                }),
                hide_index=True,
                use_container_width=True,
            )

# -------------------------
# Footer
# -------------------------
st.divider()
st.caption(f"⚠️ Disclaimer: {APP['disclaimer']}")

with st.expander("Privacy Policy", expanded=False):
    st.markdown(
        f"""
_Last Updated: {APP['privacy_updated']}_

**1. Data Collection and Usage.** We do not collect, store, or transmit any of your personal health data to external servers.

**2. Local Storage.** Blood glucose readings, carbohydrate inputs and insulin ratios are stored locally in this app's own database.

**3. PDF Export.** Reports are generated locally. You have full control over how and where the file is shared.
        """
    )
