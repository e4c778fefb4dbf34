# config.py
# App constants + storage/report settings (tweak here, not in the modules)

UNITS = {
    "MGDL": "mg/dL",
    "MMOL": "mmol/L",
}

# mmol/L * 18.0182 = mg/dL (reference only, the dose formula never converts)
MGDL_PER_MMOL = 18.0182

STORAGE = {
    "history_key": "insulin_calc_history",
    "settings_key": "insulin_calc_settings",
    # Prevent unlimited growth
    "max_history_items": 1000,
    # Roughly what a browser gives localStorage per origin
    "max_payload_bytes": 5 * 1024 * 1024,
    "sqlite_url": "sqlite:///data.db",
}

DATE_RANGES = [3, 7, 14, 30, 90]
DEFAULT_RANGE_DAYS = 30

REPORT = {
    "title": "Insulin Dose History Report",
    "table_title": "Detailed History",
    "filename_prefix": "insulin_history_",
    # Chart images are 800x400 px on a white background
    "chart_width_in": 8,
    "chart_height_in": 4,
    "chart_dpi": 100,
    "table_header_rgb": (41, 128, 185),
    "table_font_size": 9,
}

CHART_COLORS = {
    "total": "#4f46e5",
    "glucose": "#ef4444",
    "carb_dose": "#10b981",
    "correction_dose": "#f59e0b",
    "carb_intake": "#8b5cf6",
}

EXPORT = {
    "primary_dir_env": "INSULIN_EXPORT_DIR",
    "fallback_dir_env": "INSULIN_EXPORT_FALLBACK_DIR",
    "platform_env": "INSULIN_PLATFORM",
    "share_title": "Save PDF",
    "share_text": "Save your insulin dosage history",
    "share_dialog_title": "Save PDF to Files",
}

# How long status messages stay on screen (seconds)
STATUS = {
    "short": 3,
    "export": 5,
    "permission": 8,
}

APP = {
    "title": "Insulin Calc",
    "disclaimer": (
        "This app is for informational purposes only. NOT medical advice. "
        "Always consult a healthcare professional."
    ),
    "privacy_updated": "December 2025",
    "settings_path_hint": "Settings → Apps → Insulin Calculator → Permissions → Storage",
}
