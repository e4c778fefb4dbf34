# report.py
"""PDF export of a filtered slice of the calculation history.

``build_report`` takes newest-first history items (already filtered to the
selected range, never empty), renders four charts one at a time through a
chart renderer and lays them out with the detail table in a PDF.
"""
import logging
from datetime import datetime
from io import BytesIO
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Image, PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from calculator import format_number, unit_label
from charts import render_chart
from config import CHART_COLORS, REPORT
from errors import ExportError
from storage import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

FRAME_COLUMNS = [
    "timestamp", "label", "date", "time", "current_bg", "unit",
    "carbs", "total_dose", "carb_dose", "correction_dose",
]
TABLE_HEADER = ["Date", "Time", "BG", "Carbs", "Total Dose"]


def history_frame(items: List[Dict]) -> pd.DataFrame:
    """One row per history item, in the order given. Doses are display-rounded."""
    rows = []
    for item in items:
        inputs = item.get("inputs") or {}
        result = item.get("result") or {}
        moment = parse_timestamp(item["timestamp"]).astimezone()
        rows.append({
            "timestamp": moment,
            "label": f"{moment:%b} {moment.day}",
            "date": moment.strftime("%Y-%m-%d"),
            "time": moment.strftime("%H:%M"),
            "current_bg": inputs.get("current_bg"),
            "unit": unit_label(inputs.get("unit")),
            "carbs": inputs.get("carbs"),
            "total_dose": format_number(result.get("total_dose", 0.0)),
            "carb_dose": format_number(result.get("carb_dose", 0.0)),
            "correction_dose": format_number(result.get("correction_dose", 0.0)),
        })
    frame = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    frame["current_bg"] = pd.to_numeric(frame["current_bg"], errors="coerce")
    frame["carbs"] = pd.to_numeric(frame["carbs"], errors="coerce")
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
    return frame


def chart_specs(frame: pd.DataFrame) -> List[Dict]:
    labels = frame["label"].tolist()
    # Units are not reconciled across entries, the first one labels the axis
    bg_unit = frame["unit"].iloc[0] if len(frame) else unit_label(None)

    def series(column: str) -> List[float]:
        return frame[column].fillna(0.0).astype(float).tolist()

    return [
        {
            "kind": "line",
            "title": "Total Insulin Dose Trend",
            "y_label": "Units",
            "labels": labels,
            "datasets": [{"label": "Total Insulin Dose (units)", "data": series("total_dose"), "color": CHART_COLORS["total"]}],
        },
        {
            "kind": "line",
            "title": "Blood Glucose Levels",
            "y_label": bg_unit,
            "labels": labels,
            "begin_at_zero": False,
            "datasets": [{"label": f"Blood Glucose ({bg_unit})", "data": series("current_bg"), "color": CHART_COLORS["glucose"]}],
        },
        {
            "kind": "stacked_bar",
            "title": "Dose Breakdown: Carb vs Correction",
            "y_label": "Units",
            "labels": labels,
            "datasets": [
                {"label": "Carb Dose", "data": series("carb_dose"), "color": CHART_COLORS["carb_dose"]},
                {"label": "Correction Dose", "data": series("correction_dose"), "color": CHART_COLORS["correction_dose"]},
            ],
        },
        {
            "kind": "bar",
            "title": "Carbohydrate Intake",
            "y_label": "Grams",
            "labels": labels,
            "datasets": [{"label": "Carbohydrate Intake (grams)", "data": series("carbs"), "color": CHART_COLORS["carb_intake"]}],
        },
    ]


def _fmt(value) -> str:
    return "" if pd.isna(value) else f"{value:g}"


def table_rows(frame: pd.DataFrame) -> List[List[str]]:
    return [
        [
            row.date,
            row.time,
            f"{_fmt(row.current_bg)} {row.unit}",
            f"{_fmt(row.carbs)}g",
            f"{row.total_dose} u",
        ]
        for row in frame.itertuples(index=False)
    ]


def report_filename(now: Optional[datetime] = None) -> str:
    return f"{REPORT['filename_prefix']}{(now or utcnow()):%Y-%m-%d}.pdf"


def _assemble(images: List[bytes], frame: pd.DataFrame, range_days: int, now: datetime) -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=A4,
        leftMargin=10 * mm, rightMargin=10 * mm, topMargin=14 * mm, bottomMargin=14 * mm,
        title=REPORT["title"],
    )
    styles = getSampleStyleSheet()
    # frame padding is 6pt per side
    chart_w = doc.width - 12
    chart_h = chart_w / 2

    def chart(png: bytes) -> Image:
        return Image(BytesIO(png), width=chart_w, height=chart_h)

    generated = now.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    story = [
        Paragraph(REPORT["title"], styles["Heading1"]),
        Paragraph(f"Generated: {generated}", styles["Normal"]),
        Paragraph(f"Date Range: Last {range_days} days ({len(frame)} entries)", styles["Normal"]),
        Spacer(1, 6 * mm),
        # Platypus moves the second chart to a new page if it does not fit
        chart(images[0]),
        Spacer(1, 3 * mm),
        chart(images[1]),
        PageBreak(),
        chart(images[2]),
        Spacer(1, 3 * mm),
        chart(images[3]),
        PageBreak(),
        Paragraph(REPORT["table_title"], styles["Heading2"]),
    ]

    table = Table([TABLE_HEADER] + table_rows(frame), repeatRows=1, hAlign="LEFT")
    r, g, b = REPORT["table_header_rgb"]
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.Color(r / 255.0, g / 255.0, b / 255.0)),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), REPORT["table_font_size"]),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f2f2f2")]),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ("LEFTPADDING", (0, 0), (-1, -1), 6),
    ]))
    story.append(table)

    doc.build(story)
    return buf.getvalue()


def build_report(
    history: List[Dict],
    range_days: int,
    render: Callable[[Dict], bytes] = render_chart,
    now: Optional[datetime] = None,
) -> Tuple[bytes, str]:
    """Returns (pdf_bytes, filename). Raises ExportError on any failure."""
    if not history:
        raise ValueError("build_report needs at least one history item")
    now = now or utcnow()

    try:
        frame = history_frame(list(reversed(history)))
        images = []
        # One figure alive at a time
        for spec in chart_specs(frame):
            images.append(render(spec))
        pdf = _assemble(images, frame, range_days, now)
    except Exception as exc:
        raise ExportError(f"Could not build report: {exc}") from exc

    logger.info("Built report with %d entries (%d bytes)", len(frame), len(pdf))
    return pdf, report_filename(now)
