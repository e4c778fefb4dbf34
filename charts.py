# charts.py
# Chart images for the PDF report. Every image is a fixed 800x400 px PNG on
# white: the PDF embedder mis-renders transparent backgrounds.
from io import BytesIO
from typing import Dict, List

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from config import REPORT

CHART_KINDS = ("line", "bar", "stacked_bar")


def _draw_line(ax, labels: List[str], datasets: List[Dict]) -> None:
    x = range(len(labels))
    for ds in datasets:
        ax.plot(x, ds["data"], color=ds["color"], marker="o", markersize=4, label=ds["label"])
        ax.fill_between(x, ds["data"], color=ds["color"], alpha=0.1)


def _draw_bars(ax, labels: List[str], datasets: List[Dict], stacked: bool) -> None:
    x = list(range(len(labels)))
    width = 0.8 if stacked else 0.8 / max(len(datasets), 1)
    bottom = [0.0] * len(labels)
    for i, ds in enumerate(datasets):
        if stacked:
            ax.bar(x, ds["data"], width, bottom=bottom, color=ds["color"], alpha=0.8, label=ds["label"])
            bottom = [b + v for b, v in zip(bottom, ds["data"])]
        else:
            offset = (i - (len(datasets) - 1) / 2) * width
            ax.bar([p + offset for p in x], ds["data"], width, color=ds["color"], alpha=0.8, label=ds["label"])


def render_chart(spec: Dict) -> bytes:
    """
    spec keys:
      kind: "line" | "bar" | "stacked_bar"
      title, y_label: str
      labels: list of x-axis labels
      datasets: [{"label", "data", "color"}]
      begin_at_zero: bool (default True)
    Returns PNG bytes.
    """
    kind = spec["kind"]
    if kind not in CHART_KINDS:
        raise ValueError(f"Unknown chart kind: {kind}")

    labels = list(spec["labels"])
    datasets = spec["datasets"]

    fig = plt.figure(
        figsize=(REPORT["chart_width_in"], REPORT["chart_height_in"]),
        dpi=REPORT["chart_dpi"],
        facecolor="white",
    )
    try:
        ax = fig.add_subplot(111)
        ax.set_facecolor("white")

        if kind == "line":
            _draw_line(ax, labels, datasets)
        else:
            _draw_bars(ax, labels, datasets, stacked=(kind == "stacked_bar"))

        ax.set_title(spec.get("title", ""), fontsize=14)
        ax.set_ylabel(spec.get("y_label", ""))
        ax.set_xticks(range(len(labels)))
        ax.set_xticklabels(labels, rotation=30, ha="right", fontsize=8)
        if spec.get("begin_at_zero", True):
            ax.set_ylim(bottom=0)
        ax.grid(axis="y", alpha=0.3)
        ax.legend(loc="upper left", fontsize=8)
        fig.tight_layout()

        buf = BytesIO()
        fig.savefig(buf, format="png", facecolor="white", transparent=False)
        return buf.getvalue()
    finally:
        plt.close(fig)
