"""Matplotlib rendering of the migration burndown chart."""

from __future__ import annotations

import io
import logging
from datetime import date
from typing import Sequence

from migration_dashboard.core.data_models import BurndownPoint

import matplotlib  # isort: skip

matplotlib.use("Agg")

import matplotlib.dates as mdates  # noqa: E402
import matplotlib.pyplot as plt  # noqa: E402
import matplotlib.ticker as mticker  # noqa: E402

logger = logging.getLogger(__name__)

_MONTHS_ABBR = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]


class _EnglishDateFormatter(mticker.Formatter):
    """Date formatter that always uses English abbreviated month names.

    Locale-dependent ``%b`` can produce characters the default font does
    not render.
    """

    def __call__(self, x: float, pos: int | None = None) -> str:
        dt = mdates.num2date(x)
        return f"{_MONTHS_ABBR[dt.month - 1]} {dt.day:02d}"


_LIGHT = {
    "outstanding": "#de350b",
    "migrated": "#36b37e",
    "target": "#505f79",
    "label_color": "#505f79",
    "grid": "#dfe1e6",
    "bg": "#ffffff",
    "face": "#ffffff",
    "legend_face": "#ffffff",
}

_DARK = {
    "outstanding": "#ff7452",
    "migrated": "#57d9a3",
    "target": "#b0bec5",
    "label_color": "#b0bec5",
    "grid": "#37474f",
    "bg": "#1e1e1e",
    "face": "#1e1e1e",
    "legend_face": "#263238",
}


def generate_burndown_chart(
    points: Sequence[BurndownPoint],
    *,
    target: date | None = None,
    dpi: int = 150,
    dark: bool = False,
) -> bytes | None:
    """Render outstanding vs. migrated counts over time as PNG bytes.

    Returns ``None`` if *points* is empty.
    """
    points = list(points)
    if not points:
        logger.debug("No burndown points; skipping chart")
        return None

    logger.debug("Rendering burndown chart: %d points, dark=%s, dpi=%d", len(points), dark, dpi)
    pal = _DARK if dark else _LIGHT

    fig, ax = plt.subplots(figsize=(7.2, 3.6), dpi=dpi)
    fig.patch.set_facecolor(pal["face"])
    ax.set_facecolor(pal["bg"])

    stamps = [p.timestamp for p in points]

    ax.step(
        stamps,
        [p.outstanding_count for p in points],
        where="post",
        color=pal["outstanding"],
        linewidth=1.8,
        label="Outstanding",
    )
    ax.step(
        stamps,
        [p.migrated_count for p in points],
        where="post",
        color=pal["migrated"],
        linewidth=1.5,
        linestyle="--",
        label="Migrated",
    )

    if target is not None:
        ax.axvline(target, color=pal["target"], linewidth=1.0, linestyle=":", label="Target")

    ax.set_ylabel("Assets", fontsize=8, color=pal["label_color"])
    ax.xaxis.set_major_formatter(_EnglishDateFormatter())
    ax.xaxis.set_major_locator(mdates.AutoDateLocator(minticks=3, maxticks=10))
    fig.autofmt_xdate(rotation=30, ha="right")
    ax.tick_params(labelsize=7, colors=pal["label_color"])
    ax.set_ylim(bottom=0)

    for spine in ax.spines.values():
        spine.set_color(pal["grid"])

    legend = ax.legend(fontsize=6, loc="upper right", framealpha=0.9, facecolor=pal["legend_face"])
    for text in legend.get_texts():
        text.set_color(pal["label_color"])

    ax.grid(axis="y", linewidth=0.3, color=pal["grid"])
    ax.set_axisbelow(True)
    fig.tight_layout()

    buf = io.BytesIO()
    fig.savefig(
        buf, format="png", dpi=dpi, bbox_inches="tight",
        facecolor=fig.get_facecolor(), edgecolor="none",
    )
    plt.close(fig)
    data = buf.getvalue()
    logger.debug("Chart rendered: %d bytes", len(data))
    return data
