from __future__ import annotations

import csv
from pathlib import Path
from typing import TextIO

from .models import CohortSeries

SERIES_HEADER = ["cohort", "bucket", "timestamp", "value"]


def _write_rows(f: TextIO, series: CohortSeries) -> None:
    writer = csv.writer(f)
    writer.writerow(SERIES_HEADER)
    for r in series.rows:
        writer.writerow([r.cohort, r.bucket, r.timestamp, "" if r.value is None else r.value])


def write_series_csv(dest: Path | TextIO, series: CohortSeries) -> None:
    if isinstance(dest, Path):
        with dest.open("w", newline="", encoding="utf-8") as f:
            _write_rows(f, series)
        return
    _write_rows(dest, series)


def render_series_png(path: Path, series: CohortSeries, *, title: str = "") -> None:
    """
    Stacked bars per cohort with a line for the bucket total. Cells without
    data are drawn as empty bars.
    """
    import matplotlib

    matplotlib.use("Agg")
    from matplotlib import pyplot

    x_vals = list(range(len(series.buckets)))
    bottoms = [0] * len(series.buckets)
    fig, ax = pyplot.subplots(figsize=(16, 7.5))
    try:
        cmap = pyplot.get_cmap("tab20")
        for n, cohort in enumerate(series.cohorts):
            heights = [v or 0 for v in series.column(cohort)]
            ax.bar(x_vals, heights, bottom=bottoms, width=0.9, label=cohort, color=cmap(n % 20))
            bottoms = [b + h for b, h in zip(bottoms, heights)]
        ax.step(x_vals, series.totals(), where="mid", color="black", linewidth=2)

        if series.interval == "month":
            ticks = [i for i, b in enumerate(series.buckets) if b.endswith("-01")]
            ax.set_xticks(ticks)
            ax.set_xticklabels([series.buckets[i][:4] for i in ticks], rotation=30, horizontalalignment="right")
        else:
            ax.set_xticks(x_vals)
            ax.set_xticklabels(series.buckets, rotation=30, horizontalalignment="right")
        ax.set_xlim(-0.5, len(x_vals) - 0.5)
        ax.set_ylabel(series.unit.capitalize())
        if title:
            ax.set_title(title)
        ax.grid(True, which="both", axis="y", alpha=0.3)
        ax.legend(loc="upper left", ncol=max(1, min(6, len(series.cohorts))), fontsize="small", frameon=False)
        fig.savefig(str(path), bbox_inches="tight", pad_inches=0.25)
    finally:
        pyplot.close(fig)
