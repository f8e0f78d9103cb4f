from __future__ import annotations

import logging
from typing import Dict, Optional

import numpy as np

from va_profile import ElevationProfile


SEGMENT_COLORS: Dict[str, str] = {
    "climb": "tab:red",
    "descent": "tab:blue",
    "flat": "tab:green",
}
LINE_COLOR = "0.2"

_MATPLOTLIB_STYLE_READY = False


def _ensure_matplotlib_style(plt) -> None:
    global _MATPLOTLIB_STYLE_READY
    if not _MATPLOTLIB_STYLE_READY:
        try:
            plt.style.use("ggplot")
        except OSError:
            logging.debug("ggplot style unavailable; using matplotlib defaults")
        _MATPLOTLIB_STYLE_READY = True


def plot_elevation_profile(
    profile: ElevationProfile,
    out_png: str,
    title: Optional[str] = None,
    annotate_gradients: bool = True,
) -> bool:
    """Render distance vs elevation, shaded by segment type. Returns False when nothing was drawn."""
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for plotting. Install with: pip install matplotlib") from exc

    _ensure_matplotlib_style(plt)

    if len(profile.points) < 2:
        logging.warning("Profile has fewer than two points; skipping plot generation.")
        return False

    dist = np.asarray([p.distance for p in profile.points], dtype=np.float64)
    elev = np.asarray([p.elevation for p in profile.points], dtype=np.float64)
    floor = float(np.min(elev)) - 0.05 * max(1.0, float(np.ptp(elev)))

    fig, ax = plt.subplots(figsize=(12, 5))
    seen = set()
    for seg in profile.segments:
        lo = max(seg.start_index - 1, 0)
        hi = seg.end_index + 1
        color = SEGMENT_COLORS.get(seg.type, "0.7")
        label = seg.type if seg.type not in seen else None
        seen.add(seg.type)
        ax.fill_between(dist[lo:hi], floor, elev[lo:hi], color=color, alpha=0.35, linewidth=0, label=label)
        if annotate_gradients and seg.length >= 1.0:
            mid = (seg.start_distance + seg.end_distance) / 2.0
            y = (seg.start_elevation + seg.end_elevation) / 2.0
            ax.annotate(
                f"{seg.avg_gradient:.1f}%",
                (mid, y),
                textcoords="offset points",
                xytext=(0, 8),
                ha="center",
                fontsize=8,
                color="black",
            )

    ax.plot(dist, elev, color=LINE_COLOR, linewidth=1.4)
    ax.set_xlim(float(dist[0]), float(dist[-1]))
    ax.set_ylim(bottom=floor)
    ax.set_xlabel("Distance (km)")
    ax.set_ylabel("Elevation (m)")
    stats = profile.stats
    subtitle = f"+{stats.elevation_gain:.0f} m / -{stats.elevation_loss:.0f} m, side {profile.metadata.side}"
    ax.set_title(f"{title}\n{subtitle}" if title else subtitle)
    ax.legend(loc="upper left")
    fig.tight_layout()
    fig.savefig(out_png, dpi=150)
    plt.close(fig)
    logging.info("Wrote plot: %s", out_png)
    return True
