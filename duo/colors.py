"""Tag colors: the fixed palette of the tag form and random pastels."""

from __future__ import annotations

import random

PALETTE: tuple[str, ...] = (
    "#EF4444",  # red
    "#F97316",  # orange
    "#F59E0B",  # amber
    "#84CC16",  # lime
    "#10B981",  # emerald
    "#06B6D4",  # cyan
    "#3B82F6",  # blue
    "#6366F1",  # indigo
    "#8B5CF6",  # violet
    "#EC4899",  # pink
)

DEFAULT_COLOR = PALETTE[0]


def generate_pastel_color(rng: random.Random | None = None) -> str:
    """Return ``hsl(H, S%, L%)`` with S in [50, 70) and L in [75, 85)."""
    rng = rng or random
    hue = int(rng.random() * 360)
    saturation = int(50 + rng.random() * 20)
    lightness = int(75 + rng.random() * 10)
    return f"hsl({hue}, {saturation}%, {lightness}%)"
