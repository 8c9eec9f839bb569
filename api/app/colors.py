from typing import Iterable

# 24 colors, ordered so that neighbours are easy to tell apart.
LIST_COLORS = [
    "#ef4444",
    "#f97316",
    "#f59e0b",
    "#eab308",
    "#84cc16",
    "#22c55e",
    "#10b981",
    "#14b8a6",
    "#06b6d4",
    "#0ea5e9",
    "#3b82f6",
    "#6366f1",
    "#8b5cf6",
    "#a855f7",
    "#d946ef",
    "#ec4899",
    "#f43f5e",
    "#e11d48",
    "#dc2626",
    "#2563eb",
    "#7c3aed",
    "#059669",
    "#ca8a04",
    "#0891b2",
]


def next_color(used_colors: Iterable[str]) -> str:
    """First palette color not in use; cycles through the palette when all are taken."""
    used = [str(color).lower() for color in used_colors if color]
    used_set = set(used)
    for color in LIST_COLORS:
        if color not in used_set:
            return color
    return LIST_COLORS[len(used) % len(LIST_COLORS)]
