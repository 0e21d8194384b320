"""Iris coordinate frame shared by the detection prompts and output validation.

Angular position is a "minute" on a clock face: 0 at 12:00 (top), increasing
clockwise, 0..59. Radial position is one of 12 concentric rings chosen by the
normalized radius rNorm = distance(pupil edge -> feature) / Rref, where Rref is
the pupil-edge to iris-edge distance along the minute-15 ray.
"""
from __future__ import annotations
from typing import List, Tuple

MINUTE_MIN = 0
MINUTE_MAX = 59
RING_MIN = 1
RING_MAX = 12

# (ring, lower bound inclusive, upper bound exclusive); ring 12 includes 1.00
RING_BANDS: Tuple[Tuple[int, float, float], ...] = (
    (1, 0.00, 0.08),
    (2, 0.08, 0.16),
    (3, 0.16, 0.24),
    (4, 0.24, 0.32),
    (5, 0.32, 0.40),
    (6, 0.40, 0.48),
    (7, 0.48, 0.56),
    (8, 0.56, 0.64),
    (9, 0.64, 0.72),
    (10, 0.72, 0.80),
    (11, 0.80, 0.90),
    (12, 0.90, 1.00),
)


def format_ring_map(per_line: int = 4) -> str:
    """Render the band table as the compact text used inside prompts."""
    items = [f"{ring}:{lo:.2f}-{hi:.2f}" for ring, lo, hi in RING_BANDS]
    lines: List[str] = []
    for i in range(0, len(items), per_line):
        lines.append(", ".join(items[i : i + per_line]))
    return ",\n".join(lines)


def minute_in_range(v: int) -> bool:
    return MINUTE_MIN <= v <= MINUTE_MAX


def ring_in_range(v: int) -> bool:
    return RING_MIN <= v <= RING_MAX
