"""Level curve and progress-bar math.

Level is a pure function of total XP: ``max(1, floor(sqrt(xp / 100)))``.
Level L (L >= 2) starts at ``100 * L**2`` XP; level 1 covers everything below
400 XP, so the bar shown for level 1 runs from 0 to 400.
"""

from __future__ import annotations

import math

XP_PER_LEVEL_UNIT = 100


def compute_level(total_xp: int) -> int:
    """Level for a total XP amount. Negative XP is treated as zero."""
    xp = max(0, total_xp)
    return max(1, math.isqrt(xp // XP_PER_LEVEL_UNIT))


def level_floor(level: int) -> int:
    """Minimum total XP at which ``level`` is reached."""
    if level <= 1:
        return 0
    return XP_PER_LEVEL_UNIT * level * level


def level_info(total_xp: int) -> dict:
    """Level plus progress towards the next one, consistent with compute_level()."""
    xp = max(0, total_xp)
    level = compute_level(xp)
    floor = level_floor(level)
    next_level_xp = level_floor(level + 1)
    return {
        "level": level,
        "xp_into_level": xp - floor,
        "xp_for_level": next_level_xp - floor,
        "next_level_xp": next_level_xp,
    }
