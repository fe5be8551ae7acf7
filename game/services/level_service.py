"""Level progression from accumulated experience points."""

import math

from models import LevelInfo

BASE_LEVEL_XP = 100
LEVEL_EXPONENT = 1.5


def xp_for_level(level: int) -> int:
    """Total XP needed to reach a level: 100 * (level - 1) ^ 1.5."""
    if level <= 1:
        return 0
    return math.floor(BASE_LEVEL_XP * (level - 1) ** LEVEL_EXPONENT)


def level_progress(total_xp: int) -> LevelInfo:
    """Level for a total XP amount and the 0-1 progress towards the next one."""
    total_xp = max(0, total_xp)

    level = 1
    current_level_xp = 0
    while total_xp >= xp_for_level(level + 1):
        level += 1
        current_level_xp = xp_for_level(level)

    next_level_xp = xp_for_level(level + 1)
    needed = next_level_xp - current_level_xp
    progress = (total_xp - current_level_xp) / needed if needed > 0 else 0.0

    return LevelInfo(
        level=level,
        current_level_xp=current_level_xp,
        next_level_xp=next_level_xp,
        progress=min(1.0, max(0.0, progress)),
    )


def level_for_xp(total_xp: int) -> int:
    return level_progress(total_xp).level
