from __future__ import annotations

import logging
import math
from typing import List, Optional, Tuple

from models import Difficulty, ScheduleDay, TaskSpec, TaskType

logger = logging.getLogger(__name__)

Ratios = Tuple[float, float, float]  # easy, medium, hard

DEFAULT_CURVE: List[Ratios] = [(0.7, 0.3, 0.0), (0.2, 0.6, 0.2), (0.0, 0.3, 0.7)]
THIRD_SHIFT = 0.2


def round_half_up(value: float) -> int:
    # 7.4999999999 from float products must still round to 8
    return math.floor(round(value, 9) + 0.5)


def base_ratios_for_score(score: float) -> Ratios:
    if score >= 80:
        return (0.1, 0.3, 0.6)
    if score >= 60:
        return (0.2, 0.5, 0.3)
    return (0.5, 0.4, 0.1)


def curve_for_score(score: Optional[float] = None) -> List[Ratios]:
    if score is None:
        return list(DEFAULT_CURVE)
    easy, medium, hard = base_ratios_for_score(score)
    return [
        (easy + THIRD_SHIFT, medium, max(0.0, hard - THIRD_SHIFT)),
        (easy, medium, hard),
        (max(0.0, easy - THIRD_SHIFT), medium, hard + THIRD_SHIFT),
    ]


def split_thirds(schedule: List[ScheduleDay]) -> List[List[ScheduleDay]]:
    n = len(schedule)
    return [schedule[: n // 3], schedule[n // 3 : 2 * n // 3], schedule[2 * n // 3 :]]


def target_counts(n: int, ratios: Ratios) -> Tuple[int, int, int]:
    easy = min(n, round_half_up(n * ratios[0]))
    medium = min(n - easy, round_half_up(n * ratios[1]))
    return easy, medium, n - easy - medium


def relabel(specs: List[TaskSpec], ratios: Ratios) -> None:
    easy, medium, _ = target_counts(len(specs), ratios)
    ordered = sorted(specs, key=lambda s: s.difficulty.rank)
    for i, spec in enumerate(ordered):
        if i < easy:
            spec.difficulty = Difficulty.EASY
        elif i < easy + medium:
            spec.difficulty = Difficulty.MEDIUM
        else:
            spec.difficulty = Difficulty.HARD


def apply_difficulty_curve(schedule: List[ScheduleDay], diagnostic_score: Optional[float] = None) -> List[Ratios]:
    """Relabel non-review specs so each third of the timeline follows its ratio.

    Returns the ratios used, first third to last.
    """
    curve = curve_for_score(diagnostic_score)
    for third, ratios in zip(split_thirds(schedule), curve):
        specs = [s for day in third for s in day.tasks if s.task_type != TaskType.REVIEW]
        if not specs:
            continue
        relabel(specs, ratios)
        logger.debug("Relabelled %d tasks with ratios %s", len(specs), ratios)
    return curve
