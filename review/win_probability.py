"""Win-probability model.

Converts engine scores into win probabilities and measures how much win
probability a move gives away.
"""

from __future__ import annotations

import math

from review.thresholds import (
    FLIPPED_MATE_EPL,
    LONGER_MATE_EPL_CAP,
    LONGER_MATE_PENALTY,
    LOST_MATE_EPL_FLOOR,
    MATE_THRESHOLD,
    WIN_RATE_COEFFICIENT,
)


def score_to_win_probability(centipawns: float) -> float:
    """Convert a centipawn score to a win probability.

    Uses the Lichess logistic curve:
    ``p = 0.5 + 0.5 * (2 / (1 + exp(-k * cp)) - 1)``.
    Scores beyond the mate threshold map to exactly 1.0 or 0.0.

    Args:
        centipawns: Score from the perspective whose win chance is wanted.

    Returns:
        Win probability in [0, 1].
    """
    if centipawns > MATE_THRESHOLD:
        return 1.0
    if centipawns < -MATE_THRESHOLD:
        return 0.0
    return 0.5 + 0.5 * (2 / (1 + math.exp(-WIN_RATE_COEFFICIENT * centipawns)) - 1)


def expected_points_lost(win_before: float, win_after: float) -> float:
    """Win probability surrendered by a move, floored at 0."""
    return max(0.0, win_before - win_after)


def adjust_for_mate_distance(
    epl: float,
    mate_before: int | None,
    mate_after: int | None,
) -> float:
    """Adjust EPL when forced mates appear, vanish or change hands.

    Mate distances are from the mover's perspective: positive means the
    mover is mating, negative means the mover is being mated.

    Args:
        epl: Expected points lost before adjustment.
        mate_before: Mate distance before the move, or None.
        mate_after: Mate distance after the move, or None.

    Returns:
        Adjusted expected points lost.
    """
    had_mate = mate_before is not None and mate_before > 0
    has_mate = mate_after is not None and mate_after > 0

    if had_mate and mate_after is None:
        return max(epl, LOST_MATE_EPL_FLOOR)

    if mate_before is None and has_mate:
        return 0.0

    if had_mate and mate_after is not None:
        if mate_after < 0:
            return FLIPPED_MATE_EPL
        if mate_after > mate_before:
            return min(epl + LONGER_MATE_PENALTY, LONGER_MATE_EPL_CAP)

    return epl


def to_mover_perspective(value: int | None, white_moved: bool) -> int | None:
    """Flip a White-positive score or mate distance to the mover's view."""
    if value is None:
        return None
    return value if white_moved else -value
