"""Move classification by Expected Points Loss (EPL).

classify() is a strict priority cascade: the first matching rule wins.
Decisive positions are treated leniently so errors in games that are
already decided do not inflate blunder counts.
"""

from __future__ import annotations

from dataclasses import dataclass

from review.models import (
    BEST,
    BLUNDER,
    BRILLIANT,
    EXCELLENT,
    GOOD,
    GREAT,
    INACCURACY,
    MISS,
    MISSED_MATE,
    MISTAKE,
    MoveSignal,
)
from review.position import (
    ENDGAME,
    is_competitive,
    is_decisive,
    is_losing,
    is_winning,
)
from review.thresholds import (
    BEST_EPL,
    BLUNDER_EPL,
    EXCELLENT_EPL,
    GOOD_EPL,
    INACCURACY_EPL,
    MISTAKE_EPL,
)


@dataclass(frozen=True)
class MissPolicy:
    """Cutoffs for the missed-opportunity heuristic.

    The best line must promise at least ``advantage_cp`` (or a forced mate),
    the played move must leave the evaluation within ``neutral_cp`` of
    equality, and the played move's own EPL must stay under ``max_epl``.
    """

    advantage_cp: int = 150
    neutral_cp: int = 100
    max_epl: float = INACCURACY_EPL


DEFAULT_MISS_POLICY = MissPolicy()


def detect_missed_opportunity(
    eval_before: int,
    eval_after: int,
    mate_before: int | None,
    is_best_move: bool,
    expected_points_lost: float,
    policy: MissPolicy = DEFAULT_MISS_POLICY,
) -> bool:
    """Flag an okay move that passed up a large advantage.

    Args:
        eval_before: Best-line score before the move, mover's perspective.
        eval_after: Score after the played move, mover's perspective.
        mate_before: Mover's mate distance before the move, or None.
        is_best_move: Whether the played move was the engine's top move.
        expected_points_lost: EPL of the played move.
        policy: Cutoffs to apply.

    Returns:
        True if the move should be tagged as a miss.
    """
    best_creates_advantage = (
        eval_before > policy.advantage_cp
        or (mate_before is not None and mate_before > 0)
    )
    played_is_neutral = abs(eval_after) < policy.neutral_cp
    return (
        best_creates_advantage
        and played_is_neutral
        and not is_best_move
        and expected_points_lost < policy.max_epl
    )


def classify(signal: MoveSignal) -> str:
    """Classify one move from its computed signals.

    Book moves are tagged by the caller; this function never returns
    "book".

    Args:
        signal: Per-ply facts, all from the mover's perspective.

    Returns:
        Exactly one classification tag.
    """
    epl = signal.expected_points_lost
    before = signal.win_chance_before
    after = signal.win_chance_after

    had_mate = signal.mate_in_before is not None and signal.mate_in_before > 0
    if had_mate and signal.mate_in_after is None:
        return MISSED_MATE

    if signal.missed_opportunity:
        return MISS

    if (
        signal.is_sacrifice
        and epl <= EXCELLENT_EPL
        and is_competitive(before)
        and not is_winning(before)
    ):
        # In the endgame a sacrifice must also be the only good move
        if signal.game_phase != ENDGAME or signal.all_alternatives_worse:
            return BRILLIANT

    if epl <= EXCELLENT_EPL and signal.all_alternatives_worse:
        saved = is_losing(before) and is_competitive(after)
        converted = is_competitive(before) and is_winning(after)
        if saved or converted:
            return GREAT

    # A decisive position forgives every error tier, so even a mate that
    # flips sides (EPL 1.0) lands on the final inaccuracy fallback
    effective_epl = 0.0 if is_decisive(before) else epl

    if effective_epl >= BLUNDER_EPL:
        return BLUNDER
    if effective_epl >= MISTAKE_EPL:
        return MISTAKE
    if effective_epl >= INACCURACY_EPL:
        return INACCURACY

    if signal.is_best_move and epl < BEST_EPL:
        return BEST
    if epl <= EXCELLENT_EPL:
        return EXCELLENT
    if epl <= GOOD_EPL:
        return GOOD

    return INACCURACY
