"""Position analysis helpers.

Material counting, sacrifice detection, game-phase classification and
coarse position-character predicates over win chances.
"""

from __future__ import annotations

from dataclasses import dataclass

import chess

from review.thresholds import (
    COMPETITIVE_HIGH,
    COMPETITIVE_LOW,
    DECISIVE_LOSE_PROB,
    DECISIVE_WIN_PROB,
    ENDGAME_MAX_MATERIAL,
    LOSING_PROB,
    OPENING_MAX_MOVE_NUMBER,
    PIECE_VALUES,
    SACRIFICE_MIN_MATERIAL,
    WINNING_PROB,
)

OPENING = "opening"
MIDDLEGAME = "middlegame"
ENDGAME = "endgame"


@dataclass(frozen=True)
class Sacrifice:
    """Result of comparing the mover's material across one move."""

    is_sacrifice: bool
    material_lost: int


def material(board: chess.Board, color: chess.Color) -> int:
    """Sum standard piece values for one side.

    Args:
        board: Position to count.
        color: chess.WHITE or chess.BLACK.

    Returns:
        Total material in pawn units (king counts 0).
    """
    total = 0
    for piece in board.piece_map().values():
        if piece.color == color:
            total += PIECE_VALUES[piece.symbol().lower()]
    return total


def detect_sacrifice(
    before: chess.Board,
    after: chess.Board,
    mover: chess.Color,
) -> Sacrifice:
    """Detect whether the mover gave up material with a move.

    Single pawn losses are not sacrifices; the threshold is two points.
    """
    lost = material(before, mover) - material(after, mover)
    return Sacrifice(is_sacrifice=lost >= SACRIFICE_MIN_MATERIAL, material_lost=lost)


def game_phase(move_number: int, board: chess.Board) -> str:
    """Classify the game phase.

    Args:
        move_number: Full-move index of the move being played (1-based).
        board: Position before the move.

    Returns:
        One of "opening", "middlegame" or "endgame".
    """
    if move_number <= OPENING_MAX_MOVE_NUMBER:
        return OPENING

    total = material(board, chess.WHITE) + material(board, chess.BLACK)
    if total <= ENDGAME_MAX_MATERIAL:
        return ENDGAME

    return MIDDLEGAME


def is_competitive(win_chance: float) -> bool:
    return COMPETITIVE_LOW <= win_chance <= COMPETITIVE_HIGH


def is_winning(win_chance: float) -> bool:
    return win_chance > WINNING_PROB


def is_losing(win_chance: float) -> bool:
    return win_chance < LOSING_PROB


def is_decisive(win_chance: float) -> bool:
    """Position is already effectively resolved for one side."""
    return win_chance >= DECISIVE_WIN_PROB or win_chance <= DECISIVE_LOSE_PROB
