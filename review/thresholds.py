"""Thresholds and constants shared across the review pipeline.

All classification thresholds are expressed as Expected Points Loss (EPL),
the fraction of win probability surrendered by a move. Rough centipawn
equivalents near equality:

- 300cp ~ 20% EPL (blunder)
- 100cp ~ 10% EPL (mistake)
- 50cp ~ 5% EPL (inaccuracy)
"""

from __future__ import annotations

# Lichess win-rate coefficient for centipawn -> win probability
WIN_RATE_COEFFICIENT = 0.00368208

# Engine mate scores are reported as +-MATE_SCORE; anything beyond
# MATE_THRESHOLD is treated as a forced mate by the win-probability model.
MATE_SCORE = 100000
MATE_THRESHOLD = 10000

# Error tiers
BLUNDER_EPL = 0.20
MISTAKE_EPL = 0.10
INACCURACY_EPL = 0.05

# Good-move tiers
BEST_EPL = 0.001
EXCELLENT_EPL = 0.02
GOOD_EPL = 0.05

# Best move with EPL under this counts as the only good move
ONLY_MOVE_EPL = 0.005

# Position bands (win chance of the side to move)
DECISIVE_WIN_PROB = 0.80
DECISIVE_LOSE_PROB = 0.20
COMPETITIVE_LOW = 0.20
COMPETITIVE_HIGH = 0.80
WINNING_PROB = 0.75
LOSING_PROB = 0.25

# Critical moment marker
CRITICAL_EPL = 0.15

# Mate-distance adjustments
LOST_MATE_EPL_FLOOR = 0.5
LONGER_MATE_PENALTY = 0.05
LONGER_MATE_EPL_CAP = 0.10
FLIPPED_MATE_EPL = 1.0

# Material values for sacrifice detection and phase heuristics
PIECE_VALUES = {
    "p": 1,
    "n": 3,
    "b": 3,
    "r": 5,
    "q": 9,
    "k": 0,
}

SACRIFICE_MIN_MATERIAL = 2
OPENING_MAX_MOVE_NUMBER = 12
ENDGAME_MAX_MATERIAL = 13

# Engine depth presets
DEPTH_PRESETS = {
    "fast": 20,
    "balanced": 25,
    "thorough": 30,
}

DEFAULT_DEPTH_PRESET = "fast"

# Principal variation length kept per evaluation
MAX_PRINCIPAL_LINE = 10
