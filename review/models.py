"""Shared data models for the game review pipeline.

EvaluatorResult, MoveAnalysis and GameAnalysis are the shared contract
between the engine wrapper, the analyzer, the store and the MCP server.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime

# Move classification tags
BRILLIANT = "brilliant"
GREAT = "great"
BEST = "best"
EXCELLENT = "excellent"
GOOD = "good"
BOOK = "book"
INACCURACY = "inaccuracy"
MISTAKE = "mistake"
MISS = "miss"
BLUNDER = "blunder"
MISSED_MATE = "missed_mate"

CLASSIFICATIONS = (
    BRILLIANT, GREAT, BEST, EXCELLENT, GOOD, BOOK,
    INACCURACY, MISTAKE, MISS, BLUNDER, MISSED_MATE,
)

# Job lifecycle
QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATUSES = (COMPLETED, FAILED)


@dataclass(frozen=True)
class EvaluatorResult:
    """One engine answer for one position.

    score_cp is White-positive; forced mates use the +-MATE_SCORE sentinel.
    mate_in is positive when White mates, negative when Black mates.
    """

    best_move: str | None
    principal_line: tuple[str, ...]
    score_cp: int
    mate_in: int | None = None
    depth_reached: int = 0


@dataclass(frozen=True)
class MoveSignal:
    """Per-ply facts consumed by the classifier (mover's perspective)."""

    win_chance_before: float
    win_chance_after: float
    expected_points_lost: float
    is_sacrifice: bool = False
    is_best_move: bool = False
    all_alternatives_worse: bool = False
    missed_opportunity: bool = False
    mate_in_before: int | None = None
    mate_in_after: int | None = None
    game_phase: str = "middlegame"
    is_book: bool = False


@dataclass(frozen=True)
class MoveAnalysis:
    """Stored analysis of one ply."""

    move_number: int
    move: str
    fen: str
    eval_before: int
    eval_after: int
    win_chance_before: float
    win_chance_after: float
    expected_points_lost: float
    classification: str
    is_book: bool
    game_phase: str
    best_move: str | None
    best_line: tuple[str, ...] = ()
    is_sacrifice: bool = False
    is_only_good_move: bool = False
    is_critical: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> MoveAnalysis:
        values = {f.name: data[f.name] for f in fields(cls) if f.name in data}
        values["best_line"] = tuple(values.get("best_line") or ())
        return cls(**values)


# Classification tag -> PlayerSummary counter name
_COUNTER_FOR_TAG = {
    BRILLIANT: "brilliant",
    GREAT: "great",
    BEST: "best",
    EXCELLENT: "excellent",
    GOOD: "good",
    BOOK: "book",
    INACCURACY: "inaccuracies",
    MISTAKE: "mistakes",
    MISS: "misses",
    BLUNDER: "blunders",
    MISSED_MATE: "missed_mates",
}


@dataclass
class PlayerSummary:
    """Classification counts and average EPL for one side (or both)."""

    moves: int = 0
    brilliant: int = 0
    great: int = 0
    best: int = 0
    excellent: int = 0
    good: int = 0
    book: int = 0
    inaccuracies: int = 0
    mistakes: int = 0
    misses: int = 0
    blunders: int = 0
    missed_mates: int = 0
    total_expected_points_lost: float = 0.0
    avg_expected_points_lost: float = 0.0

    def record(self, classification: str, expected_points_lost: float) -> None:
        """Fold one classified move into the counters.

        Book moves only bump the book counter; they are excluded from the
        move count and the EPL average.
        """
        counter = _COUNTER_FOR_TAG[classification]
        setattr(self, counter, getattr(self, counter) + 1)
        if classification == BOOK:
            return
        self.moves += 1
        self.total_expected_points_lost += expected_points_lost
        self.avg_expected_points_lost = self.total_expected_points_lost / self.moves

    def count(self, classification: str) -> int:
        return getattr(self, _COUNTER_FOR_TAG[classification])

    @classmethod
    def from_dict(cls, data: dict) -> PlayerSummary:
        return cls(**{f.name: data[f.name] for f in fields(cls) if f.name in data})


@dataclass
class AnalysisSummary:
    """Per-player and combined statistics for one analyzed game."""

    total_moves: int = 0
    white: PlayerSummary = field(default_factory=PlayerSummary)
    black: PlayerSummary = field(default_factory=PlayerSummary)
    combined: PlayerSummary = field(default_factory=PlayerSummary)
    critical_moments: int = 0

    @property
    def avg_expected_points_lost(self) -> float:
        return self.combined.avg_expected_points_lost

    @classmethod
    def from_dict(cls, data: dict) -> AnalysisSummary:
        return cls(
            total_moves=data.get("total_moves", 0),
            white=PlayerSummary.from_dict(data.get("white", {})),
            black=PlayerSummary.from_dict(data.get("black", {})),
            combined=PlayerSummary.from_dict(data.get("combined", {})),
            critical_moments=data.get("critical_moments", 0),
        )


@dataclass
class GameAnalysis:
    """Complete analysis result for one game, as persisted."""

    analysis_id: str
    game_id: str
    depth_preset: str
    engine_depth: int
    engine_name: str
    moves: tuple[MoveAnalysis, ...]
    summary: AnalysisSummary
    created_at: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> GameAnalysis:
        return cls(
            analysis_id=data["analysis_id"],
            game_id=data["game_id"],
            depth_preset=data["depth_preset"],
            engine_depth=data["engine_depth"],
            engine_name=data["engine_name"],
            moves=tuple(MoveAnalysis.from_dict(m) for m in data["moves"]),
            summary=AnalysisSummary.from_dict(data["summary"]),
            created_at=data["created_at"],
        )


@dataclass
class AnalysisJob:
    """Lifecycle record for one queued game analysis."""

    game_id: str
    depth_preset: str
    status: str = QUEUED
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    result_ref: str | None = None
    permanent_failure: bool | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("created_at", "started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
