"""Shared test fixtures with dual-mode support (scripted vs real Stockfish).

Usage:
    pytest tests/                  # Fast, scripted evaluator (no Stockfish)
    pytest tests/ --e2e            # Also run tests that need real Stockfish

FakeEvaluator and FakeBook are imported directly by test modules.

Fixtures:
    short_game_pgn     - Six-ply game used across analyzer, store and MCP tests.
    store              - ReviewStore in a temporary directory.
    enable_validation  - Sets CHESS_REVIEW_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import chess
import pytest

from review.models import EvaluatorResult
from review.store import ReviewStore

SHORT_GAME_PGN = """[Event "Casual"]
[White "Alice"]
[Black "Bob"]
[Result "*"]
[Date "2024.03.01"]

1. e4 e5 2. Nf3 Nc6 3. Bb5 a6 *
"""


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no fakes).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e was passed."""
    if config.getoption("--e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ---------------------------------------------------------------------------
# Scripted evaluator
# ---------------------------------------------------------------------------


class FakeEvaluator:
    """Evaluator double.

    Answers from ``by_fen`` (keyed by full FEN) when the position is listed,
    otherwise with ``default``. ``fail_on_call`` makes the n-th call (1-based)
    raise the given exception.
    """

    name = "FakeFish"

    def __init__(
        self,
        default: EvaluatorResult | None = None,
        by_fen: dict[str, EvaluatorResult] | None = None,
        fail_on_call: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.default = default or EvaluatorResult(best_move=None, principal_line=(), score_cp=0)
        self.by_fen = by_fen or {}
        self.fail_on_call = fail_on_call
        self.error = error
        self.calls: list[tuple[str, int]] = []
        self.started = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def evaluate(self, board: chess.Board, depth: int) -> EvaluatorResult:
        self.calls.append((board.fen(), depth))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise self.error
        return self.by_fen.get(board.fen(), self.default)


class FakeBook:
    """Opening book double: the first ``book_plies`` move checks are book."""

    def __init__(self, book_plies: int = 0) -> None:
        self.book_plies = book_plies
        self.move_checks: list[str] = []

    def is_book_move(self, board: chess.Board, move: chess.Move) -> bool:
        self.move_checks.append(move.uci())
        return len(self.move_checks) <= self.book_plies

    def is_book_position(self, board: chess.Board) -> bool:
        return len(self.move_checks) < self.book_plies

    def close(self) -> None:
        pass


@pytest.fixture()
def store(tmp_path) -> ReviewStore:
    return ReviewStore(tmp_path / "data")


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation(monkeypatch):
    """Set CHESS_REVIEW_VALIDATE=1 for each test."""
    monkeypatch.setenv("CHESS_REVIEW_VALIDATE", "1")


# ---------------------------------------------------------------------------
# Game records
# ---------------------------------------------------------------------------


@pytest.fixture()
def short_game_pgn() -> str:
    """Six plies of the Ruy Lopez between Alice (White) and Bob (Black)."""
    return SHORT_GAME_PGN
