"""Stockfish evaluator for the review pipeline.

Wraps Stockfish via the python-chess UCI interface. Provides:
- Explicit start/stop lifecycle for the engine process
- One blocking evaluate() call per position and depth
- One-shot restart if the engine process dies mid-run
- CLI for evaluating a single FEN
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import sys
import threading
import time
from pathlib import Path
from typing import Protocol

import chess
import chess.engine

from review.errors import EvaluatorFailure
from review.models import EvaluatorResult
from review.thresholds import DEPTH_PRESETS, MATE_SCORE, MAX_PRINCIPAL_LINE

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/games/stockfish",
    "/usr/bin/stockfish",
]

# Seconds a single evaluation may run before it counts as timed out
_EVALUATION_TIMEOUT = 120.0


class Evaluator(Protocol):
    """Anything that can score a position to a given depth."""

    def evaluate(self, board: chess.Board, depth: int) -> EvaluatorResult:
        ...


def _find_stockfish() -> str:
    """Auto-detect Stockfish binary path.

    Checks CHESS_REVIEW_STOCKFISH, known install paths, then PATH.

    Returns:
        Path to Stockfish binary.

    Raises:
        FileNotFoundError: If Stockfish is not found anywhere.
    """
    configured = os.environ.get("CHESS_REVIEW_STOCKFISH")
    if configured:
        return configured

    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        "Stockfish not found. Install it or set CHESS_REVIEW_STOCKFISH."
    )


def depth_for_preset(preset: str) -> int:
    """Map a depth preset name to a search depth.

    Raises:
        ValueError: If the preset is unknown.
    """
    try:
        return DEPTH_PRESETS[preset]
    except KeyError:
        raise ValueError(
            f"Unknown depth preset: {preset}. Expected one of {sorted(DEPTH_PRESETS)}"
        ) from None


def _terminal_result(board: chess.Board) -> EvaluatorResult:
    """Build a result for a finished game without asking the engine."""
    if board.is_checkmate():
        # Side to move is mated
        score = -MATE_SCORE if board.turn == chess.WHITE else MATE_SCORE
        return EvaluatorResult(best_move=None, principal_line=(), score_cp=score, mate_in=0)
    return EvaluatorResult(best_move=None, principal_line=(), score_cp=0)


class StockfishEvaluator:
    """Stockfish process with an explicit lifecycle."""

    def __init__(
        self,
        stockfish_path: str | None = None,
        timeout: float = _EVALUATION_TIMEOUT,
        threads: int = 1,
        hash_mb: int = 64,
    ) -> None:
        """Configure the evaluator. The engine is not started until start().

        Args:
            stockfish_path: Explicit path to Stockfish binary.
                If None, auto-detects from known locations.
            timeout: Seconds before an evaluation is abandoned as failed.
            threads: UCI Threads option.
            hash_mb: UCI Hash option in megabytes.
        """
        self._stockfish_path = stockfish_path
        self._timeout = timeout
        self._options = {"Threads": threads, "Hash": hash_mb}
        self._engine: chess.engine.SimpleEngine | None = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        if self._engine is None:
            return "Stockfish"
        return self._engine.id.get("name", "Stockfish")

    @property
    def is_running(self) -> bool:
        return self._engine is not None

    def _open_engine(self) -> chess.engine.SimpleEngine:
        """Open a fresh Stockfish process.

        Returns:
            New SimpleEngine instance.
        """
        if self._stockfish_path is None:
            self._stockfish_path = _find_stockfish()
        engine = chess.engine.SimpleEngine.popen_uci(self._stockfish_path)
        engine.configure(self._options)
        logger.info("Started engine %s", engine.id.get("name", self._stockfish_path))
        return engine

    def start(self) -> None:
        """Start the engine process if it is not already running.

        Raises:
            FileNotFoundError: If Stockfish is not found.
        """
        with self._lock:
            if self._engine is None:
                self._engine = self._open_engine()

    def stop(self) -> None:
        """Shut down the engine process."""
        with self._lock:
            if self._engine is None:
                return
            try:
                self._engine.quit()
            except chess.engine.EngineTerminatedError:
                pass
            self._engine = None
            logger.info("Stopped engine")

    def __enter__(self) -> StockfishEvaluator:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def evaluate(self, board: chess.Board, depth: int) -> EvaluatorResult:
        """Evaluate a position to a fixed depth.

        Args:
            board: Position to evaluate. Not modified.
            depth: Search depth in plies.

        Returns:
            EvaluatorResult with White-positive score.

        Raises:
            EvaluatorFailure: On timeout, engine error, or if the engine
                dies twice in a row.
        """
        if board.is_game_over():
            return _terminal_result(board)

        with self._lock:
            if self._engine is None:
                raise EvaluatorFailure("Engine not started")
            try:
                return self._evaluate_inner(board, depth)
            except chess.engine.EngineTerminatedError:
                logger.warning("Engine terminated, restarting once")
            except chess.engine.EngineError as exc:
                raise EvaluatorFailure(f"Engine error: {exc}") from exc
            except TimeoutError as exc:
                raise EvaluatorFailure(f"Engine timed out after {self._timeout}s") from exc
            return self._restart_and_evaluate(board, depth)

    def _restart_and_evaluate(self, board: chess.Board, depth: int) -> EvaluatorResult:
        """Replace a dead engine and retry once. Caller holds the lock.

        If the engine cannot be reopened it is left stopped; the next
        start() opens a fresh process.
        """
        self._engine = None
        try:
            self._engine = self._open_engine()
            return self._evaluate_inner(board, depth)
        except TimeoutError as exc:
            raise EvaluatorFailure(f"Engine timed out after {self._timeout}s") from exc
        except chess.engine.EngineTerminatedError as exc:
            self._engine = None
            raise EvaluatorFailure(f"Engine terminated after restart: {exc}") from exc
        except (chess.engine.EngineError, OSError) as exc:
            # OSError covers a Stockfish binary that vanished
            raise EvaluatorFailure(f"Engine restart failed: {exc}") from exc

    def _evaluate_inner(self, board: chess.Board, depth: int) -> EvaluatorResult:
        """Internal evaluation without crash recovery.

        The search is bounded by both depth and the timeout; a search that
        used the whole time budget without reaching the depth is a failure.
        """
        started = time.monotonic()
        info = self._engine.analyse(
            board,
            chess.engine.Limit(depth=depth, time=self._timeout),
        )
        elapsed = time.monotonic() - started
        depth_reached = info.get("depth", 0)
        if depth_reached < depth and elapsed >= self._timeout:
            raise EvaluatorFailure(
                f"Analysis timeout after {self._timeout:.0f}s at depth {depth_reached}/{depth}"
            )

        score = info.get("score")
        if score is None:
            raise EvaluatorFailure("Engine returned no score")

        white_score = score.white()
        pv = [move.uci() for move in info.get("pv", [])][:MAX_PRINCIPAL_LINE]

        return EvaluatorResult(
            best_move=pv[0] if pv else None,
            principal_line=tuple(pv),
            score_cp=white_score.score(mate_score=MATE_SCORE),
            mate_in=white_score.mate(),
            depth_reached=depth_reached,
        )


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


def _cli_evaluate(fen: str, preset: str) -> None:
    """Evaluate a FEN position and print the result.

    Args:
        fen: FEN string of the position to evaluate.
        preset: Depth preset name.
    """
    board = chess.Board(fen)
    with StockfishEvaluator() as evaluator:
        result = evaluator.evaluate(board, depth_for_preset(preset))

    print(f"Position: {fen}")
    print(f"Side to move: {'White' if board.turn else 'Black'}")
    score_str = (
        f"Mate in {result.mate_in}"
        if result.mate_in is not None
        else f"{result.score_cp / 100.0:+.2f}"
    )
    print(f"Evaluation: {score_str} (depth {result.depth_reached})")
    print(f"Best move: {result.best_move}")
    print(f"Line: {' '.join(result.principal_line)}")


def main() -> None:
    """CLI entry point for engine.py."""
    parser = argparse.ArgumentParser(description="Evaluate a position with Stockfish")
    parser.add_argument("fen", type=str, help="FEN string to evaluate")
    parser.add_argument(
        "--depth", choices=sorted(DEPTH_PRESETS), default="fast",
        help="Depth preset (default: fast)",
    )
    args = parser.parse_args()

    try:
        _cli_evaluate(args.fen, args.depth)
    except (FileNotFoundError, EvaluatorFailure, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
