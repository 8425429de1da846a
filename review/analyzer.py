"""Game analyzer: move-by-move scoring of a stored game.

Evaluates every ply twice (before and after the move), derives the mover's
win chances and expected points lost, runs the position and book checks,
classifies the move, and folds it into per-player and combined summaries.
Analysis is memoized by game id through the store.
"""

from __future__ import annotations

import io
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import chess
import chess.pgn

from review.classifier import DEFAULT_MISS_POLICY, MissPolicy, classify, detect_missed_opportunity
from review.engine import Evaluator, depth_for_preset
from review.errors import EmptyGame, MalformedGameRecord, NotFound
from review.models import (
    BOOK,
    BRILLIANT,
    GREAT,
    AnalysisSummary,
    GameAnalysis,
    MoveAnalysis,
    MoveSignal,
)
from review.opening_book import OpeningBook
from review.position import OPENING, detect_sacrifice, game_phase
from review.store import ReviewStore
from review.thresholds import CRITICAL_EPL, DEFAULT_DEPTH_PRESET, ONLY_MOVE_EPL
from review.win_probability import (
    adjust_for_mate_distance,
    expected_points_lost,
    score_to_win_probability,
    to_mover_perspective,
)

logger = logging.getLogger(__name__)

_PROGRESS_EVERY = 10


@dataclass
class _Traversal:
    """Mutable state carried across the plies of one game."""

    board: chess.Board
    still_in_book: bool = True

    @property
    def mover(self) -> chess.Color:
        return self.board.turn


def parse_game(pgn: str) -> tuple[chess.Board, list[chess.Move]]:
    """Parse PGN text into its starting position and mainline moves.

    Raises:
        MalformedGameRecord: If no game is found or the PGN has errors.
        EmptyGame: If the game has no moves.
    """
    try:
        game = chess.pgn.read_game(io.StringIO(pgn))
    except ValueError as exc:
        raise MalformedGameRecord(f"Invalid PGN: {exc}") from exc

    if game is None:
        raise MalformedGameRecord("Invalid PGN: no game found")
    if game.errors:
        raise MalformedGameRecord(f"Invalid PGN: {game.errors[0]}")

    moves = list(game.mainline_moves())
    if not moves:
        raise EmptyGame("No moves found in game")
    return game.board(), moves


class GameAnalyzer:
    """Runs the full classification pipeline for one game at a time."""

    def __init__(
        self,
        evaluator: Evaluator,
        opening_book: OpeningBook,
        store: ReviewStore,
        miss_policy: MissPolicy = DEFAULT_MISS_POLICY,
    ) -> None:
        self._evaluator = evaluator
        self._book = opening_book
        self._store = store
        self._miss_policy = miss_policy

    def analyze(self, game_id: str, depth_preset: str = DEFAULT_DEPTH_PRESET) -> GameAnalysis:
        """Analyze a stored game, or return its existing analysis.

        Args:
            game_id: Id of the game in the store.
            depth_preset: "fast", "balanced" or "thorough".

        Returns:
            The saved GameAnalysis.

        Raises:
            NotFound: If the game is not in the store.
            MalformedGameRecord: If the PGN cannot be parsed.
            EmptyGame: If the game has no moves.
            EvaluatorFailure: Propagated from the evaluator.
        """
        game = self._store.get_game(game_id)
        if game is None:
            raise NotFound(f"Game not found: {game_id}")

        existing = self._store.get_analysis(game_id)
        if existing is not None:
            logger.info("Game %s already analyzed, returning existing analysis", game_id)
            return existing

        depth = depth_for_preset(depth_preset)
        start, moves = parse_game(game["pgn"])
        logger.info("Analyzing game %s: %d plies at depth %d", game_id, len(moves), depth)

        state = _Traversal(board=start)
        summary = AnalysisSummary(total_moves=len(moves))
        records: list[MoveAnalysis] = []

        for ply, move in enumerate(moves):
            side = summary.white if state.mover == chess.WHITE else summary.black
            record = self._analyze_ply(state, move, depth)
            records.append(record)

            side.record(record.classification, record.expected_points_lost)
            summary.combined.record(record.classification, record.expected_points_lost)
            if record.is_critical:
                summary.critical_moments += 1

            if (ply + 1) % _PROGRESS_EVERY == 0:
                logger.info("  Analyzed %d/%d plies", ply + 1, len(moves))

        analysis = GameAnalysis(
            analysis_id=str(uuid.uuid4()),
            game_id=game_id,
            depth_preset=depth_preset,
            engine_depth=depth,
            engine_name=getattr(self._evaluator, "name", type(self._evaluator).__name__),
            moves=tuple(records),
            summary=summary,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._store.save_analysis(analysis)

        logger.info(
            "Analysis complete for %s: White EPL %.1f%%, Black EPL %.1f%%",
            game_id,
            summary.white.avg_expected_points_lost * 100,
            summary.black.avg_expected_points_lost * 100,
        )
        return analysis

    def _analyze_ply(
        self,
        state: _Traversal,
        move: chess.Move,
        depth: int,
    ) -> MoveAnalysis:
        """Evaluate, classify and record one ply, advancing the traversal."""
        before = state.board.copy(stack=False)
        mover = state.mover
        white_moved = mover == chess.WHITE
        move_number = before.fullmove_number
        phase = game_phase(move_number, before)
        san = before.san(move)

        result_before = self._evaluator.evaluate(before, depth)

        state.board.push(move)
        after = state.board.copy(stack=False)

        result_after = self._evaluator.evaluate(after, depth)

        eval_before = to_mover_perspective(result_before.score_cp, white_moved)
        eval_after = to_mover_perspective(result_after.score_cp, white_moved)
        mate_before = to_mover_perspective(result_before.mate_in, white_moved)
        mate_after = to_mover_perspective(result_after.mate_in, white_moved)

        win_before = score_to_win_probability(eval_before)
        win_after = score_to_win_probability(eval_after)
        epl = expected_points_lost(win_before, win_after)
        epl = adjust_for_mate_distance(epl, mate_before, mate_after)

        sacrifice = detect_sacrifice(before, after, mover)
        is_best = move.uci() == result_before.best_move
        only_good_move = is_best and epl < ONLY_MOVE_EPL
        missed = detect_missed_opportunity(
            eval_before, eval_after, mate_before, is_best, epl, self._miss_policy
        )

        is_book = False
        if state.still_in_book and phase == OPENING:
            is_book = self._book.is_book_move(before, move)
            if not is_book:
                state.still_in_book = False
                logger.info("  Left opening book at move %d", move_number)

        signal = MoveSignal(
            win_chance_before=win_before,
            win_chance_after=win_after,
            expected_points_lost=epl,
            is_sacrifice=sacrifice.is_sacrifice,
            is_best_move=is_best,
            all_alternatives_worse=only_good_move,
            missed_opportunity=missed,
            mate_in_before=mate_before,
            mate_in_after=mate_after,
            game_phase=phase,
            is_book=is_book,
        )
        classification = BOOK if is_book else classify(signal)
        is_critical = epl >= CRITICAL_EPL or classification in (BRILLIANT, GREAT)

        return MoveAnalysis(
            move_number=move_number,
            move=san,
            fen=after.fen(),
            eval_before=eval_before,
            eval_after=eval_after,
            win_chance_before=win_before,
            win_chance_after=win_after,
            expected_points_lost=epl,
            classification=classification,
            is_book=is_book,
            game_phase=phase,
            best_move=result_before.best_move,
            best_line=result_before.principal_line,
            is_sacrifice=sacrifice.is_sacrifice,
            is_only_good_move=only_good_move,
            is_critical=is_critical,
        )
