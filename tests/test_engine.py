"""Pytest tests for StockfishEvaluator.

Tests mock Stockfish so they don't require the actual binary.
Covers: binary discovery, lifecycle, score conversion, terminal positions,
timeouts, and crash recovery.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import chess
import chess.engine
import pytest

from review.engine import StockfishEvaluator, _find_stockfish, depth_for_preset
from review.errors import EvaluatorFailure
from review.thresholds import MATE_SCORE, MATE_THRESHOLD

_FOOLS_MATE = "rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_engine(info: dict | None = None) -> MagicMock:
    """Create a mock SimpleEngine that answers analyse() with ``info``."""
    eng = MagicMock(spec=chess.engine.SimpleEngine)
    eng.id = {"name": "Stockfish 16"}
    eng.quit = MagicMock()
    eng.configure = MagicMock()
    eng.analyse = MagicMock(return_value=info or _info(35))
    return eng


def _info(cp: int | None = None, mate: int | None = None, depth: int = 20, pv: str = "e2e4 e7e5") -> dict:
    score = chess.engine.Mate(mate) if mate is not None else chess.engine.Cp(cp)
    return {
        "depth": depth,
        "score": chess.engine.PovScore(score, chess.WHITE),
        "pv": [chess.Move.from_uci(u) for u in pv.split()],
    }


@pytest.fixture
def mock_popen():
    """Patch popen_uci and shutil.which so the evaluator can start."""
    eng = _make_mock_engine()
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=eng) as popen, \
         patch("review.engine.shutil.which", return_value="/opt/homebrew/bin/stockfish"), \
         patch("review.engine.Path.is_file", return_value=True):
        yield popen, eng


# ---------------------------------------------------------------------------
# Discovery and presets
# ---------------------------------------------------------------------------


class TestDiscovery:

    def test_stockfish_not_found(self, monkeypatch):
        monkeypatch.delenv("CHESS_REVIEW_STOCKFISH", raising=False)
        with patch("review.engine.Path.is_file", return_value=False), \
             patch("review.engine.shutil.which", return_value=None):
            with pytest.raises(FileNotFoundError, match="Stockfish not found"):
                _find_stockfish()

    def test_stockfish_found_via_which(self, monkeypatch):
        monkeypatch.delenv("CHESS_REVIEW_STOCKFISH", raising=False)
        with patch("review.engine.Path.is_file", return_value=False), \
             patch("review.engine.shutil.which", return_value="/usr/local/bin/stockfish"):
            assert _find_stockfish() == "/usr/local/bin/stockfish"

    def test_env_override_wins(self, monkeypatch):
        monkeypatch.setenv("CHESS_REVIEW_STOCKFISH", "/custom/stockfish")
        assert _find_stockfish() == "/custom/stockfish"


class TestPresets:

    @pytest.mark.parametrize("preset,depth", [("fast", 20), ("balanced", 25), ("thorough", 30)])
    def test_known_presets(self, preset, depth):
        assert depth_for_preset(preset) == depth

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown depth preset"):
            depth_for_preset("ludicrous")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:

    def test_not_running_until_started(self, mock_popen):
        popen, _ = mock_popen
        evaluator = StockfishEvaluator()
        assert not evaluator.is_running
        popen.assert_not_called()

    def test_start_is_idempotent(self, mock_popen):
        popen, eng = mock_popen
        evaluator = StockfishEvaluator()
        evaluator.start()
        evaluator.start()
        assert popen.call_count == 1
        eng.configure.assert_called_once_with({"Threads": 1, "Hash": 64})
        assert evaluator.name == "Stockfish 16"

    def test_context_manager_stops(self, mock_popen):
        _, eng = mock_popen
        with StockfishEvaluator() as evaluator:
            assert evaluator.is_running
        eng.quit.assert_called_once()
        assert not evaluator.is_running

    def test_evaluate_before_start_fails(self, mock_popen):
        with pytest.raises(EvaluatorFailure, match="not started"):
            StockfishEvaluator().evaluate(chess.Board(), 20)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class TestEvaluate:

    def test_centipawn_score(self, mock_popen):
        _, eng = mock_popen
        with StockfishEvaluator() as evaluator:
            result = evaluator.evaluate(chess.Board(), 20)
        assert result.score_cp == 35
        assert result.mate_in is None
        assert result.best_move == "e2e4"
        assert result.principal_line == ("e2e4", "e7e5")
        assert result.depth_reached == 20
        limit = eng.analyse.call_args.args[1]
        assert limit.depth == 20

    def test_score_is_white_relative(self, mock_popen):
        _, eng = mock_popen
        board = chess.Board()
        board.push_san("e4")
        info = _info(cp=-40, pv="e7e5")
        info["score"] = chess.engine.PovScore(chess.engine.Cp(40), chess.BLACK)
        eng.analyse.return_value = info
        with StockfishEvaluator() as evaluator:
            result = evaluator.evaluate(board, 20)
        assert result.score_cp == -40

    def test_mate_uses_sentinel(self, mock_popen):
        _, eng = mock_popen
        eng.analyse.return_value = _info(mate=-3)
        with StockfishEvaluator() as evaluator:
            result = evaluator.evaluate(chess.Board(), 20)
        assert result.mate_in == -3
        assert result.score_cp < -MATE_THRESHOLD

    def test_principal_line_is_capped(self, mock_popen):
        _, eng = mock_popen
        pv = "g1f3 g8f6 f3g1 f6g8 " * 4
        eng.analyse.return_value = _info(cp=0, pv=pv.strip())
        with StockfishEvaluator() as evaluator:
            result = evaluator.evaluate(chess.Board(), 20)
        assert len(result.principal_line) == 10

    def test_checkmate_skips_engine(self, mock_popen):
        _, eng = mock_popen
        with StockfishEvaluator() as evaluator:
            result = evaluator.evaluate(chess.Board(_FOOLS_MATE), 20)
        eng.analyse.assert_not_called()
        assert result.score_cp == -MATE_SCORE
        assert result.mate_in == 0
        assert result.best_move is None

    def test_shallow_search_at_time_limit_is_timeout(self, mock_popen):
        _, eng = mock_popen
        eng.analyse.return_value = _info(cp=10, depth=12)
        with StockfishEvaluator(timeout=0.0) as evaluator:
            with pytest.raises(EvaluatorFailure, match="timeout"):
                evaluator.evaluate(chess.Board(), 20)

    def test_engine_error_is_wrapped(self, mock_popen):
        _, eng = mock_popen
        eng.analyse.side_effect = chess.engine.EngineError("bad option")
        with StockfishEvaluator() as evaluator:
            with pytest.raises(EvaluatorFailure, match="bad option"):
                evaluator.evaluate(chess.Board(), 20)

    def test_engine_call_timeout_is_wrapped(self, mock_popen):
        _, eng = mock_popen
        eng.analyse.side_effect = TimeoutError()
        with StockfishEvaluator() as evaluator:
            with pytest.raises(EvaluatorFailure, match="timed out"):
                evaluator.evaluate(chess.Board(), 20)
            assert evaluator.is_running


class TestCrashRecovery:

    def test_restarts_once_after_crash(self):
        crashed = _make_mock_engine()
        crashed.analyse.side_effect = chess.engine.EngineTerminatedError("died")
        fresh = _make_mock_engine()
        with patch("chess.engine.SimpleEngine.popen_uci", side_effect=[crashed, fresh]) as popen:
            with StockfishEvaluator(stockfish_path="/usr/bin/stockfish") as evaluator:
                result = evaluator.evaluate(chess.Board(), 20)
        assert popen.call_count == 2
        assert result.score_cp == 35

    def test_second_crash_fails(self):
        crashed = _make_mock_engine()
        crashed.analyse.side_effect = chess.engine.EngineTerminatedError("died")
        again = _make_mock_engine()
        again.analyse.side_effect = chess.engine.EngineTerminatedError("died again")
        with patch("chess.engine.SimpleEngine.popen_uci", side_effect=[crashed, again]):
            with StockfishEvaluator(stockfish_path="/usr/bin/stockfish") as evaluator:
                with pytest.raises(EvaluatorFailure, match="terminated"):
                    evaluator.evaluate(chess.Board(), 20)

    def test_failed_restart_is_wrapped(self):
        crashed = _make_mock_engine()
        crashed.analyse.side_effect = chess.engine.EngineTerminatedError("died")
        missing = FileNotFoundError("stockfish removed")
        with patch("chess.engine.SimpleEngine.popen_uci", side_effect=[crashed, missing]):
            with StockfishEvaluator(stockfish_path="/usr/bin/stockfish") as evaluator:
                with pytest.raises(EvaluatorFailure, match="restart failed"):
                    evaluator.evaluate(chess.Board(), 20)
                assert not evaluator.is_running
                with pytest.raises(EvaluatorFailure, match="not started"):
                    evaluator.evaluate(chess.Board(), 20)


@pytest.mark.e2e
class TestRealStockfish:

    def test_start_position_is_roughly_even(self):
        with StockfishEvaluator() as evaluator:
            result = evaluator.evaluate(chess.Board(), 12)
        assert abs(result.score_cp) < 100
        assert result.best_move is not None
