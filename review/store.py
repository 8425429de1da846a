"""JSON document store for game records and their analyses.

Games and analyses live in two JSON files under the data directory, each
written atomically. One analysis per game: saving a second one raises
DuplicateAnalysis. Saving an analysis flips the game's analyzed flag.
"""

from __future__ import annotations

import io
import json
import logging
import os
import shutil
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path

import chess.pgn

from review.errors import DuplicateAnalysis, DuplicateGame, NotFound
from review.models import (
    BEST,
    BLUNDER,
    BOOK,
    BRILLIANT,
    EXCELLENT,
    GOOD,
    GREAT,
    INACCURACY,
    MISTAKE,
    GameAnalysis,
)
from review.position import ENDGAME, MIDDLEGAME, OPENING

logger = logging.getLogger(__name__)

_SUMMARY_COUNTERS = (
    "brilliant", "great", "best", "excellent", "good", "book",
    "inaccuracies", "mistakes", "misses", "blunders", "missed_mates",
    "avg_expected_points_lost",
)

_PHASES = (OPENING, MIDDLEGAME, ENDGAME)
_GOOD_TAGS = frozenset((BRILLIANT, GREAT, BEST, EXCELLENT, GOOD, BOOK))
_GOOD_COUNTERS = ("brilliant", "great", "best", "excellent", "good", "book")


def default_data_dir() -> Path:
    return Path(os.environ.get("CHESS_REVIEW_DATA_DIR", "data"))


class ReviewStore:
    """Persists games and analyses in the data directory."""

    def __init__(self, data_dir: str | Path | None = None) -> None:
        """Load games and analyses from disk.

        Corrupted files are backed up as .bak and replaced with empty
        documents.

        Args:
            data_dir: Directory holding games.json and analyses.json.
        """
        self._data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
        self._games_path = self._data_dir / "games.json"
        self._analyses_path = self._data_dir / "analyses.json"
        self._lock = threading.RLock()
        self._games: dict[str, dict] = self._load(self._games_path)
        self._analyses: dict[str, dict] = self._load(self._analyses_path)

    @staticmethod
    def _load(path: Path) -> dict[str, dict]:
        """Load one JSON object document, handling corruption gracefully."""
        if not path.exists():
            return {}

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"{path.name} must contain a JSON object")
            return data
        except (json.JSONDecodeError, ValueError):
            backup_path = path.with_suffix(".bak")
            shutil.copy2(path, backup_path)
            logger.warning("Corrupted %s backed up to %s", path.name, backup_path.name)
            return {}

    @staticmethod
    def _save(path: Path, data: dict) -> None:
        """Write a JSON document atomically."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, path)

    # ── Games ───────────────────────────────────────────────────────

    def add_game(self, pgn: str, game_id: str | None = None) -> dict:
        """Store a game record.

        Player names, result and date are read from the PGN headers when
        present; the PGN text itself is stored verbatim and validated only
        at analysis time.

        Args:
            pgn: PGN text of the game.
            game_id: Optional explicit id. A UUID is generated otherwise.

        Returns:
            The stored game record dict.

        Raises:
            DuplicateGame: A game with ``game_id`` is already stored.
        """
        headers = {}
        parsed = chess.pgn.read_game(io.StringIO(pgn))
        if parsed is not None:
            headers = parsed.headers

        record = {
            "id": game_id or str(uuid.uuid4()),
            "pgn": pgn,
            "white": headers.get("White", "?"),
            "black": headers.get("Black", "?"),
            "result": headers.get("Result", "*"),
            "date_played": headers.get("Date", "????.??.??"),
            "analyzed": False,
            "analyzed_at": None,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            # An existing id may already have an analysis of a different game
            if record["id"] in self._games:
                raise DuplicateGame(f"Game {record['id']} already exists")
            self._games[record["id"]] = record
            self._save(self._games_path, self._games)
        return dict(record)

    def get_game(self, game_id: str) -> dict | None:
        with self._lock:
            record = self._games.get(game_id)
            return dict(record) if record is not None else None

    def list_games(self) -> list[dict]:
        with self._lock:
            return [dict(g) for g in self._games.values()]

    # ── Analyses ────────────────────────────────────────────────────

    def get_analysis(self, game_id: str) -> GameAnalysis | None:
        with self._lock:
            data = self._analyses.get(game_id)
        return GameAnalysis.from_dict(data) if data is not None else None

    def save_analysis(self, analysis: GameAnalysis) -> None:
        """Persist an analysis and mark its game analyzed.

        Raises:
            NotFound: If the game does not exist.
            DuplicateAnalysis: If the game already has an analysis.
        """
        with self._lock:
            game = self._games.get(analysis.game_id)
            if game is None:
                raise NotFound(f"Game not found: {analysis.game_id}")
            if analysis.game_id in self._analyses:
                raise DuplicateAnalysis(f"Game already analyzed: {analysis.game_id}")

            self._analyses[analysis.game_id] = analysis.to_dict()
            self._save(self._analyses_path, self._analyses)

            game["analyzed"] = True
            game["analyzed_at"] = datetime.now(timezone.utc).isoformat()
            self._save(self._games_path, self._games)

    def delete_analysis(self, game_id: str) -> bool:
        """Remove a game's analysis and clear its analyzed flag.

        Returns:
            True if an analysis was removed.
        """
        with self._lock:
            if self._analyses.pop(game_id, None) is None:
                return False
            self._save(self._analyses_path, self._analyses)

            game = self._games.get(game_id)
            if game is not None:
                game["analyzed"] = False
                game["analyzed_at"] = None
                self._save(self._games_path, self._games)
            return True

    # ── Player statistics ───────────────────────────────────────────

    def _player_sides(self, player: str) -> list[tuple[dict, dict, str]]:
        """(game, analysis, color) for every analyzed side the player took."""
        with self._lock:
            sides = []
            for game_id, game in self._games.items():
                analysis = self._analyses.get(game_id)
                if analysis is None:
                    continue
                for color in ("white", "black"):
                    if game[color] == player:
                        sides.append((game, analysis, color))
            return sides

    def player_overview(self, player: str) -> dict:
        """Average per-game statistics for one player across analyzed games.

        Each game contributes the summary of the side the player took.

        Args:
            player: Player name as it appears in the White/Black headers.

        Returns:
            Dict with games_analyzed and average_<counter> keys, or a
            message when nothing has been analyzed.
        """
        sides = [analysis["summary"][color] for _, analysis, color in self._player_sides(player)]
        if not sides:
            return {"games_analyzed": 0, "message": f"No analyzed games found for {player}"}

        overview: dict = {"games_analyzed": len(sides)}
        for counter in _SUMMARY_COUNTERS:
            total = sum(side.get(counter, 0) for side in sides)
            overview[f"average_{counter}"] = total / len(sides)
        overview["total_missed_mates"] = sum(side.get("missed_mates", 0) for side in sides)
        return overview

    def phase_performance(self, player: str) -> dict:
        """Per-phase statistics over the moves the player made.

        The mover is read from each stored move's FEN (the position after
        the move), so games from custom starting positions are counted
        correctly.

        Args:
            player: Player name as it appears in the White/Black headers.

        Returns:
            Dict keyed by opening, middlegame and endgame. Each entry has
            moves, avg_expected_points_lost (book moves excluded),
            accuracy (share of book-or-better moves), blunders, mistakes,
            inaccuracies and brilliant.
        """
        tallies = {phase: _PhaseTally() for phase in _PHASES}
        for _, analysis, color in self._player_sides(player):
            for move in analysis["moves"]:
                if _mover(move["fen"]) != color:
                    continue
                tally = tallies.get(move["game_phase"])
                if tally is not None:
                    tally.add(move["classification"], move["expected_points_lost"])
        return {phase: tally.as_dict() for phase, tally in tallies.items()}

    def color_performance(self, player: str) -> dict:
        """Results and accuracy split by the color the player had.

        Wins, draws and losses come from the game's Result header; an
        unfinished game ("*") counts toward games only. Accuracy is the
        per-game share of book-or-better moves, averaged over games.

        Args:
            player: Player name as it appears in the White/Black headers.

        Returns:
            Dict with white and black entries holding games, wins, draws,
            losses, win_rate, avg_accuracy and avg_expected_points_lost.
        """
        performance = {}
        sides = self._player_sides(player)
        for color in ("white", "black"):
            games = [(game, analysis) for game, analysis, side in sides if side == color]
            entry = {"games": len(games), "wins": 0, "draws": 0, "losses": 0}
            accuracies = []
            epls = []
            for game, analysis in games:
                outcome = _outcome(game["result"], color)
                if outcome is not None:
                    entry[outcome] += 1
                summary = analysis["summary"][color]
                accuracies.append(_summary_accuracy(summary))
                epls.append(summary.get("avg_expected_points_lost", 0.0))
            entry["win_rate"] = entry["wins"] / len(games) if games else 0.0
            entry["avg_accuracy"] = sum(accuracies) / len(accuracies) if accuracies else 0.0
            entry["avg_expected_points_lost"] = sum(epls) / len(epls) if epls else 0.0
            performance[color] = entry
        return performance


class _PhaseTally:
    """Running counters for one game phase."""

    def __init__(self) -> None:
        self.moves = 0
        self.good_moves = 0
        self.scored_moves = 0
        self.total_expected_points_lost = 0.0
        self.counts = {BLUNDER: 0, MISTAKE: 0, INACCURACY: 0, BRILLIANT: 0}

    def add(self, classification: str, expected_points_lost: float) -> None:
        self.moves += 1
        if classification in _GOOD_TAGS:
            self.good_moves += 1
        if classification in self.counts:
            self.counts[classification] += 1
        if classification != BOOK:
            self.scored_moves += 1
            self.total_expected_points_lost += expected_points_lost

    def as_dict(self) -> dict:
        return {
            "moves": self.moves,
            "avg_expected_points_lost": (
                self.total_expected_points_lost / self.scored_moves if self.scored_moves else 0.0
            ),
            "accuracy": self.good_moves / self.moves if self.moves else 0.0,
            "blunders": self.counts[BLUNDER],
            "mistakes": self.counts[MISTAKE],
            "inaccuracies": self.counts[INACCURACY],
            "brilliant": self.counts[BRILLIANT],
        }


def _mover(fen: str) -> str:
    # fen is the position after the move: White to move means Black just moved
    return "black" if fen.split()[1] == "w" else "white"


def _outcome(result: str, color: str) -> str | None:
    if result == "1/2-1/2":
        return "draws"
    if result not in ("1-0", "0-1"):
        return None
    won = (result == "1-0") == (color == "white")
    return "wins" if won else "losses"


def _summary_accuracy(summary: dict) -> float:
    # moves excludes book plies, which count as good here
    total = summary.get("moves", 0) + summary.get("book", 0)
    if not total:
        return 0.0
    good = sum(summary.get(counter, 0) for counter in _GOOD_COUNTERS)
    return good / total
