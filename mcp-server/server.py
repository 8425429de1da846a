"""MCP server for the game review pipeline.

Exposes the analysis queue and the review store as tools via FastMCP.
One evaluator, opening book, store, analyzer and queue are built when the
module loads; the engine process is started lazily by the first queued
analysis.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP

from review.analyzer import GameAnalyzer
from review.engine import StockfishEvaluator
from review.errors import ReviewError
from review.jobs import AnalysisQueue
from review.opening_book import OpeningBook
from review.store import ReviewStore
from review.thresholds import DEFAULT_DEPTH_PRESET, DEPTH_PRESETS

from response_schemas import (  # noqa: E402
    minify_analysis,
    minify_job,
)

mcp = FastMCP("chess-review")

_store = ReviewStore()
_evaluator = StockfishEvaluator()
_book = OpeningBook()


def _analyze(game_id: str, depth_preset: str):
    """Start the engine on first use, then run the analyzer."""
    _evaluator.start()
    return _analyzer.analyze(game_id, depth_preset)


_analyzer = GameAnalyzer(_evaluator, _book, _store)
_queue = AnalysisQueue(_analyze)


def _error(exc: Exception) -> dict:
    """Error response that tells the caller whether resubmitting can help."""
    permanent = isinstance(exc, ReviewError) and exc.permanent
    return {"error": str(exc), "retryable": not permanent}


# ---------------------------------------------------------------------------
# Game records
# ---------------------------------------------------------------------------


@mcp.tool()
def import_game(pgn: str) -> dict:
    """Store a PGN game so it can be analyzed.

    Args:
        pgn: Full PGN text of a finished game.

    Returns:
        Dict with game_id, white, black, result.
    """
    game = _store.add_game(pgn)
    return {
        "game_id": game["id"],
        "white": game["white"],
        "black": game["black"],
        "result": game["result"],
    }


# ---------------------------------------------------------------------------
# Queue tools
# ---------------------------------------------------------------------------


@mcp.tool()
def queue_analysis(game_id: str, depth: str = DEFAULT_DEPTH_PRESET) -> dict:
    """Queue a stored game for move-by-move analysis.

    Submitting a game that is already queued or processing returns the
    existing job.

    Args:
        game_id: Id returned by import_game.
        depth: 'fast', 'balanced' or 'thorough'. Default 'fast'.

    Returns:
        Job dict with status and estimated_seconds.
    """
    if depth not in DEPTH_PRESETS:
        return {"error": f"Unknown depth preset: {depth}", "retryable": False}
    if _store.get_game(game_id) is None:
        return {"error": f"Game not found: {game_id}", "retryable": False}

    job = _queue.submit(game_id, depth)
    return minify_job(job.to_dict(), _queue.estimate(game_id))


@mcp.tool()
def analysis_status(game_id: str) -> dict:
    """Get the analysis job status for a game.

    Args:
        game_id: Id of the game.

    Returns:
        Job dict, or error dict if no job exists.
    """
    job = _queue.status(game_id)
    if job is None:
        return {"error": f"No analysis job for game: {game_id}", "retryable": False}
    return minify_job(job.to_dict(), _queue.estimate(game_id))


@mcp.tool()
def list_analysis_jobs() -> dict:
    """List every job in the analysis queue in submission order."""
    jobs = [minify_job(j.to_dict(), _queue.estimate(j.game_id)) for j in _queue.list_all()]
    return {"jobs": jobs, "total": len(jobs)}


@mcp.tool()
def queue_stats() -> dict:
    """Job counts by status and whether the worker is running."""
    return _queue.stats()


@mcp.tool()
def clear_finished_jobs() -> dict:
    """Remove completed and failed jobs from the queue."""
    return {"cleared": _queue.clear_finished()}


@mcp.tool()
def remove_analysis_job(game_id: str) -> dict:
    """Remove one job from the queue. Jobs being processed are kept.

    Args:
        game_id: Id of the game.

    Returns:
        Dict with removed flag.
    """
    return {"game_id": game_id, "removed": _queue.remove_job(game_id)}


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------


@mcp.tool()
def get_analysis(game_id: str, max_moves: int = 0) -> dict:
    """Get the stored analysis of a game.

    Args:
        game_id: Id of the game.
        max_moves: Limit on move rows returned (0 = summary only).

    Returns:
        Minified analysis dict with summary and optional moves.
    """
    analysis = _store.get_analysis(game_id)
    if analysis is None:
        return {"error": f"No analysis for game: {game_id}", "retryable": False}
    return minify_analysis(analysis.to_dict(), max_moves=max_moves)


@mcp.tool()
def delete_analysis(game_id: str) -> dict:
    """Delete a game's analysis so it can be analyzed again.

    Args:
        game_id: Id of the game.

    Returns:
        Dict with deleted flag.
    """
    try:
        deleted = _store.delete_analysis(game_id)
    except ReviewError as exc:
        return _error(exc)
    return {"game_id": game_id, "deleted": deleted}


@mcp.tool()
def player_overview(player: str) -> dict:
    """Average classification counts for a player across analyzed games.

    Args:
        player: Player name as written in the PGN White/Black headers.
    """
    return _store.player_overview(player)


@mcp.tool()
def phase_performance(player: str) -> dict:
    """Move counts, average EPL and error counts per game phase.

    Only the player's own moves are counted.

    Args:
        player: Player name as written in the PGN White/Black headers.

    Returns:
        Dict keyed by opening, middlegame and endgame.
    """
    return _store.phase_performance(player)


@mcp.tool()
def color_performance(player: str) -> dict:
    """Results, accuracy and average EPL with White and with Black.

    Args:
        player: Player name as written in the PGN White/Black headers.
    """
    return _store.color_performance(player)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    try:
        mcp.run()
    finally:
        _evaluator.stop()
        _book.close()
