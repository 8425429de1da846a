"""Command-line game review.

Imports a PGN, queues it for analysis, waits for the worker and prints a
Rich report of the classified moves and per-player summaries.

Usage:
    chess-review analyze game.pgn --depth balanced
    chess-review show <game_id>
    chess-review games
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from review.analyzer import GameAnalyzer
from review.engine import StockfishEvaluator
from review.jobs import AnalysisQueue
from review.models import CLASSIFICATIONS, FAILED, GameAnalysis, PlayerSummary
from review.opening_book import OpeningBook
from review.store import ReviewStore
from review.thresholds import DEFAULT_DEPTH_PRESET, DEPTH_PRESETS

_CLASSIFICATION_STYLES = {
    "brilliant": "bold cyan",
    "great": "cyan",
    "best": "green",
    "excellent": "green",
    "good": "white",
    "book": "dim",
    "inaccuracy": "yellow",
    "mistake": "dark_orange",
    "miss": "magenta",
    "blunder": "bold red",
    "missed_mate": "bold red",
}


def _configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else os.environ.get("CHESS_REVIEW_LOG_LEVEL", "WARNING")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def render_moves(analysis: GameAnalysis) -> Table:
    """Build a table with one row per ply."""
    table = Table(title="Moves", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Move")
    table.add_column("Class")
    table.add_column("Eval", justify="right")
    table.add_column("Win%", justify="right")
    table.add_column("EPL", justify="right")
    table.add_column("Best")

    for move in analysis.moves:
        # fen is the position after the move, so White to move means Black just moved
        black_moved = move.fen.split()[1] == "w"
        number = f"{move.move_number}..." if black_moved else f"{move.move_number}."
        style = _CLASSIFICATION_STYLES.get(move.classification, "white")
        table.add_row(
            number,
            move.move,
            f"[{style}]{move.classification}[/{style}]",
            f"{move.eval_after / 100:+.2f}",
            f"{move.win_chance_after * 100:.0f}",
            f"{move.expected_points_lost * 100:.1f}",
            move.best_move or "",
        )
    return table


def render_summary(analysis: GameAnalysis) -> Table:
    """Build a table of classification counts per side."""
    table = Table(title=f"Summary ({analysis.depth_preset}, depth {analysis.engine_depth})")
    table.add_column("")
    table.add_column("White", justify="right")
    table.add_column("Black", justify="right")

    white: PlayerSummary = analysis.summary.white
    black: PlayerSummary = analysis.summary.black
    for tag in CLASSIFICATIONS:
        table.add_row(tag, str(white.count(tag)), str(black.count(tag)))
    table.add_row("avg EPL", f"{white.avg_expected_points_lost:.3f}", f"{black.avg_expected_points_lost:.3f}")
    table.add_row("critical moments", str(analysis.summary.critical_moments), "")
    return table


def _cmd_analyze(store: ReviewStore, console: Console, pgn_path: Path, depth: str) -> int:
    game = store.add_game(pgn_path.read_text(encoding="utf-8"))
    console.print(f"Imported game {game['id']}: {game['white']} vs {game['black']}")

    evaluator = StockfishEvaluator()
    book = OpeningBook()
    try:
        evaluator.start()
        analyzer = GameAnalyzer(evaluator, book, store)
        queue = AnalysisQueue(analyzer.analyze)
        queue.submit(game["id"], depth)
        with console.status("Analyzing..."):
            queue.wait_idle()
        job = queue.status(game["id"])
    finally:
        evaluator.stop()
        book.close()

    if job is None or job.status == FAILED:
        error = job.error if job is not None else "job disappeared"
        console.print(f"[red]Analysis failed:[/red] {error}")
        return 1

    analysis = store.get_analysis(game["id"])
    console.print(render_moves(analysis))
    console.print(render_summary(analysis))
    return 0


def _cmd_show(store: ReviewStore, console: Console, game_id: str) -> int:
    analysis = store.get_analysis(game_id)
    if analysis is None:
        console.print(f"[red]No analysis for game {game_id}[/red]")
        return 1
    console.print(render_moves(analysis))
    console.print(render_summary(analysis))
    return 0


def _cmd_games(store: ReviewStore, console: Console) -> int:
    table = Table(title="Games")
    table.add_column("Id")
    table.add_column("White")
    table.add_column("Black")
    table.add_column("Result")
    table.add_column("Analyzed")
    for game in store.list_games():
        table.add_row(
            game["id"], game["white"], game["black"], game["result"],
            "yes" if game["analyzed"] else "no",
        )
    console.print(table)
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Classify every move of a chess game")
    parser.add_argument("--data-dir", type=Path, default=None, help="Store directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Import and analyze a PGN file")
    analyze_parser.add_argument("pgn", type=Path, help="PGN file")
    analyze_parser.add_argument(
        "--depth", choices=sorted(DEPTH_PRESETS), default=DEFAULT_DEPTH_PRESET,
        help="Depth preset (default: fast)",
    )

    show_parser = subparsers.add_parser("show", help="Print a stored analysis")
    show_parser.add_argument("game_id", type=str, help="Game id")

    subparsers.add_parser("games", help="List stored games")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    store = ReviewStore(args.data_dir)
    console = Console()

    if args.command == "analyze":
        try:
            code = _cmd_analyze(store, console, args.pgn, args.depth)
        except FileNotFoundError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            code = 1
    elif args.command == "show":
        code = _cmd_show(store, console, args.game_id)
    elif args.command == "games":
        code = _cmd_games(store, console)
    else:
        parser.print_help()
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
