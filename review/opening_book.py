"""Opening-book membership via the Lichess masters explorer.

Provides book-move and book-position checks backed by the explorer HTTP
API. Answers are memoized per instance, outbound requests are throttled,
and any service failure degrades to "not book" instead of raising.

Usage:
    from review.opening_book import OpeningBook
    book = OpeningBook()
    book.is_book_move(chess.Board(), chess.Move.from_uci("e2e4"))
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field

import chess
import requests

from review.errors import ExternalLookupFailure

logger = logging.getLogger(__name__)

_DEFAULT_URL = "https://explorer.lichess.org/masters"

# Lichess allows roughly 15 requests per second
_REQUEST_INTERVAL = 0.07

_REQUEST_TIMEOUT = 10


@dataclass(frozen=True)
class BookLookup:
    """Explorer answer for one position."""

    total_games: int
    move_frequencies: dict[str, int] = field(default_factory=dict)
    san_moves: frozenset[str] = frozenset()


class OpeningBook:
    """Opening theory oracle with a session cache and request throttle."""

    def __init__(
        self,
        base_url: str | None = None,
        interval: float = _REQUEST_INTERVAL,
        session: requests.Session | None = None,
        token: str | None = None,
    ) -> None:
        """Set up the explorer client.

        Args:
            base_url: Explorer endpoint. Defaults to CHESS_REVIEW_EXPLORER_URL
                or the Lichess masters database.
            interval: Minimum seconds between outbound requests.
            session: Optional requests session (injected in tests).
            token: Optional Lichess API token. Defaults to LICHESS_TOKEN.
        """
        self._base_url = base_url or os.environ.get(
            "CHESS_REVIEW_EXPLORER_URL", _DEFAULT_URL
        )
        self._interval = interval
        self._session = session or requests.Session()
        self._token = token or os.environ.get("LICHESS_TOKEN")
        self._cache: dict[str, bool] = {}
        self._lock = threading.Lock()
        self._last_request = 0.0

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _throttle(self) -> None:
        """Sleep until the minimum interval since the last request has passed."""
        wait = self._interval - (time.monotonic() - self._last_request)
        if wait > 0:
            time.sleep(wait)
        self._last_request = time.monotonic()

    def lookup(self, fen: str) -> BookLookup:
        """Query the explorer for a position.

        Args:
            fen: Position key (FEN).

        Returns:
            BookLookup with game totals and per-move frequencies.

        Raises:
            ExternalLookupFailure: On a non-success response or any
                request error.
        """
        self._throttle()
        try:
            response = self._session.get(
                self._base_url,
                params={"fen": fen},
                headers=self._headers(),
                timeout=_REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise ExternalLookupFailure(f"Explorer request failed: {exc}") from exc

        if not response.ok:
            raise ExternalLookupFailure(f"Explorer returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalLookupFailure(f"Explorer returned invalid JSON: {exc}") from exc

        total = (data.get("white") or 0) + (data.get("draws") or 0) + (data.get("black") or 0)
        frequencies: dict[str, int] = {}
        sans: set[str] = set()
        for entry in data.get("moves") or []:
            played = (entry.get("white") or 0) + (entry.get("draws") or 0) + (entry.get("black") or 0)
            if entry.get("uci"):
                frequencies[entry["uci"]] = played
            if entry.get("san"):
                sans.add(entry["san"])

        return BookLookup(total_games=total, move_frequencies=frequencies, san_moves=frozenset(sans))

    def is_book_position(self, board: chess.Board) -> bool:
        """Whether the position has appeared in master games."""
        key = board.fen()
        with self._lock:
            if key in self._cache:
                return self._cache[key]
            try:
                result = self.lookup(key)
            except ExternalLookupFailure as exc:
                logger.warning("Book position check failed, treating as not book: %s", exc)
                return False
            is_book = result.total_games > 0
            self._cache[key] = is_book
            return is_book

    def is_book_move(self, board: chess.Board, move: chess.Move) -> bool:
        """Whether a move from this position has been played in master games.

        Args:
            board: Position before the move.
            move: Candidate move (must be legal in board).

        Returns:
            True if the explorer lists the move by UCI or SAN.
        """
        fen = board.fen()
        uci = move.uci()
        key = f"{fen}:{uci}"
        with self._lock:
            if key in self._cache:
                return self._cache[key]
            try:
                result = self.lookup(fen)
            except ExternalLookupFailure as exc:
                logger.warning("Book move check failed, treating as not book: %s", exc)
                return False
            is_book = uci in result.move_frequencies or board.san(move) in result.san_moves
            self._cache[key] = is_book
            self._cache.setdefault(fen, result.total_games > 0)
            logger.debug("Book check %s %s -> %s", fen, uci, is_book)
            return is_book

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def close(self) -> None:
        """Release the HTTP session."""
        self._session.close()
