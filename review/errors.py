"""Error taxonomy for the review pipeline.

Permanent errors describe input that will never analyze successfully and
should not be retried. Transient errors (engine trouble) are safe to
resubmit.
"""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for all review pipeline errors."""

    permanent = False


class NotFound(ReviewError):
    """Referenced game does not exist in the store."""

    permanent = True


class EmptyGame(ReviewError):
    """Game record parsed but contains no moves."""

    permanent = True


class MalformedGameRecord(ReviewError):
    """Game record could not be parsed into a move sequence."""

    permanent = True


class EvaluatorFailure(ReviewError):
    """Engine timed out, crashed, or returned an unusable answer."""


class ExternalLookupFailure(ReviewError):
    """Opening-book service was unreachable or answered with an error."""


class DuplicateAnalysis(ReviewError):
    """An analysis already exists for this game."""

    permanent = True


class DuplicateGame(ReviewError):
    """A game with this id is already stored."""

    permanent = True
