"""Response schemas and minification for MCP tool responses.

Minifies MCP tool return values to reduce LLM context token waste.
The stored analysis (data/analyses.json) is NOT affected, only MCP return
values.

Move rows are compacted to the fields a reviewer reads; the principal
line is cut to its first moves and empty flags are dropped.
"""

from __future__ import annotations

import os

# Moves of the engine's principal line kept per row
_BEST_LINE_MOVES = 3


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_job(job: dict, estimated_seconds: int | None) -> dict:
    """Minify an AnalysisJob dict for MCP response.

    Drops null timestamps and the failure fields of jobs that did not fail,
    and adds the queue's time estimate.

    Args:
        job: Full job dict (as produced by AnalysisJob.to_dict).
        estimated_seconds: Output of AnalysisQueue.estimate for the job.

    Returns:
        Minified dict.
    """
    result = {
        "game_id": job.get("game_id"),
        "depth": job.get("depth_preset"),
        "status": job.get("status"),
        "estimated_seconds": estimated_seconds,
    }

    for key in ("created_at", "started_at", "completed_at", "result_ref"):
        if job.get(key) is not None:
            result[key] = job[key]

    if job.get("error") is not None:
        result["error_message"] = job["error"]
        result["retryable"] = not job.get("permanent_failure", False)

    return result


def minify_move(move: dict) -> dict:
    """Minify one MoveAnalysis dict.

    Rounds win chances and EPL to percentages, truncates the principal
    line, and keeps only flags that are set.

    Args:
        move: Full move dict.

    Returns:
        Minified dict.
    """
    result = {
        "n": move.get("move_number"),
        "move": move.get("move"),
        "class": move.get("classification"),
        "eval": move.get("eval_after"),
        "win_pct": round(move.get("win_chance_after", 0.0) * 100, 1),
        "epl_pct": round(move.get("expected_points_lost", 0.0) * 100, 1),
    }

    best_move = move.get("best_move")
    if best_move is not None:
        result["best"] = best_move
        best_line = move.get("best_line", [])
        result["line"] = list(best_line)[:_BEST_LINE_MOVES]

    for flag in ("is_sacrifice", "is_only_good_move", "is_critical"):
        if move.get(flag):
            result[flag[3:]] = True

    return result


def _minify_side(side: dict) -> dict:
    """Keep non-zero counters and the rounded average EPL."""
    result = {
        key: value
        for key, value in side.items()
        if key not in ("total_expected_points_lost", "avg_expected_points_lost") and value
    }
    result["avg_epl_pct"] = round(side.get("avg_expected_points_lost", 0.0) * 100, 2)
    return result


def minify_analysis(analysis: dict, max_moves: int = 0) -> dict:
    """Minify a GameAnalysis dict for MCP response.

    Args:
        analysis: Full analysis dict (as produced by GameAnalysis.to_dict).
        max_moves: Number of move rows to include. 0 returns the summary
            only; a negative value returns every row.

    Returns:
        Minified dict with summary and optional moves.
    """
    summary = analysis.get("summary", {})
    result = {
        "game_id": analysis.get("game_id"),
        "depth": analysis.get("depth_preset"),
        "engine": f"{analysis.get('engine_name')} d{analysis.get('engine_depth')}",
        "total_moves": summary.get("total_moves", 0),
        "critical_moments": summary.get("critical_moments", 0),
        "white": _minify_side(summary.get("white", {})),
        "black": _minify_side(summary.get("black", {})),
    }

    moves = analysis.get("moves", [])
    if max_moves < 0:
        result["moves"] = [minify_move(m) for m in moves]
    elif max_moves > 0:
        result["moves"] = [minify_move(m) for m in moves[:max_moves]]

    return result


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

JOB_SCHEMA = {
    "game_id": str,
    "depth": str,
    "status": str,
    "estimated_seconds": (int, type(None)),
}

ANALYSIS_SCHEMA = {
    "game_id": str,
    "depth": str,
    "engine": str,
    "total_moves": int,
    "critical_moments": int,
    "white": dict,
    "black": dict,
}

MOVE_SCHEMA = {
    "n": int,
    "move": str,
    "class": str,
    "eval": int,
    "win_pct": (int, float),
    "epl_pct": (int, float),
}

ERROR_SCHEMA = {
    "error": str,
    "retryable": bool,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when CHESS_REVIEW_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("CHESS_REVIEW_VALIDATE") != "1":
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        else:
            if not isinstance(value, expected_types):
                errors.append(
                    f"Key '{key}': expected {expected_types.__name__}, "
                    f"got {type(value).__name__}"
                )

    return errors
