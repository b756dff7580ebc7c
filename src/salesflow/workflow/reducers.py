"""
salesflow.workflow.reducers

Reducers define how LangGraph merges the partial updates of parallel branches.

Why reducers:
- A workflow can fan out (several edges from one step, both condition branches
  feeding shared steps), so several nodes may update the same key in one superstep.
- Reducers keep those merges deterministic (append, dict-merge).
"""

from __future__ import annotations

from typing import Any


def append_entries(
    left: list[dict[str, Any]] | None, right: list[dict[str, Any]] | None
) -> list[dict[str, Any]]:
    """
    Append-only reducer for step executions and parked branches.

    Nodes return `{"executions": [entry]}` and this reducer concatenates safely.
    """

    if not left:
        return list(right or [])
    if not right:
        return list(left)
    return [*left, *right]


def merge_dicts(left: dict[str, Any] | None, right: dict[str, Any] | None) -> dict[str, Any]:
    """
    Shallow dict merge reducer (right wins on key collision), used for per-step results.
    """

    if not left:
        return dict(right or {})
    if not right:
        return dict(left)
    return {**left, **right}
