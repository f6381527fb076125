"""Run records: status, timing and cost for one patch execution."""

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from .models import CostSummary, Patch, PatchRun

_NUMERIC_FIELDS = ("total_tokens", "prompt_tokens", "completion_tokens", "total_cost")


@dataclass
class MeteredOutput:
    """Returned by a local gear to report token usage along with its output."""
    value: Any
    cost: CostSummary


def begin_run() -> PatchRun:
    return PatchRun(status="running", started_at=int(time.time() * 1000), duration=0)


def finish_run(run: PatchRun, outcome: Union[str, bool], cost_summary: Optional[CostSummary] = None) -> PatchRun:
    if isinstance(outcome, bool):
        outcome = "succeeded" if outcome else "failed"
    if outcome not in ("succeeded", "failed"):
        raise ValueError(f"Unknown run outcome: {outcome}")
    run.status = outcome
    run.duration = max(0, int(time.time() * 1000) - run.started_at)
    if cost_summary is not None:
        run.cost_summary = cost_summary
    return run


def record_run(patch: Patch, run: PatchRun) -> Patch:
    """Return a copy of `patch` with `run` appended to its history."""
    if run.status == "running":
        raise ValueError("Cannot record a run that has not finished")
    history = list(patch.run_history or [])
    history.append(run.model_copy(deep=True))
    return patch.model_copy(update={"run_history": history})


def merge_costs(a: Optional[CostSummary], b: Optional[CostSummary]) -> Optional[CostSummary]:
    if a is None:
        return b
    if b is None:
        return a
    merged = {}
    for name in _NUMERIC_FIELDS:
        x, y = getattr(a, name), getattr(b, name)
        merged[name] = None if x is None and y is None else (x or 0) + (y or 0)
    merged["currency"] = a.currency or b.currency
    return CostSummary(**merged)


def cost_from_usage(usage: Mapping[str, Any]) -> Optional[CostSummary]:
    """Read an OpenAI-style `usage` block from an http node's response."""
    fields = {
        "prompt_tokens": usage.get("prompt_tokens"),
        "completion_tokens": usage.get("completion_tokens"),
        "total_tokens": usage.get("total_tokens"),
    }
    fields = {k: v for k, v in fields.items() if isinstance(v, (int, float)) and not isinstance(v, bool)}
    if not fields:
        return None
    return CostSummary(**fields)
