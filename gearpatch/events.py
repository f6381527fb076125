"""Lifecycle events emitted by the patch runner."""

import json
import time
import traceback
from typing import Any, Literal, Optional, Union

from pydantic import Field

from .models import WireModel


def now_ms() -> int:
    return int(time.time() * 1000)


class ErrorInfo(WireModel):
    message: str
    type: str
    stack: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException, include_stack: bool = True) -> "ErrorInfo":
        stack = "".join(traceback.format_exception(exc)) if include_stack else None
        return cls(message=str(exc), type=type(exc).__name__, stack=stack)


class RunStart(WireModel):
    type: Literal["RunStart"] = "RunStart"
    run_id: str = Field(alias="runId")
    ts: int = Field(default_factory=now_ms)


class NodeStart(WireModel):
    type: Literal["NodeStart"] = "NodeStart"
    node_id: str = Field(alias="nodeId")
    ts: int = Field(default_factory=now_ms)
    input: Any = None


class NodeSuccess(WireModel):
    type: Literal["NodeSuccess"] = "NodeSuccess"
    node_id: str = Field(alias="nodeId")
    ts: int = Field(default_factory=now_ms)
    output: Any = None


class NodeError(WireModel):
    type: Literal["NodeError"] = "NodeError"
    node_id: str = Field(alias="nodeId")
    ts: int = Field(default_factory=now_ms)
    error: ErrorInfo

    @classmethod
    def from_exception(cls, node_id: str, exc: BaseException, include_stack: bool = True) -> "NodeError":
        return cls(node_id=node_id, error=ErrorInfo.from_exception(exc, include_stack))


class RunComplete(WireModel):
    type: Literal["RunComplete"] = "RunComplete"
    run_id: str = Field(alias="runId")
    ts: int = Field(default_factory=now_ms)
    status: Literal["succeeded", "failed"]
    error: Optional[ErrorInfo] = None


PatchEvent = Union[RunStart, NodeStart, NodeSuccess, NodeError, RunComplete]


def to_sse(payload: Union[PatchEvent, dict], event_name: str | None = None) -> str:
    """Frame an event (or a plain dict) as a Server-Sent-Events message."""
    body = payload.model_dump(by_alias=True, mode="json") if isinstance(payload, WireModel) else payload
    prefix = f"event: {event_name}\n" if event_name else ""
    return f"{prefix}data: {json.dumps(body)}\n\n"
