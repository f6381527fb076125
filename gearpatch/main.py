import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .config import configure_logging
from .events import PatchEvent, now_ms, to_sse
from .exceptions import PatchValidationError
from .gears import register_builtin_gears
from .models import PatchRun
from .orchestrator import PatchRunner

logger = logging.getLogger("gearpatch.inlet")

SSE_MEDIA_TYPE = "text/event-stream"

# Stand-in for the external patch loader; the hosting application fills it.
PATCHES: Dict[str, Dict[str, Any]] = {
    "demo-simple": {
        "nodes": [{"id": "echo", "kind": "local", "fn": "echoGear"}],
        "edges": [],
    },
}

RUNS: Dict[str, PatchRun] = {}
RUN_HISTORY: Dict[str, List[str]] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    register_builtin_gears()
    yield


app = FastAPI(title="gearpatch Patch Runtime API", version="0.1.0", lifespan=lifespan)


def load_patch(patch_id: str) -> Dict[str, Any]:
    if patch_id not in PATCHES:
        raise HTTPException(404, "patch not found")
    return PATCHES[patch_id]


def _error_frame(code: str, message: str) -> str:
    return to_sse({"error": code, "message": message, "timestamp": now_ms()}, event_name="error")


async def _stream(patch_id: str, runner: PatchRunner, events: AsyncGenerator[PatchEvent, None]) -> AsyncIterator[str]:
    try:
        async for event in events:
            yield to_sse(event)
    except Exception as e:
        logger.error("Error in patch execution stream for %s: %s", patch_id, e)
        yield _error_frame("PATCH_EXECUTION_FAILED", "Patch execution failed")
    finally:
        # close the run first so its record is finished before it is stored
        await events.aclose()
        if runner.last_run is not None:
            RUNS[runner.run_id] = runner.last_run.model_copy(deep=True)
            RUN_HISTORY.setdefault(patch_id, []).append(runner.run_id)


@app.post("/inlet/{patch_id}")
async def inlet(patch_id: str, request: Request):
    if not patch_id.strip():
        logger.warning("Invalid patch ID provided: %r", patch_id)
        raise HTTPException(400, "Invalid patch ID")

    try:
        payload = await request.json()
    except ValueError as e:
        logger.warning("Invalid JSON payload: %s", e)
        raise HTTPException(400, "Invalid JSON payload")

    definition = load_patch(patch_id)
    runner = PatchRunner()
    try:
        events = runner.run(definition, payload)
    except PatchValidationError as e:
        logger.error("Failed to start patch execution for %s: %s", patch_id, e)
        frame = _error_frame("PATCH_START_FAILED", "Failed to start patch execution")
        return StreamingResponse(iter([frame]), media_type=SSE_MEDIA_TYPE)

    return StreamingResponse(_stream(patch_id, runner, events), media_type=SSE_MEDIA_TYPE)


@app.get("/runs/{run_id}")
async def get_run(run_id: str):
    if run_id not in RUNS:
        raise HTTPException(404, "run not found")
    return JSONResponse(RUNS[run_id].to_wire())


@app.get("/patches/{patch_id}/runs")
async def get_patch_runs(patch_id: str):
    load_patch(patch_id)
    return JSONResponse([RUNS[run_id].to_wire() for run_id in RUN_HISTORY.get(patch_id, [])])


@app.get("/health")
async def health():
    return JSONResponse({"ok": True})
