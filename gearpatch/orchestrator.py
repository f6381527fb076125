import asyncio
import inspect
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple, Union

import networkx as nx

from .config import Settings, get_settings, run_logger
from .events import ErrorInfo, NodeError, NodeStart, NodeSuccess, PatchEvent, RunComplete, RunStart
from .models import CostSummary, HttpNode, LoggingOptions, PatchDefinition, PatchNode, PatchRun, build_graph, load_patch_definition
from .outlets import HttpOutlet
from .registry import FunctionRegistry, default_registry
from .runs import MeteredOutput, begin_run, cost_from_usage, finish_run, merge_costs
from .security import TimeoutController, create_timeout_controller, run_with_signal

logger = logging.getLogger("gearpatch.orchestrator")


def execution_order(patch: PatchDefinition) -> List[str]:
    """Topological order; ties go to whichever node comes first in `nodes`."""
    position = {n.id: i for i, n in enumerate(patch.nodes)}
    g = build_graph([n.id for n in patch.nodes], patch.edges)
    return list(nx.lexicographical_topological_sort(g, key=position.__getitem__))


def predecessors(patch: PatchDefinition) -> Dict[str, List[str]]:
    """Distinct sources feeding each node, in edge order."""
    preds: Dict[str, List[str]] = {n.id: [] for n in patch.nodes}
    for e in patch.edges:
        if e.source not in preds[e.target]:
            preds[e.target].append(e.source)
    return preds


class PatchRunner:
    def __init__(
        self,
        registry: Optional[FunctionRegistry] = None,
        settings: Optional[Settings] = None,
        http_outlet: Optional[HttpOutlet] = None,
        default_timeout_ms: Optional[int] = None,
        logging_options: Optional[LoggingOptions] = None,
    ):
        self.registry = registry if registry is not None else default_registry
        self.settings = settings or get_settings()
        if http_outlet is None:
            # explicit settings pin the allowlist; otherwise the guard reads the env per call
            http_outlet = HttpOutlet(allowed_hosts=settings.allowed_hosts() if settings else None)
        self.http_outlet = http_outlet
        self.default_timeout_ms = default_timeout_ms or self.settings.patch_http_timeout_ms
        self.log = run_logger(logger, logging_options)
        self.redact = self.log.redact
        self.run_id: Optional[str] = None
        self.last_run: Optional[PatchRun] = None
        self._cancelled = False
        self._controller: Optional[TimeoutController] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def run(self, patch: Union[PatchDefinition, Mapping[str, Any]], payload: Any) -> AsyncIterator[PatchEvent]:
        """Validate `patch` now and return a lazy stream of run events.

        Raises PatchValidationError before any event exists if the
        definition is malformed.
        """
        definition = load_patch_definition(patch)
        self._cancelled = False
        self.run_id = str(uuid.uuid4())
        return self._events(definition, payload, self.run_id)

    def cancel(self) -> None:
        """Stop scheduling nodes and abort the one in flight, if any.

        Safe to call from a worker thread, e.g. from inside a synchronous gear.
        """
        self._cancelled = True
        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self._abort_in_flight)
                return
        self._abort_in_flight()

    def _abort_in_flight(self) -> None:
        if self._controller is not None:
            self._controller.abort()

    async def _events(self, patch: PatchDefinition, payload: Any, run_id: str) -> AsyncIterator[PatchEvent]:
        self._loop = asyncio.get_running_loop()
        record = begin_run()
        self.last_run = record
        status = "failed"
        cost: Optional[CostSummary] = None

        self.log.info("Run %s started (%d nodes)", run_id, len(patch.nodes))
        yield RunStart(run_id=run_id)
        try:
            nodes = {n.id: n for n in patch.nodes}
            preds = predecessors(patch)
            outputs: Dict[str, Any] = {}
            failed = False

            for node_id in execution_order(patch):
                if self._cancelled:
                    self.log.warning("Run %s cancelled before node %s", run_id, node_id)
                    failed = True
                    break

                node = nodes[node_id]
                node_input = self._assemble_input(node_id, preds, outputs, payload)
                yield NodeStart(node_id=node_id, input=node_input)

                try:
                    output, node_cost = await self._execute(node, node_input)
                except Exception as e:
                    self.log.error("Node %s failed: %s: %s", node_id, type(e).__name__, e)
                    yield NodeError.from_exception(node_id, e, include_stack=not self.redact)
                    failed = True
                    break

                outputs[node_id] = output
                cost = merge_costs(cost, node_cost)
                if not self.redact:
                    self.log.debug("Node %s output: %r", node_id, output)
                yield NodeSuccess(node_id=node_id, output=output)

            status = "failed" if failed else "succeeded"
            self.log.info("Run %s %s", run_id, status)
            yield RunComplete(run_id=run_id, status=status)
        except Exception as e:
            # not attributable to a node; the stream still gets its terminal event
            self.log.exception("Run %s aborted by an internal error", run_id)
            status = "failed"
            yield RunComplete(
                run_id=run_id,
                status="failed",
                error=ErrorInfo.from_exception(e, include_stack=not self.redact),
            )
        finally:
            finish_run(record, status, cost)

    def _assemble_input(self, node_id: str, preds: Dict[str, List[str]], outputs: Dict[str, Any], payload: Any) -> Any:
        sources = preds[node_id]
        if not sources:
            return payload
        if len(sources) == 1:
            return outputs[sources[0]]
        return {source: outputs[source] for source in sources}

    async def _execute(self, node: PatchNode, node_input: Any) -> Tuple[Any, Optional[CostSummary]]:
        controller = create_timeout_controller(node.timeout_ms or self.default_timeout_ms)
        self._controller = controller
        if not self.redact:
            self.log.debug("Node %s (%s) input: %r", node.id, node.kind, node_input)
        try:
            if isinstance(node, HttpNode):
                output = await self.http_outlet.post(
                    node.id, node.url, node_input, controller.signal, max_attempts=node.max_attempts
                )
                usage = output.get("usage") if isinstance(output, dict) else None
                return output, cost_from_usage(usage) if isinstance(usage, dict) else None

            fn = self.registry.resolve(node.fn)
            if inspect.iscoroutinefunction(fn):
                result = await run_with_signal(fn(node_input), controller.signal)
            else:
                # the worker thread is abandoned, not stopped, on timeout or cancel
                result = await run_with_signal(asyncio.to_thread(fn, node_input), controller.signal)
                if inspect.isawaitable(result):
                    result = await run_with_signal(result, controller.signal)
            if isinstance(result, MeteredOutput):
                return result.value, result.cost
            return result, None
        finally:
            controller.clear()
            self._controller = None


def run_patch(
    patch: Union[PatchDefinition, Mapping[str, Any]],
    payload: Any,
    registry: Optional[FunctionRegistry] = None,
) -> AsyncIterator[PatchEvent]:
    return PatchRunner(registry=registry).run(patch, payload)
