from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, Generic, Iterable, List, Literal, Optional, Tuple, TypeVar, Union

import networkx as nx
from pydantic import BaseModel, ConfigDict, Field, PositiveInt, StrictBool, StrictFloat, StrictInt, ValidationError, model_validator

from .exceptions import PatchValidationError

# ints and floats only; numeric strings and bools are rejected
Number = Union[StrictInt, StrictFloat]

LogLevel = Literal["debug", "info", "warn", "error"]
RunStatus = Literal["running", "succeeded", "failed"]


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python; both accepted on input."""
    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _reject_null_optionals(cls, data: Any) -> Any:
        # optional means "may be absent", not "may be null"; untyped (Any) fields excepted
        if isinstance(data, dict):
            for name, f in cls.model_fields.items():
                if f.annotation is Any:
                    continue
                for key in {name, f.alias} - {None}:
                    if key in data and data[key] is None:
                        raise ValueError(f"{f.alias or name} must not be null")
        return data

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class GearPort(WireModel):
    id: str
    name: str
    data_type: str = Field(alias="dataType")


class GearTestCase(WireModel):
    input: Any = None
    expected_output: Any = Field(None, alias="expectedOutput")
    notes: Optional[str] = None


class LoggingOptions(WireModel):
    level: LogLevel
    redact: Optional[StrictBool] = None
    sample_rate: Optional[Annotated[StrictFloat, Field(ge=0, le=1)]] = Field(None, alias="sampleRate")


class GearTemplate(WireModel):
    id: str
    name: str
    version: str
    author: str
    description: Optional[str] = None
    docs_markdown: Optional[str] = Field(None, alias="docsMarkdown")
    config_schema: Dict[str, Any] = Field(alias="configSchema")
    default_config: Dict[str, Any] = Field(alias="defaultConfig")
    input_ports: List[GearPort] = Field(alias="inputPorts")
    output_ports: List[GearPort] = Field(alias="outputPorts")
    default_model: Optional[str] = Field(None, alias="defaultModel")
    mcp_servers: Optional[List[str]] = Field(None, alias="mcpServers")
    test_cases: Optional[List[GearTestCase]] = Field(None, alias="testCases")
    logging_options: Optional[LoggingOptions] = Field(None, alias="loggingOptions")


class GearInstance(WireModel):
    id: str
    template_id: str = Field(alias="templateId")
    name: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    logging_options: Optional[LoggingOptions] = Field(None, alias="loggingOptions")


class PatchEdge(WireModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str


class CostSummary(WireModel):
    total_tokens: Optional[Number] = Field(None, alias="totalTokens")
    prompt_tokens: Optional[Number] = Field(None, alias="promptTokens")
    completion_tokens: Optional[Number] = Field(None, alias="completionTokens")
    total_cost: Optional[Number] = Field(None, alias="totalCost")
    currency: Optional[str] = None


class PatchRun(WireModel):
    status: RunStatus
    started_at: Number = Field(alias="startedAt")
    duration: Number
    cost_summary: Optional[CostSummary] = Field(None, alias="costSummary")


def build_graph(node_ids: Iterable[str], edges: Iterable[PatchEdge]) -> nx.DiGraph:
    """Build the dependency graph, rejecting anything that cannot be ordered."""
    g = nx.DiGraph()
    for node_id in node_ids:
        if node_id in g:
            raise ValueError(f"Duplicate node id: {node_id}")
        g.add_node(node_id)
    for e in edges:
        if e.source not in g or e.target not in g:
            raise ValueError(f"Edge references unknown node: {e.source} -> {e.target}")
        if e.source == e.target:
            raise ValueError(f"Self-loop on node: {e.source}")
        g.add_edge(e.source, e.target)
    if not nx.is_directed_acyclic_graph(g):
        raise ValueError("Cycle detected in patch graph")
    return g


class Patch(WireModel):
    id: str
    name: str
    description: Optional[str] = None
    nodes: List[GearInstance]
    edges: List[PatchEdge]
    inlet_ids: List[str] = Field(alias="inletIds")
    outlet_ids: List[str] = Field(alias="outletIds")
    logging_options: Optional[LoggingOptions] = Field(None, alias="loggingOptions")
    run_history: Optional[List[PatchRun]] = Field(None, alias="runHistory")

    @model_validator(mode="after")
    def _check_graph(self):
        build_graph((n.id for n in self.nodes), self.edges)
        return self


# ------------------- Execution-time definition -------------------

class LocalNode(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: Literal["local"]
    fn: str = Field(min_length=1)
    timeout_ms: Optional[PositiveInt] = Field(None, alias="timeoutMs")


class HttpNode(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: Literal["http"]
    url: str
    timeout_ms: Optional[PositiveInt] = Field(None, alias="timeoutMs")
    max_attempts: PositiveInt = Field(1, alias="maxAttempts")


PatchNode = Annotated[Union[LocalNode, HttpNode], Field(discriminator="kind")]


class PatchDefinition(WireModel):
    model_config = ConfigDict(frozen=True)

    nodes: Tuple[PatchNode, ...]
    edges: Tuple[PatchEdge, ...] = ()

    @model_validator(mode="after")
    def _check_graph(self):
        build_graph((n.id for n in self.nodes), self.edges)
        return self


# ------------------- Validation utilities -------------------

T = TypeVar("T", bound=BaseModel)


@dataclass
class ParseResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)


def _parse(model: type[T], candidate: Any) -> ParseResult[T]:
    try:
        return ParseResult(success=True, data=model.model_validate(candidate))
    except ValidationError as e:
        return ParseResult(success=False, errors=e.errors(include_url=False))


def parse_gear_port(candidate: Any) -> ParseResult[GearPort]:
    return _parse(GearPort, candidate)


def parse_logging_options(candidate: Any) -> ParseResult[LoggingOptions]:
    return _parse(LoggingOptions, candidate)


def parse_gear_template(candidate: Any) -> ParseResult[GearTemplate]:
    return _parse(GearTemplate, candidate)


def parse_gear_instance(candidate: Any) -> ParseResult[GearInstance]:
    return _parse(GearInstance, candidate)


def parse_patch_edge(candidate: Any) -> ParseResult[PatchEdge]:
    return _parse(PatchEdge, candidate)


def parse_patch_run(candidate: Any) -> ParseResult[PatchRun]:
    return _parse(PatchRun, candidate)


def parse_patch(candidate: Any) -> ParseResult[Patch]:
    return _parse(Patch, candidate)


def parse_patch_definition(candidate: Any) -> ParseResult[PatchDefinition]:
    return _parse(PatchDefinition, candidate)


def validate_gear_port(candidate: Any) -> bool:
    return parse_gear_port(candidate).success


def validate_logging_options(candidate: Any) -> bool:
    return parse_logging_options(candidate).success


def validate_gear_template(candidate: Any) -> bool:
    return parse_gear_template(candidate).success


def validate_gear_instance(candidate: Any) -> bool:
    return parse_gear_instance(candidate).success


def validate_patch_edge(candidate: Any) -> bool:
    return parse_patch_edge(candidate).success


def validate_patch_run(candidate: Any) -> bool:
    return parse_patch_run(candidate).success


def validate_patch(candidate: Any) -> bool:
    return parse_patch(candidate).success


def validate_patch_definition(candidate: Any) -> bool:
    return parse_patch_definition(candidate).success


def validate_config(candidate: Any) -> bool:
    """Basic shape check only; the template's configSchema is not applied."""
    return isinstance(candidate, dict)


def load_patch_definition(candidate: Any) -> PatchDefinition:
    """Parse a patch definition or raise PatchValidationError."""
    if isinstance(candidate, PatchDefinition):
        return candidate
    result = parse_patch_definition(candidate)
    if not result.success:
        first = result.errors[0]["msg"] if result.errors else "invalid structure"
        raise PatchValidationError(f"Invalid patch definition: {first}", result.errors)
    return result.data
