"""Patch execution runtime: run a DAG of gears and stream lifecycle events."""

from .exceptions import (
    FunctionNotFoundError,
    GearPatchError,
    NodeExecutionError,
    NodeTimeoutError,
    PatchValidationError,
    RunCancelledError,
    SecurityError,
)
from .models import PatchDefinition, load_patch_definition
from .orchestrator import PatchRunner, run_patch
from .registry import FunctionRegistry, default_registry, register, resolve
from .security import create_timeout_controller, validate_http_url

__version__ = "0.1.0"
