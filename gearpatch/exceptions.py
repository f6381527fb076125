"""Error taxonomy for patch execution."""

from typing import Any, Dict, List


class GearPatchError(Exception):
    """Base exception for patch runtime errors."""
    pass


class PatchValidationError(GearPatchError):
    """Raised when a patch definition is structurally invalid."""
    def __init__(self, message: str, errors: List[Dict[str, Any]] | None = None):
        self.errors = errors or []
        super().__init__(message)


class SecurityError(GearPatchError):
    """Raised when an outbound URL fails the egress policy."""
    pass


class NodeTimeoutError(GearPatchError, TimeoutError):
    """Raised when a node exceeds its allotted time."""
    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Node timed out after {timeout_ms}ms")


class NodeExecutionError(GearPatchError):
    """Raised when a node fails for any reason other than timeout or policy."""
    pass


class FunctionNotFoundError(NodeExecutionError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Local function not found: {name}")


class RunCancelledError(GearPatchError):
    """Raised inside a node when the whole run was cancelled."""
    def __init__(self):
        super().__init__("Run cancelled")
