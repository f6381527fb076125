from typing import Any, Dict

from .registry import FunctionRegistry, default_registry


async def echo_gear(input: Any) -> Dict[str, Any]:
    if isinstance(input, dict):
        return {"echo": input.get("msg")}
    return {"echo": input}


BUILTIN_GEARS = {
    "echoGear": echo_gear,
}


def register_builtin_gears(registry: FunctionRegistry | None = None) -> FunctionRegistry:
    if registry is None:
        registry = default_registry
    for name, fn in BUILTIN_GEARS.items():
        registry.register(name, fn)
    return registry
