import logging
from typing import Any, Awaitable, Callable, Dict, List, Union

from .exceptions import FunctionNotFoundError

logger = logging.getLogger("gearpatch.registry")

LocalFn = Callable[[Any], Union[Any, Awaitable[Any]]]


class FunctionRegistry:
    """Maps symbolic gear names to callables for `local` nodes.

    Populate at startup, read during runs. Re-registering a name replaces
    the previous binding.
    """

    def __init__(self, fns: Dict[str, LocalFn] | None = None):
        self._fns: Dict[str, LocalFn] = dict(fns or {})

    def register(self, name: str, fn: LocalFn | None = None):
        if fn is None:
            def decorator(f: LocalFn) -> LocalFn:
                self.register(name, f)
                return f
            return decorator
        if name in self._fns:
            logger.debug("Replacing local function %s", name)
        self._fns[name] = fn
        return fn

    def resolve(self, name: str) -> LocalFn:
        fn = self._fns.get(name)
        if fn is None:
            raise FunctionNotFoundError(name)
        return fn

    def names(self) -> List[str]:
        return sorted(self._fns)

    def __contains__(self, name: object) -> bool:
        return name in self._fns

    def __len__(self) -> int:
        return len(self._fns)


default_registry = FunctionRegistry()


def register(name: str, fn: LocalFn | None = None):
    return default_registry.register(name, fn)


def resolve(name: str) -> LocalFn:
    return default_registry.resolve(name)
