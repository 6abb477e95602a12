# flowgraph/registry.py
"""Keyed registries for step types and compiled workflows.

Both registries are plain objects constructed at startup and handed to the
code that needs them; nothing here is a module-level singleton.
"""

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

from .errors import DuplicateRegistration

if TYPE_CHECKING:
    from .graph import StateGraph
    from .workflow import CompiledWorkflow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A step handler attaches a runnable node to the graph under construction.
StepHandler = Callable[["StateGraph", str, Dict[str, Any]], None]


class Registry(Generic[T]):
    """Append-only string-keyed table. Lookups never mutate."""

    kind = "entry"

    def __init__(self):
        self._items: Dict[str, T] = {}
        self._lock = threading.Lock()

    def register(self, key: str, item: T) -> T:
        with self._lock:
            if key in self._items:
                raise DuplicateRegistration(self.kind, key)
            self._items[key] = item
        logger.info(f"registered {self.kind}: {key}")
        return item

    def get(self, key: str) -> Optional[T]:
        return self._items.get(key)

    def has(self, key: str) -> bool:
        return key in self._items

    def list(self) -> List[str]:
        return list(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.list())


class StepRegistry(Registry[StepHandler]):
    kind = "step type"

    def step(self, key: str):
        """Decorator form of register()."""
        def decorator(fn: StepHandler) -> StepHandler:
            self.register(key, fn)
            return fn
        return decorator


class WorkflowRegistry(Registry["CompiledWorkflow"]):
    kind = "workflow"


def create_registries(builtin_steps: bool = True) -> Tuple[StepRegistry, WorkflowRegistry]:
    """Fresh step/workflow registries, optionally pre-loaded with the built-in step types."""
    steps = StepRegistry()
    if builtin_steps:
        from .tools import register_builtin_steps
        register_builtin_steps(steps)
    return steps, WorkflowRegistry()
