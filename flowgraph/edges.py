# flowgraph/edges.py
"""Conditional edges and the per-source routing they compile into."""

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .state import readonly

if TYPE_CHECKING:
    from .graph import StateGraph

logger = logging.getLogger(__name__)

Predicate = Callable[[Mapping[str, Any]], bool]


class EdgeOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    when: Optional[Predicate] = None
    label: Optional[str] = None
    description: Optional[str] = None


class ConditionalEdge(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    source: str
    target: str
    when: Predicate
    label: Optional[str] = None
    description: Optional[str] = None


class Branch:
    """Routing function for every conditional edge leaving one source node."""

    def __init__(self, source: str, edges: List[ConditionalEdge]):
        self.source = source
        self.edges: Tuple[ConditionalEdge, ...] = tuple(edges)
        # distinct targets, first-declared order; used for introspection only
        self.targets: Tuple[str, ...] = tuple(dict.fromkeys(e.target for e in edges))

    def _matches(self, edge: ConditionalEdge, view: Mapping[str, Any]) -> bool:
        try:
            return bool(edge.when(view))
        except Exception as e:
            logger.error(
                f"predicate for edge {edge.source} -> {edge.target} raised {type(e).__name__}: {e}; "
                "treating as not matched"
            )
            return False

    def route(self, state: Mapping[str, Any]) -> List[str]:
        """Every target whose predicate holds, in declaration order.

        An empty list halts this path, one target continues serially and
        several targets fan out.
        """
        view = readonly(state)
        matches = []
        for edge in self.edges:
            if self._matches(edge, view) and edge.target not in matches:
                matches.append(edge.target)
        return matches

    def __repr__(self) -> str:
        return f"Branch({self.source!r} -> {list(self.targets)!r})"


def add_edge_to_graph(
    graph: "StateGraph",
    source: str,
    target: str,
    options: Optional[EdgeOptions],
    pending: List[ConditionalEdge],
) -> None:
    """Wire an unconditional edge now, or queue a conditional one for compile time."""
    if options is None or options.when is None:
        graph.add_edge(source, target)
        return
    graph.check_conditional_edge(source, target)
    pending.append(ConditionalEdge(
        source=source,
        target=target,
        when=options.when,
        label=options.label,
        description=options.description,
    ))


def finalize_conditional_edges(pending: List[ConditionalEdge]) -> Dict[str, Branch]:
    """Group pending conditional edges by source and build one Branch per source."""
    grouped: Dict[str, List[ConditionalEdge]] = {}
    for edge in pending:
        grouped.setdefault(edge.source, []).append(edge)
    return {source: Branch(source, edges) for source, edges in grouped.items()}
