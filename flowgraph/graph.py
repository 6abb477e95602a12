# flowgraph/graph.py
"""Mutable graph under construction. `compile()` turns it into a CompiledGraph."""

from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Set, Type

from pydantic import BaseModel, ConfigDict, Field

from .checkpoint import MemoryCheckpointStore
from .constants import END, SENTINELS, START
from .edges import Branch
from .engine import CompiledGraph
from .errors import (
    AmbiguousEdges,
    DuplicateNode,
    GraphFrozen,
    InvalidEdge,
    InvalidNodeId,
    MissingEntryPoint,
    UnknownNodeReference,
)

Runnable = Callable[[Dict[str, Any]], Any]


class Node(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    runnable: Runnable
    step_type: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StateGraph:
    def __init__(self, state_schema: Optional[Type[BaseModel]] = None):
        self.state_schema = state_schema
        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, str] = {}  # source -> target, unconditional
        self._conditional_sources: Set[str] = set()
        self.compiled = False

    def _check_mutable(self):
        if self.compiled:
            raise GraphFrozen()

    def add_node(
        self,
        node_id: str,
        runnable: Runnable,
        *,
        step_type: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Node:
        self._check_mutable()
        if not node_id:
            raise InvalidNodeId(node_id, "node ids must be non-empty")
        if node_id in SENTINELS:
            raise InvalidNodeId(node_id, "reserved for the start/end sentinels")
        if node_id in self.nodes:
            raise DuplicateNode(node_id)
        if not callable(runnable):
            raise TypeError(f"node '{node_id}' runnable must be callable, got {type(runnable).__name__}")
        node = Node(
            id=node_id,
            runnable=runnable,
            step_type=step_type,
            config=config or {},
            metadata=metadata or {},
        )
        self.nodes[node_id] = node
        return node

    def _check_endpoints(self, source: str, target: str):
        if source == END:
            raise InvalidEdge(source, target, "the end node has no outbound edges")
        if target == START:
            raise InvalidEdge(source, target, "the start node cannot be an edge target")

    def add_edge(self, source: str, target: str) -> None:
        self._check_mutable()
        self._check_endpoints(source, target)
        if source in self._conditional_sources:
            raise AmbiguousEdges(source, "unconditional edge declared alongside conditional edges")
        if source in self.edges:
            raise AmbiguousEdges(source, f"already has an unconditional edge to '{self.edges[source]}'")
        self.edges[source] = target

    def check_conditional_edge(self, source: str, target: str) -> None:
        """Record that `source` routes conditionally; the edge itself is resolved at compile time."""
        self._check_mutable()
        self._check_endpoints(source, target)
        if source in self.edges:
            raise AmbiguousEdges(source, "conditional edge declared alongside an unconditional edge")
        self._conditional_sources.add(source)

    def _check_reference(self, node_id: str, source: str, target: str):
        if node_id not in self.nodes and node_id not in SENTINELS:
            raise UnknownNodeReference(node_id, source, target)

    def validate(self, branches: Mapping[str, Branch]) -> None:
        for source, target in self.edges.items():
            self._check_reference(source, source, target)
            self._check_reference(target, source, target)
        for source, branch in branches.items():
            if source in self.edges:
                raise AmbiguousEdges(source, "has both an unconditional edge and conditional edges")
            for target in branch.targets:
                self._check_endpoints(source, target)
                self._check_reference(source, source, target)
                self._check_reference(target, source, target)
        if START not in self.edges and START not in branches:
            raise MissingEntryPoint()

    def compile(
        self,
        branches: Optional[Mapping[str, Branch]] = None,
        *,
        checkpointer: Optional[MemoryCheckpointStore] = None,
        max_steps: Optional[int] = None,
        name: Optional[str] = None,
        run_sync_in_thread: Optional[bool] = None,
    ) -> CompiledGraph:
        self._check_mutable()
        branches = dict(branches or {})
        self.validate(branches)
        compiled = CompiledGraph(
            nodes=MappingProxyType(dict(self.nodes)),
            edges=MappingProxyType(dict(self.edges)),
            branches=MappingProxyType(branches),
            state_schema=self.state_schema,
            checkpointer=checkpointer if checkpointer is not None else MemoryCheckpointStore(),
            max_steps=max_steps,
            name=name,
            run_sync_in_thread=run_sync_in_thread,
        )
        self.compiled = True
        return compiled
