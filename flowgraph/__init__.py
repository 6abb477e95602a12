"""Declarative workflow graphs over shared, schema-typed state."""

from .checkpoint import MemoryCheckpointStore
from .config import EngineSettings, get_settings
from .constants import END, START
from .edges import Branch, ConditionalEdge, EdgeOptions, add_edge_to_graph, finalize_conditional_edges
from .engine import CompiledGraph
from .errors import (
    AmbiguousEdges,
    AssemblyError,
    DuplicateNode,
    DuplicateRegistration,
    GraphFrozen,
    HandlerExecutionError,
    InputValidationError,
    InvalidEdge,
    InvalidNodeId,
    InvalidStateUpdate,
    InvalidStepConfig,
    MissingEntryPoint,
    RunError,
    RunTimeout,
    StepLimitExceeded,
    StepTypeNotFound,
    UnknownNodeReference,
    WorkflowError,
)
from .graph import Node, StateGraph
from .models import Checkpoint, NodeHandle, NodeResult, RunResult, WorkflowMeta
from .registry import Registry, StepRegistry, WorkflowRegistry, create_registries
from .state import merge_state
from .tracing import LoggingTracer, Tracer
from .workflow import CompiledWorkflow, WorkflowBuilder, define_workflow, workflow_step

__all__ = [
    "START",
    "END",
    "AmbiguousEdges",
    "AssemblyError",
    "Branch",
    "Checkpoint",
    "CompiledGraph",
    "CompiledWorkflow",
    "ConditionalEdge",
    "DuplicateNode",
    "DuplicateRegistration",
    "EdgeOptions",
    "EngineSettings",
    "GraphFrozen",
    "HandlerExecutionError",
    "InputValidationError",
    "InvalidEdge",
    "InvalidNodeId",
    "InvalidStateUpdate",
    "InvalidStepConfig",
    "LoggingTracer",
    "MemoryCheckpointStore",
    "MissingEntryPoint",
    "Node",
    "NodeHandle",
    "NodeResult",
    "Registry",
    "RunError",
    "RunResult",
    "RunTimeout",
    "StateGraph",
    "StepLimitExceeded",
    "StepRegistry",
    "StepTypeNotFound",
    "Tracer",
    "UnknownNodeReference",
    "WorkflowBuilder",
    "WorkflowError",
    "WorkflowMeta",
    "WorkflowRegistry",
    "add_edge_to_graph",
    "create_registries",
    "define_workflow",
    "finalize_conditional_edges",
    "get_settings",
    "merge_state",
    "workflow_step",
]
