# flowgraph/errors.py
from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for every error raised by flowgraph."""


# --- assembly-time errors: raised while building or compiling a graph ---

class AssemblyError(WorkflowError):
    pass


class DuplicateRegistration(AssemblyError):
    def __init__(self, registry: str, key: str):
        self.registry = registry
        self.key = key
        super().__init__(f"{registry} '{key}' is already registered")


class StepTypeNotFound(AssemblyError):
    def __init__(self, step_type: str, available: List[str]):
        self.step_type = step_type
        self.available = available
        super().__init__(
            f"Step type '{step_type}' not found. Available: {', '.join(available)}"
        )


class DuplicateNode(AssemblyError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"node '{node_id}' already exists in this graph")


class InvalidNodeId(AssemblyError):
    def __init__(self, node_id: str, reason: str):
        self.node_id = node_id
        super().__init__(f"invalid node id '{node_id}': {reason}")


class UnknownNodeReference(AssemblyError):
    def __init__(self, node_id: str, source: str, target: str):
        self.node_id = node_id
        self.source = source
        self.target = target
        super().__init__(f"edge {source} -> {target} references unknown node '{node_id}'")


class AmbiguousEdges(AssemblyError):
    def __init__(self, source: str, reason: str):
        self.source = source
        super().__init__(f"ambiguous routing out of '{source}': {reason}")


class InvalidEdge(AssemblyError):
    def __init__(self, source: str, target: str, reason: str):
        self.source = source
        self.target = target
        super().__init__(f"invalid edge {source} -> {target}: {reason}")


class MissingEntryPoint(AssemblyError):
    def __init__(self):
        super().__init__("graph has no edge out of the start node")


class InvalidStepConfig(AssemblyError):
    def __init__(self, node_id: str, step_type: str, reason: str):
        self.node_id = node_id
        self.step_type = step_type
        super().__init__(f"invalid config for {step_type} node '{node_id}': {reason}")


class GraphFrozen(AssemblyError):
    def __init__(self):
        super().__init__("graph is compiled; nodes and edges can no longer be added")


# --- run-time errors: raised by CompiledWorkflow.run ---

class RunError(WorkflowError):
    """Failure of a single run. Carries the workflow and, where known, the node."""

    kind = "run_error"

    def __init__(self, message: str, workflow_id: Optional[str] = None, node_id: Optional[str] = None):
        self.message = message
        self.workflow_id = workflow_id
        self.node_id = node_id
        super().__init__(message)

    def __str__(self) -> str:
        where = []
        if self.workflow_id:
            where.append(f"workflow '{self.workflow_id}'")
        if self.node_id:
            where.append(f"node '{self.node_id}'")
        if not where:
            return self.message
        return f"{self.message} ({', '.join(where)})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "error": str(self),
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
        }


class InputValidationError(RunError):
    kind = "input_validation"

    def __init__(self, errors: List[Dict[str, Any]], workflow_id: Optional[str] = None):
        self.errors = errors
        paths = ", ".join(e["path"] or "<root>" for e in errors)
        super().__init__(f"input validation failed at: {paths}", workflow_id=workflow_id)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class HandlerExecutionError(RunError):
    kind = "handler_execution"

    def __init__(self, node_id: str, cause: BaseException, workflow_id: Optional[str] = None):
        self.cause = cause
        super().__init__(
            f"node '{node_id}' failed: {type(cause).__name__}: {cause}",
            workflow_id=workflow_id,
            node_id=node_id,
        )

    def __str__(self) -> str:
        if self.workflow_id:
            return f"{self.message} (workflow '{self.workflow_id}')"
        return self.message


class InvalidStateUpdate(HandlerExecutionError):
    kind = "invalid_state_update"


class StepLimitExceeded(RunError):
    kind = "step_limit_exceeded"

    def __init__(self, limit: int, workflow_id: Optional[str] = None, node_id: Optional[str] = None):
        self.limit = limit
        super().__init__(
            f"step limit of {limit} exceeded without reaching the end node",
            workflow_id=workflow_id,
            node_id=node_id,
        )


class RunTimeout(RunError):
    kind = "run_timeout"

    def __init__(self, timeout: float, workflow_id: Optional[str] = None, node_id: Optional[str] = None):
        self.timeout = timeout
        super().__init__(f"run exceeded timeout of {timeout}s", workflow_id=workflow_id, node_id=node_id)
