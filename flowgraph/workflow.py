# flowgraph/workflow.py
"""Workflow DSL: define_workflow() builds, compiles and registers a workflow.

Example::

    class Input(BaseModel):
        location: str

    class State(BaseModel):
        location: str
        forecast: Optional[str] = None

    def build(wf: WorkflowBuilder):
        fetch = wf.add_node("fetch", "function", {"fn": fetch_forecast})
        wf.add_edge(wf.start, fetch)
        wf.add_edge(fetch, wf.end)

    forecast = define_workflow(
        WorkflowMeta(id="forecast", input_schema=Input, state_schema=State),
        build,
        steps=steps,
        workflows=workflows,
    )
    final_state = await forecast.run({"location": "Paris"})
"""

import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .checkpoint import MemoryCheckpointStore
from .config import get_settings
from .constants import END, SENTINELS, START
from .edges import ConditionalEdge, EdgeOptions, Predicate, add_edge_to_graph, finalize_conditional_edges
from .engine import CompiledGraph
from .errors import AssemblyError, DuplicateNode, DuplicateRegistration, InvalidNodeId, RunError, StepTypeNotFound
from .graph import StateGraph
from .models import Checkpoint, ErrorInfo, NodeHandle, RunResult, WorkflowMeta
from .registry import StepHandler, StepRegistry, WorkflowRegistry
from .state import State, initial_state, schema_fields, validate_input
from .tracing import LoggingTracer, Tracer, safe_emit

logger = logging.getLogger(__name__)

NodeRef = Union[NodeHandle, str]


def _node_id(ref: NodeRef) -> str:
    return ref.id if isinstance(ref, NodeHandle) else ref


class WorkflowBuilder:
    """Authoring surface handed to the build callback. Assembles, never executes."""

    def __init__(self, graph: StateGraph, steps: StepRegistry):
        self.graph = graph
        self.steps = steps
        self.conditional_edges: List[ConditionalEdge] = []
        self.start = NodeHandle(id=START)
        self.end = NodeHandle(id=END)

    def add_node(self, node_id: str, step_type: str, config: Optional[Dict[str, Any]] = None) -> NodeHandle:
        handler = self.steps.get(step_type)
        if handler is None:
            raise StepTypeNotFound(step_type, self.steps.list())
        if not node_id or node_id in SENTINELS:
            raise InvalidNodeId(node_id, "reserved or empty")
        if node_id in self.graph.nodes:
            raise DuplicateNode(node_id)

        config = dict(config or {})
        handler(self.graph, node_id, config)

        node = self.graph.nodes.get(node_id)
        if node is None:
            raise AssemblyError(f"step type '{step_type}' did not attach a node for '{node_id}'")
        if node.step_type is None:
            node.step_type = step_type
        if not node.config:
            node.config = config
        return NodeHandle(id=node_id)

    def add_edge(
        self,
        source: NodeRef,
        target: NodeRef,
        *,
        when: Optional[Predicate] = None,
        label: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        options = EdgeOptions(when=when, label=label, description=description)
        add_edge_to_graph(self.graph, _node_id(source), _node_id(target), options, self.conditional_edges)

    def compile(self, **kwargs) -> CompiledGraph:
        branches = finalize_conditional_edges(self.conditional_edges)
        return self.graph.compile(branches, **kwargs)


class CompiledWorkflow:
    """Immutable, runnable workflow. Reused across any number of runs."""

    def __init__(self, meta: WorkflowMeta, graph: CompiledGraph, tracer: Optional[Tracer] = None):
        self.meta = meta
        self.graph = graph
        self.tracer = tracer
        self.run_timeout = get_settings().run_timeout

    @property
    def id(self) -> str:
        return self.meta.id

    @property
    def name(self) -> str:
        return self.meta.id

    @property
    def description(self) -> str:
        return self.meta.get_description()

    @property
    def metadata(self) -> Dict[str, Any]:
        return dict(self.meta.metadata)

    @property
    def input_schema(self):
        return self.meta.input_schema

    @property
    def state_schema(self):
        return self.meta.state_schema

    @property
    def checkpointer(self) -> MemoryCheckpointStore:
        return self.graph.checkpointer

    def tags(self) -> List[str]:
        return [f"workflow:{self.id}"] + [f"{k}:{v}" for k, v in self.meta.metadata.items()]

    async def _traced(self, invoke: Callable[[], Awaitable[State]]) -> State:
        session_id = f"workflow-{self.id}-{int(time.time() * 1000)}"
        tags = self.tags()
        safe_emit(self.tracer, "on_run_start", session_id, tags)
        error: Optional[BaseException] = None
        try:
            return await invoke()
        except RunError as e:
            if e.workflow_id is None:
                e.workflow_id = self.id
            error = e
            raise
        except BaseException as e:
            # includes cancellation from a caller or a parent's deadline
            error = e
            raise
        finally:
            safe_emit(self.tracer, "on_run_end", session_id, tags, error=error)

    async def run(
        self,
        input: Any,
        *,
        thread_id: Optional[str] = None,
        timeout: Optional[float] = None,
        max_steps: Optional[int] = None,
        logs: Optional[List[str]] = None,
    ) -> State:
        """Validate `input`, run the graph to completion and return the final state."""
        data = validate_input(self.input_schema, input, workflow_id=self.id)
        state = initial_state(data, schema_fields(self.state_schema))
        logger.info(f"running workflow {self.id}")
        return await self._traced(lambda: self.graph.invoke(
            state,
            thread_id=thread_id,
            max_steps=max_steps,
            timeout=timeout if timeout is not None else self.run_timeout,
            logs=logs,
        ))

    async def resume(
        self,
        thread_id: str,
        *,
        timeout: Optional[float] = None,
        max_steps: Optional[int] = None,
        logs: Optional[List[str]] = None,
    ) -> State:
        """Continue an interrupted run from the thread's last committed step."""
        logger.info(f"resuming workflow {self.id} thread {thread_id}")
        return await self._traced(lambda: self.graph.invoke(
            None,
            thread_id=thread_id,
            max_steps=max_steps,
            timeout=timeout if timeout is not None else self.run_timeout,
            logs=logs,
        ))

    async def execute(
        self,
        input: Any,
        *,
        thread_id: Optional[str] = None,
        timeout: Optional[float] = None,
        max_steps: Optional[int] = None,
    ) -> RunResult:
        """Like run(), but run-time failures come back in RunResult.error instead of being raised.

        Without a `thread_id` the run id doubles as the thread id. The
        checkpoint is then kept only when the run fails, so it can be resumed.
        """
        run_id = str(uuid.uuid4())
        anonymous = thread_id is None
        thread_id = thread_id or run_id
        logs: List[str] = []
        state: State = {}
        error: Optional[ErrorInfo] = None
        try:
            state = await self.run(input, thread_id=thread_id, timeout=timeout, max_steps=max_steps, logs=logs)
        except RunError as e:
            error = ErrorInfo(
                kind=e.kind,
                message=str(e),
                workflow_id=e.workflow_id,
                node_id=e.node_id,
                details=getattr(e, "errors", []),
            )
            checkpoint = self.get_checkpoint(thread_id)
            if checkpoint is not None:
                state = checkpoint.state
        else:
            if anonymous:
                self.checkpointer.delete(thread_id)
        return RunResult(
            run_id=run_id,
            workflow_id=self.id,
            thread_id=thread_id,
            state=state,
            logs=logs,
            finished=True,
            error=error,
        )

    def get_checkpoint(self, thread_id: str) -> Optional[Checkpoint]:
        return self.graph.checkpointer.get(thread_id)

    def get_graph(self) -> Dict[str, Any]:
        return self.graph.get_graph()

    def __repr__(self) -> str:
        return f"CompiledWorkflow(id={self.id!r})"


def workflow_step(workflow: CompiledWorkflow) -> StepHandler:
    """Step handler that runs `workflow` as a single node of another graph.

    Config:
        build_input: optional callable mapping the parent state to the child input
        target_key: store the child's final state under this field; when
            omitted the child's fields are merged into the parent state
    """

    def register(graph: StateGraph, node_id: str, config: Dict[str, Any]) -> None:
        build_input = config.get("build_input")
        target_key = config.get("target_key")
        parent_fields = schema_fields(graph.state_schema)

        async def run_child(state: State) -> State:
            child_input = build_input(state) if build_input else state
            result = await workflow.run(child_input)
            if target_key:
                return {target_key: result}
            if parent_fields is None:
                return result
            return {k: v for k, v in result.items() if k in parent_fields}

        graph.add_node(
            node_id,
            run_child,
            step_type=workflow.id,
            config=config,
            metadata={
                "name": node_id,
                "description": f"Workflow: {workflow.id}",
                "type": "workflow",
                "workflow_id": workflow.id,
            },
        )

    return register


def define_workflow(
    meta: WorkflowMeta,
    build: Callable[[WorkflowBuilder], None],
    *,
    steps: StepRegistry,
    workflows: Optional[WorkflowRegistry] = None,
    tracer: Optional[Tracer] = None,
    checkpointer: Optional[MemoryCheckpointStore] = None,
    max_steps: Optional[int] = None,
    register_as_step: bool = True,
) -> CompiledWorkflow:
    """Build, compile and register a workflow.

    The compiled workflow goes into `workflows` (when given) under its id and,
    unless `register_as_step` is False, into `steps` so other workflows can
    use it as a node.
    """
    if workflows is not None and meta.id in workflows:
        raise DuplicateRegistration(workflows.kind, meta.id)
    if register_as_step and meta.id in steps:
        raise DuplicateRegistration(steps.kind, meta.id)

    graph = StateGraph(meta.state_schema)
    builder = WorkflowBuilder(graph, steps)
    build(builder)
    compiled = builder.compile(checkpointer=checkpointer, max_steps=max_steps, name=meta.id)

    workflow = CompiledWorkflow(meta, compiled, tracer=tracer if tracer is not None else LoggingTracer())
    if workflows is not None:
        workflows.register(meta.id, workflow)
    if register_as_step:
        steps.register(meta.id, workflow_step(workflow))
    return workflow
