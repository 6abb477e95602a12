# flowgraph/engine.py
import asyncio
import inspect
import logging
import uuid
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel

from .checkpoint import MemoryCheckpointStore
from .config import get_settings
from .constants import END, START
from .errors import HandlerExecutionError, InvalidStateUpdate, RunError, RunTimeout, StepLimitExceeded
from .models import NodeResult
from .state import State, merge_state, schema_fields, unknown_fields

if TYPE_CHECKING:
    from .edges import Branch
    from .graph import Node

logger = logging.getLogger(__name__)


class _Run:
    """Mutable bookkeeping for one invocation; never shared between runs."""

    def __init__(self, thread_id: str, state: State, active: List[str], step: int, logs: List[str]):
        self.thread_id = thread_id
        self.state = state
        self.active = active
        self.step = step
        self.logs = logs


class CompiledGraph:
    """Executable, read-only graph.

    Execution proceeds in steps. Every node in the active set runs against
    the same state snapshot; their updates are merged in active-set order
    (later writers win on the same field) and their outbound edges give the
    next active set. Nodes reached by several branches in one step run once.
    """

    def __init__(
        self,
        *,
        nodes: Mapping[str, "Node"],
        edges: Mapping[str, str],
        branches: Mapping[str, "Branch"],
        state_schema: Optional[Type[BaseModel]] = None,
        checkpointer: Optional[MemoryCheckpointStore] = None,
        max_steps: Optional[int] = None,
        name: Optional[str] = None,
        run_sync_in_thread: Optional[bool] = None,
    ):
        settings = get_settings()
        self.nodes = nodes
        self.edges = edges
        self.branches = branches
        self.state_schema = state_schema
        self.checkpointer = checkpointer if checkpointer is not None else MemoryCheckpointStore()
        self.max_steps = max_steps if max_steps is not None else settings.max_steps
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {self.max_steps}")
        self.name = name
        self.run_sync_in_thread = (
            settings.run_sync_handlers_in_thread if run_sync_in_thread is None else run_sync_in_thread
        )
        self._allowed_fields = schema_fields(state_schema)

    def next_nodes(self, node_id: str, state: Mapping[str, Any]) -> List[str]:
        branch = self.branches.get(node_id)
        if branch is not None:
            return branch.route(state)
        target = self.edges.get(node_id)
        return [target] if target is not None else []

    async def _call_node(self, node_fn: Callable, state: State) -> Tuple[Dict[str, Any], Optional[str]]:
        """Call a node (sync or async) and normalise its return value to (update, log)."""
        if inspect.iscoroutinefunction(node_fn):
            res = await node_fn(state)
        elif self.run_sync_in_thread:
            res = await asyncio.to_thread(node_fn, state)
        else:
            res = node_fn(state)
        if inspect.isawaitable(res):
            res = await res
        if isinstance(res, NodeResult):
            return dict(res.update), res.log
        if res is None:
            return {}, None
        if isinstance(res, Mapping):
            return dict(res), None
        raise TypeError(f"node returned {type(res).__name__}; expected a dict, NodeResult or None")

    async def _run_node(self, node_id: str, snapshot: State, run: _Run) -> Dict[str, Any]:
        node = self.nodes[node_id]
        logger.debug(f"[{run.thread_id}] running {node_id}")
        run.logs.append(f"running {node_id}")
        try:
            # each branch gets its own copy so in-place edits stay local
            update, log = await self._call_node(node.runnable, dict(snapshot))
        except Exception as e:
            logger.debug(f"[{run.thread_id}] node {node_id} failed: {e}")
            raise HandlerExecutionError(node_id, e) from e
        if log:
            run.logs.append(f"{node_id}: {log}")
        bad = unknown_fields(update, self._allowed_fields)
        if bad:
            raise InvalidStateUpdate(node_id, ValueError(f"unknown state field(s): {', '.join(bad)}"))
        return update

    def _merge(self, snapshot: State, node_ids: List[str], updates: List[Dict[str, Any]]) -> State:
        merged = snapshot
        writers: Dict[str, str] = {}
        for node_id, update in zip(node_ids, updates):
            for key in update:
                if key in writers:
                    logger.debug(f"field '{key}' written by both {writers[key]} and {node_id}; keeping {node_id}")
                writers[key] = node_id
            merged = merge_state(merged, update)
        return merged

    async def _step(self, run: _Run) -> None:
        snapshot = run.state
        node_ids = list(run.active)
        tasks = [asyncio.ensure_future(self._run_node(n, snapshot, run)) for n in node_ids]
        try:
            updates = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            # collect the siblings so their own failures are not reported as unretrieved
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        next_active: List[str] = []
        for node_id, update in zip(node_ids, updates):
            # routing sees this node's own update, not its siblings'
            targets = self.next_nodes(node_id, merge_state(snapshot, update))
            run.logs.append(f"{node_id} -> next: {targets or None}")
            for target in targets:
                if target != END and target not in next_active:
                    next_active.append(target)

        run.state = self._merge(snapshot, node_ids, updates)
        run.active = next_active

    async def _execute(self, run: _Run, limit: int) -> State:
        if run.active == [START]:
            run.active = [t for t in self.next_nodes(START, run.state) if t != END]
            run.logs.append(f"{START} -> next: {run.active or None}")
            self._save(run)

        while run.active:
            if run.step >= limit:
                run.logs.append("max steps reached; aborting")
                raise StepLimitExceeded(limit, node_id=run.active[0])
            run.step += 1
            await self._step(run)
            self._save(run)
        return run.state

    def _save(self, run: _Run) -> None:
        self.checkpointer.save(
            run.thread_id,
            run.state,
            run.active,
            run.step,
            workflow_id=self.name,
            completed=not run.active,
        )

    async def invoke(
        self,
        state: Optional[Mapping[str, Any]],
        *,
        thread_id: Optional[str] = None,
        max_steps: Optional[int] = None,
        timeout: Optional[float] = None,
        logs: Optional[List[str]] = None,
    ) -> State:
        """Run the graph to completion and return the final state.

        Passing `state=None` resumes the thread's checkpoint instead of
        starting over from the start node. Without a `thread_id` the run gets
        a generated one that no caller can resume, so its checkpoint is
        dropped when the run ends.
        """
        if state is None and thread_id is None:
            raise RunError("resuming requires a thread_id")
        anonymous = thread_id is None
        thread_id = thread_id or str(uuid.uuid4())
        logs = logs if logs is not None else []
        steps = max_steps if max_steps is not None else self.max_steps
        if state is None:
            checkpoint = self.checkpointer.get(thread_id)
            if checkpoint is None:
                raise RunError(f"no checkpoint to resume for thread '{thread_id}'")
            run = _Run(thread_id, checkpoint.state, checkpoint.next_nodes, checkpoint.step, logs)
            logs.append(f"resuming at step {checkpoint.step}: {checkpoint.next_nodes or None}")
            # the step limit restarts on resume
            limit = run.step + steps
        else:
            run = _Run(thread_id, dict(state), [START], 0, logs)
            limit = steps

        try:
            if timeout is None:
                return await self._execute(run, limit)
            try:
                return await asyncio.wait_for(self._execute(run, limit), timeout)
            except asyncio.TimeoutError:
                logs.append(f"timed out after {timeout}s")
                raise RunTimeout(timeout, node_id=run.active[0] if run.active else None) from None
        finally:
            if anonymous:
                self.checkpointer.delete(thread_id)

    def get_graph(self) -> Dict[str, Any]:
        """Structure of the graph for introspection and rendering."""
        nodes = [
            {"id": n.id, "step_type": n.step_type, "metadata": dict(n.metadata)}
            for n in self.nodes.values()
        ]
        edges = [
            {"source": s, "target": t, "conditional": False}
            for s, t in self.edges.items()
        ]
        for source, branch in self.branches.items():
            for e in branch.edges:
                edges.append({
                    "source": source,
                    "target": e.target,
                    "conditional": True,
                    "label": e.label,
                    "description": e.description,
                })
        return {"nodes": nodes, "edges": edges, "start": START, "end": END}
