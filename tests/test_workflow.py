"""Tests for define_workflow, CompiledWorkflow and nested composition."""

import asyncio
from typing import Any, Dict, Optional

import pytest
from pydantic import BaseModel

from flowgraph.errors import (
    DuplicateRegistration,
    HandlerExecutionError,
    InputValidationError,
    StepLimitExceeded,
)
from flowgraph.models import WorkflowMeta
from flowgraph.workflow import define_workflow


class FlagInput(BaseModel):
    value: int


class FlagState(BaseModel):
    value: int
    flag: Optional[bool] = None
    path: Optional[str] = None


def build_check(wf):
    check = wf.add_node("check", "function", {"fn": lambda s: {"flag": s["value"] > 0}})
    ok = wf.add_node("ok", "function", {"fn": lambda s: {"path": "ok"}})
    fail = wf.add_node("fail", "function", {"fn": lambda s: {"path": "fail"}})
    wf.add_edge(wf.start, check)
    wf.add_edge(check, ok, when=lambda s: s["flag"] is True)
    wf.add_edge(check, fail, when=lambda s: s["flag"] is False)
    wf.add_edge(ok, wf.end)
    wf.add_edge(fail, wf.end)


@pytest.fixture
def check_workflow(steps, workflows, tracer):
    return define_workflow(
        WorkflowMeta(
            id="check",
            input_schema=FlagInput,
            state_schema=FlagState,
            metadata={"version": "1.0", "team": "core"},
        ),
        build_check,
        steps=steps,
        workflows=workflows,
        tracer=tracer,
    )


class TestDefineWorkflow:
    def test_registers_in_both_registries(self, check_workflow, steps, workflows):
        assert workflows.get("check") is check_workflow
        assert "check" in steps

    def test_metadata_and_description(self, check_workflow):
        assert check_workflow.id == "check"
        assert check_workflow.name == "check"
        assert check_workflow.description == "Workflow: check"
        assert check_workflow.tags() == ["workflow:check", "version:1.0", "team:core"]

    def test_duplicate_workflow_id_rejected(self, check_workflow, steps, workflows):
        with pytest.raises(DuplicateRegistration):
            define_workflow(
                WorkflowMeta(id="check", input_schema=FlagInput, state_schema=FlagState),
                build_check,
                steps=steps,
                workflows=workflows,
            )
        assert workflows.get("check") is check_workflow

    def test_without_registries(self, steps):
        wf = define_workflow(
            WorkflowMeta(id="loose", input_schema=FlagInput, state_schema=FlagState),
            build_check,
            steps=steps,
            register_as_step=False,
        )
        assert "loose" not in steps
        assert wf.id == "loose"


class TestRun:
    @pytest.mark.asyncio
    async def test_true_branch(self, check_workflow):
        final = await check_workflow.run({"value": 3})
        assert final == {"value": 3, "flag": True, "path": "ok"}

    @pytest.mark.asyncio
    async def test_false_branch(self, check_workflow):
        final = await check_workflow.run({"value": -1})
        assert final["path"] == "fail"

    @pytest.mark.asyncio
    async def test_invalid_input_runs_no_node(self, steps):
        calls = []

        def build(wf):
            node = wf.add_node("spy", "function", {"fn": lambda s: calls.append(s) or {}})
            wf.add_edge(wf.start, node)

        wf = define_workflow(
            WorkflowMeta(id="spy", input_schema=FlagInput, state_schema=FlagState),
            build,
            steps=steps,
        )
        with pytest.raises(InputValidationError) as exc:
            await wf.run({"value": "not a number"})

        assert calls == []
        assert exc.value.workflow_id == "spy"
        assert [e["path"] for e in exc.value.errors] == ["value"]

    @pytest.mark.asyncio
    async def test_input_fields_outside_state_schema_dropped(self, steps):
        class WideInput(BaseModel):
            value: int
            debug: bool = False

        wf = define_workflow(
            WorkflowMeta(id="wide", input_schema=WideInput, state_schema=FlagState),
            build_check,
            steps=steps,
        )
        final = await wf.run({"value": 1, "debug": True})
        assert "debug" not in final

    @pytest.mark.asyncio
    async def test_input_defaults_visible_to_nodes(self, steps):
        class GreetInput(BaseModel):
            name: str
            greeting: str = "hello"

        class GreetState(BaseModel):
            name: str
            greeting: str = "hello"
            message: Optional[str] = None

        def build(wf):
            node = wf.add_node("greet", "function", {"fn": lambda s: {"message": f"{s['greeting']} {s['name']}"}})
            wf.add_edge(wf.start, node)
            wf.add_edge(node, wf.end)

        wf = define_workflow(
            WorkflowMeta(id="greet", input_schema=GreetInput, state_schema=GreetState),
            build,
            steps=steps,
        )
        result = await wf.execute({"name": "ada"})

        assert result.error is None
        assert result.state == {"name": "ada", "greeting": "hello", "message": "hello ada"}

    @pytest.mark.asyncio
    async def test_run_errors_carry_workflow_id(self, steps):
        def build(wf):
            node = wf.add_node("loop", "function", {"fn": lambda s: {"value": s["value"] + 1}})
            wf.add_edge(wf.start, node)
            wf.add_edge(node, node, when=lambda s: True)

        wf = define_workflow(
            WorkflowMeta(id="forever", input_schema=FlagInput, state_schema=FlagState),
            build,
            steps=steps,
            max_steps=5,
        )
        with pytest.raises(StepLimitExceeded) as exc:
            await wf.run({"value": 0})

        assert exc.value.workflow_id == "forever"
        assert exc.value.node_id == "loop"
        assert "forever" in str(exc.value)

    @pytest.mark.asyncio
    async def test_checkpoint_per_thread(self, check_workflow):
        await check_workflow.run({"value": 1}, thread_id="session-1")
        checkpoint = check_workflow.get_checkpoint("session-1")

        assert checkpoint.workflow_id == "check"
        assert checkpoint.completed
        assert checkpoint.state["path"] == "ok"
        assert check_workflow.get_checkpoint("other") is None


class TestTracing:
    @pytest.mark.asyncio
    async def test_start_and_end_once_per_run(self, check_workflow, tracer):
        await check_workflow.run({"value": 1})

        assert [e[0] for e in tracer.events] == ["start", "end"]
        kind, session_id, tags = tracer.events[0]
        assert session_id.startswith("workflow-check-")
        assert "workflow:check" in tags
        assert tracer.events[1][2] is None

    @pytest.mark.asyncio
    async def test_end_event_carries_error(self, steps, tracer):
        def build(wf):
            node = wf.add_node("boom", "function", {"fn": lambda s: 1 / 0})
            wf.add_edge(wf.start, node)

        wf = define_workflow(
            WorkflowMeta(id="boom", input_schema=FlagInput),
            build,
            steps=steps,
            tracer=tracer,
        )
        with pytest.raises(HandlerExecutionError):
            await wf.run({"value": 1})
        assert isinstance(tracer.events[-1][2], HandlerExecutionError)

    @pytest.mark.asyncio
    async def test_end_event_records_cancellation(self, steps, tracer):
        entered = asyncio.Event()

        async def hang(state):
            entered.set()
            await asyncio.sleep(10)

        def build(wf):
            node = wf.add_node("hang", "function", {"fn": hang})
            wf.add_edge(wf.start, node)

        wf = define_workflow(
            WorkflowMeta(id="hang", input_schema=FlagInput),
            build,
            steps=steps,
            tracer=tracer,
        )
        task = asyncio.ensure_future(wf.run({"value": 1}))
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [e[0] for e in tracer.events] == ["start", "end"]
        assert isinstance(tracer.events[-1][2], asyncio.CancelledError)

    @pytest.mark.asyncio
    async def test_tracer_failure_does_not_fail_run(self, steps, caplog):
        class BrokenTracer:
            def on_run_start(self, session_id, tags):
                raise RuntimeError("exporter offline")

            def on_run_end(self, session_id, tags, error=None):
                raise RuntimeError("exporter offline")

        wf = define_workflow(
            WorkflowMeta(id="traced", input_schema=FlagInput, state_schema=FlagState),
            build_check,
            steps=steps,
            tracer=BrokenTracer(),
        )
        final = await wf.run({"value": 2})

        assert final["path"] == "ok"
        assert "exporter offline" in caplog.text


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_result(self, check_workflow):
        result = await check_workflow.execute({"value": 5})

        assert result.finished
        assert result.error is None
        assert result.workflow_id == "check"
        assert result.thread_id == result.run_id
        assert result.state["path"] == "ok"
        assert "running check" in result.logs

    @pytest.mark.asyncio
    async def test_validation_failure_returned(self, check_workflow):
        result = await check_workflow.execute({})

        assert result.error.kind == "input_validation"
        assert result.error.details[0]["path"] == "value"
        assert result.state == {}

    @pytest.mark.asyncio
    async def test_handler_failure_returned_with_node(self, steps):
        def build(wf):
            first = wf.add_node("first", "function", {"fn": lambda s: {"flag": True}})
            broken = wf.add_node("broken", "function", {"fn": lambda s: {}["missing"]})
            wf.add_edge(wf.start, first)
            wf.add_edge(first, broken)

        wf = define_workflow(
            WorkflowMeta(id="partial", input_schema=FlagInput, state_schema=FlagState),
            build,
            steps=steps,
        )
        result = await wf.execute({"value": 1}, thread_id="t")

        assert result.error.kind == "handler_execution"
        assert result.error.node_id == "broken"
        assert result.error.workflow_id == "partial"
        # state as of the last committed step
        assert result.state == {"value": 1, "flag": True}

    @pytest.mark.asyncio
    async def test_anonymous_checkpoint_kept_only_on_failure(self, steps):
        def build(wf):
            node = wf.add_node("pick", "function", {"fn": lambda s: {"flag": 10 // s["value"] > 0}})
            wf.add_edge(wf.start, node)

        wf = define_workflow(
            WorkflowMeta(id="pick", input_schema=FlagInput, state_schema=FlagState),
            build,
            steps=steps,
        )
        for _ in range(20):
            assert (await wf.execute({"value": 1})).error is None
        assert len(wf.checkpointer) == 0

        failed = await wf.execute({"value": 0})
        assert failed.error.kind == "handler_execution"
        assert wf.checkpointer.threads() == [failed.thread_id]


class ChildInput(BaseModel):
    location: str


class ChildState(BaseModel):
    location: str
    forecast: Optional[str] = None


class ParentState(BaseModel):
    location: Optional[str] = None
    forecast: Optional[str] = None
    sub: Optional[Dict[str, Any]] = None
    city: Optional[str] = None


class ParentInput(BaseModel):
    city: str


def build_child(wf):
    node = wf.add_node("forecast", "function", {"fn": lambda s: {"forecast": f"rain in {s['location']}"}})
    wf.add_edge(wf.start, node)
    wf.add_edge(node, wf.end)


@pytest.fixture
def child(steps, workflows):
    return define_workflow(
        WorkflowMeta(id="child", input_schema=ChildInput, state_schema=ChildState),
        build_child,
        steps=steps,
        workflows=workflows,
    )


class TestNestedWorkflows:
    @pytest.mark.asyncio
    async def test_target_key_wraps_child_state(self, child, steps):
        def build(wf):
            node = wf.add_node("nested", "child", {
                "target_key": "sub",
                "build_input": lambda s: {"location": s["city"]},
            })
            wf.add_edge(wf.start, node)

        parent = define_workflow(
            WorkflowMeta(id="parent", input_schema=ParentInput, state_schema=ParentState),
            build,
            steps=steps,
        )
        final = await parent.run({"city": "Oslo"})

        assert final == {"city": "Oslo", "sub": {"location": "Oslo", "forecast": "rain in Oslo"}}

    @pytest.mark.asyncio
    async def test_without_target_key_merges_fields(self, child, steps):
        def build(wf):
            locate = wf.add_node("locate", "function", {"fn": lambda s: {"location": s["city"]}})
            node = wf.add_node("nested", "child")
            wf.add_edge(wf.start, locate)
            wf.add_edge(locate, node)
            wf.add_edge(node, wf.end)

        parent = define_workflow(
            WorkflowMeta(id="parent", input_schema=ParentInput, state_schema=ParentState),
            build,
            steps=steps,
        )
        final = await parent.run({"city": "Lima"})

        assert final == {"city": "Lima", "location": "Lima", "forecast": "rain in Lima"}

    @pytest.mark.asyncio
    async def test_child_runs_do_not_accumulate_checkpoints(self, child, steps):
        def build(wf):
            node = wf.add_node("nested", "child", {"build_input": lambda s: {"location": s["city"]}})
            wf.add_edge(wf.start, node)

        parent = define_workflow(
            WorkflowMeta(id="parent", input_schema=ParentInput, state_schema=ParentState),
            build,
            steps=steps,
        )
        for city in ["Lima", "Quito", "Bogota"]:
            await parent.run({"city": city}, thread_id=city)

        assert len(child.checkpointer) == 0
        assert parent.checkpointer.threads() == ["Lima", "Quito", "Bogota"]

    def test_nested_node_tagged_with_workflow(self, child, steps):
        def build(wf):
            node = wf.add_node("nested", "child", {"target_key": "sub"})
            wf.add_edge(wf.start, node)

        parent = define_workflow(
            WorkflowMeta(id="parent", input_schema=ParentInput, state_schema=ParentState),
            build,
            steps=steps,
        )
        node = parent.get_graph()["nodes"][0]
        assert node["step_type"] == "child"
        assert node["metadata"]["workflow_id"] == "child"

    @pytest.mark.asyncio
    async def test_child_failure_fails_parent_node(self, child, steps):
        def build(wf):
            # no `location` for the child input -> child validation fails
            node = wf.add_node("nested", "child", {"target_key": "sub", "build_input": lambda s: {}})
            wf.add_edge(wf.start, node)

        parent = define_workflow(
            WorkflowMeta(id="parent", input_schema=ParentInput, state_schema=ParentState),
            build,
            steps=steps,
        )
        with pytest.raises(HandlerExecutionError) as exc:
            await parent.run({"city": "Rome"})

        assert exc.value.node_id == "nested"
        assert exc.value.workflow_id == "parent"
        assert isinstance(exc.value.cause, InputValidationError)
        assert exc.value.cause.workflow_id == "child"
