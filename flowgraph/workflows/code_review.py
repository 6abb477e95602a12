# flowgraph/workflows/code_review.py
"""Rule-based code review workflow.

extract -> check_complexity -> detect_issues -> suggest, then loops back to
check_complexity while the quality score is below threshold and iterations
remain.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models import NodeResult, WorkflowMeta
from ..registry import StepRegistry, WorkflowRegistry
from ..workflow import CompiledWorkflow, WorkflowBuilder, define_workflow


class CodeReviewInput(BaseModel):
    code: str
    threshold: int = 80
    max_iterations: int = Field(default=3, ge=1)


class CodeReviewState(BaseModel):
    code: str
    threshold: int = 80
    max_iterations: int = 3
    iteration: int = 0
    functions: List[Dict[str, str]] = Field(default_factory=list)
    complexity_report: List[Dict[str, Any]] = Field(default_factory=list)
    issues: Dict[str, Any] = Field(default_factory=dict)
    quality_score: Optional[int] = None
    suggestions: List[str] = Field(default_factory=list)


SMELL_MARKERS = {"TODO": "todo comment", "print(": "debug print"}
BRANCH_TOKENS = ("if ", "for ", "while ", "try:", "except")
LONG_FUNCTION_LINES = 200


def detect_smells(code: str) -> Dict[str, Any]:
    """Flag leftover TODOs and debug prints. A very long body counts double."""
    smells = [label for marker, label in SMELL_MARKERS.items() if marker in code]
    issues = len(smells)
    if len(code.splitlines()) > LONG_FUNCTION_LINES:
        smells.append("too long")
        issues += 2
    return {"issues": issues, "smells": smells}


def compute_complexity(func_code: str) -> Dict[str, Any]:
    return {"complexity": 1 + sum(func_code.count(token) for token in BRANCH_TOKENS)}


def extract_functions(state: Dict) -> NodeResult:
    """Split the submitted source into top-level `def` blocks; anything before the first one is ignored."""
    funcs: List[Dict[str, str]] = []
    for line in state["code"].splitlines():
        if line.startswith("def "):
            name = line[len("def "):].split("(", 1)[0].strip()
            funcs.append({"name": name, "code": line})
        elif funcs:
            funcs[-1]["code"] += "\n" + line
    for func in funcs:
        func["code"] = func["code"].rstrip()
    return NodeResult(update={"functions": funcs}, log=f"extracted {len(funcs)} function(s)")


def check_complexity(state: Dict) -> NodeResult:
    report = [
        {"name": func["name"], **compute_complexity(func["code"])}
        for func in state.get("functions", [])
    ]
    return NodeResult(update={"complexity_report": report}, log="computed complexity")


def detect_basic_issues(state: Dict) -> NodeResult:
    detail = [
        {"name": func["name"], **detect_smells(func["code"])}
        for func in state.get("functions", [])
    ]
    total = sum(item["issues"] for item in detail)
    return NodeResult(
        update={"issues": {"total": total, "detail": detail}},
        log=f"detected {total} issues",
    )


def suggest_improvements(state: Dict) -> NodeResult:
    """Score the code out of 100: each complexity point costs 5 and each issue 10."""
    complexity = sum(item["complexity"] for item in state.get("complexity_report", []))
    issues = state.get("issues", {}).get("total", 0)
    score = max(0, 100 - complexity * 5 - issues * 10)

    suggestions = []
    if issues:
        suggestions.append("Fix TODOs and prints")
    if complexity > 10:
        suggestions.append("Refactor complex functions into smaller pieces")
    iteration = state.get("iteration", 0) + 1
    return NodeResult(
        update={"quality_score": score, "suggestions": suggestions, "iteration": iteration},
        log=f"pass {iteration}: score={score}",
    )


def needs_another_pass(state) -> bool:
    return (state.get("quality_score") or 0) < state["threshold"] and state.get("iteration", 0) < state["max_iterations"]


def build_code_review(wf: WorkflowBuilder) -> None:
    extract = wf.add_node("extract", "function", {"fn": extract_functions})
    complexity = wf.add_node("check_complexity", "function", {"fn": check_complexity})
    issues = wf.add_node("detect_issues", "function", {"fn": detect_basic_issues})
    suggest = wf.add_node("suggest", "function", {"fn": suggest_improvements})

    wf.add_edge(wf.start, extract)
    wf.add_edge(extract, complexity)
    wf.add_edge(complexity, issues)
    wf.add_edge(issues, suggest)
    wf.add_edge(suggest, complexity, when=needs_another_pass, label="below threshold")
    wf.add_edge(suggest, wf.end, when=lambda s: not needs_another_pass(s), label="done")


def register_code_review(steps: StepRegistry, workflows: Optional[WorkflowRegistry] = None) -> CompiledWorkflow:
    return define_workflow(
        WorkflowMeta(
            id="code-review",
            input_schema=CodeReviewInput,
            state_schema=CodeReviewState,
            metadata={"workflow": "code-review", "version": "1.0", "category": "code-analysis"},
        ),
        build_code_review,
        steps=steps,
        workflows=workflows,
        max_steps=50,
    )
