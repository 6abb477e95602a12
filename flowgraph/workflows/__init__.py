"""Example workflows shipped with flowgraph."""

from ..registry import StepRegistry, WorkflowRegistry
from .code_review import register_code_review
from .weather import register_weather_workflows


def register_example_workflows(steps: StepRegistry, workflows: WorkflowRegistry) -> WorkflowRegistry:
    register_weather_workflows(steps, workflows)
    register_code_review(steps, workflows)
    return workflows


__all__ = [
    "register_code_review",
    "register_example_workflows",
    "register_weather_workflows",
]
