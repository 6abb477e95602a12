# flowgraph/models.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field

MetadataValue = Union[str, int, float, bool]


class NodeHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str


class NodeResult(BaseModel):
    """Richer return value for a node: a partial state update plus a log line."""
    update: Dict[str, Any] = Field(default_factory=dict)
    log: Optional[str] = None


class WorkflowMeta(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    input_schema: Type[BaseModel]
    state_schema: Optional[Type[BaseModel]] = None
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)
    description: Optional[str] = None

    def get_description(self) -> str:
        if self.description:
            return self.description
        return str(self.metadata.get("description") or f"Workflow: {self.id}")


class Checkpoint(BaseModel):
    thread_id: str
    workflow_id: Optional[str] = None
    step: int = 0
    state: Dict[str, Any] = Field(default_factory=dict)
    next_nodes: List[str] = Field(default_factory=list)
    completed: bool = False
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorInfo(BaseModel):
    kind: str
    message: str
    workflow_id: Optional[str] = None
    node_id: Optional[str] = None
    details: List[Dict[str, Any]] = Field(default_factory=list)


class RunResult(BaseModel):
    run_id: str
    workflow_id: str
    thread_id: str
    state: Dict[str, Any] = Field(default_factory=dict)
    logs: List[str] = Field(default_factory=list)
    finished: bool = False
    error: Optional[ErrorInfo] = None
