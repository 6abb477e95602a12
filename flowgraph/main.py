# flowgraph/main.py
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .config import configure_logging, get_settings
from .errors import RunError
from .registry import WorkflowRegistry, create_registries
from .workflow import CompiledWorkflow


def _not_found(workflows: WorkflowRegistry, workflow_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "error": f"Workflow '{workflow_id}' not found",
            "availableWorkflows": workflows.list(),
        },
    )


def _filter_fields(result: Dict[str, Any], fields: Any) -> Dict[str, Any]:
    if not fields or not isinstance(fields, list):
        return result
    return {f: result[f] for f in fields if f in result}


def create_app(workflows: WorkflowRegistry) -> FastAPI:
    app = FastAPI(title="flowgraph")

    @app.get("/health")
    async def health():
        return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/workflows")
    async def list_workflows():
        return {"workflows": workflows.list()}

    @app.get("/api/workflows/{workflow_id}")
    async def describe_workflow(workflow_id: str):
        workflow: Optional[CompiledWorkflow] = workflows.get(workflow_id)
        if workflow is None:
            return _not_found(workflows, workflow_id)
        return {
            "id": workflow.id,
            "description": workflow.description,
            "metadata": workflow.metadata,
            "inputSchema": workflow.input_schema.model_json_schema(),
            "graph": workflow.get_graph(),
        }

    @app.post("/api/workflows/{workflow_id}/execute")
    async def execute_workflow(
        workflow_id: str,
        body: Optional[Dict[str, Any]] = Body(default=None),
        thread_id: Optional[str] = None,
    ):
        workflow = workflows.get(workflow_id)
        if workflow is None:
            return _not_found(workflows, workflow_id)

        payload = dict(body or {})
        fields = payload.pop("fields", None)
        try:
            result = await workflow.run(payload, thread_id=thread_id)
        except RunError as e:
            return JSONResponse(status_code=400, content=jsonable_encoder(e.to_dict()))

        return {
            "id": workflow_id,
            "input": payload,
            "result": jsonable_encoder(_filter_fields(result, fields)),
        }

    @app.get("/api/workflows/{workflow_id}/threads/{thread_id}")
    async def get_thread(workflow_id: str, thread_id: str):
        workflow = workflows.get(workflow_id)
        if workflow is None:
            return _not_found(workflows, workflow_id)
        checkpoint = workflow.get_checkpoint(thread_id)
        if checkpoint is None:
            raise HTTPException(status_code=404, detail="thread not found")
        return jsonable_encoder(checkpoint)

    return app


def build_default_app() -> FastAPI:
    from .workflows import register_example_workflows

    steps, workflows = create_registries()
    register_example_workflows(steps, workflows)
    return create_app(workflows)


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(build_default_app(), host=settings.host, port=settings.port)
