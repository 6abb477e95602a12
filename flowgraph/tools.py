# flowgraph/tools.py
"""Built-in step types.

Each handler validates its node config, builds the runnable and attaches it
to the graph. Nodes that produce a single value store it under `target_key`.
"""

import inspect
import json
import logging
import random
from typing import Any, Callable, Dict, List, Literal, Optional, Type

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import get_settings
from .errors import InvalidStepConfig
from .graph import StateGraph
from .registry import StepRegistry
from .state import State

logger = logging.getLogger(__name__)

try:
    import litellm
    LITELLM_AVAILABLE = True
except ImportError:
    LITELLM_AVAILABLE = False


class StepConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow")

    name: Optional[str] = None
    description: Optional[str] = None
    target_key: Optional[str] = None
    build_input: Optional[Callable[[State], Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def input_for(self, state: State) -> Any:
        return self.build_input(state) if self.build_input else state


class FunctionConfig(StepConfig):
    fn: Callable[..., Any]


class LocationToolConfig(StepConfig):
    target_key: str
    cities: List[str] = Field(default_factory=lambda: ["San Francisco", "London", "Tokyo", "Paris"])
    seed: Optional[int] = None


class HttpToolConfig(StepConfig):
    target_key: str
    method: Literal["GET", "POST", "PUT", "DELETE"] = "GET"
    base_url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    input_schema: Optional[Type[BaseModel]] = None
    timeout: Optional[float] = None


class ModelConfig(BaseModel):
    provider: str = "openai"
    name: str = Field(default_factory=lambda: get_settings().default_model)
    temperature: float = 0.2
    max_tokens: Optional[int] = None

    @property
    def litellm_model(self) -> str:
        return f"{self.provider}/{self.name}"


class AgentConfig(StepConfig):
    target_key: str
    model: ModelConfig = Field(default_factory=ModelConfig)
    system_prompt: Optional[str] = None
    input_schema: Optional[Type[BaseModel]] = None


def _parse(config_cls: Type[StepConfig], node_id: str, step_type: str, config: Dict[str, Any]):
    try:
        return config_cls.model_validate(config)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidStepConfig(node_id, step_type, f"bad or missing field(s): {fields}") from e


def _validated(schema: Optional[Type[BaseModel]], data: Any) -> Any:
    if schema is None:
        return data
    return schema.model_validate(data).model_dump()


def _metadata(cfg: StepConfig, node_id: str, step_type: str, **extra) -> Dict[str, Any]:
    metadata = {
        "name": cfg.name or node_id,
        "description": cfg.description or "",
        "type": step_type,
    }
    metadata.update(extra)
    metadata.update(cfg.metadata)
    return metadata


def function_step(graph: StateGraph, node_id: str, config: Dict[str, Any]) -> None:
    """Wrap a plain callable. Without target_key its return value is the partial update."""
    cfg = _parse(FunctionConfig, node_id, "function", config)

    def wrap(res: Any) -> Any:
        if cfg.target_key:
            return {cfg.target_key: res}
        return res

    # sync callables stay sync so the runtime can move them off the event loop
    if inspect.iscoroutinefunction(cfg.fn):
        async def run(state: State) -> Any:
            return wrap(await cfg.fn(cfg.input_for(state)))
    else:
        def run(state: State) -> Any:
            return wrap(cfg.fn(cfg.input_for(state)))

    graph.add_node(node_id, run, config=config, metadata=_metadata(cfg, node_id, "function"))


def location_tool_step(graph: StateGraph, node_id: str, config: Dict[str, Any]) -> None:
    """Pick a city at random from the configured list."""
    cfg = _parse(LocationToolConfig, node_id, "location-tool", config)
    if not cfg.cities:
        raise InvalidStepConfig(node_id, "location-tool", "cities must not be empty")
    rng = random.Random(cfg.seed)

    def run(state: State) -> State:
        return {cfg.target_key: rng.choice(cfg.cities)}

    graph.add_node(node_id, run, config=config, metadata=_metadata(cfg, node_id, "location-tool"))


async def http_request(
    method: str,
    url: str,
    *,
    base_url: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    body: Any = None,
    timeout: Optional[float] = None,
) -> Any:
    """Make a JSON request and return the decoded body. Non-2xx responses raise."""
    full_url = f"{base_url}{url}" if base_url else url
    request_headers = {"Content-Type": "application/json"}
    request_headers.update(headers or {})
    timeout = timeout if timeout is not None else get_settings().http_timeout
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.request(
            method,
            full_url,
            headers=request_headers,
            content=json.dumps(body) if body is not None else None,
        )
    response.raise_for_status()
    logger.debug(f"HTTP {method} {full_url} -> {response.status_code}")
    return response.json()


def http_tool_step(graph: StateGraph, node_id: str, config: Dict[str, Any]) -> None:
    """HTTP request node. build_input returns {"url", "body"?, "headers"?}."""
    cfg = _parse(HttpToolConfig, node_id, "http-tool", config)

    async def run(state: State) -> State:
        request = _validated(cfg.input_schema, cfg.input_for(state))
        if isinstance(request, str):
            request = {"url": request}
        headers = dict(cfg.headers)
        headers.update(request.get("headers") or {})
        result = await http_request(
            cfg.method,
            request["url"],
            base_url=cfg.base_url,
            headers=headers,
            body=request.get("body"),
            timeout=cfg.timeout,
        )
        return {cfg.target_key: result}

    graph.add_node(node_id, run, config=config, metadata=_metadata(cfg, node_id, "http-tool", method=cfg.method))


async def complete(model: ModelConfig, prompt: Any, system_prompt: Optional[str] = None) -> str:
    """Single chat completion through litellm; returns the reply text."""
    if not LITELLM_AVAILABLE:
        raise ImportError(
            "litellm is not installed. Install it with: pip install 'flowgraph[llm]'"
        )
    content = prompt if isinstance(prompt, str) else json.dumps(prompt)
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": content})
    response = await litellm.acompletion(
        model=model.litellm_model,
        messages=messages,
        temperature=model.temperature,
        max_tokens=model.max_tokens,
    )
    return response.choices[0].message.content or ""


def agent_step(graph: StateGraph, node_id: str, config: Dict[str, Any]) -> None:
    """Model-backed text generation node."""
    cfg = _parse(AgentConfig, node_id, "agent", config)

    async def run(state: State) -> State:
        prompt = _validated(cfg.input_schema, cfg.input_for(state))
        logger.debug(f"agent node {node_id} calling {cfg.model.litellm_model}")
        output = await complete(cfg.model, prompt, cfg.system_prompt)
        return {cfg.target_key: output}

    graph.add_node(
        node_id,
        run,
        config=config,
        metadata=_metadata(cfg, node_id, "agent", model=cfg.model.litellm_model),
    )


BUILTIN_STEPS = {
    "function": function_step,
    "location-tool": location_tool_step,
    "http-tool": http_tool_step,
    "agent": agent_step,
}


def register_builtin_steps(steps: StepRegistry) -> StepRegistry:
    for key, handler in BUILTIN_STEPS.items():
        steps.register(key, handler)
    return steps
