# flowgraph/workflows/weather.py
from typing import Optional

from pydantic import BaseModel

from ..models import WorkflowMeta
from ..registry import StepRegistry, WorkflowRegistry
from ..tools import ModelConfig
from ..workflow import CompiledWorkflow, WorkflowBuilder, define_workflow


class WeatherInput(BaseModel):
    location: str


class WeatherState(BaseModel):
    location: str
    weatherText: Optional[str] = None
    shopsRaw: Optional[str] = None


class LocationWeatherInput(BaseModel):
    userQuery: Optional[str] = None


class LocationWeatherState(WeatherState):
    location: Optional[str] = None
    userQuery: Optional[str] = None


GPT4_MINI = ModelConfig(provider="openai", name="gpt-4.1-mini", temperature=0.2)


def is_rainy(state) -> bool:
    return "yes" in (state.get("weatherText") or "").lower()


def build_weather_umbrella(wf: WorkflowBuilder) -> None:
    weather = wf.add_node("weatherCheck", "agent", {
        "name": "Weather Check",
        "description": "Check if it's rainy",
        "model": GPT4_MINI,
        "target_key": "weatherText",
        "build_input": lambda state: {
            "query": f'Is it rainy today in {state["location"]}? Answer "yes" or "no". '
                     'If you do not have real time data answer "yes".',
        },
    })
    umbrella = wf.add_node("umbrellaShops", "agent", {
        "name": "Umbrella Shops",
        "description": "Find umbrella shops",
        "model": GPT4_MINI,
        "target_key": "shopsRaw",
        "build_input": lambda state: {
            "query": f"It is raining in {state['location']}. List two umbrella shops nearby, one per line.",
        },
    })

    wf.add_edge(wf.start, weather)
    wf.add_edge(weather, umbrella, when=is_rainy, label="rainy")
    wf.add_edge(weather, wf.end, when=lambda state: not is_rainy(state), label="dry")
    wf.add_edge(umbrella, wf.end)


def build_location_weather(wf: WorkflowBuilder) -> None:
    location = wf.add_node("getLocation", "location-tool", {
        "name": "Get User Location",
        "description": "Fetches user location from location tool",
        "cities": ["San Francisco", "London", "Tokyo", "Paris", "Berlin", "Sydney"],
        "target_key": "location",
        "build_input": lambda state: {"query": state.get("userQuery") or "get location"},
    })
    # parent state already carries `location`, so the child reads it directly
    weather = wf.add_node("checkWeather", "weather-umbrella")

    wf.add_edge(wf.start, location)
    wf.add_edge(location, weather)
    wf.add_edge(weather, wf.end)


def register_weather_workflows(steps: StepRegistry, workflows: Optional[WorkflowRegistry] = None) -> CompiledWorkflow:
    """Register weather-umbrella and location-weather; returns the latter."""
    define_workflow(
        WorkflowMeta(
            id="weather-umbrella",
            input_schema=WeatherInput,
            state_schema=WeatherState,
            metadata={
                "workflow": "weather-umbrella",
                "version": "1.0",
                "category": "weather-analysis",
            },
        ),
        build_weather_umbrella,
        steps=steps,
        workflows=workflows,
    )
    return define_workflow(
        WorkflowMeta(
            id="location-weather",
            input_schema=LocationWeatherInput,
            state_schema=LocationWeatherState,
            metadata={
                "workflow": "location-weather",
                "version": "1.0",
                "category": "location-weather-analysis",
                "description": "Detects user location and checks weather",
            },
        ),
        build_location_weather,
        steps=steps,
        workflows=workflows,
    )
