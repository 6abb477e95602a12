"""Shared fixtures: every test gets fresh registries."""

from typing import List, Optional

import pytest

from flowgraph.registry import create_registries


class RecordingTracer:
    def __init__(self):
        self.events: List[tuple] = []

    def on_run_start(self, session_id, tags):
        self.events.append(("start", session_id, list(tags)))

    def on_run_end(self, session_id, tags, error: Optional[BaseException] = None):
        self.events.append(("end", session_id, error))


@pytest.fixture
def registries():
    return create_registries()


@pytest.fixture
def steps(registries):
    return registries[0]


@pytest.fixture
def workflows(registries):
    return registries[1]


@pytest.fixture
def tracer():
    return RecordingTracer()
