"""Shared test fixtures for deo."""

import json

import pytest

from deo.errors import TransportError
from deo.llm.local import GenerationResult
from deo.sessions.kv import MemoryKeyValueStore
from deo.sessions.store import SessionStore


class FakeLLM:
    """Inference client that replays scripted responses and records prompts."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts = []
        self.calls = []

    def generate(self, prompt, stream=None, temperature=None, response_format="json"):
        self.prompts.append(prompt)
        self.calls.append({"temperature": temperature, "response_format": response_format})
        if not self.responses:
            raise AssertionError("FakeLLM ran out of scripted responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if not isinstance(item, str):
            item = json.dumps(item)
        return GenerationResult(content=item, model="fake", streamed=False)

    def list_available_models(self):
        return ["fake:latest"]

    def get_model(self):
        return "fake:latest"

    def set_model(self, model_name):
        pass

    def check_availability(self):
        return True


class Clock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        self.now += 1.0
        return self.now


@pytest.fixture
def workspace(tmp_path):
    """An empty workspace directory with a sibling outside it."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(kv, clock):
    return SessionStore(kv, clock=clock)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def transport_error():
    return TransportError("Cannot reach inference endpoint at http://127.0.0.1:11434: connection refused")
