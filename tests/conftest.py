"""
Test configuration and fixtures for the AIFlow test suite.
"""
import sys
import pytest
from pathlib import Path
from typing import Any, Dict, List

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from aiflow.config import EngineSettings
from aiflow.tools import HttpRequest, HttpTransport


def _agent(agent_id: str, **extra) -> Dict[str, Any]:
    return {"id": agent_id, "model": {"provider": "gemini", "name": "gemini-pro"}, **extra}


@pytest.fixture
def make_agent():
    return _agent


@pytest.fixture
def linear_project() -> Dict[str, Any]:
    """triage -> responder, unconditionally."""
    return {
        "metadata": {"name": "support"},
        "flow": {
            "entry_agent": "triage",
            "logic": [{"id": "r1", "from": "triage", "to": "responder", "condition": "always"}],
        },
        "agents": [_agent("triage"), _agent("responder")],
    }


@pytest.fixture
def scoring_project() -> Dict[str, Any]:
    return {
        "flow": {
            "entry_agent": "triage",
            "logic": [
                {"id": "high", "from": "triage", "to": "high_priority", "condition": "output.score > 0.7"},
                {"id": "low", "from": "triage", "to": "low_priority", "condition": "always"},
            ],
        },
        "agents": [_agent("triage"), _agent("high_priority"), _agent("low_priority")],
    }


@pytest.fixture
def settings() -> EngineSettings:
    """Settings independent of the caller's environment."""
    return EngineSettings(max_steps=50, api_key=None, tool_timeout_s=5, record_trace=False)


class RecordingTransport(HttpTransport):
    """Transport double: records requests and replays canned responses."""

    def __init__(self, responses: Dict[str, Any] = None, error: Exception = None):
        self.responses = responses or {}
        self.error = error
        self.requests: List[HttpRequest] = []
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def send(self, request: HttpRequest, timeout_s: float = 30.0) -> Any:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        for prefix, data in self.responses.items():
            if request.url.startswith(prefix):
                return data
        return {"echo": request.url}


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()
