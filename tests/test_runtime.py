"""
Integration tests for the Router step engine.
"""
import json

import pytest

from aiflow.errors import AgentExecutionError, ValidationError
from aiflow.runtime import (
    TRACE_KEY,
    CallableAgentExecutor,
    Router,
    SimulatedAgentExecutor,
    run_flow,
)
from aiflow.types import RunOptions, RunStatus

from conftest import RecordingTransport, _agent


def test_linear_flow_finishes(linear_project, settings):
    """triage -> responder, then a dead end."""
    result = Router(linear_project, settings=settings).run()
    assert result.status == RunStatus.FINISHED
    assert result.finished is True
    assert result.visited_agents == ["triage", "responder"]
    assert len(result.steps) == 2
    assert result.steps[0].next_agent_id == "responder"
    assert result.steps[0].selected_rule_id == "r1"
    assert result.final_agent_id is None
    assert result.last_agent_id == "responder"


def test_entry_without_matching_rule(settings, make_agent):
    project = {
        "flow": {"entry_agent": "start", "logic": [
            {"id": "r1", "from": "start", "to": "next", "condition": "ready == true"},
        ]},
        "agents": [make_agent("start"), make_agent("next")],
    }
    result = run_flow(project, RunOptions(outputs_by_agent={"start": {"ready": False}}), settings=settings)
    assert result.finished is True
    assert result.final_agent_id is None
    assert result.visited_agents == ["start"]
    assert result.steps[0].evaluations[0].result is False


@pytest.mark.parametrize("score,target", [(0.9, "high_priority"), (0.5, "low_priority")])
def test_output_score_routing(scoring_project, settings, score, target):
    options = RunOptions(outputs_by_agent={"triage": {"score": score}})
    result = Router(scoring_project, settings=settings).run(options)
    assert result.visited_agents == ["triage", target]


def test_all_rules_are_recorded(scoring_project, settings):
    """The winner does not stop evaluation of the remaining rules."""
    options = RunOptions(outputs_by_agent={"triage": {"score": 0.9}})
    step = Router(scoring_project, settings=settings).run(options).steps[0]
    assert [(e.rule_id, e.result) for e in step.evaluations] == [("high", True), ("low", True)]
    assert step.selected_rule_id == "high"


def test_true_rule_without_target_is_skipped(settings, make_agent):
    project = {
        "flow": {"entry_agent": "a", "logic": [
            {"id": "noop", "from": "a", "condition": "always"},
            {"id": "go", "from": "a", "to": "b"},
        ]},
        "agents": [make_agent("a"), make_agent("b")],
    }
    result = Router(project, settings=settings).run()
    assert result.steps[0].selected_rule_id == "go"
    assert result.visited_agents == ["a", "b"]


def test_composite_condition_routes_away_from_blocked(settings, make_agent):
    project = {
        "flow": {"entry_agent": "gate", "logic": [
            {"id": "ok", "from": "gate", "to": "welcome",
             "condition": 'NOT (user.role == "blocked" OR user.age < 18)'},
            {"id": "deny", "from": "gate", "to": "blocked"},
        ]},
        "agents": [make_agent("gate"), make_agent("welcome"), make_agent("blocked")],
    }
    options = RunOptions(initial_context={"user": {"role": "admin", "age": 25}})
    result = Router(project, settings=settings).run(options)
    assert result.visited_agents == ["gate", "welcome"]


def test_contains_routing(settings, make_agent):
    project = {
        "flow": {"entry_agent": "gate", "logic": [
            {"id": "vip", "from": "gate", "to": "vip_desk", "condition": 'contains(user.tags, "vip")'},
            {"id": "std", "from": "gate", "to": "standard"},
        ]},
        "agents": [make_agent("gate"), make_agent("vip_desk"), make_agent("standard")],
    }
    router = Router(project, settings=settings)
    vip = router.run(RunOptions(initial_context={"user": {"tags": ["vip", "gold"]}}))
    std = router.run(RunOptions(initial_context={"user": {"tags": ["gold"]}}))
    assert vip.visited_agents[-1] == "vip_desk"
    assert std.visited_agents[-1] == "standard"


def test_cycle_is_truncated(settings, make_agent):
    project = {
        "flow": {"entry_agent": "ping", "logic": [
            {"id": "p", "from": "ping", "to": "pong"},
            {"id": "q", "from": "pong", "to": "ping"},
        ]},
        "agents": [make_agent("ping"), make_agent("pong")],
    }
    result = Router(project, settings=settings).run(RunOptions(max_steps=5))
    assert len(result.steps) == 5
    assert result.finished is False
    assert result.status == RunStatus.TRUNCATED
    assert result.visited_agents == ["ping", "pong", "ping", "pong", "ping"]
    assert result.final_agent_id == "pong"


def test_settings_supply_default_step_bound(make_agent):
    from aiflow.config import EngineSettings

    project = {
        "flow": {"entry_agent": "loop", "logic": [{"from": "loop", "to": "loop"}]},
        "agents": [make_agent("loop")],
    }
    result = Router(project, settings=EngineSettings(max_steps=3, record_trace=False)).run()
    assert len(result.steps) == 3
    assert result.status == RunStatus.TRUNCATED


def test_validation_errors_block_the_run(settings, make_agent):
    project = {
        "flow": {"entry_agent": "ghost", "logic": [{"id": "r", "from": "a", "to": "b", "condition": "x ="}]},
        "agents": [make_agent("a")],
    }
    calls = []
    executor = CallableAgentExecutor(lambda agent, ctx: calls.append(agent.id) or "")
    with pytest.raises(ValidationError) as exc:
        Router(project, executor=executor, settings=settings).run()
    codes = [i.code for i in exc.value.issues]
    assert "UNKNOWN_ENTRY_AGENT" in codes
    assert "RULE_UNKNOWN_TO" in codes
    assert "CONDITION_SYNTAX" in codes
    assert "UNKNOWN_ENTRY_AGENT" in str(exc.value)
    assert calls == []


def test_custom_validator_is_used(linear_project, settings):
    seen = []
    router = Router(linear_project, validator=lambda p: seen.append(p) or [], settings=settings)
    router.run()
    assert len(seen) == 1


def test_initial_context_overlays_flow_variables(linear_project, settings):
    linear_project["flow"]["variables"] = {"lang": "en", "tier": "free"}
    result = Router(linear_project, settings=settings).run(RunOptions(initial_context={"tier": "pro"}))
    assert result.context == {"lang": "en", "tier": "pro"}


class TestAgentExecution:
    def _project(self, make_agent, **triage):
        return {
            "flow": {"entry_agent": "triage", "logic": [
                {"id": "bill", "from": "triage", "to": "billing", "condition": "category == 'billing'"},
                {"id": "rest", "from": "triage", "to": "general"},
            ]},
            "agents": [
                make_agent("triage", output_format="json", **triage),
                make_agent("billing"),
                make_agent("general"),
            ],
        }

    def test_json_output_is_parsed_and_merged(self, make_agent, settings):
        executor = SimulatedAgentExecutor({"triage": {"category": "billing", "confidence": 0.8}})
        result = Router(self._project(make_agent), executor=executor, settings=settings).run()
        ctx = result.context
        assert result.visited_agents == ["triage", "billing"]
        assert ctx["triage"]["output"] == {"category": "billing", "confidence": 0.8}
        assert ctx["category"] == "billing"
        # last agent ran in text mode
        assert ctx["last_output"].startswith("[Simulated Output from billing]")

    def test_caller_outputs_override_parsed_output(self, make_agent, settings):
        executor = SimulatedAgentExecutor({"triage": {"category": "billing"}})
        options = RunOptions(outputs_by_agent={"triage": {"category": "other"}})
        result = Router(self._project(make_agent), executor=executor, settings=settings).run(options)
        # conditions see the caller's mock output, not the parsed agent output
        assert result.visited_agents == ["triage", "general"]

    def test_invalid_json_keeps_raw_text(self, make_agent, settings):
        executor = CallableAgentExecutor(lambda agent, ctx: "not json")
        router = Router(self._project(make_agent), executor=executor, settings=settings)
        result = router.run()
        assert result.context["triage"]["output"] == "not json"
        assert any("Failed to parse JSON" in e.message for e in router.console)

    def test_executor_failure_aborts(self, make_agent, settings):
        def boom(agent, ctx):
            raise RuntimeError("model unavailable")

        with pytest.raises(AgentExecutionError) as exc:
            Router(self._project(make_agent), executor=CallableAgentExecutor(boom), settings=settings).run()
        assert exc.value.agent_id == "triage"
        assert isinstance(exc.value.cause, RuntimeError)

    def test_agent_tools_are_merged_into_context(self, make_agent, settings):
        project = self._project(make_agent, tools=["kb", "ghost"])
        project["tools"] = {"kb": {"type": "http", "endpoint": "https://kb.example.com/search"}}
        transport = RecordingTransport(responses={"https://kb.example.com": ["article-1"]})
        executor = SimulatedAgentExecutor({"triage": {"query": "wifi"}})
        result = Router(project, executor=executor, transport=transport, settings=settings).run()
        tools = result.context["__tools"]["triage"]
        assert tools["kb"] == {"ok": True, "data": ["article-1"]}
        assert tools["ghost"]["ok"] is False
        assert transport.requests[0].url == "https://kb.example.com/search?query=wifi"
        assert result.visited_agents == ["triage", "general"]

    def test_unsupported_tool_type_does_not_block_the_run(self, make_agent, settings, transport):
        project = self._project(make_agent, tools=["t"])
        project["tools"] = {"t": {"type": "mcp"}}
        router = Router(project, executor=SimulatedAgentExecutor(), transport=transport, settings=settings)
        result = router.run()
        assert result.status == RunStatus.FINISHED
        entry = result.context["__tools"]["triage"]["t"]
        assert entry["ok"] is False
        assert "not implemented" in entry["error"]
        assert any("INVALID_TOOL" in e.message for e in router.console)

    def test_default_transport_is_closed_after_the_run(self, make_agent, settings, monkeypatch):
        created = []

        def factory():
            t = RecordingTransport()
            created.append(t)
            return t

        monkeypatch.setattr("aiflow.runtime.RequestsTransport", factory)
        project = self._project(make_agent, tools=["kb"])
        project["tools"] = {"kb": {"type": "http", "endpoint": "https://kb.example.com/search"}}
        router = Router(project, executor=SimulatedAgentExecutor(), settings=settings)
        router.run()
        router.run()
        assert len(created) == 2
        assert all(t.closed for t in created)

    def test_injected_transport_is_left_open(self, make_agent, settings, transport):
        project = self._project(make_agent, tools=["kb"])
        project["tools"] = {"kb": {"type": "http", "endpoint": "https://kb.example.com/search"}}
        Router(project, executor=SimulatedAgentExecutor(), transport=transport, settings=settings).run()
        assert len(transport.requests) == 1
        assert transport.closed is False

    def test_output_cannot_overwrite_engine_keys(self, make_agent, settings):
        output = {"__trace": "x", "__tools": "y", "triage": "z", "last_output": 1, "category": "billing"}
        router = Router(self._project(make_agent), executor=SimulatedAgentExecutor({"triage": output}), settings=settings)
        result = router.run(RunOptions(record_trace=True))
        ctx = result.context
        assert [t["agentId"] for t in ctx[TRACE_KEY]] == ["triage", "billing"]
        assert ctx["triage"]["output"] == output
        assert ctx["category"] == "billing"
        assert "__tools" not in ctx
        assert ctx["last_output"].startswith("[Simulated Output from billing]")
        assert any("reserved by the engine" in e.message for e in router.console)


def test_trace_records_every_step(scoring_project, settings):
    options = RunOptions(
        initial_context={"ticket": {"id": 7}},
        outputs_by_agent={"triage": {"score": 0.2}},
        record_trace=True,
    )
    result = Router(scoring_project, executor=SimulatedAgentExecutor(), settings=settings).run(options)
    trace = result.context[TRACE_KEY]
    assert [t["agentId"] for t in trace] == ["triage", "low_priority"]
    first = trace[0]
    assert first["step"] == 1
    assert first["inputContext"] == {"ticket": {"id": 7}}
    assert first["selectedRuleId"] == "low"
    assert [r["id"] for r in first["rulesEvaluated"]] == ["high", "low"]
    assert first["rawOutput"].startswith("[Simulated Output from triage]")
    assert TRACE_KEY not in trace[1]["inputContext"]


def test_trace_is_off_by_default(linear_project, settings):
    result = Router(linear_project, settings=settings).run()
    assert TRACE_KEY not in result.context


def test_stop_is_observed_between_steps(linear_project, settings):
    router = None

    def run_agent(agent, ctx):
        router.stop()
        return "done"

    router = Router(linear_project, executor=CallableAgentExecutor(run_agent), settings=settings)
    result = router.run()
    assert result.status == RunStatus.STOPPED
    assert result.visited_agents == ["triage"]
    assert result.final_agent_id == "responder"
    assert result.finished is False


def test_stop_before_run_stops_that_run(linear_project, settings):
    router = Router(linear_project, settings=settings)
    router.stop()
    result = router.run()
    assert result.status == RunStatus.STOPPED
    assert result.visited_agents == []
    assert result.final_agent_id == "triage"
    assert result.last_agent_id is None

    again = router.run()
    assert again.status == RunStatus.FINISHED
    assert again.visited_agents == ["triage", "responder"]


def test_console_log_entries(linear_project, settings):
    router = Router(linear_project, settings=settings)
    router.run()
    levels = [e.level for e in router.console]
    assert levels[0] == "info"
    assert levels[-1] == "success"
    assert router.console[-1].agent_id == "responder"


def test_result_to_dict_is_json_serializable(linear_project, settings):
    data = Router(linear_project, settings=settings).run().to_dict()
    json.dumps(data)
    assert data["finished"] is True
    assert data["finalAgentId"] is None
    assert data["visitedAgents"] == ["triage", "responder"]
    assert data["steps"][0]["evaluations"][0] == {
        "id": "r1", "from": "triage", "to": "responder", "condition": "always", "result": True,
    }


def test_run_does_not_share_context_between_runs(linear_project, settings):
    initial = {"counter": 1}
    router = Router(linear_project, settings=settings)
    first = router.run(RunOptions(initial_context=initial))
    first.context["counter"] = 99
    second = router.run(RunOptions(initial_context=initial))
    assert second.context["counter"] == 1
    assert initial == {"counter": 1}


def test_empty_logic_finishes_at_entry(settings):
    project = {
        "flow": {"entry_agent": "a", "logic": []},
        "agents": [_agent("a")],
    }
    result = Router(project, settings=settings).run()
    assert result.visited_agents == ["a"]
    assert result.finished is True
