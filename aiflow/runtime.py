from __future__ import annotations
import copy
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from loguru import logger
from opentelemetry import trace

from .coercion import UNDEFINED
from .config import EngineSettings
from .errors import AgentExecutionError, AIFlowError, ValidationError
from .evaluator import evaluate_condition
from .schemas import Agent, Project, load_project
from .tools import TOOLS_KEY, HttpTransport, RequestsTransport, run_tools_for_agent
from .types import (
    ExecutionStep,
    Issue,
    IssueLevel,
    LogEntry,
    RuleEvaluation,
    RunOptions,
    RunResult,
    RunStatus,
)
from .validator import validate_project

_tracer = trace.get_tracer(__name__)

TRACE_KEY = "__trace"

Validator = Callable[[Project], List[Issue]]


# ---------- Agent executors ----------

class AgentExecutor:
    """Runs one agent against the current context and returns its raw text output."""

    def execute(self, agent: Agent, context: Dict[str, Any]) -> str:  # pragma: no cover - abstract
        raise NotImplementedError


class SimulatedAgentExecutor(AgentExecutor):
    """Stand-in for a model call. Canned outputs per agent id take precedence."""

    def __init__(self, outputs: Optional[Mapping[str, Any]] = None):
        self.outputs = dict(outputs or {})

    def execute(self, agent: Agent, context: Dict[str, Any]) -> str:
        if agent.id in self.outputs:
            out = self.outputs[agent.id]
            return out if isinstance(out, str) else json.dumps(out)
        if agent.output_format == "json":
            return json.dumps({"status": "completed", "summary": "Simulated result"})
        return f"[Simulated Output from {agent.display_name}]: Task completed successfully."


class CallableAgentExecutor(AgentExecutor):
    def __init__(self, fn: Callable[[Agent, Dict[str, Any]], str]):
        self.fn = fn

    def execute(self, agent: Agent, context: Dict[str, Any]) -> str:
        return self.fn(agent, context)


# ---------- Router ----------

class Router:
    """Step engine: walks ``flow.logic`` from the entry agent.

    Each step optionally runs the agent (when an executor is configured) and
    its tools, then evaluates every outgoing rule in declaration order and
    follows the first one that is true and has a target. The run ends
    ``finished`` on a dead end, ``truncated`` at the step bound, or
    ``stopped`` when :meth:`stop` was called between steps.
    """

    def __init__(
        self,
        project: Union[Project, Dict[str, Any]],
        executor: Optional[AgentExecutor] = None,
        validator: Optional[Validator] = validate_project,
        transport: Optional[HttpTransport] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.project = load_project(project)
        self.executor = executor
        self.validator = validator
        self.transport = transport
        self.settings = settings or EngineSettings.from_env()
        self.console: List[LogEntry] = []
        self.status: Optional[RunStatus] = None
        self._stop_requested = False
        self._run_transport: Optional[HttpTransport] = None

    def log(self, level: str, message: str, agent_id: Optional[str] = None, details: Any = None):
        self.console.append(LogEntry(level=level, message=message, agent_id=agent_id, details=details))
        prefix = f"[{agent_id}] " if agent_id else ""
        logger.log(level.upper(), "{}{}", prefix, message)

    def stop(self):
        """Request cancellation; observed before the next step starts.

        Calling it before :meth:`run` makes that run stop before its first step.
        """
        self._stop_requested = True
        self.log("warning", "Workflow execution stop requested.")

    # ---------- Execution entry ----------
    def run(self, options: Optional[RunOptions] = None) -> RunResult:
        options = options or RunOptions()
        self._check_project()

        flow = self.project.flow
        max_steps = options.max_steps if options.max_steps is not None else self.settings.max_steps
        record_trace = options.record_trace if options.record_trace is not None else self.settings.record_trace
        context: Dict[str, Any] = {**flow.variables, **(options.initial_context or {})}

        visited: List[str] = []
        steps: List[ExecutionStep] = []
        current: Optional[str] = flow.entry_agent
        step_count = 0
        self.status = RunStatus.RUNNING
        name = self.project.metadata.name or "workflow"
        self.log("info", f"Starting workflow '{name}' at '{current}' (max_steps={max_steps})")

        try:
            with _tracer.start_as_current_span(f"run:{name}") as span:
                while True:
                    if step_count >= max_steps:
                        self.status = RunStatus.TRUNCATED
                        self.log("warning", f"Execution stopped: max steps ({max_steps}) reached before '{current}'.")
                        break
                    if self._stop_requested:
                        self.status = RunStatus.STOPPED
                        self.log("warning", "Workflow execution stopped by user.")
                        break

                    visited.append(current)
                    with _tracer.start_as_current_span(f"agent:{current}"):
                        step = self._run_step(current, context, options, len(steps) + 1, record_trace)
                    steps.append(step)

                    if step.next_agent_id is None:
                        self.status = RunStatus.FINISHED
                        self.log("success", "Workflow execution finished. No further valid transitions.", current)
                        current = None
                        break

                    self.log("info", f"Transitioning: {current} -> {step.next_agent_id}", current)
                    current = step.next_agent_id
                    step_count += 1
                span.set_attribute("aiflow.steps", len(steps))
                span.set_attribute("aiflow.status", self.status.value)
        finally:
            # stop() before or during a run ends that run only
            self._stop_requested = False
            self._close_run_transport()

        return RunResult(
            status=self.status,
            visited_agents=visited,
            steps=steps,
            final_agent_id=current,
            context=context,
            last_agent_id=visited[-1] if visited else None,
        )

    def _transport_for_run(self) -> HttpTransport:
        if self.transport is not None:
            return self.transport
        if self._run_transport is None:
            self._run_transport = RequestsTransport()
        return self._run_transport

    def _close_run_transport(self):
        if self._run_transport is not None:
            self._run_transport.close()
            self._run_transport = None

    def _check_project(self):
        issues = self.validator(self.project) if self.validator else []
        errors = [i for i in issues if i.level == IssueLevel.ERROR]
        if errors:
            raise ValidationError(errors)
        for issue in issues:
            self.log("warning", f"{issue.code}: {issue.message}")
        if not self.project.flow.entry_agent:
            raise ValidationError([Issue(IssueLevel.ERROR, "MISSING_ENTRY_AGENT", "flow.entry_agent is missing")])

    # ---------- Step execution ----------
    def _run_step(
        self,
        agent_id: str,
        context: Dict[str, Any],
        options: RunOptions,
        step_no: int,
        record_trace: bool,
    ) -> ExecutionStep:
        agent = self.project.get_agent(agent_id)
        input_context = self._snapshot(context) if record_trace else None
        raw_output: Optional[str] = None
        parsed: Any = None

        if self.executor is not None:
            if agent is None:
                raise AIFlowError(f"Agent '{agent_id}' not found in configuration")
            raw_output, parsed = self._execute_agent(agent, context)
            if agent.tools:
                run_tools_for_agent(
                    agent.id,
                    agent.tools,
                    self.project.tools,
                    context,
                    tool_input=parsed if isinstance(parsed, dict) else None,
                    transport=self._transport_for_run(),
                    global_api_key=self.settings.api_key,
                    timeout_s=self.settings.tool_timeout_s,
                )

        outputs = options.outputs_by_agent or {}
        output = outputs[agent_id] if agent_id in outputs else parsed
        scope = {
            "context": context,
            "output": output,
            "agentId": agent_id,
            "user": context.get("user", UNDEFINED),
        }

        step = ExecutionStep(agent_id=agent_id)
        for rule in self.project.rules_from(agent_id):
            result = evaluate_condition(rule.effective_condition, scope)
            step.evaluations.append(RuleEvaluation(
                rule_id=rule.id,
                from_agent=rule.from_,
                to_agent=rule.to,
                condition=rule.condition,
                result=result,
            ))
            if step.next_agent_id is None and result and rule.to:
                step.next_agent_id = rule.to
                step.selected_rule_id = rule.id

        if record_trace:
            context.setdefault(TRACE_KEY, []).append({
                "step": step_no,
                "agentId": agent_id,
                "agentName": agent.display_name if agent else agent_id,
                "role": agent.role if agent else None,
                "inputContext": input_context,
                "rawOutput": raw_output,
                "parsedOutput": parsed,
                "rulesEvaluated": [e.to_dict() for e in step.evaluations],
                "selectedRuleId": step.selected_rule_id,
                "nextAgentId": step.next_agent_id,
            })
        return step

    def _execute_agent(self, agent: Agent, context: Dict[str, Any]) -> Tuple[str, Any]:
        self.log("info", f"Executing Agent: {agent.display_name}", agent.id)
        try:
            raw = self.executor.execute(agent, context)
        except Exception as e:
            self.log("error", f"Execution failed: {e}", agent.id)
            raise AgentExecutionError(agent.id, e) from e
        raw = "" if raw is None else str(raw)

        parsed: Any = raw
        if agent.output_format == "json":
            try:
                parsed = json.loads(raw)
            except ValueError:
                self.log("warning", "Failed to parse JSON output.", agent.id)

        context["last_output"] = parsed
        slot = context.get(agent.id)
        if not isinstance(slot, dict):
            slot = context[agent.id] = {}
        slot["output"] = parsed
        if isinstance(parsed, dict):
            reserved = self._reserved_keys()
            merged = {k: v for k, v in parsed.items() if k not in reserved}
            skipped = [k for k in parsed if k in reserved]
            if skipped:
                self.log("warning", f"Output keys not merged (reserved by the engine): {', '.join(skipped)}", agent.id)
            context.update(merged)
            self.log("info", "Context updated with parsed JSON.", agent.id, merged)
        self.log("success", "Agent completed task.", agent.id, {"output": raw})
        return raw, parsed

    def _reserved_keys(self) -> Set[str]:
        """Context slots written by the engine itself: tool results, the step
        trace, ``last_output`` and one ``<agent_id>`` slot per agent."""
        return {TOOLS_KEY, TRACE_KEY, "last_output"} | {a.id for a in self.project.agents}

    @staticmethod
    def _snapshot(context: Dict[str, Any]) -> Dict[str, Any]:
        return copy.deepcopy({k: v for k, v in context.items() if k != TRACE_KEY})


def run_flow(
    project: Union[Project, Dict[str, Any]],
    options: Optional[RunOptions] = None,
    executor: Optional[AgentExecutor] = None,
    **kwargs,
) -> RunResult:
    """Validate and run ``project`` once. Without an executor no agent runs and
    conditions see ``options.outputs_by_agent`` as ``output``."""
    return Router(project, executor=executor, **kwargs).run(options)
