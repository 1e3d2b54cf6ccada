"""Default structural validator.

Checks that a project can be executed: a known entry agent, unique agent ids,
rules that point at declared agents and conditions that parse. Graph-level
findings (unreachable agents, routing cycles) are reported as warnings only;
cycles are legal at run time and bounded by the step limit.
"""

from __future__ import annotations
from collections import Counter
from typing import Any, Dict, Iterable, List, Union

from .errors import InvalidToolDefinition, LexError, ParseError, UnsupportedToolType
from .graph_engine import RoutingGraph
from .parser import parse
from .schemas import Project, load_project
from .tools import parse_tool
from .types import Issue, IssueLevel


def _error(code: str, message: str, ref: str = None) -> Issue:
    return Issue(IssueLevel.ERROR, code, message, ref)


def _warning(code: str, message: str, ref: str = None) -> Issue:
    return Issue(IssueLevel.WARNING, code, message, ref)


def validate_project(project: Union[Project, Dict[str, Any]]) -> List[Issue]:
    project = load_project(project)
    issues: List[Issue] = []
    agent_ids = [a.id for a in project.agents]
    known = set(agent_ids)

    for agent_id, count in Counter(agent_ids).items():
        if count > 1:
            issues.append(_error("DUPLICATE_AGENT_ID", f"Agent id '{agent_id}' is declared {count} times", agent_id))

    entry = project.flow.entry_agent
    if not entry or not isinstance(entry, str):
        issues.append(_error("MISSING_ENTRY_AGENT", "flow.entry_agent is missing"))
    elif entry not in known:
        issues.append(_error("UNKNOWN_ENTRY_AGENT", f"Entry agent '{entry}' is not declared", entry))

    for idx, rule in enumerate(project.flow.logic):
        ref = rule.id or f"logic[{idx}]"
        if not rule.from_ or rule.from_ not in known:
            issues.append(_error("RULE_UNKNOWN_FROM", f"Rule {ref} starts at unknown agent '{rule.from_}'", ref))
        if rule.to and rule.to not in known:
            issues.append(_error("RULE_UNKNOWN_TO", f"Rule {ref} targets unknown agent '{rule.to}'", ref))
        try:
            parse(rule.effective_condition)
        except (LexError, ParseError) as e:
            issues.append(_error("CONDITION_SYNTAX", f"Rule {ref}: {e}", ref))

    for agent in project.agents:
        for tool in agent.tools:
            if tool not in project.tools:
                issues.append(_warning("UNKNOWN_TOOL", f"Agent '{agent.id}' uses unregistered tool '{tool}'", agent.id))

    for name, raw in project.tools.items():
        try:
            parse_tool(name, raw)
        except (UnsupportedToolType, InvalidToolDefinition) as e:
            issues.append(_warning("INVALID_TOOL", str(e), name))

    if entry in known:
        graph = RoutingGraph(project)
        for agent_id in graph.unreachable_agents():
            issues.append(_warning("UNREACHABLE_AGENT", f"Agent '{agent_id}' is not reachable from '{entry}'", agent_id))
        for cycle in graph.cycles():
            path = " -> ".join(cycle + cycle[:1])
            issues.append(_warning("ROUTING_CYCLE", f"Routing cycle {path}", cycle[0]))

    return issues


def has_validation_errors(issues: Iterable[Issue]) -> bool:
    return any(i.level == IssueLevel.ERROR for i in issues)
