from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from datetime import datetime


class RunStatus(str, Enum):
    RUNNING = "running"
    FINISHED = "finished"    # no further matching rule
    TRUNCATED = "truncated"  # step bound reached
    STOPPED = "stopped"      # cancelled between steps


class IssueLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Issue:
    level: IssueLevel
    code: str
    message: str
    ref: Optional[str] = None


@dataclass
class RunOptions:
    initial_context: Dict[str, Any] = field(default_factory=dict)
    # agent id -> mock output, used as ``output`` in conditions
    outputs_by_agent: Dict[str, Any] = field(default_factory=dict)
    max_steps: Optional[int] = None
    record_trace: Optional[bool] = None


@dataclass
class RuleEvaluation:
    rule_id: Optional[str]
    from_agent: Optional[str]
    to_agent: Optional[str]
    condition: Optional[str]
    result: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.rule_id,
            "from": self.from_agent,
            "to": self.to_agent,
            "condition": self.condition,
            "result": self.result,
        }


@dataclass
class ExecutionStep:
    agent_id: str
    evaluations: List[RuleEvaluation] = field(default_factory=list)
    selected_rule_id: Optional[str] = None
    next_agent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "evaluations": [e.to_dict() for e in self.evaluations],
            "selectedRuleId": self.selected_rule_id,
            "nextAgentId": self.next_agent_id,
        }


@dataclass
class RunResult:
    status: RunStatus
    visited_agents: List[str]
    steps: List[ExecutionStep]
    final_agent_id: Optional[str]
    context: Dict[str, Any]
    # agent the run stopped on, kept even when final_agent_id is None
    last_agent_id: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status == RunStatus.FINISHED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "finished": self.finished,
            "status": self.status.value,
            "visitedAgents": list(self.visited_agents),
            "steps": [s.to_dict() for s in self.steps],
            "finalAgentId": self.final_agent_id,
            "lastAgentId": self.last_agent_id,
            "context": self.context,
        }


@dataclass
class LogEntry:
    level: str  # info | warning | error | success
    message: str
    agent_id: Optional[str] = None
    details: Any = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
