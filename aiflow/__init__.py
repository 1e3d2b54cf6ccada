from .autocontext import build_auto_context
from .errors import (
    AIFlowError,
    AgentExecutionError,
    LexError,
    ParseError,
    ToolInvocationError,
    ToolNotFound,
    UnsupportedToolType,
    ValidationError,
)
from .evaluator import ConditionTrace, evaluate_condition, evaluate_with_trace
from .parser import parse
from .runtime import (
    AgentExecutor,
    CallableAgentExecutor,
    Router,
    SimulatedAgentExecutor,
    run_flow,
)
from .schemas import Project, load_project
from .tools import build_auth_headers, build_http_request, resolve_tool, run_tools_for_agent
from .types import RunOptions, RunResult, RunStatus
from .validator import has_validation_errors, validate_project

__version__ = "0.2.0"
