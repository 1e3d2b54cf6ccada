from typing import Optional


class AIFlowError(Exception):
    pass


class LexError(AIFlowError):
    """Raised when an expression contains a character the tokenizer cannot scan."""

    def __init__(self, char: str, position: int, message: Optional[str] = None):
        self.char = char
        self.position = position
        super().__init__(message or f"Unexpected character {char!r} at position {position}")


class ParseError(AIFlowError):
    """Raised when the token stream does not match the expression grammar."""

    def __init__(self, expected: str, found: Optional[str] = None, position: Optional[int] = None):
        self.expected = expected
        self.found = found
        self.position = position
        where = f" at position {position}" if position is not None else ""
        got = f", found {found!r}" if found is not None else ", found end of expression"
        super().__init__(f"Expected {expected}{got}{where}")


class ValidationError(AIFlowError):
    """Raised before any step runs when the project has error-level issues."""

    def __init__(self, issues):
        self.issues = list(issues)
        codes = ", ".join(i.code for i in self.issues)
        super().__init__(f"Project has validation errors: {codes}")


class ToolError(AIFlowError):
    pass


class ToolNotFound(ToolError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool '{name}' not found in registry")


class UnsupportedToolType(ToolError):
    def __init__(self, tool_type: str):
        self.tool_type = tool_type
        super().__init__(
            f"Tool type '{tool_type}' is not implemented: the invoker only supports HTTP tools"
        )


class InvalidToolDefinition(ToolError):
    def __init__(self, name: str, detail: str):
        self.name = name
        super().__init__(f"Tool '{name}' has an invalid definition: {detail}")


class ToolInvocationError(ToolError):
    """Raised by a transport when the remote call fails."""
    pass


class AgentExecutionError(AIFlowError):
    """Raised when the agent executor fails; aborts the run."""

    def __init__(self, agent_id: str, cause: Exception):
        self.agent_id = agent_id
        self.cause = cause
        super().__init__(f"Agent '{agent_id}' failed: {cause}")
