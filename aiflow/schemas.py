"""Pydantic schemas for AIFlow projects.

A project is the JSON document produced by the studio: metadata, a flow
(entry agent + ordered routing rules), agent definitions, a tool registry and
prompt texts. Tool definitions and their auth blocks are closed variants
discriminated on ``type``; registry entries are only parsed when a tool runs, so
one bad entry cannot block a whole project.
"""

from __future__ import annotations
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


# ---------- Tool auth ----------

class NoAuth(_Model):
    type: Literal["none"] = "none"


class ApiKeyAuth(_Model):
    type: Literal["api_key"] = "api_key"
    key: Optional[str] = None
    header_key: Optional[str] = None


class BearerAuth(_Model):
    type: Literal["bearer"] = "bearer"
    token: Optional[str] = None


class OAuth2Auth(_Model):
    """Token acquisition is external; ``token`` is the already-exchanged bearer token."""
    type: Literal["oauth2"] = "oauth2"
    token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    token_endpoint: Optional[str] = None
    scope: Optional[str] = None


ToolAuth = Annotated[Union[NoAuth, ApiKeyAuth, BearerAuth, OAuth2Auth], Field(discriminator="type")]


# ---------- Tool definitions ----------

class _ToolBase(_Model):
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None


class HttpTool(_ToolBase):
    type: Literal["http"] = "http"
    endpoint: str = ""
    method: str = "GET"
    operations: List[str] = Field(default_factory=list)
    auth: Optional[ToolAuth] = None

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> str:
        return str(v or "GET").upper()


class BuiltinTool(_ToolBase):
    type: Literal["builtin"] = "builtin"


class PythonTool(_ToolBase):
    type: Literal["python"] = "python"


ToolDefinition = Annotated[Union[HttpTool, BuiltinTool, PythonTool], Field(discriminator="type")]


# ---------- Flow ----------

class Rule(_Model):
    id: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    condition: Optional[str] = None
    description: Optional[str] = None
    mapping: Optional[str] = None

    @property
    def effective_condition(self) -> str:
        """Empty or missing conditions behave as ``always``."""
        if isinstance(self.condition, str) and self.condition.strip():
            return self.condition
        return "always"


class ErrorHandling(_Model):
    retry: int = 0
    fallback_agent: Optional[str] = None


class Flow(_Model):
    schema_version: Optional[str] = None
    entry_agent: Optional[str] = None
    agents: List[str] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    logic: List[Rule] = Field(default_factory=list)
    error_handling: Optional[ErrorHandling] = None

    @field_validator("logic", mode="before")
    @classmethod
    def drop_empty_rules(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [r for r in v if r]
        return v


class AgentModel(_Model):
    provider: Optional[str] = None
    name: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1000


class Agent(_Model):
    id: str
    name: Optional[str] = None
    role: Optional[str] = None
    model: Optional[AgentModel] = None
    prompt: Optional[str] = None
    instructions: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    memory: Optional[str] = None
    output_format: str = "text"

    @property
    def display_name(self) -> str:
        return self.name or self.id


class Metadata(_Model):
    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    creator: Optional[str] = None


class Project(_Model):
    metadata: Metadata = Field(default_factory=Metadata)
    flow: Flow = Field(default_factory=Flow)
    agents: List[Agent] = Field(default_factory=list)
    # raw registry entries; parsed into ToolDefinition when a tool is invoked
    tools: Dict[str, Any] = Field(default_factory=dict)
    prompts: Dict[str, str] = Field(default_factory=dict)

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def rules_from(self, agent_id: str) -> List[Rule]:
        """Outgoing rules of ``agent_id`` in declaration order."""
        return [r for r in self.flow.logic if r.from_ == agent_id]


def load_project(data: Union[Project, Dict[str, Any]]) -> Project:
    if isinstance(data, Project):
        return data
    return Project.model_validate(data)
