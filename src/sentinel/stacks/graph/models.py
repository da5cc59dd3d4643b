"""Declarative stack and agent specifications."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Agent inputs and outputs are schema-less JSON-like payloads.
JSONValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]


class AgentSpec(BaseModel):
    """An individual agent within a stack."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    uses: str = ""
    input_from: List[str] = Field(default_factory=list, alias="inputFrom")
    depends: List[str] = Field(default_factory=list)
    params: Dict[str, Any] = Field(default_factory=dict)
    input_key: Optional[str] = Field(default=None, alias="inputKey")
    timeout_seconds: Optional[float] = Field(default=None, alias="timeout", gt=0)

    @property
    def dependency_ids(self) -> List[str]:
        """All predecessor ids (``input_from`` then ``depends``), de-duplicated."""
        seen = []
        for dep_id in [*self.input_from, *self.depends]:
            if dep_id and dep_id not in seen:
                seen.append(dep_id)
        return seen


class StackSpec(BaseModel):
    """A multi-agent stack. Agent declaration order is significant."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    name: str
    description: str = ""
    version: str = "1.0.0"
    agents: List[AgentSpec] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
