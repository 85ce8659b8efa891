"""Shared type definitions for the registry and the workflow engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CapabilityType(str, Enum):
    """Category tag of a capability."""

    CHAT = "chat"
    SPEECH_SYNTHESIS = "speech_synthesis"
    SPEECH_RECOGNITION = "speech_recognition"
    TOOL = "tool"


class NodeStatus(str, Enum):
    """Status of a workflow node within one run."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED, NodeStatus.CANCELLED}
)


class Capability(BaseModel):
    """
    Descriptor of a registered capability.

    Built by the registry from the factory at registration time and never
    mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: CapabilityType
    name: str
    description: str = ""
    config_schema: Dict[str, Any] = Field(default_factory=dict)
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    output_schema: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class NodeMetrics:
    """Metrics collected for one node execution."""

    name: str
    status: NodeStatus = NodeStatus.PENDING
    duration_ms: float = 0.0
    input_keys: List[str] = field(default_factory=list)
    output_keys: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "input_keys": self.input_keys,
            "output_keys": self.output_keys,
            "error_message": self.error_message,
        }
