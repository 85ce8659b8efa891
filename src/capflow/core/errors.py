"""
Error Taxonomy

Every failure the registry, providers or engine can report derives from
FlowError so callers can catch the family in one place.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import ValidationError


class FlowError(Exception):
    """Base class for all capflow errors."""


@dataclass(frozen=True)
class ConfigViolation:
    """A single field-level configuration problem."""
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ConfigError(FlowError):
    """
    Raised when configuration fails validation.

    Attributes:
        violations: Field-named problems, one per offending field/rule
        source: What was being validated (provider name, setting group, ...)
    """

    def __init__(self, violations: Sequence[ConfigViolation], source: str = "config"):
        self.violations: List[ConfigViolation] = list(violations)
        self.source = source
        details = "; ".join(str(v) for v in self.violations) or "invalid configuration"
        super().__init__(f"[{source}] {details}")

    @property
    def fields(self) -> List[str]:
        return [v.field for v in self.violations]

    @classmethod
    def from_validation_error(cls, error: ValidationError, source: str) -> "ConfigError":
        """Convert a pydantic ValidationError into a ConfigError."""
        violations = []
        for err in error.errors():
            field = ".".join(str(loc) for loc in err.get("loc", ())) or "__root__"
            violations.append(ConfigViolation(field=field, message=err.get("msg", "")))
        return cls(violations, source=source)


class ConflictError(FlowError):
    """Raised when a capability ID is registered twice."""

    def __init__(self, capability_id: str):
        self.capability_id = capability_id
        super().__init__(f"Capability already registered: {capability_id}")


class NotFoundError(FlowError):
    """Raised when a capability or provider lookup fails."""

    def __init__(self, capability_id: str, what: str = "capability"):
        self.capability_id = capability_id
        super().__init__(f"{what.capitalize()} not found: {capability_id}")


class InitError(FlowError):
    """Raised when a provider cannot be constructed or initialized."""

    def __init__(self, provider_name: str, reason: str):
        self.provider_name = provider_name
        self.reason = reason
        super().__init__(f"[{provider_name}] initialization failed: {reason}")


class ExecutionError(FlowError):
    """
    Raised when a provider invocation fails.

    The underlying exception, if any, is available as ``cause`` and is also
    chained via ``raise ... from``.
    """

    def __init__(
        self,
        capability_id: str,
        reason: str,
        cause: Optional[BaseException] = None,
        node_id: Optional[str] = None,
    ):
        self.capability_id = capability_id
        self.reason = reason
        self.cause = cause
        self.node_id = node_id
        prefix = f"{node_id}/{capability_id}" if node_id else capability_id
        super().__init__(f"[{prefix}] {reason}")


class InvocationCancelledError(FlowError):
    """Raised when an invocation is aborted because its run was cancelled."""

    def __init__(self, capability_id: str = "", node_id: Optional[str] = None):
        self.capability_id = capability_id
        self.node_id = node_id
        target = node_id or capability_id or "invocation"
        super().__init__(f"[{target}] cancelled")


class GraphErrorKind(str, Enum):
    """Why a workflow graph was rejected."""
    UNKNOWN_CAPABILITY = "unknown_capability"
    CYCLE_DETECTED = "cycle_detected"
    DANGLING_REFERENCE = "dangling_reference"
    DUPLICATE_NODE = "duplicate_node"
    INVALID_DEFINITION = "invalid_definition"


class GraphError(FlowError):
    """
    Raised when a workflow graph fails construction or validation.

    Attributes:
        kind: GraphErrorKind describing the failure
        node_ids: Node IDs involved (for cycles, in cycle order)
    """

    def __init__(self, kind: GraphErrorKind, message: str, node_ids: Sequence[str] = ()):
        self.kind = kind
        self.node_ids = list(node_ids)
        super().__init__(f"{kind.value}: {message}")
