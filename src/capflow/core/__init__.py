"""Core infrastructure shared by the registry, providers and engine."""

from .abstractions import (
    CancellationToken,
    ILogSink,
    IProvider,
    IProviderFactory,
    NullSink,
    ProviderOptions,
)
from .config import EngineSettings
from .errors import (
    ConfigError,
    ConfigViolation,
    ConflictError,
    ExecutionError,
    FlowError,
    GraphError,
    GraphErrorKind,
    InitError,
    InvocationCancelledError,
    NotFoundError,
)
from .executor import Executor
from .logger import LoggingSink, get_logger
from .metrics import MetricsCollector
from .types import Capability, CapabilityType, NodeMetrics, NodeStatus, TERMINAL_STATUSES

__all__ = [
    # Abstractions
    "CancellationToken",
    "ILogSink",
    "IProvider",
    "IProviderFactory",
    "NullSink",
    "ProviderOptions",
    # Settings & logging
    "EngineSettings",
    "LoggingSink",
    "get_logger",
    "MetricsCollector",
    # Errors
    "FlowError",
    "ConfigError",
    "ConfigViolation",
    "ConflictError",
    "NotFoundError",
    "InitError",
    "ExecutionError",
    "GraphError",
    "GraphErrorKind",
    "InvocationCancelledError",
    # Types
    "Executor",
    "Capability",
    "CapabilityType",
    "NodeMetrics",
    "NodeStatus",
    "TERMINAL_STATUSES",
]
