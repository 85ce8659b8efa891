"""capflow: register AI capabilities and run them as dependency graphs."""

from .core import (
    CancellationToken,
    Capability,
    CapabilityType,
    ConfigError,
    ConfigViolation,
    ConflictError,
    EngineSettings,
    ExecutionError,
    Executor,
    FlowError,
    GraphError,
    GraphErrorKind,
    ILogSink,
    InitError,
    InvocationCancelledError,
    IProvider,
    IProviderFactory,
    LoggingSink,
    NodeStatus,
    NotFoundError,
    ProviderOptions,
    get_logger,
)
from .providers import (
    BaseProviderFactory,
    ChatProviderFactory,
    SpeechRecognitionFactory,
    SpeechSynthesisFactory,
    TemplateFactory,
    create_factory,
)
from .registry import CapabilityRegistry
from .workflows import (
    RUN_INPUT,
    NodeResult,
    Reference,
    RunResult,
    WorkflowEngine,
    WorkflowGraph,
    WorkflowNode,
)

__version__ = "0.1.0"

__all__ = [
    # Registry & contract
    "CapabilityRegistry",
    "Capability",
    "CapabilityType",
    "Executor",
    "IProvider",
    "IProviderFactory",
    "ProviderOptions",
    "CancellationToken",
    # Providers
    "BaseProviderFactory",
    "ChatProviderFactory",
    "SpeechSynthesisFactory",
    "SpeechRecognitionFactory",
    "TemplateFactory",
    "create_factory",
    # Workflows
    "WorkflowEngine",
    "WorkflowGraph",
    "WorkflowNode",
    "Reference",
    "RUN_INPUT",
    "NodeResult",
    "RunResult",
    "NodeStatus",
    # Settings & logging
    "EngineSettings",
    "ILogSink",
    "LoggingSink",
    "get_logger",
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
]
