"""
Core Abstractions

Interfaces shared by the registry, the providers and the workflow engine.
Components depend on these, never on concrete logging or vendor types.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel

from .types import Capability, CapabilityType


# ============================================================================
# Logging Sink
# ============================================================================

class ILogSink(ABC):
    """
    Structured logging capability accepted by registry, engine and factories.

    Implementations receive a level name ("debug", "info", "warning",
    "error"), a message and arbitrary key/value fields.
    """

    @abstractmethod
    def log(self, level: str, message: str, **fields: Any) -> None:
        pass

    def debug(self, message: str, **fields: Any) -> None:
        self.log("debug", message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self.log("info", message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.log("warning", message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.log("error", message, **fields)


class NullSink(ILogSink):
    """Sink that drops everything."""

    def log(self, level: str, message: str, **fields: Any) -> None:
        return None


# ============================================================================
# Cancellation
# ============================================================================

class CancellationToken:
    """
    Run-scoped cooperative cancellation signal.

    Executors check it at call boundaries and the scheduler checks it at
    every dispatch decision. Cancelling never kills in-flight work directly.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


# ============================================================================
# Provider Contract
# ============================================================================

@dataclass
class ProviderOptions:
    """
    Cross-cutting dependencies handed to ``create_provider``.

    Attributes:
        logger: Structured logging sink
        services: Named optional collaborators (e.g. "chat_model",
            "http_transport"); providers document the names they read
    """

    logger: ILogSink = field(default_factory=NullSink)
    services: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.services.get(name, default)


class IProvider(ABC):
    """
    Runtime instance implementing one capability.

    Every provider family (chat, speech synthesis, recognition, tools)
    implements this same interface; the engine never inspects concrete types.
    """

    def initialize(self) -> None:
        """Allocate clients/resources. Called once by the factory."""

    @abstractmethod
    async def execute(
        self,
        token: CancellationToken,
        config: BaseModel,
        inputs: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Run the capability.

        Args:
            token: Run cancellation token
            config: Typed config for this call (registered config merged with
                per-call overrides)
            inputs: JSON-compatible input mapping

        Returns:
            JSON-compatible output mapping
        """
        pass

    async def close(self) -> None:
        """Release resources allocated in initialize()."""


class IProviderFactory(ABC):
    """
    Factory contract every capability type implements.

    Subclasses declare the capability type and their typed config model;
    validation turns raw mappings into that model or raises ConfigError.
    """

    capability_type: CapabilityType
    config_model: Type[BaseModel]
    description: str = ""
    input_model: Optional[Type[BaseModel]] = None
    output_model: Optional[Type[BaseModel]] = None

    @abstractmethod
    def get_provider_name(self) -> str:
        pass

    @abstractmethod
    def validate_config(self, raw: Optional[Dict[str, Any]]) -> BaseModel:
        """
        Validate raw config.

        Raises:
            ConfigError: With one violation per offending field
        """
        pass

    @abstractmethod
    def create_provider(self, config: BaseModel, options: ProviderOptions) -> IProvider:
        """
        Construct and initialize a provider.

        Raises:
            InitError: If construction or initialization fails
        """
        pass

    def describe(self, capability_id: str) -> Capability:
        """Build the Capability descriptor registered under ``capability_id``."""
        return Capability(
            id=capability_id,
            type=self.capability_type,
            name=self.get_provider_name(),
            description=self.description,
            config_schema=self.config_model.model_json_schema(),
            input_schema=self.input_model.model_json_schema() if self.input_model else {},
            output_schema=self.output_model.model_json_schema() if self.output_model else {},
        )
