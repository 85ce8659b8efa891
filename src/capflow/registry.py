"""
Capability Registry

Holds one factory/provider binding per capability ID. Construct one registry
per process and pass it to the engine explicitly.

Concurrency:
    Writes (register/unregister/provider creation) are serialized by locks.
    Reads go to immutable snapshots that writers replace wholesale, so
    lookups and listing never block.
"""

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel

from .core.abstractions import ILogSink, IProvider, IProviderFactory, ProviderOptions
from .core.errors import (
    ConfigError,
    ConfigViolation,
    ConflictError,
    FlowError,
    InitError,
    NotFoundError,
)
from .core.executor import Executor
from .core.logger import LoggingSink
from .core.types import Capability


@dataclass(frozen=True)
class _Entry:
    capability: Capability
    factory: IProviderFactory
    config: BaseModel
    options: ProviderOptions


class CapabilityRegistry:
    """
    Registry of capabilities and their lazily-created providers.

    Example:
        registry = CapabilityRegistry()
        registry.register("openai_chat", ChatProviderFactory("openai"), {
            "api_key": "...", "model": "gpt-4o-mini",
        })
        executor = registry.get_executor("openai_chat")
    """

    def __init__(
        self,
        logger: Optional[ILogSink] = None,
        services: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize registry.

        Args:
            logger: Sink for registry logs and default sink for providers
            services: Default named services handed to every provider
        """
        self.logger = logger or LoggingSink()
        self.services = dict(services or {})
        self._write_lock = threading.Lock()
        self._create_lock = threading.Lock()
        self._entries: Mapping[str, _Entry] = MappingProxyType({})
        self._executors: Mapping[str, Executor] = MappingProxyType({})

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        capability_id: str,
        factory: IProviderFactory,
        config: Optional[Dict[str, Any]] = None,
        options: Optional[ProviderOptions] = None,
    ) -> Capability:
        """
        Register a capability.

        The config is validated here, before anything is allocated; the
        provider itself is created on the first get_executor() call.

        Args:
            capability_id: Unique capability ID
            factory: Provider factory for this capability
            config: Raw provider config
            options: Provider options (defaults to this registry's sink and
                services)

        Returns:
            The registered Capability descriptor

        Raises:
            TypeError: factory does not implement IProviderFactory
            ConfigError: Empty ID/provider name or invalid config
            ConflictError: capability_id already registered (checked before
                the config)
        """
        if not isinstance(factory, IProviderFactory):
            raise TypeError(f"Expected IProviderFactory, got {type(factory).__name__}")
        violations = []
        if not capability_id or not capability_id.strip():
            violations.append(ConfigViolation("capability_id", "must be a non-empty string"))
        if not factory.get_provider_name():
            violations.append(ConfigViolation("provider_name", "factory must expose a non-empty name"))
        if violations:
            raise ConfigError(violations, source="registry")

        if capability_id in self._entries:
            raise ConflictError(capability_id)
        typed_config = factory.validate_config(config)
        capability = factory.describe(capability_id)
        if options is None:
            options = ProviderOptions(logger=self.logger, services=dict(self.services))

        with self._write_lock:
            if capability_id in self._entries:
                raise ConflictError(capability_id)
            entries = dict(self._entries)
            entries[capability_id] = _Entry(capability, factory, typed_config, options)
            self._entries = MappingProxyType(entries)

        self.logger.info(
            "Capability registered",
            capability=capability_id,
            type=capability.type.value,
            provider=factory.get_provider_name(),
        )
        return capability.model_copy(deep=True)

    async def unregister(self, capability_id: str) -> None:
        """Remove a capability, closing its provider if one was created."""
        with self._write_lock:
            if capability_id not in self._entries:
                raise NotFoundError(capability_id)
            entries = dict(self._entries)
            del entries[capability_id]
            self._entries = MappingProxyType(entries)
        with self._create_lock:
            executors = dict(self._executors)
            executor = executors.pop(capability_id, None)
            self._executors = MappingProxyType(executors)
        if executor is not None:
            await executor.provider.close()
        self.logger.info("Capability unregistered", capability=capability_id)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def list_capabilities(self) -> Tuple[Capability, ...]:
        """Snapshot of all registered capabilities, ordered by ID."""
        entries = self._entries
        return tuple(entries[cid].capability.model_copy(deep=True) for cid in sorted(entries))

    def get_capability(self, capability_id: str) -> Capability:
        entry = self._entries.get(capability_id)
        if entry is None:
            raise NotFoundError(capability_id)
        return entry.capability.model_copy(deep=True)

    def get_executor(self, capability_id: str) -> Executor:
        """
        Return the cached Executor, creating the provider on first use.

        Raises:
            NotFoundError: Unknown capability ID
            InitError: Provider construction failed (not cached; the next
                call retries)
        """
        executor = self._executors.get(capability_id)
        if executor is not None:
            return executor

        entry = self._entries.get(capability_id)
        if entry is None:
            raise NotFoundError(capability_id)

        with self._create_lock:
            executor = self._executors.get(capability_id)
            if executor is not None:
                return executor
            if capability_id not in self._entries:
                raise NotFoundError(capability_id)
            provider = self._create_provider(entry)
            executor = Executor(
                capability=entry.capability.model_copy(deep=True),
                factory=entry.factory,
                provider=provider,
                config=entry.config,
                logger=entry.options.logger,
            )
            executors = dict(self._executors)
            executors[capability_id] = executor
            self._executors = MappingProxyType(executors)

        self.logger.debug("Provider instantiated", capability=capability_id)
        return executor

    def _create_provider(self, entry: _Entry) -> IProvider:
        name = entry.factory.get_provider_name()
        try:
            return entry.factory.create_provider(entry.config, entry.options)
        except FlowError:
            raise
        except Exception as e:
            self.logger.error("Provider creation failed", provider=name, error=str(e))
            raise InitError(name, str(e) or type(e).__name__) from e

    def validate_node_config(self, capability_id: str, overrides: Optional[Dict[str, Any]]) -> None:
        """
        Check per-node config overrides against the capability's factory.

        Raises:
            NotFoundError: Unknown capability ID
            ConfigError: Overrides produce an invalid config
        """
        entry = self._entries.get(capability_id)
        if entry is None:
            raise NotFoundError(capability_id)
        if not overrides:
            return
        merged = entry.config.model_dump()
        merged.update(overrides)
        entry.factory.validate_config(merged)

    async def aclose(self) -> None:
        """Close every instantiated provider."""
        with self._create_lock:
            executors = self._executors
            self._executors = MappingProxyType({})
        for capability_id, executor in executors.items():
            await executor.provider.close()
            self.logger.debug("Provider closed", capability=capability_id)

    def __contains__(self, capability_id: object) -> bool:
        return capability_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"CapabilityRegistry(capabilities={len(self._entries)})"
