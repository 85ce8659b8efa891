"""Shared fixtures: a registry and function-backed test providers."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List

import pytest
from pydantic import BaseModel, ConfigDict

from capflow.core.abstractions import CancellationToken, IProvider, NullSink, ProviderOptions
from capflow.core.types import CapabilityType
from capflow.providers.base import BaseProviderFactory
from capflow.registry import CapabilityRegistry

Handler = Callable[[CancellationToken, BaseModel, Dict[str, Any]], Awaitable[Dict[str, Any]]]


class FnConfig(BaseModel):
    """Accepts any keys so tests can pass arbitrary node config."""
    model_config = ConfigDict(extra="allow")


class FnProvider(IProvider):
    """Provider delegating to an async function."""

    def __init__(self, fn: Handler):
        self.fn = fn
        self.initialized = False
        self.closed = False

    def initialize(self) -> None:
        self.initialized = True

    async def execute(self, token, config, inputs):
        return await self.fn(token, config, inputs)

    async def close(self) -> None:
        self.closed = True


class FnFactory(BaseProviderFactory):
    """Factory producing FnProvider instances; counts creations."""

    capability_type = CapabilityType.TOOL
    config_model = FnConfig
    description = "test function provider"

    def __init__(self, fn: Handler, provider_name: str = "fn"):
        super().__init__(provider_name)
        self.fn = fn
        self.created: List[FnProvider] = []

    def build_provider(self, config: FnConfig, options: ProviderOptions) -> FnProvider:
        provider = FnProvider(self.fn)
        self.created.append(provider)
        return provider


def recorder(journal: List[str], name: str, fail: bool = False, delay: float = 0.0) -> Handler:
    """Handler that logs start/end to ``journal`` and echoes its text input."""

    async def handler(token, config, inputs):
        journal.append(f"start:{name}")
        if delay:
            await asyncio.sleep(delay)
        if fail:
            raise RuntimeError(f"{name} exploded")
        journal.append(f"end:{name}")
        return {"text": f"{name}({inputs.get('text', '')})"}

    return handler


@pytest.fixture
def registry() -> CapabilityRegistry:
    return CapabilityRegistry(logger=NullSink())


@pytest.fixture
def journal() -> List[str]:
    return []


@pytest.fixture
def register_fn(registry):
    """Register a handler under a capability ID and return its factory."""

    def _register(capability_id: str, fn: Handler, config: Dict[str, Any] = None) -> FnFactory:
        factory = FnFactory(fn, provider_name=capability_id)
        registry.register(capability_id, factory, config)
        return factory

    return _register
