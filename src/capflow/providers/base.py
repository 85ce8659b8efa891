"""
Provider Factory Base

Shared implementation of the factory contract. Subclasses declare:

    provider_name      default capability/provider name
    capability_type    CapabilityType tag
    config_model       pydantic model holding ranges and required fields
    input_model        pydantic model describing inputs (schema only)
    output_model       pydantic model describing outputs (schema only)
    config_section     section of the platform config blob ("llm", "tts", ...)
    platform_aliases   platform field name -> config field name

and implement ``build_provider``.
"""

from abc import abstractmethod
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError

from ..core.abstractions import IProvider, IProviderFactory, ProviderOptions
from ..core.errors import ConfigError, ConfigViolation, InitError


class BaseProviderFactory(IProviderFactory):
    """Pydantic-backed implementation of IProviderFactory."""

    provider_name: str = ""
    config_section: str = ""
    platform_aliases: Dict[str, str] = {}

    def __init__(self, provider_name: Optional[str] = None):
        if provider_name is not None:
            self.provider_name = provider_name

    def get_provider_name(self) -> str:
        return self.provider_name

    def validate_config(self, raw: Optional[Dict[str, Any]]) -> BaseModel:
        if isinstance(raw, self.config_model):
            return raw
        try:
            return self.config_model.model_validate(dict(raw or {}))
        except ValidationError as e:
            raise ConfigError.from_validation_error(e, source=self.get_provider_name()) from e

    def create_provider(self, config: BaseModel, options: ProviderOptions) -> IProvider:
        name = self.get_provider_name()
        try:
            provider = self.build_provider(config, options)
            provider.initialize()
        except InitError:
            raise
        except Exception as e:
            options.logger.error("Provider initialization failed", provider=name, error=str(e))
            raise InitError(name, str(e) or type(e).__name__) from e
        options.logger.debug("Provider created", provider=name)
        return provider

    @abstractmethod
    def build_provider(self, config: BaseModel, options: ProviderOptions) -> IProvider:
        """Construct (but do not initialize) the provider."""
        pass

    def extract_config(self, platform_config: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Pull this provider's raw config out of a platform config blob.

        The blob is shaped ``{section: {provider_name: {...}}}``. Keys listed
        in ``platform_aliases`` are renamed, entries of a nested ``extra``
        mapping are flattened, and keys the config model does not know are
        dropped.

        Args:
            platform_config: Generic platform configuration

        Returns:
            Raw config dict, ready for validate_config()

        Raises:
            ConfigError: If the section or provider entry is missing
        """
        name = self.get_provider_name()
        section = platform_config.get(self.config_section) or {}
        entry = section.get(name)
        if not isinstance(entry, Mapping):
            raise ConfigError(
                [ConfigViolation(f"{self.config_section}.{name}", "missing provider section")],
                source=name,
            )

        flat: Dict[str, Any] = {}
        for key, value in entry.items():
            if key == "extra" and isinstance(value, Mapping):
                flat.update(value)
            else:
                flat[key] = value

        known = set(self.config_model.model_fields)
        raw = {}
        for key, value in flat.items():
            target = self.platform_aliases.get(key, key)
            if target in known:
                raw[target] = value
        return raw

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_name={self.get_provider_name()!r})"
