"""Deterministic text template tool."""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from ..core.abstractions import CancellationToken, IProvider, ProviderOptions
from ..core.types import CapabilityType
from .base import BaseProviderFactory


class TemplateConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template: str = Field(min_length=1)


class TemplateOutput(BaseModel):
    text: str


class TemplateProvider(IProvider):
    """Render ``config.template`` with the node's inputs (``str.format`` syntax)."""

    async def execute(
        self,
        token: CancellationToken,
        config: TemplateConfig,
        inputs: Dict[str, Any],
    ) -> Dict[str, Any]:
        try:
            text = config.template.format_map(inputs)
        except KeyError as e:
            raise ValueError(f"template placeholder has no input: {e.args[0]}") from e
        return {"text": text}


class TemplateFactory(BaseProviderFactory):
    provider_name = "template"
    capability_type = CapabilityType.TOOL
    description = "Render a text template from inputs"
    config_model = TemplateConfig
    output_model = TemplateOutput
    config_section = "tools"

    def build_provider(self, config: TemplateConfig, options: ProviderOptions) -> TemplateProvider:
        return TemplateProvider()
