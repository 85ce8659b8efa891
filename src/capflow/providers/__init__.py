"""Built-in provider families."""

from typing import Literal, Optional

from .base import BaseProviderFactory
from .chat import ChatConfig, ChatProvider, ChatProviderFactory, create_chat_model
from .speech import (
    RecognitionConfig,
    SpeechRecognitionFactory,
    SpeechRecognitionProvider,
    SpeechSynthesisFactory,
    SpeechSynthesisProvider,
    SynthesisConfig,
)
from .template import TemplateConfig, TemplateFactory, TemplateProvider

_FACTORIES = {
    "chat": ChatProviderFactory,
    "speech_synthesis": SpeechSynthesisFactory,
    "speech_recognition": SpeechRecognitionFactory,
    "template": TemplateFactory,
}


def create_factory(
    kind: Literal["chat", "speech_synthesis", "speech_recognition", "template"],
    provider_name: Optional[str] = None,
) -> BaseProviderFactory:
    """Factory function to create a built-in provider factory.

    Usage:
        factory = create_factory("chat", provider_name="openai")
        registry.register("openai_chat", factory, {"api_key": "...", "model": "gpt-4o-mini"})
    """
    kind = kind.lower()
    if kind not in _FACTORIES:
        raise ValueError(f"Unknown provider kind: {kind}")
    return _FACTORIES[kind](provider_name)


__all__ = [
    "create_factory",
    "BaseProviderFactory",
    "ChatConfig",
    "ChatProvider",
    "ChatProviderFactory",
    "create_chat_model",
    "SynthesisConfig",
    "SpeechSynthesisFactory",
    "SpeechSynthesisProvider",
    "RecognitionConfig",
    "SpeechRecognitionFactory",
    "SpeechRecognitionProvider",
    "TemplateConfig",
    "TemplateFactory",
    "TemplateProvider",
]
