"""
Chat Completion Provider

Backed by a LangChain chat model. The model is built from config
(``langchain-openai`` or ``langchain-ollama``) or injected through
``ProviderOptions.services["chat_model"]``; anything exposing an async
``ainvoke(messages)`` works.
"""

import os
from typing import Any, Dict, List, Literal, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.abstractions import CancellationToken, ILogSink, IProvider, ProviderOptions
from ..core.errors import ConfigError, ConfigViolation
from ..core.types import CapabilityType
from .base import BaseProviderFactory

OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")


class ChatConfig(BaseModel):
    """Typed chat config. Ranges are inclusive."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    backend: Literal["openai", "ollama"] = "openai"
    api_key: str = Field(default="", json_schema_extra={"secret": True})
    base_url: Optional[str] = None
    model: str = Field(min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1, le=8192)
    timeout_s: float = Field(default=30.0, gt=0)


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatInput(BaseModel):
    """
    Chat request.

    ``system`` is sent first and ``prompt`` last as a user turn, so a graph
    can bind plain text from an upstream node without building messages.
    """

    messages: List[ChatMessage] = Field(default_factory=list)
    system: Optional[str] = None
    prompt: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)

    @model_validator(mode="after")
    def _has_turns(self) -> "ChatInput":
        if not self.messages and not self.prompt:
            raise ValueError("either messages or prompt is required")
        return self

    def conversation(self) -> List[ChatMessage]:
        turns = []
        if self.system:
            turns.append(ChatMessage(role="system", content=self.system))
        turns.extend(self.messages)
        if self.prompt:
            turns.append(ChatMessage(role="user", content=self.prompt))
        return turns


class ChatOutput(BaseModel):
    content: str
    usage: Dict[str, int] = Field(default_factory=dict)


def to_langchain_messages(messages: List[ChatMessage]) -> List[BaseMessage]:
    """Convert role/content pairs to LangChain message objects."""
    converted: List[BaseMessage] = []
    for msg in messages:
        if msg.role == "system":
            converted.append(SystemMessage(content=msg.content))
        elif msg.role == "assistant":
            converted.append(AIMessage(content=msg.content))
        else:
            converted.append(HumanMessage(content=msg.content))
    return converted


def create_chat_model(config: ChatConfig) -> Any:
    """
    Build a LangChain chat model for the configured backend.

    Args:
        config: Validated chat config

    Returns:
        ChatOpenAI or ChatOllama instance
    """
    if config.backend == "openai":
        try:
            from langchain_openai import ChatOpenAI
        except ImportError:
            raise ImportError("Install with: pip install 'capflow[openai]'")

        return ChatOpenAI(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout_s,
        )
    elif config.backend == "ollama":
        try:
            from langchain_ollama import ChatOllama
        except ImportError:
            raise ImportError("Install with: pip install 'capflow[ollama]'")

        return ChatOllama(
            model=config.model,
            base_url=config.base_url or OLLAMA_BASE_URL,
            temperature=config.temperature,
            num_predict=config.max_tokens,
        )
    else:
        raise ValueError(f"Unknown chat backend: {config.backend}")


def _usage_of(response: Any) -> Dict[str, int]:
    meta = getattr(response, "usage_metadata", None) or {}
    if not meta:
        return {}
    return {
        "prompt_tokens": int(meta.get("input_tokens", 0)),
        "completion_tokens": int(meta.get("output_tokens", 0)),
        "total_tokens": int(meta.get("total_tokens", 0)),
    }


class ChatProvider(IProvider):
    """Chat completion over a LangChain chat model."""

    def __init__(self, config: ChatConfig, logger: ILogSink, chat_model: Any = None):
        self.config = config
        self.logger = logger
        self.chat_model = chat_model
        self._injected = chat_model is not None

    def initialize(self) -> None:
        if self.chat_model is None:
            self.chat_model = create_chat_model(self.config)

    def _model_for(self, config: ChatConfig) -> Any:
        # Injected models own their sampling settings.
        if self._injected or config == self.config:
            return self.chat_model
        return create_chat_model(config)

    async def execute(
        self,
        token: CancellationToken,
        config: ChatConfig,
        inputs: Dict[str, Any],
    ) -> Dict[str, Any]:
        request = ChatInput.model_validate(inputs)
        if request.temperature is not None:
            config = config.model_copy(update={"temperature": request.temperature})

        model = self._model_for(config)
        turns = request.conversation()
        self.logger.debug(
            "Chat request", model=config.model, messages=len(turns)
        )
        response = await model.ainvoke(to_langchain_messages(turns))
        content = response.content if hasattr(response, "content") else str(response)
        return ChatOutput(content=content, usage=_usage_of(response)).model_dump()


class ChatProviderFactory(BaseProviderFactory):
    """Factory for chat completion capabilities."""

    provider_name = "chat"
    capability_type = CapabilityType.CHAT
    description = "Chat completion through a LangChain chat model"
    config_model = ChatConfig
    input_model = ChatInput
    output_model = ChatOutput
    config_section = "llm"
    platform_aliases = {"model_name": "model", "url": "base_url"}

    def validate_config(self, raw: Optional[Dict[str, Any]]) -> ChatConfig:
        config = super().validate_config(raw)
        if config.backend == "openai" and not config.api_key:
            raise ConfigError(
                [ConfigViolation("api_key", "api_key is required for the openai backend")],
                source=self.get_provider_name(),
            )
        return config

    def build_provider(self, config: ChatConfig, options: ProviderOptions) -> ChatProvider:
        return ChatProvider(config, options.logger, chat_model=options.get("chat_model"))
