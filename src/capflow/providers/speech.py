"""
Speech Providers

Speech synthesis and speech recognition over a generic HTTP speech service:

    POST {base_url}/synthesize   JSON {text, voice, speed, pitch, volume,
                                 sample_rate, format} -> audio bytes
    POST {base_url}/transcribe   multipart file + model/language/sample_rate
                                 -> JSON {"text": ...}

Both share one ``httpx.AsyncClient`` per provider; every request carries its
own URL and headers so per-call config overrides never touch shared state.
A transport can be injected through ``services["http_transport"]``.
"""

import base64
import binascii
from typing import Any, Dict, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.abstractions import CancellationToken, ILogSink, IProvider, ProviderOptions
from ..core.types import CapabilityType
from .base import BaseProviderFactory

AudioFormat = Literal["mp3", "wav", "pcm", "opus"]

_MIME_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "pcm": "audio/pcm",
    "opus": "audio/opus",
}


# ============================================================================
# Shared HTTP plumbing
# ============================================================================

class HTTPSpeechProvider(IProvider):
    """Base for providers talking to the speech HTTP service."""

    def __init__(self, config: BaseModel, logger: ILogSink, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.logger = logger
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    def initialize(self) -> None:
        self.client = httpx.AsyncClient(transport=self.transport)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    @staticmethod
    def _url(config: Any, path: str) -> str:
        return f"{config.base_url.rstrip('/')}/{path}"

    @staticmethod
    def _headers(config: Any) -> Dict[str, str]:
        if config.api_key:
            return {"Authorization": f"Bearer {config.api_key}"}
        return {}

    def _require_client(self) -> httpx.AsyncClient:
        if self.client is None:
            raise RuntimeError("provider is closed")
        return self.client


# ============================================================================
# Speech synthesis
# ============================================================================

class SynthesisConfig(BaseModel):
    """Typed speech synthesis config. Ranges are inclusive."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    base_url: str = Field(min_length=1)
    api_key: str = Field(default="", json_schema_extra={"secret": True})
    voice: str = Field(min_length=1)
    speed: float = Field(default=1.0, ge=0.25, le=3.0)
    pitch: float = Field(default=0.0, ge=-20.0, le=20.0)
    volume: float = Field(default=1.0, ge=0.0, le=1.0)
    sample_rate: int = Field(default=16000, ge=8000, le=48000)
    format: AudioFormat = "mp3"
    timeout_s: float = Field(default=30.0, gt=0)


class SynthesisInput(BaseModel):
    text: str = Field(min_length=1)


class SynthesisOutput(BaseModel):
    audio: str = Field(description="Base64 encoded audio data")
    format: str
    sample_rate: int


class SpeechSynthesisProvider(HTTPSpeechProvider):
    """Text to speech."""

    async def execute(
        self,
        token: CancellationToken,
        config: SynthesisConfig,
        inputs: Dict[str, Any],
    ) -> Dict[str, Any]:
        request = SynthesisInput.model_validate(inputs)
        payload = {
            "text": request.text,
            "voice": config.voice,
            "speed": config.speed,
            "pitch": config.pitch,
            "volume": config.volume,
            "sample_rate": config.sample_rate,
            "format": config.format,
        }
        response = await self._require_client().post(
            self._url(config, "synthesize"),
            json=payload,
            headers=self._headers(config),
            timeout=config.timeout_s,
        )
        response.raise_for_status()
        self.logger.debug("Synthesized speech", voice=config.voice, bytes=len(response.content))
        return SynthesisOutput(
            audio=base64.b64encode(response.content).decode("ascii"),
            format=config.format,
            sample_rate=config.sample_rate,
        ).model_dump()


class SpeechSynthesisFactory(BaseProviderFactory):
    """Factory for speech synthesis capabilities."""

    provider_name = "speech_synthesis"
    capability_type = CapabilityType.SPEECH_SYNTHESIS
    description = "Text to speech over the speech HTTP service"
    config_model = SynthesisConfig
    input_model = SynthesisInput
    output_model = SynthesisOutput
    config_section = "tts"
    platform_aliases = {"rate": "speed", "url": "base_url", "token": "api_key"}

    def build_provider(self, config: SynthesisConfig, options: ProviderOptions) -> SpeechSynthesisProvider:
        return SpeechSynthesisProvider(config, options.logger, options.get("http_transport"))


# ============================================================================
# Speech recognition
# ============================================================================

class RecognitionConfig(BaseModel):
    """Typed speech recognition config. Ranges are inclusive."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    base_url: str = Field(min_length=1)
    api_key: str = Field(default="", json_schema_extra={"secret": True})
    model: str = Field(default="default", min_length=1)
    language: Optional[str] = None
    sample_rate: int = Field(default=16000, ge=8000, le=48000)
    timeout_s: float = Field(default=30.0, gt=0)


class RecognitionInput(BaseModel):
    audio: str = Field(min_length=1, description="Base64 encoded audio data")
    format: AudioFormat = "wav"

    @field_validator("audio")
    @classmethod
    def _base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("audio must be base64 encoded")
        return value


class RecognitionOutput(BaseModel):
    text: str
    language: Optional[str] = None


class SpeechRecognitionProvider(HTTPSpeechProvider):
    """Speech to text."""

    async def execute(
        self,
        token: CancellationToken,
        config: RecognitionConfig,
        inputs: Dict[str, Any],
    ) -> Dict[str, Any]:
        request = RecognitionInput.model_validate(inputs)
        audio = base64.b64decode(request.audio)
        data = {"model": config.model, "sample_rate": str(config.sample_rate)}
        if config.language:
            data["language"] = config.language

        response = await self._require_client().post(
            self._url(config, "transcribe"),
            data=data,
            files={"file": (f"audio.{request.format}", audio, _MIME_TYPES[request.format])},
            headers=self._headers(config),
            timeout=config.timeout_s,
        )
        response.raise_for_status()
        body = response.json()
        if "text" not in body:
            raise ValueError("transcription response has no 'text' field")
        return RecognitionOutput(
            text=body["text"],
            language=body.get("language", config.language),
        ).model_dump()


class SpeechRecognitionFactory(BaseProviderFactory):
    """Factory for speech recognition capabilities."""

    provider_name = "speech_recognition"
    capability_type = CapabilityType.SPEECH_RECOGNITION
    description = "Speech to text over the speech HTTP service"
    config_model = RecognitionConfig
    input_model = RecognitionInput
    output_model = RecognitionOutput
    config_section = "asr"
    platform_aliases = {"url": "base_url", "token": "api_key", "model_name": "model"}

    def build_provider(self, config: RecognitionConfig, options: ProviderOptions) -> SpeechRecognitionProvider:
        return SpeechRecognitionProvider(config, options.logger, options.get("http_transport"))
