"""
tts-gateway: Multi-backend Text-to-Speech HTTP Gateway.

A request names some text, a voice and a mode; the gateway validates it,
serves it from an encrypted shared cache when it can, and otherwise calls
one of several interchangeable synthesis backends.

Supported Modes:
    - eSpeak: Local espeak + mbrola pipeline (WAV)
    - gTTS: Google Translate TTS endpoint with egress address rotation (MP3)
    - Polly: Amazon Polly, Standard voices (OGG Vorbis by default)
    - gCloud: Google Cloud Text-to-Speech, Standard voices (OGG Opus by default)

Key Features:
    - Per-backend validation of voice and speaking rate
    - Content-addressed, Fernet-encrypted cache (Redis or in-process)
    - Singleflight: concurrent identical requests share one synthesis
    - Optional DeepL translation before synthesis
    - Prometheus metrics and structured JSONL logs

Example Usage:
    >>> from tts_gateway.core.config import Settings
    >>> from tts_gateway.services import GatewayService, TTSParams
    >>>
    >>> service = GatewayService(Settings(raw={}).get_gateway_config())
    >>> outcome = service.handle(TTSParams(text="Hello", lang="en", mode="gTTS"))
    >>> with open("hello.mp3", "wb") as f:
    ...     f.write(outcome.audio)
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
