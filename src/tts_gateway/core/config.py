"""
Configuration Management for tts-gateway.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration sections
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (TTS_GW_AUTH_KEY, TTS_GW_STORE_URL, etc.)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Every optional collaborator is switched on by configuring it and off by
leaving it empty:
    - cache: needs both cache.store_url and cache.encryption_key
    - egress rotation: needs egress.ipv6_block ("DISABLE" also disables it)
    - Polly: needs an access key pair or polly.use_default_credentials
    - gCloud: needs gcloud.credentials_path
    - translation: needs translation.deepl_key

Example settings.yaml:
    auth:
      key: null

    limits:
      max_text_length: 1000

    cache:
      store_url: redis://localhost:6379/0
      encryption_key: change-me
      ttl_seconds: 86400
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is thrown when a configuration value is outside
    acceptable bounds or of the wrong type.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    These values are used when no override is provided via YAML
    config or environment variables.
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Server
    # ─────────────────────────────────────────────────────────────────────────
    SERVER_BIND = "0.0.0.0:3000"

    # ─────────────────────────────────────────────────────────────────────────
    # Request Limits
    # ─────────────────────────────────────────────────────────────────────────
    LIMITS_MAX_TEXT_LENGTH = 1000       # Hard ceiling on characters per request

    # ─────────────────────────────────────────────────────────────────────────
    # Audio Cache
    # ─────────────────────────────────────────────────────────────────────────
    CACHE_TTL_SECONDS = 86400           # Entry lifetime in the store (0 = no expiry)
    CACHE_KEY_PREFIX = "tts-gateway:audio:"
    CACHE_MAX_ITEMS = 1000              # Capacity of the memory:// store
    CACHE_WORKERS = 16                  # Threads running detached synthesis jobs

    # ─────────────────────────────────────────────────────────────────────────
    # eSpeak + mbrola (local engine)
    # ─────────────────────────────────────────────────────────────────────────
    ESPEAK_BINARY = "espeak"
    MBROLA_BINARY = "mbrola"
    ESPEAK_VOICES_DIR = "/usr/local/share/espeak-ng-data/voices/mb"
    MBROLA_DIR = "/usr/share/mbrola"
    ESPEAK_TIMEOUT_S = 10.0
    ESPEAK_MAX_ATTEMPTS = 5             # mbrola occasionally drops the WAV header

    # ─────────────────────────────────────────────────────────────────────────
    # gTTS (unauthenticated Google Translate endpoint)
    # ─────────────────────────────────────────────────────────────────────────
    GTTS_ENDPOINT = "https://translate.google.com/translate_tts"
    GTTS_TIMEOUT_S = 10.0
    GTTS_MAX_ATTEMPTS = 3               # Only used when an egress pool is configured

    # ─────────────────────────────────────────────────────────────────────────
    # Amazon Polly
    # ─────────────────────────────────────────────────────────────────────────
    POLLY_REGION = "us-east-1"
    POLLY_TIMEOUT_S = 10.0

    # ─────────────────────────────────────────────────────────────────────────
    # Google Cloud Text-to-Speech
    # ─────────────────────────────────────────────────────────────────────────
    GCLOUD_API_URL = "https://texttospeech.googleapis.com/v1"
    GCLOUD_TIMEOUT_S = 10.0

    # ─────────────────────────────────────────────────────────────────────────
    # DeepL translation
    # ─────────────────────────────────────────────────────────────────────────
    TRANSLATION_SERVER_URL = None       # deepl SDK picks api-free for ":fx" keys

    # ─────────────────────────────────────────────────────────────────────────
    # Slow-request warnings
    # ─────────────────────────────────────────────────────────────────────────
    DEADLINE_TOTAL_MS = 5000
    DEADLINE_CACHE_MS = 50
    DEADLINE_TRANSLATION_MS = 200

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


@dataclass
class ServerConfig:
    """HTTP listener configuration."""
    bind: str = Defaults.SERVER_BIND

    @property
    def host(self) -> str:
        host, _, _ = self.bind.rpartition(":")
        return host.strip("[]") or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.bind.rpartition(":")[2])


@dataclass
class AuthConfig:
    """Shared operator secret. None disables the Authorization check."""
    key: Optional[str] = None


@dataclass
class LimitsConfig:
    """Request size limits."""
    max_text_length: int = Defaults.LIMITS_MAX_TEXT_LENGTH


@dataclass
class CacheConfig:
    """
    Encrypted audio cache configuration.

    Caching is active only when both store_url and encryption_key are
    set. Supported store URLs:
        - redis://host:port/db, rediss://...  (external Redis)
        - memory://                           (in-process LRU, max_items)
    """
    store_url: Optional[str] = None
    encryption_key: Optional[str] = None
    ttl_seconds: int = Defaults.CACHE_TTL_SECONDS
    key_prefix: str = Defaults.CACHE_KEY_PREFIX
    max_items: int = Defaults.CACHE_MAX_ITEMS
    workers: int = Defaults.CACHE_WORKERS

    @property
    def enabled(self) -> bool:
        return bool(self.store_url) and bool(self.encryption_key)


@dataclass
class EgressConfig:
    """Source address pool for the unauthenticated cloud backend."""
    ipv6_block: Optional[str] = None


@dataclass
class EspeakConfig:
    """Local eSpeak + mbrola engine."""
    enabled: bool = True
    espeak_binary: str = Defaults.ESPEAK_BINARY
    mbrola_binary: str = Defaults.MBROLA_BINARY
    voices_dir: str = Defaults.ESPEAK_VOICES_DIR
    mbrola_dir: str = Defaults.MBROLA_DIR
    timeout_s: float = Defaults.ESPEAK_TIMEOUT_S
    max_attempts: int = Defaults.ESPEAK_MAX_ATTEMPTS


@dataclass
class GttsConfig:
    """Unauthenticated Google Translate TTS endpoint."""
    enabled: bool = True
    endpoint: str = Defaults.GTTS_ENDPOINT
    timeout_s: float = Defaults.GTTS_TIMEOUT_S
    max_attempts: int = Defaults.GTTS_MAX_ATTEMPTS


@dataclass
class PollyConfig:
    """
    Amazon Polly credentials.

    Either an explicit key pair, or use_default_credentials to defer to
    the boto3 credential chain (env vars, shared config, instance role).
    """
    region: str = Defaults.POLLY_REGION
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    use_default_credentials: bool = False
    timeout_s: float = Defaults.POLLY_TIMEOUT_S


@dataclass
class GcloudConfig:
    """Google Cloud Text-to-Speech service account."""
    credentials_path: Optional[str] = None
    api_url: str = Defaults.GCLOUD_API_URL
    timeout_s: float = Defaults.GCLOUD_TIMEOUT_S


@dataclass
class TranslationConfig:
    """DeepL translation applied before synthesis."""
    deepl_key: Optional[str] = None
    server_url: Optional[str] = Defaults.TRANSLATION_SERVER_URL

    @property
    def enabled(self) -> bool:
        return bool(self.deepl_key)


@dataclass
class DeadlineConfig:
    """Thresholds for slow-request warnings, in milliseconds."""
    total_ms: int = Defaults.DEADLINE_TOTAL_MS
    cache_ms: int = Defaults.DEADLINE_CACHE_MS
    translation_ms: int = Defaults.DEADLINE_TRANSLATION_MS


@dataclass
class GatewayConfig:
    """
    Validated configuration for the gateway.

    This is the main configuration object created from Settings.
    It validates all values and provides typed access to configuration.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = GatewayConfig.from_settings(settings)
        print(config.cache.enabled)
    """
    server: ServerConfig = field(default_factory=ServerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    egress: EgressConfig = field(default_factory=EgressConfig)
    espeak: EspeakConfig = field(default_factory=EspeakConfig)
    gtts: GttsConfig = field(default_factory=GttsConfig)
    polly: PollyConfig = field(default_factory=PollyConfig)
    gcloud: GcloudConfig = field(default_factory=GcloudConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    deadlines: DeadlineConfig = field(default_factory=DeadlineConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "GatewayConfig":
        """
        Create GatewayConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated GatewayConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Server, auth and limits
        # ─────────────────────────────────────────────────────────────────────
        server = ServerConfig(bind=str(_section(raw, "server").get("bind", Defaults.SERVER_BIND)))
        if ":" not in server.bind or not server.bind.rpartition(":")[2].isdigit():
            raise ConfigValidationError(f"server.bind must be host:port, got {server.bind!r}")

        auth = AuthConfig(key=_optional_str(_section(raw, "auth").get("key")))

        limits_raw = _section(raw, "limits")
        limits = LimitsConfig(
            max_text_length=int(limits_raw.get("max_text_length", Defaults.LIMITS_MAX_TEXT_LENGTH)),
        )
        cls._validate_positive("limits.max_text_length", limits.max_text_length)

        # ─────────────────────────────────────────────────────────────────────
        # Cache
        # ─────────────────────────────────────────────────────────────────────
        cache_raw = _section(raw, "cache")
        cache = CacheConfig(
            store_url=_optional_str(cache_raw.get("store_url")),
            encryption_key=_optional_str(cache_raw.get("encryption_key")),
            ttl_seconds=int(cache_raw.get("ttl_seconds", Defaults.CACHE_TTL_SECONDS)),
            key_prefix=str(cache_raw.get("key_prefix", Defaults.CACHE_KEY_PREFIX)),
            max_items=int(cache_raw.get("max_items", Defaults.CACHE_MAX_ITEMS)),
            workers=int(cache_raw.get("workers", Defaults.CACHE_WORKERS)),
        )
        cls._validate_non_negative("cache.ttl_seconds", cache.ttl_seconds)
        cls._validate_positive("cache.max_items", cache.max_items)
        cls._validate_positive("cache.workers", cache.workers)

        # ─────────────────────────────────────────────────────────────────────
        # Egress rotation
        # ─────────────────────────────────────────────────────────────────────
        block = _optional_str(_section(raw, "egress").get("ipv6_block"))
        if block is not None and block.upper() == "DISABLE":
            block = None
        egress = EgressConfig(ipv6_block=block)

        # ─────────────────────────────────────────────────────────────────────
        # Backends
        # ─────────────────────────────────────────────────────────────────────
        backends_raw = _section(raw, "backends")

        espeak_raw = _section(backends_raw, "espeak")
        espeak = EspeakConfig(
            enabled=bool(espeak_raw.get("enabled", True)),
            espeak_binary=str(espeak_raw.get("espeak_binary", Defaults.ESPEAK_BINARY)),
            mbrola_binary=str(espeak_raw.get("mbrola_binary", Defaults.MBROLA_BINARY)),
            voices_dir=str(espeak_raw.get("voices_dir", Defaults.ESPEAK_VOICES_DIR)),
            mbrola_dir=str(espeak_raw.get("mbrola_dir", Defaults.MBROLA_DIR)),
            timeout_s=float(espeak_raw.get("timeout_s", Defaults.ESPEAK_TIMEOUT_S)),
            max_attempts=int(espeak_raw.get("max_attempts", Defaults.ESPEAK_MAX_ATTEMPTS)),
        )
        cls._validate_positive("backends.espeak.timeout_s", espeak.timeout_s)
        cls._validate_range("backends.espeak.max_attempts", espeak.max_attempts, 1, 20)

        gtts_raw = _section(backends_raw, "gtts")
        gtts = GttsConfig(
            enabled=bool(gtts_raw.get("enabled", True)),
            endpoint=str(gtts_raw.get("endpoint", Defaults.GTTS_ENDPOINT)),
            timeout_s=float(gtts_raw.get("timeout_s", Defaults.GTTS_TIMEOUT_S)),
            max_attempts=int(gtts_raw.get("max_attempts", Defaults.GTTS_MAX_ATTEMPTS)),
        )
        cls._validate_positive("backends.gtts.timeout_s", gtts.timeout_s)
        cls._validate_range("backends.gtts.max_attempts", gtts.max_attempts, 1, 20)

        polly_raw = _section(backends_raw, "polly")
        polly = PollyConfig(
            region=str(polly_raw.get("region", Defaults.POLLY_REGION)),
            access_key_id=_optional_str(polly_raw.get("access_key_id")),
            secret_access_key=_optional_str(polly_raw.get("secret_access_key")),
            use_default_credentials=bool(polly_raw.get("use_default_credentials", False)),
            timeout_s=float(polly_raw.get("timeout_s", Defaults.POLLY_TIMEOUT_S)),
        )
        cls._validate_positive("backends.polly.timeout_s", polly.timeout_s)

        gcloud_raw = _section(backends_raw, "gcloud")
        gcloud = GcloudConfig(
            credentials_path=_optional_str(gcloud_raw.get("credentials_path")),
            api_url=str(gcloud_raw.get("api_url", Defaults.GCLOUD_API_URL)).rstrip("/"),
            timeout_s=float(gcloud_raw.get("timeout_s", Defaults.GCLOUD_TIMEOUT_S)),
        )
        cls._validate_positive("backends.gcloud.timeout_s", gcloud.timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Translation and deadlines
        # ─────────────────────────────────────────────────────────────────────
        translation_raw = _section(raw, "translation")
        translation = TranslationConfig(
            deepl_key=_optional_str(translation_raw.get("deepl_key")),
            server_url=_optional_str(translation_raw.get("server_url")),
        )

        deadlines_raw = _section(raw, "deadlines")
        deadlines = DeadlineConfig(
            total_ms=int(deadlines_raw.get("total_ms", Defaults.DEADLINE_TOTAL_MS)),
            cache_ms=int(deadlines_raw.get("cache_ms", Defaults.DEADLINE_CACHE_MS)),
            translation_ms=int(deadlines_raw.get("translation_ms", Defaults.DEADLINE_TRANSLATION_MS)),
        )
        cls._validate_positive("deadlines.total_ms", deadlines.total_ms)
        cls._validate_positive("deadlines.cache_ms", deadlines.cache_ms)
        cls._validate_positive("deadlines.translation_ms", deadlines.translation_ms)

        return cls(
            server=server,
            auth=auth,
            limits=limits,
            cache=cache,
            egress=egress,
            espeak=espeak,
            gtts=gtts,
            polly=polly,
            gcloud=gcloud,
            translation=translation,
            deadlines=deadlines,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a config section, treating a null YAML section as empty."""
    value = raw.get(name)
    return value if isinstance(value, dict) else {}


def _optional_str(value: Any) -> Optional[str]:
    """Empty strings and nulls both mean 'not configured'."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_gateway_config() to get the validated GatewayConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def log_level(self) -> Any:
        """Get the configured log level (int or name)."""
        return _section(self.raw, "logging").get("level", Defaults.LOGGING_LEVEL)

    def get_gateway_config(self) -> GatewayConfig:
        """
        Get validated GatewayConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return GatewayConfig.from_settings(self)


# Environment variable -> (section path) overrides applied by load_settings()
_ENV_OVERRIDES = {
    "TTS_GW_BIND": ("server", "bind"),
    "TTS_GW_AUTH_KEY": ("auth", "key"),
    "TTS_GW_MAX_TEXT_LENGTH": ("limits", "max_text_length"),
    "TTS_GW_STORE_URL": ("cache", "store_url"),
    "TTS_GW_CACHE_KEY": ("cache", "encryption_key"),
    "TTS_GW_CACHE_TTL": ("cache", "ttl_seconds"),
    "TTS_GW_IPV6_BLOCK": ("egress", "ipv6_block"),
    "TTS_GW_POLLY_REGION": ("backends", "polly", "region"),
    "GOOGLE_APPLICATION_CREDENTIALS": ("backends", "gcloud", "credentials_path"),
    "TTS_GW_DEEPL_KEY": ("translation", "deepl_key"),
}


def apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply environment variable overrides onto a raw settings dict.

    The YAML value for gcloud.credentials_path wins over the standard
    GOOGLE_APPLICATION_CREDENTIALS variable; every other variable wins
    over YAML.
    """
    for env_name, path in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue

        node = raw
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child

        if env_name == "GOOGLE_APPLICATION_CREDENTIALS" and node.get(path[-1]):
            continue
        node[path[-1]] = value

    return raw


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """
    Load settings from a YAML configuration file.

    Environment variable overrides are listed in _ENV_OVERRIDES.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings object with loaded configuration.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    return Settings(raw=apply_env_overrides(raw))
