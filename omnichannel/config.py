"""
Centralized configuration with environment variable overrides.

Persistence backend, identity strategy, session lifetimes, executor
budgets and channel framing limits are all configurable here. Components
receive these values explicitly from ``bootstrap``; nothing below the
bootstrap layer reads ``settings`` on its own.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

PERSISTENCE_ADAPTERS = ("file", "redis", "memory")
SUBJECT_RESOLVERS = ("phone", "segment")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class PersistenceConfig:
    """Run-state store selection and backend settings."""

    adapter: str = os.getenv("PERSISTENCE_ADAPTER", "file").lower()
    data_dir: str = os.getenv("STATE_PERSISTENCE_DIR", "./data/conversation-states")
    max_age_ms: int = _safe_int("STATE_MAX_AGE", "86400000")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    redis_key_prefix: str = os.getenv("REDIS_KEY_PREFIX", "runstate:")
    slow_operation_threshold_ms: int = _safe_int("SLOW_OPERATION_THRESHOLD_MS", "200")


@dataclass(frozen=True)
class IdentityConfig:
    """Subject resolver strategy and identity-graph credentials."""

    resolver: str = os.getenv("SUBJECT_RESOLVER", "phone").lower()
    subject_map_file: str = os.getenv("SUBJECT_MAP_FILE", "./data/subject-map.json")
    segment_write_key: str = os.getenv("SEGMENT_WRITE_KEY", "")
    segment_profile_token: str = os.getenv("SEGMENT_PROFILE_API_TOKEN", "")
    segment_space_id: str = os.getenv("SEGMENT_SPACE_ID", "")
    segment_region: str = os.getenv("SEGMENT_REGION", "us").lower()
    profile_cache_ttl_sec: float = _safe_float("PROFILE_CACHE_TTL_SEC", "300")
    profile_cache_max_entries: int = _safe_int("PROFILE_CACHE_MAX_ENTRIES", "10000")


@dataclass(frozen=True)
class SessionConfig:
    """Session lifetimes, sweeper cadence and executor budgets."""

    idle_max_age_ms: int = _safe_int("SESSION_IDLE_MAX_AGE", "14400000")
    sweep_interval_sec: float = _safe_float("SWEEP_INTERVAL_SEC", "3600")
    turn_timeout_sec: float = _safe_float("TURN_TIMEOUT_SEC", "30")
    greeting_timeout_sec: float = _safe_float("GREETING_TIMEOUT_SEC", "10")
    max_agent_turns: int = _safe_int("MAX_AGENT_TURNS", "10")
    serialize_turns: bool = _safe_bool("SERIALIZE_TURNS", "true")


@dataclass(frozen=True)
class FramingConfig:
    """SMS segment limits and voice chunk pacing."""

    sms_segment_limit: int = _safe_int("SMS_SEGMENT_LIMIT", "160")
    sms_multipart_limit: int = _safe_int("SMS_MULTIPART_LIMIT", "153")
    voice_min_chunk: int = _safe_int("VOICE_MIN_CHUNK", "10")
    voice_max_chunk: int = _safe_int("VOICE_MAX_CHUNK", "100")
    voice_max_chunk_delay_ms: int = _safe_int("VOICE_MAX_CHUNK_DELAY_MS", "400")
    voice_chunk_interval_ms: int = _safe_int("VOICE_CHUNK_INTERVAL_MS", "100")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    framing: FramingConfig = field(default_factory=FramingConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    service_name: str = os.getenv("SERVICE_NAME", "omnichannel-sessions")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.persistence.adapter not in PERSISTENCE_ADAPTERS:
        raise ValueError(
            f"PERSISTENCE_ADAPTER must be one of {PERSISTENCE_ADAPTERS}, "
            f"got {config.persistence.adapter!r}"
        )
    if config.persistence.max_age_ms < 1:
        raise ValueError(
            f"STATE_MAX_AGE must be >= 1, got {config.persistence.max_age_ms}"
        )
    if config.persistence.slow_operation_threshold_ms < 1:
        raise ValueError(
            "SLOW_OPERATION_THRESHOLD_MS must be >= 1, "
            f"got {config.persistence.slow_operation_threshold_ms}"
        )
    if config.identity.resolver not in SUBJECT_RESOLVERS:
        raise ValueError(
            f"SUBJECT_RESOLVER must be one of {SUBJECT_RESOLVERS}, "
            f"got {config.identity.resolver!r}"
        )
    if config.identity.segment_region not in ("us", "eu"):
        raise ValueError(
            f"SEGMENT_REGION must be 'us' or 'eu', got {config.identity.segment_region!r}"
        )
    if config.identity.resolver == "segment" and not config.identity.segment_write_key:
        raise ValueError("SEGMENT_WRITE_KEY is required when SUBJECT_RESOLVER=segment")
    if config.identity.profile_cache_ttl_sec <= 0:
        raise ValueError(
            "PROFILE_CACHE_TTL_SEC must be > 0, "
            f"got {config.identity.profile_cache_ttl_sec}"
        )
    if config.session.idle_max_age_ms < 1:
        raise ValueError(
            f"SESSION_IDLE_MAX_AGE must be >= 1, got {config.session.idle_max_age_ms}"
        )
    for name, value in [
        ("SWEEP_INTERVAL_SEC", config.session.sweep_interval_sec),
        ("TURN_TIMEOUT_SEC", config.session.turn_timeout_sec),
        ("GREETING_TIMEOUT_SEC", config.session.greeting_timeout_sec),
    ]:
        if value <= 0:
            raise ValueError(f"{name} must be > 0, got {value}")
    if config.session.max_agent_turns < 1:
        raise ValueError(
            f"MAX_AGENT_TURNS must be >= 1, got {config.session.max_agent_turns}"
        )

    framing = config.framing
    if framing.sms_multipart_limit >= framing.sms_segment_limit:
        raise ValueError(
            "SMS_MULTIPART_LIMIT must be smaller than SMS_SEGMENT_LIMIT, "
            f"got {framing.sms_multipart_limit} >= {framing.sms_segment_limit}"
        )
    if not 1 <= framing.voice_min_chunk <= framing.voice_max_chunk:
        raise ValueError(
            "VOICE_MIN_CHUNK must be between 1 and VOICE_MAX_CHUNK, "
            f"got {framing.voice_min_chunk} (max {framing.voice_max_chunk})"
        )
    if not 0 <= framing.voice_chunk_interval_ms <= framing.voice_max_chunk_delay_ms:
        raise ValueError(
            "VOICE_CHUNK_INTERVAL_MS must be between 0 and VOICE_MAX_CHUNK_DELAY_MS, "
            f"got {framing.voice_chunk_interval_ms}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info(
        "Configuration loaded for '%s' (persistence=%s, resolver=%s)",
        config.service_name, config.persistence.adapter, config.identity.resolver,
    )
    return config


# Singleton instance
settings = load_config()
