# Copyright (c)
# SPDX-License-Identifier: MIT
"""Hello API Configuration (Pydantic Settings, v2)

Summary:
    Typed, validated application configuration. Environment variables are the
    source of truth; dotenv files are layered on top in the order ``.env``,
    ``.env.<environment>``, ``.env.<environment>.local``, ``.env.local`` (later
    files win, real environment variables win over every file).

Design:
    - Pydantic v2 BaseSettings with ``extra='forbid'`` to catch unknown env.
    - Flat field declarations bound to the historical env var names via
      ``validation_alias``; environment-derived defaults are resolved lazily
      so an explicit value always wins.
    - Read-only snapshot views (``logger``, ``access``, ``validation``) hand
      each subsystem exactly the options it consumes.
    - Singleton accessor ``get_settings()`` with LRU cache.
    - Safe, structured logging (no secrets).
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

LogLevel = Literal["debug", "info", "warn", "error"]
AccessFormat = Literal["auto", "json", "dev", "combined"]

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([kmg]?)b?\s*$", re.IGNORECASE)
_RETENTION_RE = re.compile(r"^\s*(\d+)\s*(d?)\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3}
_LEVEL_ALIASES = {"warning": "warn", "critical": "error", "fatal": "error", "trace": "debug"}


class Environment(str, Enum):
    """Logical deployment environment used for coarse-grained behaviour toggles."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


def parse_size(raw: str | int) -> int:
    """Parse a human size (``20m``, ``512k``, ``1g`` or plain bytes) into bytes.

    Args:
        raw: Size expression or integer byte count.

    Returns:
        Number of bytes.

    Raises:
        ValueError: If the expression is not understood or not positive.
    """
    if isinstance(raw, int):
        value = raw
    else:
        match = _SIZE_RE.match(raw)
        if match is None:
            raise ValueError(f"invalid size expression: {raw!r}")
        value = int(match.group(1)) * _SIZE_UNITS[match.group(2).lower()]
    if value <= 0:
        raise ValueError("size must be positive")
    return value


def parse_retention(raw: str | int) -> tuple[int | None, int | None]:
    """Parse a retention expression into ``(max_files, max_age_days)``.

    ``"5"`` keeps the five newest segments; ``"14d"`` keeps fourteen days.

    Raises:
        ValueError: If the expression is not understood.
    """
    match = _RETENTION_RE.match(str(raw))
    if match is None:
        raise ValueError(f"invalid retention expression: {raw!r}")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("retention must be positive")
    if match.group(2):
        return None, amount
    return amount, None


def normalize_level(raw: str) -> LogLevel:
    """Map stdlib/winston style level names onto the four supported severities."""
    value = raw.strip().lower()
    value = _LEVEL_ALIASES.get(value, value)
    if value not in ("debug", "info", "warn", "error"):
        raise ValueError(f"unsupported log level: {raw!r}")
    return value  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Read-only snapshots handed to the core
# ---------------------------------------------------------------------------


class LoggerSettings(BaseModel):
    """Sink configuration consumed by the structured logger."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    level: LogLevel
    format: Literal["json", "simple"]
    service_name: str
    environment: str
    console_enabled: bool = True
    console_stream: Literal["stderr", "stdout"] = "stderr"
    file_enabled: bool = False
    file_directory: str = "logs"
    file_max_size: int = 20 * 1024 * 1024
    file_max_files: int | None = None
    file_max_age_days: int | None = 14
    file_date_pattern: str = "YYYY-MM-DD"
    file_compress: bool = True
    file_symlink: bool = True


class AccessSettings(BaseModel):
    """Options consumed by the access logger."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    format: AccessFormat = "auto"
    level: LogLevel = "info"
    production: bool = False
    skip_health: bool = True
    skip_static_assets: bool = True
    skip_options: bool = True


class ValidationSettings(BaseModel):
    """Options consumed by the validation pipeline."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    strict: bool = False
    sanitize: bool = True
    verbose_errors: bool = False
    log_attempts: bool = False
    production: bool = False
    cache_clear_threshold: int = 50
    cache_clear_interval_s: float = 600.0
    cache_stats_interval_s: float = 3600.0


class Settings(BaseSettings):
    """Typed application configuration.

    Adapters and infrastructure read this object; the validation and logging
    core only ever see the frozen snapshot views.
    """

    # ---------------------------
    # Core environment & identity
    # ---------------------------
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Logical deployment environment.",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
    )
    service_name: str = Field(
        default="hello-api",
        description="Logical service name stamped on every log record.",
        validation_alias="SERVICE_NAME",
    )
    service_version: str = Field(
        default="1.0.0",
        description="Service version reported by discovery and health endpoints.",
        validation_alias="SERVICE_VERSION",
    )

    # ---------------------------
    # Server
    # ---------------------------
    host: str = Field(
        default="127.0.0.1",
        description="Interface the HTTP server binds to.",
        validation_alias=AliasChoices("HOSTNAME", "HOST"),
    )
    port: int = Field(default=3000, ge=1, le=65535, validation_alias="PORT")
    server_timeout_ms: int = Field(default=30_000, ge=0, validation_alias="SERVER_TIMEOUT")
    keep_alive_timeout_ms: int = Field(
        default=5_000,
        ge=0,
        validation_alias="KEEP_ALIVE_TIMEOUT",
    )
    graceful_shutdown_timeout_ms: int = Field(
        default=10_000,
        ge=0,
        description="Upper bound for draining in-flight requests on shutdown.",
        validation_alias="GRACEFUL_SHUTDOWN_TIMEOUT",
    )

    # ---------------------------
    # Logging
    # ---------------------------
    log_level: str | None = Field(
        default=None,
        description="Minimum severity (debug/info/warn/error). Defaults to info in production.",
        validation_alias="LOG_LEVEL",
    )
    log_format: Literal["json", "simple"] | None = Field(
        default=None,
        description="Console formatter. Defaults to json in production, simple otherwise.",
        validation_alias="LOG_FORMAT",
    )
    enable_console_logging: bool = Field(default=True, validation_alias="ENABLE_CONSOLE_LOGGING")
    log_console_stream: Literal["stderr", "stdout"] = Field(
        default="stderr",
        validation_alias="LOG_CONSOLE_STREAM",
    )
    enable_file_logging: bool | None = Field(
        default=None,
        description="Rotating file sinks. Defaults to enabled in production.",
        validation_alias="ENABLE_FILE_LOGGING",
    )
    log_directory: str = Field(default="logs", validation_alias="LOG_DIRECTORY")
    log_max_size: str = Field(
        default="20m",
        description="Maximum size of one log segment (e.g. 20m, 512k).",
        validation_alias="LOG_MAX_SIZE",
    )
    log_max_files: str = Field(
        default="14d",
        description="Retention: a segment count (5) or a duration in days (14d).",
        validation_alias="LOG_MAX_FILES",
    )
    log_date_pattern: Literal["YYYY-MM-DD", "YYYY-MM-DD-HH"] = Field(
        default="YYYY-MM-DD",
        validation_alias="LOG_DATE_PATTERN",
    )
    log_compress: bool = Field(default=True, validation_alias="LOG_COMPRESS")
    log_create_symlink: bool = Field(default=True, validation_alias="LOG_CREATE_SYMLINK")

    # ---------------------------
    # Access log
    # ---------------------------
    enable_http_logging: bool = Field(default=True, validation_alias="ENABLE_HTTP_LOGGING")
    http_log_format: AccessFormat = Field(default="auto", validation_alias="HTTP_LOG_FORMAT")
    access_skip_health: bool = Field(default=True, validation_alias="ACCESS_SKIP_HEALTH")
    access_skip_static_assets: bool = Field(
        default=True,
        validation_alias="ACCESS_SKIP_STATIC_ASSETS",
    )
    access_skip_options: bool = Field(default=True, validation_alias="ACCESS_SKIP_OPTIONS")

    # ---------------------------
    # Validation
    # ---------------------------
    helmet_enabled: bool = Field(
        default=True,
        description="Security hardening toggle; also the default for input sanitization.",
        validation_alias="HELMET_ENABLED",
    )
    validation_strict: bool | None = Field(default=None, validation_alias="VALIDATION_STRICT")
    validation_sanitize: bool | None = Field(default=None, validation_alias="VALIDATION_SANITIZE")
    validation_verbose_errors: bool | None = Field(
        default=None,
        validation_alias="VALIDATION_VERBOSE_ERRORS",
    )
    validation_cache_clear_threshold: int = Field(
        default=50,
        ge=0,
        validation_alias="VALIDATION_CACHE_CLEAR_THRESHOLD",
    )
    validation_cache_clear_interval_s: float = Field(
        default=600.0,
        gt=0,
        validation_alias="VALIDATION_CACHE_CLEAR_INTERVAL_S",
    )
    validation_cache_stats_interval_s: float = Field(
        default=3600.0,
        gt=0,
        validation_alias="VALIDATION_CACHE_STATS_INTERVAL_S",
    )

    # ---------------------------
    # API surface
    # ---------------------------
    api_base_url: str = Field(default="/api", validation_alias="API_BASE_URL")
    api_version: str = Field(default="v1", validation_alias="API_VERSION")
    rate_limit_window_ms: int = Field(
        default=15 * 60 * 1000,
        ge=1,
        description="Rate limit window. Configuration surface only; not enforced.",
        validation_alias="RATE_LIMIT_WINDOW_MS",
    )
    rate_limit_max_requests: int = Field(
        default=100,
        ge=1,
        description="Maximum requests per rate-limit window. Configuration surface only; not enforced.",
        validation_alias="RATE_LIMIT_MAX_REQUESTS",
    )

    # ---------------------------
    # CORS / compression
    # ---------------------------
    cors_enabled: bool = Field(default=True, validation_alias="CORS_ENABLED")
    cors_origin_raw: str | None = Field(default=None, validation_alias="CORS_ORIGIN")
    cors_allow_origins: list[str] = Field(default_factory=list)
    compression_enabled: bool = Field(default=True, validation_alias="COMPRESSION_ENABLED")
    compression_threshold: int = Field(
        default=1024,
        ge=0,
        validation_alias="COMPRESSION_THRESHOLD",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="forbid",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def _normalize(self) -> Settings:
        """Normalize the log level, expression fields and CORS origins.

        Returns:
            Settings: The validated and possibly mutated settings instance.

        Raises:
            ValueError: If a size, retention or level expression is malformed.
        """
        if self.log_level is not None:
            self.log_level = normalize_level(self.log_level)
        parse_size(self.log_max_size)
        parse_retention(self.log_max_files)

        raw = (self.cors_origin_raw or "").strip()
        if raw:
            self.cors_allow_origins = [e.strip() for e in raw.split(",") if e.strip()]
        elif self.environment is Environment.DEVELOPMENT:
            self.cors_allow_origins = ["*"]
        else:
            self.cors_allow_origins = []

        if self.is_production:
            if not self.file_logging_enabled:
                logger.warning("File logging is disabled in production environment")
            if self.resolved_log_level == "debug":
                logger.warning("Debug level logging enabled in production environment")
        return self

    # --------------------------------------------------------------------- #
    # Resolved values
    # --------------------------------------------------------------------- #
    @property
    def is_production(self) -> bool:
        """Return True when running in the production environment."""
        return self.environment is Environment.PRODUCTION

    @property
    def resolved_log_level(self) -> LogLevel:
        """Return the effective minimum severity."""
        if self.log_level:
            return self.log_level  # type: ignore[return-value]
        return "info" if self.is_production else "debug"

    @property
    def file_logging_enabled(self) -> bool:
        """Return whether rotating file sinks are active."""
        if self.enable_file_logging is None:
            return self.is_production
        return self.enable_file_logging

    @property
    def logger(self) -> LoggerSettings:
        """Snapshot consumed by the structured logger."""
        max_files, max_age_days = parse_retention(self.log_max_files)
        return LoggerSettings(
            level=self.resolved_log_level,
            format=self.log_format or ("json" if self.is_production else "simple"),
            service_name=self.service_name,
            environment=self.environment.value,
            console_enabled=self.enable_console_logging,
            console_stream=self.log_console_stream,
            file_enabled=self.file_logging_enabled,
            file_directory=self.log_directory,
            file_max_size=parse_size(self.log_max_size),
            file_max_files=max_files,
            file_max_age_days=max_age_days,
            file_date_pattern=self.log_date_pattern,
            file_compress=self.log_compress,
            file_symlink=self.log_create_symlink,
        )

    @property
    def access(self) -> AccessSettings:
        """Snapshot consumed by the access logger."""
        return AccessSettings(
            enabled=self.enable_http_logging,
            format=self.http_log_format,
            level=self.resolved_log_level,
            production=self.is_production,
            skip_health=self.access_skip_health,
            skip_static_assets=self.access_skip_static_assets,
            skip_options=self.access_skip_options,
        )

    @property
    def validation(self) -> ValidationSettings:
        """Snapshot consumed by the validation pipeline."""
        strict = self.validation_strict
        sanitize = self.validation_sanitize
        verbose = self.validation_verbose_errors
        return ValidationSettings(
            strict=self.is_production if strict is None else strict,
            sanitize=self.helmet_enabled if sanitize is None else sanitize,
            verbose_errors=(
                self.environment is Environment.DEVELOPMENT if verbose is None else verbose
            ),
            log_attempts=self.resolved_log_level == "debug",
            production=self.is_production,
            cache_clear_threshold=self.validation_cache_clear_threshold,
            cache_clear_interval_s=self.validation_cache_clear_interval_s,
            cache_stats_interval_s=self.validation_cache_stats_interval_s,
        )


def env_files_for(environment: str) -> tuple[str, ...]:
    """Return the cascading dotenv files for ``environment`` (lowest precedence first)."""
    return (
        ".env",
        f".env.{environment}",
        f".env.{environment}.local",
        ".env.local",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton ``Settings`` instance.

    Returns:
        Settings: Validated application settings.

    Raises:
        RuntimeError: If configuration is invalid.
    """
    environment = (
        os.getenv("ENVIRONMENT") or os.getenv("NODE_ENV") or Environment.DEVELOPMENT.value
    ).strip().lower()
    try:
        settings = Settings(_env_file=env_files_for(environment))  # type: ignore[call-arg]
    except ValidationError as exc:
        logger.exception("Invalid application configuration")
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    logger.info(
        "Settings initialized",
        extra={
            "meta": {
                "environment": settings.environment.value,
                "service": settings.service_name,
                "server": {"host": settings.host, "port": settings.port},
                "log_level": settings.resolved_log_level,
                "file_logging": settings.file_logging_enabled,
                "http_logging": settings.enable_http_logging,
                "validation": settings.validation.model_dump(),
                "rate_limit": {
                    "window_ms": settings.rate_limit_window_ms,
                    "max_requests": settings.rate_limit_max_requests,
                    "enforced": False,
                },
                "cors_count": len(settings.cors_allow_origins),
            }
        },
    )
    return settings
