"""
Secure Configuration Module
===========================

Provides immutable, environment-aware configuration with security-first defaults.

Security Features:
- Immutable configuration after initialization
- Environment variable override support
- No secrets in default values
- Token signing secret kept out of repr and integrity hash
- OS-aware path handling
"""

from __future__ import annotations

import hashlib
import os
import platform
import secrets
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Optional


# Security Constants
_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "key", "token", "api_key",
    "private", "credential", "auth", "salt"
})

JWT_SECRET_ENV: Final[str] = "FINVAULT_JWT_SECRET"
MIN_JWT_SECRET_LENGTH: Final[int] = 32


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """Get OS-appropriate default data directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:  # Linux and others
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "FinVault"


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "FinVault" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "FinVault"
    else:  # Linux and others
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "FinVault" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)

    def __post_init__(self) -> None:
        """Validate paths after initialization."""
        for field_name in ["data_dir", "log_dir"]:
            path = getattr(self, field_name)
            if not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")

    @property
    def database_path(self) -> Path:
        return self.data_dir / "finvault.db"

    @property
    def audit_log_path(self) -> Path:
        return self.log_dir / "audit.jsonl"


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """Immutable security configuration."""

    # Argon2id work factor (OWASP 2023, well above 100ms per hash)
    argon2_memory_cost: int = 102400  # KiB
    argon2_time_cost: int = 2
    argon2_parallelism: int = 4

    # Lockout policy
    max_login_attempts: int = 5
    lockout_duration_seconds: int = 900  # 15 minutes

    # Token and session lifetimes
    token_lifetime_seconds: int = 86400  # 24 hours
    session_lifetime_seconds: int = 86400  # 24 hours
    reset_token_lifetime_seconds: int = 3600  # 1 hour
    secret_token_bytes: int = 32
    jwt_algorithm: str = "HS256"

    def __post_init__(self) -> None:
        """Validate security settings."""
        if self.max_login_attempts < 1:
            raise ValueError("max_login_attempts must be at least 1")
        if self.lockout_duration_seconds < 1:
            raise ValueError("lockout_duration_seconds must be positive")
        if self.token_lifetime_seconds < 1 or self.session_lifetime_seconds < 1:
            raise ValueError("Token and session lifetimes must be positive")
        if self.reset_token_lifetime_seconds < 1:
            raise ValueError("reset_token_lifetime_seconds must be positive")
        if self.secret_token_bytes < 32:
            raise ValueError("secret_token_bytes must be at least 32")
        if not self.jwt_algorithm.startswith("HS"):
            raise ValueError("Only HMAC JWT algorithms are supported")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    enable_console: bool = True
    enable_file: bool = True
    enable_json: bool = False

    def __post_init__(self) -> None:
        """Validate logging settings."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Immutable application configuration."""

    app_name: str = "FinVault"
    version: str = "0.1.0"
    debug_mode: bool = False  # Always False in production

    def __post_init__(self) -> None:
        """Validate and enforce security rules."""
        if self.debug_mode:
            warnings.warn(
                "Debug mode is enabled. This should NEVER be used in production.",
                SecurityWarning,
                stacklevel=2
            )


class SecureConfig:
    """
    Centralized, immutable configuration loader with environment override support.

    This class provides a secure way to manage application configuration with:
    - Immutable configuration after initialization
    - Environment variable overrides (prefixed with FINVAULT_)
    - Type-safe access to configuration values
    - OS-aware path defaults

    Usage:
        config = SecureConfig.load()
        db_path = config.paths.database_path
        threshold = config.security.max_login_attempts
    """

    __slots__ = (
        "_paths", "_security", "_logging", "_app",
        "_jwt_secret", "_frozen", "_config_hash",
    )

    _instance: Optional[SecureConfig] = None

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        security: Optional[SecurityConfig] = None,
        logging: Optional[LoggingConfig] = None,
        app: Optional[AppConfig] = None,
        jwt_secret: Optional[str] = None,
    ) -> None:
        """Initialize configuration. Use SecureConfig.load() for standard initialization."""
        if jwt_secret is not None and len(jwt_secret) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(
                f"JWT secret must be at least {MIN_JWT_SECRET_LENGTH} characters"
            )
        if jwt_secret is None:
            warnings.warn(
                f"{JWT_SECRET_ENV} is not set; using an ephemeral signing secret. "
                "Tokens will not survive a restart or validate on other instances.",
                SecurityWarning,
                stacklevel=2,
            )
            jwt_secret = secrets.token_hex(32)

        # Use object.__setattr__ to bypass our immutability check during init
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_security", security or SecurityConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_app", app or AppConfig())
        object.__setattr__(self, "_jwt_secret", jwt_secret)
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Compute a hash of the non-secret configuration for integrity checking."""
        config_str = f"{self._paths}|{self._security}|{self._logging}|{self._app}"
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        """Get path configuration."""
        return self._paths

    @property
    def security(self) -> SecurityConfig:
        """Get security configuration."""
        return self._security

    @property
    def logging(self) -> LoggingConfig:
        """Get logging configuration."""
        return self._logging

    @property
    def app(self) -> AppConfig:
        """Get application configuration."""
        return self._app

    @property
    def jwt_secret(self) -> str:
        """Get the token signing secret."""
        return self._jwt_secret

    @property
    def config_hash(self) -> str:
        """Get configuration integrity hash."""
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "FINVAULT") -> SecureConfig:
        """
        Load configuration with environment variable overrides.

        Environment variables should be prefixed with FINVAULT_ and use
        double underscores for nested values.

        Examples:
            FINVAULT_LOGGING__LEVEL=DEBUG
            FINVAULT_SECURITY__MAX_LOGIN_ATTEMPTS=5
            FINVAULT_PATHS__DATA_DIR=/custom/path

        The signing secret is read only from FINVAULT_JWT_SECRET; generic
        overrides never carry sensitive keys.

        Args:
            env_prefix: Prefix for environment variables (default: FINVAULT)

        Returns:
            Configured SecureConfig instance
        """
        env_overrides = cls._parse_env_overrides(env_prefix)

        paths_kwargs: dict[str, Any] = {}
        for name in ("data_dir", "log_dir"):
            if f"paths.{name}" in env_overrides:
                paths_kwargs[name] = Path(env_overrides[f"paths.{name}"])

        security_kwargs: dict[str, Any] = {}
        for name in (
            "argon2_memory_cost",
            "argon2_time_cost",
            "argon2_parallelism",
            "max_login_attempts",
            "lockout_duration_seconds",
            "token_lifetime_seconds",
            "session_lifetime_seconds",
            "reset_token_lifetime_seconds",
        ):
            if f"security.{name}" in env_overrides:
                security_kwargs[name] = int(env_overrides[f"security.{name}"])

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in env_overrides:
            logging_kwargs["level"] = env_overrides["logging.level"]
        for name in ("enable_console", "enable_file", "enable_json"):
            if f"logging.{name}" in env_overrides:
                logging_kwargs[name] = env_overrides[f"logging.{name}"].lower() == "true"

        # debug_mode cannot be overridden via env for security
        app_kwargs: dict[str, Any] = {}

        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            security=SecurityConfig(**security_kwargs) if security_kwargs else None,
            logging=LoggingConfig(**logging_kwargs) if logging_kwargs else None,
            app=AppConfig(**app_kwargs) if app_kwargs else None,
            jwt_secret=os.environ.get(JWT_SECRET_ENV) or None,
        )

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                # Convert FINVAULT_SECTION__KEY to section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                # SECURITY: Skip sensitive keys from environment
                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    @classmethod
    def get_instance(cls) -> SecureConfig:
        """
        Get or create the singleton configuration instance.

        Returns:
            The global SecureConfig instance
        """
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance. Use only for testing."""
        cls._instance = None

    def ensure_directories(self) -> None:
        """Create all required directories with secure permissions."""
        import stat

        for directory in (self._paths.data_dir, self._paths.log_dir):
            directory.mkdir(parents=True, exist_ok=True)

            # Set restrictive permissions on Unix-like systems
            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)  # 700 - owner only

    def __repr__(self) -> str:
        """Safe string representation without sensitive data."""
        return f"SecureConfig(hash={self._config_hash}, app={self._app.app_name})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after initialization."""
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("SecureConfig is immutable after initialization")
        super().__setattr__(name, value)


class SecurityWarning(UserWarning):
    """Warning for security-related configuration issues."""
    pass
