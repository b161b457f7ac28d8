"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: get_config(), ConfigModule.get(), ConfigModule.set()
Hidden: Config sources, validation logic, environment parsing

Can be replaced with different config systems (Consul, etcd, AWS Parameter Store).
"""

import os
from typing import Any, Dict, Optional


# Configuration Contract: Required and Optional Keys
# This defines the black box interface - what the config module guarantees to provide

REQUIRED_CONFIG_KEYS = {
    "redis_host": "Redis server hostname",
    "redis_port": "Redis server port number",
    "redis_db": "Redis database number",
    "host": "API server bind address",
    "port": "API server port",
    "log_level": "Logging level (DEBUG, INFO, WARNING, ERROR)",
    "jwt_secret": "Signing secret for session tokens",
    "csrf_secret": "HMAC secret binding CSRF tokens to sessions",
    "admin_username": "Bootstrap administrator username",
    "admin_password": "Bootstrap administrator password",
    "admin_email": "Bootstrap administrator email address",
}

OPTIONAL_CONFIG_KEYS = {
    "redis_password": {"description": "Redis authentication password", "default": None},
    "debug": {"description": "Enable debug mode", "default": False},
    "environment": {"description": "development or production", "default": "development"},
    "session_ttl": {"description": "Session lifetime in seconds", "default": 3600},
    "cookie_secure": {"description": "Set the Secure flag on cookies", "default": False},
    "verification_token_ttl": {"description": "Email verification token TTL", "default": 86400},
    "reset_token_ttl": {"description": "Password reset token TTL", "default": 3600},
    "change_token_ttl": {"description": "Password/email change token TTL", "default": 3600},
    "api_key_cooldown": {"description": "Seconds between self-service key generations", "default": 300},
    "rate_limit_window": {"description": "Sliding window length in seconds", "default": 900},
    "rate_limit_api_key": {"description": "Requests per window per API key", "default": 3},
    "rate_limit_api_ip": {"description": "Data-plane requests per window per IP, any key", "default": 30},
    "rate_limit_auth": {"description": "Auth requests per window per IP", "default": 10},
    "rate_limit_general": {"description": "Requests per window per IP", "default": 100},
    "bcrypt_rounds": {"description": "bcrypt cost factor", "default": 12},
    "frontend_url": {"description": "Base URL used in mailed links", "default": "http://localhost:3000"},
    "mail_sender": {"description": "From address for outbound mail", "default": "no-reply@traveltales.local"},
    "use_mock_data": {"description": "Serve canned country data", "default": False},
    "countries_api_url": {"description": "Country data upstream", "default": "https://restcountries.com/v3.1"},
}


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class ConfigModule:
    """Configuration management module."""

    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize with environment variables.

        Args:
            overrides: Optional values that take precedence over the environment
        """
        self._config = self._load_from_env()
        if overrides:
            self._config.update(overrides)
        self._validate_required_keys()

    def _validate_required_keys(self) -> None:
        """
        Validate that all required configuration keys are present.

        Raises:
            ValueError: If required keys are missing
        """
        missing_keys = []
        for key in REQUIRED_CONFIG_KEYS:
            if key not in self._config or self._config[key] in (None, ""):
                missing_keys.append(key)

        if missing_keys:
            raise ValueError(
                f"Missing required configuration keys: {', '.join(missing_keys)}. "
                f"Check environment variables and deployment configuration."
            )

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment."""
        # Parse Redis port (might be in tcp://host:port format from K8s)
        redis_port_env = os.getenv("REDIS_PORT", "6379")
        if redis_port_env.startswith("tcp://"):
            redis_port = int(redis_port_env.split(":")[-1])
        else:
            redis_port = int(redis_port_env)

        return {
            # Redis settings
            "redis_host": os.getenv("REDIS_HOST", "localhost"),
            "redis_port": redis_port,
            "redis_db": int(os.getenv("REDIS_DB", "0")),
            "redis_password": os.getenv("REDIS_PASSWORD"),
            # API settings
            "host": os.getenv("API_HOST", "0.0.0.0"),
            "port": int(os.getenv("API_PORT", "5000")),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "debug": _env_bool("DEBUG"),
            "environment": os.getenv("ENVIRONMENT", "development"),
            # Secrets (no defaults)
            "jwt_secret": os.getenv("JWT_SECRET"),
            "csrf_secret": os.getenv("CSRF_SECRET"),
            "admin_username": os.getenv("ADMIN_USERNAME"),
            "admin_password": os.getenv("ADMIN_PASSWORD"),
            "admin_email": os.getenv("ADMIN_EMAIL"),
            # Session and token lifetimes
            "session_ttl": int(os.getenv("SESSION_TTL", "3600")),
            "cookie_secure": _env_bool("COOKIE_SECURE"),
            "verification_token_ttl": int(os.getenv("VERIFICATION_TOKEN_TTL", "86400")),
            "reset_token_ttl": int(os.getenv("RESET_TOKEN_TTL", "3600")),
            "change_token_ttl": int(os.getenv("CHANGE_TOKEN_TTL", "3600")),
            # API keys and throttling
            "api_key_cooldown": int(os.getenv("API_KEY_COOLDOWN", "300")),
            "rate_limit_window": int(os.getenv("RATE_LIMIT_WINDOW", "900")),
            "rate_limit_api_key": int(os.getenv("RATE_LIMIT_API_KEY", "3")),
            "rate_limit_api_ip": int(os.getenv("RATE_LIMIT_API_IP", "30")),
            "rate_limit_auth": int(os.getenv("RATE_LIMIT_AUTH", "10")),
            "rate_limit_general": int(os.getenv("RATE_LIMIT_GENERAL", "100")),
            "bcrypt_rounds": int(os.getenv("BCRYPT_ROUNDS", "12")),
            # Mail
            "frontend_url": os.getenv("FRONTEND_URL", "http://localhost:3000"),
            "mail_sender": os.getenv("MAIL_SENDER", "no-reply@traveltales.local"),
            # Country data
            "use_mock_data": _env_bool("USE_MOCK_DATA"),
            "countries_api_url": os.getenv("COUNTRIES_API_URL", "https://restcountries.com/v3.1"),
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        self._config[key] = value

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self._config.copy()

    @staticmethod
    def get_config_schema() -> Dict[str, Any]:
        """
        Get the configuration schema (contract) for this module.

        Returns:
            Dictionary with 'required' and 'optional' key specifications

        Example:
            >>> schema = ConfigModule.get_config_schema()
            >>> print(schema['required']['jwt_secret'])
            'Signing secret for session tokens'
        """
        return {
            "required": REQUIRED_CONFIG_KEYS.copy(),
            "optional": OPTIONAL_CONFIG_KEYS.copy(),
        }


# Singleton instance
_instance = None


def get_config() -> ConfigModule:
    """Get the configuration module singleton."""
    global _instance
    if _instance is None:
        _instance = ConfigModule()
    return _instance


__all__ = ["get_config", "ConfigModule", "REQUIRED_CONFIG_KEYS", "OPTIONAL_CONFIG_KEYS"]
