import pytest

from traveltales.modules.config import REQUIRED_CONFIG_KEYS, ConfigModule

SECRETS = {
    "jwt_secret": "jwt-secret-0123456789abcdef0123456789abcdef",
    "csrf_secret": "csrf-secret-0123456789abcdef0123456789abcdef",
    "admin_username": "admin",
    "admin_password": "AdminPassw0rd",
    "admin_email": "admin@example.com",
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("JWT_SECRET", "CSRF_SECRET", "ADMIN_USERNAME", "ADMIN_PASSWORD", "ADMIN_EMAIL"):
        monkeypatch.delenv(name, raising=False)


def test_missing_secrets_rejected():
    with pytest.raises(ValueError) as exc_info:
        ConfigModule()

    message = str(exc_info.value)
    assert "jwt_secret" in message
    assert "admin_password" in message


def test_empty_value_counts_as_missing():
    with pytest.raises(ValueError, match="csrf_secret"):
        ConfigModule(overrides={**SECRETS, "csrf_secret": ""})


def test_defaults():
    config = ConfigModule(overrides=SECRETS)

    assert config.get("session_ttl") == 3600
    assert config.get("api_key_cooldown") == 300
    assert config.get("rate_limit_window") == 900
    assert config.get("rate_limit_api_key") == 3
    assert config.get("rate_limit_auth") == 10
    assert config.get("rate_limit_general") == 100
    assert config.get("bcrypt_rounds") == 12


def test_environment_and_overrides(monkeypatch):
    monkeypatch.setenv("REDIS_PORT", "tcp://10.0.0.5:6380")
    monkeypatch.setenv("RATE_LIMIT_API_KEY", "10")
    monkeypatch.setenv("USE_MOCK_DATA", "true")

    config = ConfigModule(overrides={**SECRETS, "rate_limit_api_key": 5})

    assert config.get("redis_port") == 6380
    assert config.get("use_mock_data") is True
    assert config.get("rate_limit_api_key") == 5


def test_schema_lists_required_keys():
    schema = ConfigModule.get_config_schema()

    assert set(schema["required"]) == set(REQUIRED_CONFIG_KEYS)
    assert "cookie_secure" in schema["optional"]
