import pytest

from storefront.core import config as config_module
from storefront.core.config import (
    DatabaseSettings,
    build_database_settings,
    get_database_settings,
    load_env_if_present,
)
from storefront.core.errors import ConfigError

_ENV = {
    "DB_HOST": "db.internal",
    "DB_USER": "storefront",
    "DB_PASSWORD": "secret",
    "DB_NAME": "shop",
}


def test_defaults_from_env_style_mapping():
    settings = build_database_settings(_ENV)

    assert settings.port == 3306
    assert settings.max_connections == 10
    assert settings.queue_limit == 100
    assert settings.connect_timeout_ms == 10000
    assert settings.idle_timeout_ms == 30000
    assert settings.keep_alive is True
    assert settings.dsn == "mysql://storefront@db.internal:3306/shop"
    assert "secret" not in settings.dsn


def test_string_values_are_coerced():
    settings = build_database_settings({
        **_ENV,
        "DB_PORT": "3307",
        "DB_CONNECTION_LIMIT": " 25 ",
        "DB_KEEP_ALIVE": "off",
    })

    assert settings.port == 3307
    assert settings.max_connections == 25
    assert settings.keep_alive is False


def test_empty_password_is_allowed():
    settings = build_database_settings({**_ENV, "DB_PASSWORD": ""})
    assert settings.password == ""


@pytest.mark.parametrize("missing", ["DB_HOST", "DB_USER", "DB_PASSWORD", "DB_NAME"])
def test_required_values(missing):
    env = {k: v for k, v in _ENV.items() if k != missing}
    with pytest.raises(ConfigError) as exc_info:
        build_database_settings(env)
    assert missing in str(exc_info.value)


@pytest.mark.parametrize("override", [
    {"DB_PORT": "70000"},
    {"DB_CONNECTION_LIMIT": "0"},
    {"DB_QUEUE_LIMIT": "-1"},
    {"DB_ACQUIRE_TIMEOUT_MS": "0"},
    {"DB_KEEP_ALIVE": "maybe"},
    {"DB_HOST": "   "},
])
def test_invalid_values(override):
    with pytest.raises(ConfigError):
        build_database_settings({**_ENV, **override})


def test_unsupported_config_type():
    with pytest.raises(ConfigError):
        build_database_settings(["localhost"])


def test_pool_kwargs_translate_units():
    settings = DatabaseSettings(host="h", user="u", password="p", database="d", idle_timeout_ms=45000)

    kwargs = settings.pool_kwargs()
    assert kwargs["db"] == "d"
    assert kwargs["maxsize"] == 10
    assert kwargs["connect_timeout"] == 10
    assert kwargs["pool_recycle"] == 45
    assert kwargs["autocommit"] is False
    assert "db" not in settings.server_kwargs()


def test_get_database_settings_reads_environment(monkeypatch):
    for key, value in _ENV.items():
        monkeypatch.setenv(key, value)

    settings = get_database_settings()
    assert settings.database == "shop"
    assert get_database_settings() is settings

    monkeypatch.setenv("DB_NAME", "shop_v2")
    assert get_database_settings(reload=True).database == "shop_v2"


def test_env_file_does_not_override_environment(tmp_path, monkeypatch):
    env_file = tmp_path / "db.env"
    env_file.write_text(
        "# local database\n"
        "export DB_HOST=file-host\n"
        "DB_NAME='from_file'\n"
        "DB_USER=\"file_user\"\n"
    )
    monkeypatch.setenv("STOREFRONT_ENV_FILE", str(env_file))
    monkeypatch.setenv("DB_HOST", "env-host")
    monkeypatch.delenv("DB_NAME", raising=False)
    monkeypatch.delenv("DB_USER", raising=False)
    monkeypatch.setattr(config_module, "_ENV_LOADED", False)

    load_env_if_present()

    assert config_module.os.environ["DB_HOST"] == "env-host"
    assert config_module.os.environ["DB_NAME"] == "from_file"
    assert config_module.os.environ["DB_USER"] == "file_user"
