"""Tests for endpoint configuration loading."""

import pytest

import infrastructure.configuration as app_config
from infrastructure.configuration import SystemEnv
from portico.exceptions import ConfigError
from portico.settings import (
    defaults,
    load_endpoint_config,
    merge,
    normalize_changes,
)


def test_defaults_are_applied() -> None:
    config = load_endpoint_config("my_app", "MyApp.Endpoint")
    assert config["otp_app"] == "my_app"
    assert config["debug_errors"] is False
    assert config["http"] is False and config["https"] is False
    assert config["url"]["host"] == "localhost"
    assert config["url"]["path"] == "/"
    assert config["render_errors"]["accepts"] == ["html"]
    assert config["pubsub"]["pool_size"] == 1
    assert config["cache_static_lookup"] is True
    assert config["secret_key_base"] is None
    assert config["server"] is False


def test_server_default_follows_serve_endpoints(monkeypatch) -> None:
    monkeypatch.setenv("PORTICO_SERVE_ENDPOINTS", "true")
    assert defaults("my_app")["server"] is True
    app_config.set_serve_endpoints(False)
    assert load_endpoint_config("my_app", "MyApp.Endpoint")["server"] is False


def test_environment_and_overrides_are_deep_merged() -> None:
    app_config.put_env(
        "my_app", "MyApp.Endpoint", {"url": {"host": "example.com"}, "root": "/srv"}
    )
    config = load_endpoint_config(
        "my_app", "MyApp.Endpoint", {"url": {"scheme": "https"}, "custom": 1}
    )
    assert config["url"]["host"] == "example.com"
    assert config["url"]["scheme"] == "https"
    assert config["url"]["path"] == "/"
    assert config["root"] == "/srv"
    assert config["custom"] == 1


def test_merge_does_not_mutate_inputs() -> None:
    base = {"url": {"host": "a"}}
    merged = merge(base, {"url": {"port": 1}})
    assert merged == {"url": {"host": "a", "port": 1}}
    assert base == {"url": {"host": "a"}}


def test_missing_otp_app_is_rejected() -> None:
    with pytest.raises(ConfigError) as exc_info:
        load_endpoint_config("", "MyApp.Endpoint")
    assert exc_info.value.key == "otp_app"


def test_pubsub_adapter_requires_name() -> None:
    with pytest.raises(ConfigError, match="no name was defined") as exc_info:
        load_endpoint_config("my_app", "MyApp.Endpoint", {"pubsub": {"adapter": object}})
    assert exc_info.value.key == "pubsub"


@pytest.mark.parametrize(
    "overrides, key",
    [
        ({"url": {"path": "api"}}, "url"),
        ({"url": {"scheme": "ftp"}}, "url"),
        ({"http": "yes"}, "http"),
        ({"force_ssl": "always"}, "force_ssl"),
        ({"render_errors": {"accepts": []}}, "render_errors"),
    ],
)
def test_malformed_sections_raise_config_error(overrides, key) -> None:
    with pytest.raises(ConfigError) as exc_info:
        load_endpoint_config("my_app", "MyApp.Endpoint", overrides)
    assert exc_info.value.key == key
    assert isinstance(exc_info.value, ValueError)


def test_ports_from_environment_are_deferred() -> None:
    config = load_endpoint_config(
        "my_app",
        "MyApp.Endpoint",
        {"url": {"port": {"system": "PORT"}}, "http": {"port": ("system", "HTTP_PORT")}},
    )
    assert config["url"]["port"] == SystemEnv("PORT")
    assert config["http"]["port"] == SystemEnv("HTTP_PORT")


def test_force_ssl_and_watchers_are_normalized() -> None:
    config = load_endpoint_config(
        "my_app",
        "MyApp.Endpoint",
        {"force_ssl": True, "watchers": {"node": ["watch.js", "--color"]}},
    )
    assert config["force_ssl"] == {}
    assert config["watchers"] == [("node", ["watch.js", "--color"])]


def test_objects_in_config_are_kept_as_given() -> None:
    class Observer:
        pass

    observer = Observer()
    config = load_endpoint_config(
        "my_app", "MyApp.Endpoint", {"instrumenters": [observer]}
    )
    assert config["instrumenters"][0] is observer


def test_normalize_changes_defers_ports() -> None:
    changed = normalize_changes({"url": {"port": {"system": "PORT"}}, "root": "/x"})
    assert changed == {"url": {"port": SystemEnv("PORT")}, "root": "/x"}


def test_system_env_resolves_on_access(monkeypatch) -> None:
    ref = SystemEnv("PORTICO_TEST_PORT", "4000")
    assert ref.resolve() == "4000"
    monkeypatch.setenv("PORTICO_TEST_PORT", "5000")
    assert ref.resolve() == "5000"


def test_load_config_file(tmp_path) -> None:
    path = tmp_path / "portico.toml"
    path.write_text(
        '[my_app."MyApp.Endpoint"]\n'
        'secret_key_base = "s3cret"\n'
        'url = { host = "example.com", port = { system = "PORT" } }\n'
    )
    assert app_config.load_config_file(path) == [("my_app", "MyApp.Endpoint")]
    config = load_endpoint_config("my_app", "MyApp.Endpoint")
    assert config["secret_key_base"] == "s3cret"
    assert config["url"]["port"] == SystemEnv("PORT")


def test_load_config_file_rejects_non_tables(tmp_path) -> None:
    path = tmp_path / "bad.toml"
    path.write_text('my_app = "oops"\n')
    with pytest.raises(ValueError):
        app_config.load_config_file(path)


def test_get_env_returns_a_copy() -> None:
    app_config.put_env("my_app", "E", {"url": {"host": "a"}})
    app_config.get_env("my_app", "E")["url"]["host"] = "b"
    assert app_config.get_env("my_app", "E") == {"url": {"host": "a"}}
    app_config.delete_env("my_app", "E")
    assert app_config.get_env("my_app", "E") == {}


def test_load_settings(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("PORTICO_SERVE_ENDPOINTS", "1")
    settings = app_config.load_settings()
    assert settings.serve_endpoints is True
    assert settings.config_file is None
    monkeypatch.setenv("PORTICO_CONFIG", str(tmp_path / "missing.toml"))
    with pytest.raises(ValueError):
        app_config.load_settings()
