from pathlib import Path

import pytest

from feedrestore.data.settings import CACHE_DIR_ENV_VAR, get_cache_dir, load_settings
from feedrestore.domain.errors import ConfigurationError
from feedrestore.domain.models import RestoreSettings

SETTINGS_YAML = """
no_cache: true
ignore_failed_sources: true
request_timeout: 30
sources:
  - name: nuget.org
    source: https://api.nuget.org/v3/index.json
  - name: private
    source: https://pkgs.example.com/nuget/v2/
    username: ci
    password: secret
    protocol_version: "2"
  - name: local
    source: ./packages
    enabled: false
"""


def test_load_settings(tmp_path):
    path = tmp_path / "feeds.yaml"
    path.write_text(SETTINGS_YAML, encoding="utf-8")

    settings = load_settings(path)

    assert settings.no_cache is True
    assert settings.ignore_failed_sources is True
    assert settings.request_timeout == 30
    assert [s.name for s in settings.sources] == ["nuget.org", "private", "local"]
    assert [s.name for s in settings.enabled_sources()] == ["nuget.org", "private"]

    private = settings.sources[1].to_package_source(no_cache=True)
    assert private.username == "ci"
    assert private.protocol_version == "2"
    assert private.no_cache is True


def test_missing_settings_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "missing.yaml")
    assert settings == RestoreSettings()


def test_no_path_gives_defaults(monkeypatch):
    monkeypatch.delenv("FEEDRESTORE_SETTINGS", raising=False)
    assert load_settings() == RestoreSettings()


def test_malformed_yaml_raises(tmp_path):
    path = tmp_path / "feeds.yaml"
    path.write_text("sources: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(path)


def test_schema_violation_raises(tmp_path):
    path = tmp_path / "feeds.yaml"
    path.write_text("request_timeout: -5\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(path)


def test_duplicate_source_names_raise(tmp_path):
    path = tmp_path / "feeds.yaml"
    path.write_text(
        "sources:\n  - {name: a, source: ./one}\n  - {name: a, source: ./two}\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigurationError, match="Duplicate source names"):
        load_settings(path)


def test_cache_dir_prefers_settings(tmp_path, monkeypatch):
    monkeypatch.setenv(CACHE_DIR_ENV_VAR, str(tmp_path / "from-env"))
    settings = RestoreSettings(cache_dir=tmp_path / "from-settings")
    assert get_cache_dir(settings) == tmp_path / "from-settings"
    assert (tmp_path / "from-settings").is_dir()


def test_cache_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(CACHE_DIR_ENV_VAR, str(tmp_path / "from-env"))
    assert get_cache_dir() == Path(tmp_path / "from-env")
    assert (tmp_path / "from-env").is_dir()
