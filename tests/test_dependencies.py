import logging

import pytest

from feedrestore.core import dependencies
from feedrestore.data.settings import CACHE_DIR_ENV_VAR, SETTINGS_ENV_VAR


@pytest.fixture(autouse=True)
def fresh_dependencies(tmp_path, monkeypatch):
    settings = tmp_path / "feeds.yaml"
    settings.write_text(
        "lock_timeout: 10\nrequest_timeout: 20\nsources:\n  - {name: local, source: ./packages}\n",
        encoding="utf-8",
    )
    monkeypatch.setenv(SETTINGS_ENV_VAR, str(settings))
    monkeypatch.setenv(CACHE_DIR_ENV_VAR, str(tmp_path / "cache"))
    dependencies.reset_dependencies()
    yield
    dependencies.reset_dependencies()


def test_singletons_are_shared(tmp_path):
    client = dependencies.get_restore_client()

    assert dependencies.get_restore_client() is client
    assert client.registry is dependencies.get_feed_registry()
    assert client.settings is dependencies.get_settings()
    assert [s.name for s in client.settings.sources] == ["local"]


def test_registry_uses_settings(tmp_path):
    registry = dependencies.get_feed_registry()

    assert registry.context.cache_dir == tmp_path / "cache"
    assert registry.context.timeout == 20
    assert registry.context.lock.timeout == 10


def test_reset_rebuilds(tmp_path):
    first = dependencies.get_feed_registry()
    dependencies.reset_dependencies()
    assert dependencies.get_feed_registry() is not first


def test_configure_logging_accepts_names(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    filelock_logger = logging.getLogger("filelock")
    monkeypatch.setattr(filelock_logger, "level", logging.NOTSET)

    dependencies.configure_logging("debug")

    assert calls == [{"level": logging.DEBUG, "format": dependencies.LOG_FORMAT}]
    assert filelock_logger.level == logging.INFO


def test_importing_lock_module_leaves_filelock_logger_alone():
    import feedrestore.services.content_lock  # noqa: F401

    assert logging.getLogger("filelock").level == logging.NOTSET
