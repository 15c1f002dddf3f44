import logging
from pathlib import Path
from typing import Optional, Union

from feedrestore.data.settings import get_cache_dir, load_settings
from feedrestore.domain.models import RestoreSettings
from feedrestore.services.content_lock import ContentLock
from feedrestore.services.feed_registry import FeedRegistry
from feedrestore.services.restore_client import RestoreClient

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_settings: Optional[RestoreSettings] = None
_feed_registry: Optional[FeedRegistry] = None
_restore_client: Optional[RestoreClient] = None


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # filelock logs every acquire and release at DEBUG
    logging.getLogger("filelock").setLevel(max(level, logging.INFO))


def get_settings(path: Optional[Union[str, Path]] = None) -> RestoreSettings:
    global _settings
    if _settings is None:
        _settings = load_settings(path)
    return _settings


def get_feed_registry() -> FeedRegistry:
    global _feed_registry
    if _feed_registry is None:
        settings = get_settings()
        _feed_registry = FeedRegistry(
            get_cache_dir(settings),
            timeout=settings.request_timeout,
            lock=ContentLock(timeout=settings.lock_timeout),
        )
    return _feed_registry


def get_restore_client() -> RestoreClient:
    global _restore_client
    if _restore_client is None:
        _restore_client = RestoreClient(get_settings(), get_feed_registry())
    return _restore_client


def reset_dependencies() -> None:
    global _settings, _feed_registry, _restore_client
    _settings = None
    _feed_registry = None
    _restore_client = None
