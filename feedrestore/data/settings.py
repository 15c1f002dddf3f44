"""
Loading of restore settings and resolution of the shared cache directory.

Settings live in a YAML file:

    cache_dir: ~/.feedrestore/cache
    no_cache: false
    ignore_failed_sources: false
    request_timeout: 100
    sources:
      - name: nuget.org
        source: https://api.nuget.org/v3/index.json
      - name: local
        source: ./packages
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from feedrestore.domain.errors import ConfigurationError
from feedrestore.domain.models import RestoreSettings

logger = logging.getLogger(__name__)

CACHE_DIR_ENV_VAR = "FEEDRESTORE_CACHE_DIR"
SETTINGS_ENV_VAR = "FEEDRESTORE_SETTINGS"
_DEFAULT_CACHE_DIR = Path("~/.feedrestore/cache")


def get_cache_dir(settings: Optional[RestoreSettings] = None) -> Path:
    """
    Determine the cache root directory.

    Priority:
    1. ``cache_dir`` from the settings
    2. Environment variable FEEDRESTORE_CACHE_DIR
    3. '~/.feedrestore/cache'
    """
    if settings is not None and settings.cache_dir is not None:
        d = Path(settings.cache_dir).expanduser()
    else:
        env_path = os.environ.get(CACHE_DIR_ENV_VAR)
        if env_path:
            d = Path(env_path).expanduser()
        else:
            d = _DEFAULT_CACHE_DIR.expanduser()
    d.mkdir(parents=True, exist_ok=True)
    return d


def get_settings_path() -> Optional[Path]:
    env_path = os.environ.get(SETTINGS_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return None


def load_settings(path: Optional[Union[str, Path]] = None) -> RestoreSettings:
    """
    Load settings from a YAML file.

    A missing file (or no path at all) yields the defaults. A file that cannot
    be parsed or does not match the schema raises ConfigurationError.
    """
    if path is None:
        path = get_settings_path()
    if path is None:
        return RestoreSettings()

    path = Path(path)
    if not path.exists():
        logger.info(f"Settings file {path} not found, using defaults")
        return RestoreSettings()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse settings file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")

    try:
        settings = RestoreSettings(**raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings in {path}: {e}") from e

    names = [s.name for s in settings.sources]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate source names in {path}: {', '.join(duplicates)}")

    logger.debug(f"Loaded {len(settings.sources)} sources from {path}")
    return settings
