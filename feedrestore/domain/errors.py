"""
Exception hierarchy for feed resolution and caching.

Every error raised by the engine derives from FeedError so that callers can
catch the whole family at once:

- NotFoundError: the requested resource does not exist on the source
- InvalidContentError: a response or cache file failed validation
- TransportError: network failure, timeout or unexpected HTTP status
- SourceUnavailableError: a local path is missing or a remote source is undetectable
- ConfigurationError: unreadable settings or an unknown source name
"""
from __future__ import annotations

from typing import Optional


class FeedError(Exception):
    """Base class for all feed errors."""


class NotFoundError(FeedError):
    def __init__(self, uri: str):
        super().__init__(f"Resource not found: {uri}")
        self.uri = uri


class InvalidContentError(FeedError):
    def __init__(self, uri: str, reason: Optional[str] = None):
        message = f"Response from {uri} is not valid"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.uri = uri
        self.reason = reason


class TransportError(FeedError):
    """
    Network-level failure talking to a remote source.

    This is the only error kind the listing retry loop treats as transient.
    """

    def __init__(self, uri: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"Request to {uri} failed: {message}")
        self.uri = uri
        self.status_code = status_code


class SourceUnavailableError(FeedError):
    def __init__(self, source: str, reason: str):
        super().__init__(f"Source {source} is unavailable: {reason}")
        self.source = source
        self.reason = reason


class ConfigurationError(FeedError):
    pass
