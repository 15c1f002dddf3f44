import os
import time
from datetime import timedelta

import pytest
from pydantic import ValidationError

from feedrestore.domain.models import (
    CacheEntry,
    PackageInfo,
    PackageSource,
    is_local_source,
    normalize_source_key,
)
from feedrestore.domain.versioning import SemanticVersion


# ---------------------------------------------------------------------------
# Source keys
# ---------------------------------------------------------------------------


def test_remote_key_folds_scheme_and_host_case():
    assert normalize_source_key("HTTPS://Feed.Example.COM/v3/index.json") == "https://feed.example.com/v3/index.json"


def test_remote_key_preserves_path_case():
    assert normalize_source_key("https://feed.example.com/MyFeed/index.json").endswith("/MyFeed/index.json")
    assert normalize_source_key("https://feed.example.com/A") != normalize_source_key("https://feed.example.com/a")


def test_remote_key_drops_default_port_and_trailing_slash():
    assert normalize_source_key("https://feed.example.com:443/api/v2/") == "https://feed.example.com/api/v2"
    assert normalize_source_key("http://feed.example.com:8080/api") == "http://feed.example.com:8080/api"


def test_local_key_is_absolute(tmp_path):
    relative = os.path.relpath(tmp_path)
    assert normalize_source_key(relative) == normalize_source_key(str(tmp_path))
    assert normalize_source_key(tmp_path.as_uri()) == normalize_source_key(str(tmp_path))


@pytest.mark.parametrize(
    "source,expected",
    [
        ("./packages", True),
        ("/var/packages", True),
        ("file:///var/packages", True),
        ("C:\\packages", True),
        ("https://api.example.org/v3/index.json", False),
        ("http://localhost:5000/nuget", False),
    ],
)
def test_is_local_source(source, expected):
    assert is_local_source(source) is expected


def test_equivalent_sources_are_equal_and_hash_alike():
    a = PackageSource(source="https://Feed.Example.com/v3/index.json", ignore_failures=True)
    b = PackageSource(source="https://feed.example.com/v3/index.json", username="me")
    assert a == b
    assert hash(a) == hash(b)
    assert len({a, b}) == 1


def test_package_source_is_immutable():
    source = PackageSource(source="https://feed.example.com/")
    with pytest.raises(ValidationError):
        source.no_cache = True


# ---------------------------------------------------------------------------
# Package info
# ---------------------------------------------------------------------------


def test_package_info_equality_ignores_id_case_and_uri():
    a = PackageInfo(id="Foo", version=SemanticVersion.parse("1.0.0"), content_uri="https://a/foo.nupkg")
    b = PackageInfo(id="foo", version=SemanticVersion.parse("1.0"), content_uri="https://b/foo.nupkg", listed=False)
    assert a == b
    assert hash(a) == hash(b)


def test_package_info_differs_by_version():
    a = PackageInfo(id="foo", version=SemanticVersion.parse("1.0.0"), content_uri="x")
    b = PackageInfo(id="foo", version=SemanticVersion.parse("1.0.0-beta"), content_uri="x")
    assert a != b


# ---------------------------------------------------------------------------
# Cache entries
# ---------------------------------------------------------------------------


def test_cache_entry_freshness(tmp_path):
    path = tmp_path / "entry.dat"
    entry = CacheEntry(path=path, cache_key="entry", freshness=timedelta(minutes=30))
    assert not entry.exists()
    assert entry.age() is None
    assert not entry.is_fresh()

    path.write_bytes(b"{}")
    assert entry.is_fresh()

    old = time.time() - 3600
    os.utime(path, (old, old))
    assert not entry.is_fresh()


def test_zero_freshness_is_never_fresh(tmp_path):
    path = tmp_path / "entry.dat"
    path.write_bytes(b"{}")
    entry = CacheEntry(path=path, cache_key="entry", freshness=timedelta(0))
    assert not entry.is_fresh()
