import time

import pytest

from triocache.config import DEFAULT_CLEANUP_INTERVAL, CacheOptions
from triocache.errors import CacheConfigError


def test_defaults():
    options = CacheOptions()
    assert options.size is None
    assert options.expiry is None
    assert options.cleanup_interval == DEFAULT_CLEANUP_INTERVAL == 3600.0
    assert options.clock is time.time
    assert options.timer is None


@pytest.mark.parametrize(
    "kwargs, option",
    [
        ({"size": 0}, "size"),
        ({"size": -3}, "size"),
        ({"expiry": 0}, "expiry"),
        ({"cleanup_interval": -1.0}, "cleanup_interval"),
    ],
)
def test_invalid_options(kwargs, option):
    with pytest.raises(CacheConfigError) as excinfo:
        CacheOptions(**kwargs)
    assert excinfo.value.option == option
    assert f"option={option}" in str(excinfo.value)


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        CacheOptions(size=0)


def test_from_env(monkeypatch):
    monkeypatch.setenv("TRIOCACHE_SIZE", "100")
    monkeypatch.setenv("TRIOCACHE_EXPIRY", "2.5")
    monkeypatch.delenv("TRIOCACHE_CLEANUP_INTERVAL", raising=False)

    options = CacheOptions.from_env()

    assert options.size == 100
    assert options.expiry == 2.5
    assert options.cleanup_interval == DEFAULT_CLEANUP_INTERVAL


def test_from_env_custom_prefix_and_overrides(monkeypatch):
    monkeypatch.setenv("APP_CACHE_SIZE", "10")
    monkeypatch.setenv("APP_CACHE_CLEANUP_INTERVAL", " 60 ")

    options = CacheOptions.from_env("APP_CACHE_", size=20)

    assert options.size == 20
    assert options.cleanup_interval == 60.0


def test_from_env_ignores_empty_values(monkeypatch):
    monkeypatch.setenv("TRIOCACHE_SIZE", "")
    monkeypatch.delenv("TRIOCACHE_EXPIRY", raising=False)
    monkeypatch.delenv("TRIOCACHE_CLEANUP_INTERVAL", raising=False)
    assert CacheOptions.from_env() == CacheOptions()


def test_from_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("TRIOCACHE_SIZE", "lots")
    with pytest.raises(CacheConfigError, match="cannot parse TRIOCACHE_SIZE"):
        CacheOptions.from_env()


def test_from_env_validates_range(monkeypatch):
    monkeypatch.setenv("TRIOCACHE_SIZE", "0")
    with pytest.raises(CacheConfigError, match="size must be greater than 0"):
        CacheOptions.from_env()
