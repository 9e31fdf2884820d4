"""
Cache configuration.
Options are fixed at construction and validated before any cache object exists.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable

from triocache.errors import CacheConfigError
from triocache.types import Timer, Timestamp

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL = 3600.0
"One hour, in seconds"


@dataclass(frozen=True)
class CacheOptions:
    size: int | None = None
    "maximum number of entries. None disables size based eviction"
    expiry: float | None = None
    "absolute time-to-live from insertion, in clock units. None disables expiry and the periodic sweep"
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL
    "delay between periodic sweeps, in timer units. Only used when expiry is set"
    clock: Callable[[], Timestamp] = field(default=time.time, compare=False)
    timer: Timer | None = field(default=None, compare=False)
    "None means a TrioTimer is installed by Cache.run_services"

    def __post_init__(self):
        if self.size is not None and self.size <= 0:
            raise CacheConfigError("size must be greater than 0", option="size", value=self.size)
        if self.expiry is not None and self.expiry <= 0:
            raise CacheConfigError("expiry must be greater than 0", option="expiry", value=self.expiry)
        if self.cleanup_interval <= 0:
            raise CacheConfigError(
                "cleanup_interval must be greater than 0",
                option="cleanup_interval",
                value=self.cleanup_interval,
            )

    @classmethod
    def from_env(cls, prefix: str = "TRIOCACHE_", **overrides) -> "CacheOptions":
        """
        Builds options from environment variables.

        Reads <prefix>SIZE, <prefix>EXPIRY and <prefix>CLEANUP_INTERVAL. Unset or
        empty variables keep the defaults; keyword overrides win over the environment.

        :raises CacheConfigError: if a variable cannot be parsed or is out of range
        """
        kwargs: dict = {}
        for option, parse in (("size", int), ("expiry", float), ("cleanup_interval", float)):
            name = f"{prefix}{option.upper()}"
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                continue
            try:
                kwargs[option] = parse(raw.strip())
            except ValueError as exc:
                raise CacheConfigError(f"cannot parse {name}", option=option, value=raw) from exc
            logger.debug(f"{name}={kwargs[option]} read from environment")
        kwargs.update(overrides)
        return cls(**kwargs)
