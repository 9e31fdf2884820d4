from dataclasses import dataclass
from typing import Any


@dataclass
class CacheError(Exception):
    message: str
    option: str | None = None
    value: Any = None

    def __str__(self) -> str:
        bits = [self.message]
        if self.option:
            bits.append(f"option={self.option}")
        if self.value is not None:
            bits.append(f"value={self.value!r}")
        return " ".join(bits)


class CacheConfigError(CacheError, ValueError):
    pass
