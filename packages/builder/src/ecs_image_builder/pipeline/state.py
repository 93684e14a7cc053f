from __future__ import annotations

from collections.abc import Iterator, MutableMapping
from enum import StrEnum
from typing import Any, Mapping, TypeVar

T = TypeVar("T")


class CoreKey(StrEnum):
    ERROR = "error"
    HALTED = "halted"
    CANCELLED = "cancelled"


_CORE_CONTRACT: dict[str, type | tuple[type, ...]] = {
    CoreKey.ERROR: BaseException,
    CoreKey.HALTED: bool,
    CoreKey.CANCELLED: bool,
}


class StateBag(MutableMapping[str, Any]):
    """
    Mutable context shared by every step of one pipeline run.

    `contract` fixes the type stored under a key. Keys outside the contract
    keep the type of the first value written to them.
    """

    def __init__(self, contract: Mapping[str, type | tuple[type, ...]] | None = None) -> None:
        self._data: dict[str, Any] = {}
        self._contract: dict[str, type | tuple[type, ...]] = {
            **_CORE_CONTRACT,
            **{str(k): v for k, v in (contract or {}).items()},
        }

    def _expected(self, key: str) -> type | tuple[type, ...] | None:
        if key in self._contract:
            return self._contract[key]
        if key in self._data:
            return type(self._data[key])
        return None

    def put(self, key: str, value: Any) -> None:
        key = str(key)
        expected = self._expected(key)
        if expected is not None and not isinstance(value, expected):
            raise TypeError(
                f"state[{key!r}] must be {_type_name(expected)}, got {type(value).__name__}"
            )
        self._data[key] = value

    def require(self, key: str, kind: type[T]) -> T:
        key = str(key)
        if key not in self._data:
            raise KeyError(f"state[{key!r}] has not been set by an earlier step")
        value = self._data[key]
        if not isinstance(value, kind):
            raise TypeError(
                f"state[{key!r}] is {type(value).__name__}, expected {kind.__name__}"
            )
        return value

    def flag(self, key: str) -> bool:
        return bool(self._data.get(str(key), False))

    def __getitem__(self, key: str) -> Any:
        return self._data[str(key)]

    def __setitem__(self, key: str, value: Any) -> None:
        self.put(key, value)

    def __delitem__(self, key: str) -> None:
        del self._data[str(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"StateBag({sorted(self._data)})"


def _type_name(t: type | tuple[type, ...]) -> str:
    if isinstance(t, tuple):
        return " | ".join(x.__name__ for x in t)
    return t.__name__
