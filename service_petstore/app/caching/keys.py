"""
Cache key construction.

Keys are tuples of primitive segments so they hash, compare element-wise
and survive a JSON round trip (see ``normalize_key``).

Only sets are unordered: a set or frozenset is de-duplicated and sorted
before it is embedded, so the key depends on the filter's contents rather
than on its iteration order. A mapping becomes ``(name, value)`` pairs sorted
by name. Lists and tuples are sequences and keep their order, which keeps
ordered parts such as ``order_by`` distinct.
"""

import json
from typing import Any, Iterable, Sequence, Tuple

CacheKey = Tuple[Any, ...]

_SCALARS = (str, int, float, bool, type(None))


def _sort_token(value: Any) -> Tuple[str, str]:
    # Mixed-type sets still need a total order
    return type(value).__name__, json.dumps(value, sort_keys=True, default=str)


def _normalize_segment(value: Any) -> Any:
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, dict):
        for name in value:
            if not isinstance(name, str):
                raise TypeError(f"Cache key mapping keys must be strings, got {type(name).__name__}")
        return tuple((name, _normalize_segment(value[name])) for name in sorted(value))
    if isinstance(value, (set, frozenset)):
        items = {_normalize_segment(item) for item in value}
        return tuple(sorted(items, key=_sort_token))
    if isinstance(value, (list, tuple)):
        return tuple(_normalize_segment(item) for item in value)
    raise TypeError(f"Unsupported cache key segment type: {type(value).__name__}")


def build_key(domain: str, *parts: Any) -> CacheKey:
    """Build a cache key from a domain name and descriptor parts."""
    if not isinstance(domain, str) or not domain:
        raise TypeError("Cache key domain must be a non-empty string")
    return (domain,) + tuple(_normalize_segment(part) for part in parts)


def extend_key(prefix: Sequence[Any], *parts: Any) -> CacheKey:
    """Append descriptor parts to an existing key."""
    return tuple(prefix) + tuple(_normalize_segment(part) for part in parts)


def normalize_key(key: Iterable[Any]) -> CacheKey:
    """Turn a key received over the wire (lists) back into tuple form.

    Lists become tuples in their original order, so a built key passes
    through unchanged and ``normalize_key(key_to_json(key)) == key``.
    """
    return tuple(_normalize_segment(segment) for segment in key)


def key_startswith(key: Sequence[Any], prefix: Sequence[Any]) -> bool:
    """Whether ``key`` begins with every segment of ``prefix``."""
    return len(prefix) <= len(key) and tuple(key[:len(prefix)]) == tuple(prefix)


def key_to_json(key: CacheKey) -> list:
    """JSON-friendly form of a key (tuples become lists)."""
    return [key_to_json(segment) if isinstance(segment, tuple) else segment for segment in key]


class PetstoreKeys:
    """Key factory for the petstore resource domains."""

    ALL: CacheKey = ("petstore",)

    @classmethod
    def pets(cls) -> CacheKey:
        return extend_key(cls.ALL, "pets")

    @classmethod
    def pet(cls, pet_id: int) -> CacheKey:
        return extend_key(cls.pets(), pet_id)

    @classmethod
    def pets_by_status(cls, statuses: Iterable[str]) -> CacheKey:
        # Status filters are a set; order and duplicates carry no meaning
        return extend_key(cls.pets(), "status", frozenset(statuses))

    @classmethod
    def inventory(cls) -> CacheKey:
        return extend_key(cls.ALL, "inventory")

    @classmethod
    def orders(cls) -> CacheKey:
        return extend_key(cls.ALL, "orders")

    @classmethod
    def order(cls, order_id: int) -> CacheKey:
        return extend_key(cls.orders(), order_id)
