"""
Field paths - get/set over nested JSON-like structures.

A path addresses a location inside dicts and lists:

    "choices[0].delta.content"
    "candidates.0.content.parts.0.text"
    "audio.content"

Numeric segments (bracketed or dotted) index into lists. Reads never raise
on a missing segment; they return MISSING (or the supplied default).
Writes create missing intermediate containers and mutate in place.
"""

import re
from functools import lru_cache
from typing import Any, Union

from provider_bridge.errors import ConfigurationError

Token = Union[str, int]

_SEGMENT = re.compile(r"([^\[\]]*)((?:\[\d+\])*)")
_INDEX = re.compile(r"\[(\d+)\]")


class _Missing:
    """Sentinel for an absent path. Falsy so `value or ""` reads naturally."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@lru_cache(maxsize=512)
def parse_path(path: str) -> tuple[Token, ...]:
    """
    Split a field path into dict keys (str) and list indices (int).

    Raises:
        ConfigurationError: On an empty or malformed path
    """
    if not path or not path.strip():
        raise ConfigurationError("Field path must not be empty")

    tokens: list[Token] = []
    for part in path.strip().split("."):
        match = _SEGMENT.fullmatch(part)
        if not part or match is None:
            raise ConfigurationError(f"Malformed field path: {path!r}")
        name, indices = match.groups()
        if not name and not indices:
            raise ConfigurationError(f"Malformed field path: {path!r}")
        if name:
            tokens.append(int(name) if name.isdigit() else name)
        tokens.extend(int(i) for i in _INDEX.findall(indices))
    return tuple(tokens)


def _step(obj: Any, token: Token) -> Any:
    if isinstance(token, int):
        if isinstance(obj, list):
            if 0 <= token < len(obj):
                return obj[token]
            return MISSING
        if isinstance(obj, dict) and str(token) in obj:
            return obj[str(token)]
        return MISSING
    if isinstance(obj, dict) and token in obj:
        return obj[token]
    return MISSING


def get_path(obj: Any, path: str, default: Any = MISSING) -> Any:
    """Return the value at `path`, or `default` when any segment is absent."""
    current = obj
    for token in parse_path(path):
        current = _step(current, token)
        if current is MISSING:
            return default
    return current


def has_path(obj: Any, path: str) -> bool:
    return get_path(obj, path) is not MISSING


def _new_container(next_token: Token) -> Any:
    return [] if isinstance(next_token, int) else {}


def _fits(value: Any, next_token: Token) -> bool:
    if isinstance(next_token, int):
        return isinstance(value, (list, dict))
    return isinstance(value, dict)


def _assign(container: Any, token: Token, value: Any) -> None:
    if isinstance(container, list):
        if not isinstance(token, int):
            raise ConfigurationError(f"Cannot use key {token!r} on a list")
        while len(container) <= token:
            container.append(None)
        container[token] = value
    else:
        container[str(token) if isinstance(token, int) else token] = value


def set_path(obj: Any, path: str, value: Any) -> Any:
    """
    Write `value` at `path`, creating intermediate dicts/lists as needed.

    A list is created when the next segment is an index; lists are padded
    with None up to the index. Existing scalars in the way are replaced.

    Returns:
        The mutated `obj`, for chaining.
    """
    tokens = parse_path(path)
    if not isinstance(obj, (dict, list)):
        raise ConfigurationError(f"Cannot set {path!r} on {type(obj).__name__}")

    current = obj
    for token, next_token in zip(tokens, tokens[1:]):
        child = _step(current, token)
        if child is MISSING or not _fits(child, next_token):
            child = _new_container(next_token)
            _assign(current, token, child)
        current = child
    _assign(current, tokens[-1], value)
    return obj
