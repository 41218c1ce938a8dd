from __future__ import annotations

from typing import Callable, TypeVar

Number = TypeVar("Number", int, float)

TRUE_LIKE_VALUES = frozenset({"1", "true", "yes", "y", "on"})


def as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in TRUE_LIKE_VALUES


def _clamp(
    value: str | None,
    cast: Callable[[str], Number],
    default: Number,
    min_value: Number | None,
    max_value: Number | None,
) -> Number:
    try:
        parsed = cast(str(value or "").strip())
    except ValueError:
        parsed = cast(str(default))
    if min_value is not None and parsed < min_value:
        parsed = cast(str(min_value))
    if max_value is not None and parsed > max_value:
        parsed = cast(str(max_value))
    return parsed


def as_int(value: str | None, *, default: int, min_value: int | None = None, max_value: int | None = None) -> int:
    return _clamp(value, int, default, min_value, max_value)


def as_float(
    value: str | None,
    *,
    default: float,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    return _clamp(value, float, default, min_value, max_value)


def as_csv_tuple(value: str | None, *, default: tuple[str, ...]) -> tuple[str, ...]:
    """Split a comma list, dropping blanks and repeats; fall back to ``default`` when nothing is left."""
    seen: dict[str, None] = {}
    for token in str(value or "").split(","):
        if token.strip():
            seen.setdefault(token.strip(), None)
    return tuple(seen) or tuple(default)
