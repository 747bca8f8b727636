"""Fractional ordering keys for steps, components and quiz questions.

A key is a base-36 string read as a fraction in [0, 1): "i" is 18/36,
"0i" is 18/1296, and so on.  Plain string comparison orders keys the
same way the fractions are ordered, so storage can ORDER BY the column
directly.  Inserting between two siblings only ever creates one new key:
nothing is renumbered.

Keys never end in "0".  That keeps every key strictly above 0 so there
is always room to insert before the first sibling, and makes each
fraction have exactly one spelling.

Rebalancing: repeated inserts into the same gap grow keys by roughly one
character per 5 inserts.  Once a generated key is longer than
MAX_KEY_LENGTH, the caller rewrites the whole sibling list with
initial_keys(), which preserves relative order.
"""

from __future__ import annotations

from dataclasses import dataclass

from onboarding.core.errors import ValidationError

DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
BASE = len(DIGITS)
MAX_KEY_LENGTH = 24

_DIGIT_VALUE = {ch: i for i, ch in enumerate(DIGITS)}


def is_valid(key: str) -> bool:
    return (
        bool(key)
        and not key.endswith("0")
        and all(ch in _DIGIT_VALUE for ch in key)
    )


def _require_valid(key: str) -> None:
    if not is_valid(key):
        raise ValidationError(f"invalid order key {key!r}")


def _midpoint(low: str, high: str | None) -> str:
    """Shortest key strictly between low and high.

    low is "" for the open lower bound (fraction 0); high is None for the
    open upper bound (fraction 1).
    """
    if high is not None:
        # Copy the shared prefix, padding low with zeros while walking
        n = 0
        while n < len(high) and (low[n] if n < len(low) else "0") == high[n]:
            n += 1
        if n > 0:
            return high[:n] + _midpoint(low[n:], high[n:])

    digit_low = _DIGIT_VALUE[low[0]] if low else 0
    digit_high = _DIGIT_VALUE[high[0]] if high else BASE
    if digit_high - digit_low > 1:
        return DIGITS[(digit_low + digit_high + 1) // 2]

    # Adjacent first digits: go one level deeper
    if high is not None and len(high) > 1:
        return high[0]
    return DIGITS[digit_low] + _midpoint(low[1:], None)


def between(low: str | None, high: str | None) -> str:
    """Return a key that sorts strictly between low and high.

    Either bound may be None (open).  Raises ValidationError when
    low >= high.
    """
    if low is not None:
        _require_valid(low)
    if high is not None:
        _require_valid(high)
    if low is not None and high is not None and low >= high:
        raise ValidationError(f"order key {low!r} must sort before {high!r}")
    return _midpoint(low or "", high)


def after(key: str | None) -> str:
    return between(key, None)


def before(key: str | None) -> str:
    return between(None, key)


def initial_keys(count: int) -> list[str]:
    """Evenly spaced keys for a fresh (or rebalanced) list of siblings."""
    if count < 0:
        raise ValidationError("count must be >= 0")
    if count == 0:
        return []

    width = 1
    while BASE**width <= count:
        width += 1
    step = BASE**width // (count + 1)

    keys: list[str] = []
    for i in range(1, count + 1):
        value = step * i
        chars = []
        for _ in range(width):
            value, rem = divmod(value, BASE)
            chars.append(DIGITS[rem])
        keys.append("".join(reversed(chars)).rstrip("0"))
    return keys


def needs_rebalance(key: str) -> bool:
    return len(key) > MAX_KEY_LENGTH


@dataclass(frozen=True, slots=True, order=True)
class OrderKey:
    """Typed wrapper for callers that want comparison without raw strings."""

    value: str

    def __post_init__(self) -> None:
        _require_valid(self.value)

    def __str__(self) -> str:
        return self.value

    @staticmethod
    def first() -> OrderKey:
        return OrderKey(between(None, None))

    def next(self) -> OrderKey:
        return OrderKey(after(self.value))

    def previous(self) -> OrderKey:
        return OrderKey(before(self.value))

    def between(self, other: OrderKey) -> OrderKey:
        return OrderKey(between(self.value, other.value))
