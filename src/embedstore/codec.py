"""Vector codec — bracketed text form used for persisted embedding vectors.

Vectors are stored as ``"[0.1,0.2,...]"``: deterministic, human-readable,
and accepted as a literal by engines with a native vector type (pgvector).
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from embedstore.exceptions import ValidationError, VectorDecodeError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

UNKNOWN_DIMENSIONS = -1


def encode(vector: Sequence[float]) -> str:
    """Encode *vector* as bracketed comma-separated text.

    Floats are written with ``repr`` so ``decode(encode(v)) == v``.
    Raises :class:`ValidationError` for non-numeric or non-finite items.
    """
    parts: list[str] = []
    for i, value in enumerate(vector):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            try:
                value = float(value)  # numpy scalars
            except (TypeError, ValueError):
                msg = f"Vector element {i} is not numeric: {value!r}"
                raise ValidationError(msg) from None
        number = float(value)
        if not math.isfinite(number):
            msg = f"Vector element {i} is not finite: {number!r}"
            raise ValidationError(msg)
        parts.append(repr(number))
    return "[" + ",".join(parts) + "]"


def decode(text: str) -> list[float]:
    """Decode bracketed vector text back into a list of floats.

    Malformed input (missing or unbalanced brackets, empty or non-numeric
    tokens) raises :class:`VectorDecodeError`; nothing is silently dropped.
    """
    if not isinstance(text, str):
        msg = f"Vector text must be a string, got {type(text).__name__}"
        raise VectorDecodeError(msg)

    stripped = text.strip()
    if len(stripped) < 2 or stripped[0] != "[" or stripped[-1] != "]":
        msg = f"Vector text must be enclosed in brackets: {_preview(text)}"
        raise VectorDecodeError(msg)

    inner = stripped[1:-1]
    if "[" in inner or "]" in inner:
        msg = f"Unbalanced brackets in vector text: {_preview(text)}"
        raise VectorDecodeError(msg)
    if not inner.strip():
        return []

    values: list[float] = []
    for i, token in enumerate(inner.split(",")):
        token = token.strip()
        if not token:
            msg = f"Empty element at position {i} in vector text: {_preview(text)}"
            raise VectorDecodeError(msg)
        try:
            number = float(token)
        except ValueError:
            msg = f"Non-numeric element {token!r} at position {i}"
            raise VectorDecodeError(msg) from None
        if not math.isfinite(number):
            msg = f"Non-finite element {token!r} at position {i}"
            raise VectorDecodeError(msg)
        values.append(number)
    return values


def dimensions(text: str | None) -> int:
    """Return the element count of *text*, or ``-1`` if absent or malformed."""
    if text is None:
        return UNKNOWN_DIMENSIONS
    try:
        return len(decode(text))
    except VectorDecodeError:
        return UNKNOWN_DIMENSIONS


def validate_dimensions(
    vector: Sequence[float],
    model: str,
    registry: Mapping[str, int],
) -> None:
    """Raise :class:`ValidationError` unless *vector* fits *model*'s dimension."""
    expected = registry.get(model)
    if expected is None:
        msg = f"Unknown embedding model {model!r}; register its dimensions first"
        raise ValidationError(msg)
    if len(vector) != expected:
        msg = (
            f"Vector has {len(vector)} dimensions but model {model!r} "
            f"produces {expected}"
        )
        raise ValidationError(msg)


def _preview(text: str, limit: int = 40) -> str:
    return repr(text if len(text) <= limit else text[:limit] + "...")
