"""Tests for codec.py — bracketed vector text encoding."""

from __future__ import annotations

import math

import numpy as np
import pytest

from embedstore import codec
from embedstore.exceptions import ValidationError, VectorDecodeError


class TestEncode:
    def test_format(self):
        assert codec.encode([0.1, 0.2, 0.3]) == "[0.1,0.2,0.3]"

    def test_empty(self):
        assert codec.encode([]) == "[]"

    def test_ints_become_floats(self):
        assert codec.encode([1, 2]) == "[1.0,2.0]"

    def test_exact_round_trip(self):
        vec = [0.1 + 0.2, 1 / 3, -2.5e-12, 123456.789]
        assert codec.decode(codec.encode(vec)) == vec

    def test_numpy_scalars(self):
        vec = np.array([0.5, 0.25], dtype=np.float32)
        assert codec.decode(codec.encode(vec)) == [0.5, 0.25]

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_rejects_non_finite(self, bad: float):
        with pytest.raises(ValidationError, match="not finite"):
            codec.encode([1.0, bad])

    def test_rejects_non_numeric(self):
        with pytest.raises(ValidationError, match="not numeric"):
            codec.encode([1.0, "abc"])  # type: ignore[list-item]


class TestDecode:
    def test_basic(self):
        assert codec.decode("[0.1,0.2,0.3]") == [0.1, 0.2, 0.3]

    def test_whitespace_tolerated(self):
        assert codec.decode(" [ 1.0 , 2.0 ] ") == [1.0, 2.0]

    def test_empty_brackets(self):
        assert codec.decode("[]") == []

    def test_scientific_notation(self):
        assert codec.decode("[1e-3,2E2]") == [0.001, 200.0]

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "0.1,0.2",
            "[0.1,0.2",
            "0.1,0.2]",
            "[[0.1],0.2]",
            "[0.1,,0.2]",
            "[0.1,]",
            "[abc]",
            "[0.1,nan]",
            "[inf]",
        ],
    )
    def test_malformed(self, text: str):
        with pytest.raises(VectorDecodeError):
            codec.decode(text)

    def test_non_string(self):
        with pytest.raises(VectorDecodeError, match="must be a string"):
            codec.decode(None)  # type: ignore[arg-type]

    def test_decode_error_is_not_validation_error(self):
        with pytest.raises(VectorDecodeError) as exc_info:
            codec.decode("[x]")
        assert not isinstance(exc_info.value, ValidationError)


class TestDimensions:
    def test_counts_elements(self):
        assert codec.dimensions("[1.0,2.0,3.0]") == 3

    def test_none(self):
        assert codec.dimensions(None) == -1

    def test_malformed(self):
        assert codec.dimensions("[1.0,") == -1

    def test_empty(self):
        assert codec.dimensions("[]") == 0


class TestValidateDimensions:
    registry = {"m": 3}

    def test_match(self):
        codec.validate_dimensions([1.0, 2.0, 3.0], "m", self.registry)

    def test_mismatch(self):
        with pytest.raises(ValidationError, match="2 dimensions"):
            codec.validate_dimensions([1.0, 2.0], "m", self.registry)

    def test_unknown_model(self):
        with pytest.raises(ValidationError, match="Unknown embedding model"):
            codec.validate_dimensions([1.0], "nope", self.registry)
