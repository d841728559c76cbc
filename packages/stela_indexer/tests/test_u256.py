"""
Tests for u256 helpers.
"""

import pytest

from stela_indexer.contracts.u256 import (
    U128_MAX,
    U256_MAX,
    from_u256,
    hex_to_u256,
    normalize_address,
    parse_felt,
    to_u256,
    u256_to_hex,
)


class TestU256:
    """Tests for u256 split / join."""

    @pytest.mark.parametrize("value", [0, 1, U128_MAX, U128_MAX + 1, 10_000, U256_MAX])
    def test_boundaries_are_exact(self, value):
        """Test boundary values survive a split and join."""
        assert from_u256(*to_u256(value)) == value

    def test_split_halves(self):
        """Test the low half carries the least significant 128 bits."""
        assert to_u256(U128_MAX + 1) == (0, 1)
        assert to_u256(U128_MAX) == (U128_MAX, 0)

    def test_join_large_value(self):
        """Test a value above 2**128 is reconstructed without precision loss."""
        assert from_u256(5, 3) == 3 * 2**128 + 5

    @pytest.mark.parametrize("low,high", [(-1, 0), (0, -1), (U128_MAX + 1, 0), (0, U128_MAX + 1)])
    def test_join_rejects_out_of_range_halves(self, low, high):
        with pytest.raises(ValueError):
            from_u256(low, high)

    @pytest.mark.parametrize("value", [-1, U256_MAX + 1])
    def test_split_rejects_out_of_range(self, value):
        with pytest.raises(ValueError):
            to_u256(value)


class TestFelts:
    """Tests for felt parsing and canonical forms."""

    def test_parse_hex_and_decimal(self):
        assert parse_felt("0x1f") == 31
        assert parse_felt("0X1F") == 31
        assert parse_felt("31") == 31
        assert parse_felt(31) == 31

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_felt("0xzz")

    def test_canonical_id(self):
        """Test ids are 0x + 64 lowercase hex digits."""
        text = u256_to_hex(0xABC)
        assert text == "0x" + "0" * 61 + "abc"
        assert len(text) == 66
        assert hex_to_u256(text) == 0xABC

    def test_hex_to_u256_rejects_overflow(self):
        with pytest.raises(ValueError):
            hex_to_u256(hex(U256_MAX + 1))

    def test_normalize_address(self):
        assert normalize_address("0xA") == normalize_address(10) == "0x" + "0" * 63 + "a"
