"""
u256 helpers.

Cairo serializes a u256 as two felts (low, high), each a u128. All
conversions here are pure integer arithmetic.
"""

U128_MAX = (1 << 128) - 1
U256_MAX = (1 << 256) - 1


def from_u256(low: int, high: int) -> int:
    """Reconstruct ``high * 2**128 + low``."""
    if not 0 <= low <= U128_MAX or not 0 <= high <= U128_MAX:
        raise ValueError(f"invalid u256 halves: low={low} high={high}")
    return (high << 128) | low


def to_u256(value: int) -> tuple[int, int]:
    """Split a value into its (low, high) u128 halves."""
    if not 0 <= value <= U256_MAX:
        raise ValueError(f"value out of u256 range: {value}")
    return value & U128_MAX, value >> 128


def parse_felt(raw: str | int) -> int:
    """Parse a felt given as 0x-hex or decimal string."""
    if isinstance(raw, int):
        return raw
    text = raw.strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text, 10)


def u256_to_hex(value: int) -> str:
    """Canonical id form: 0x followed by 64 lowercase hex digits."""
    if not 0 <= value <= U256_MAX:
        raise ValueError(f"value out of u256 range: {value}")
    return "0x" + format(value, "064x")


def hex_to_u256(text: str) -> int:
    value = parse_felt(text)
    if not 0 <= value <= U256_MAX:
        raise ValueError(f"value out of u256 range: {text}")
    return value


def normalize_address(raw: str | int) -> str:
    """Felt address as 0x-prefixed, 64-digit lowercase hex."""
    return "0x" + format(parse_felt(raw), "064x")
