"""Input validation utilities."""

import re

# Starknet felts are at most 252 bits, written as up to 64 hex digits
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")

MAX_BPS = 100_000
SHORT_STRING_MAX_LEN = 31


def is_valid_address(address: str) -> bool:
    return bool(ADDRESS_RE.match(address or ""))


def validate_address(address: str) -> str:
    """Validate and return a felt address, raising ValueError if invalid."""
    if not is_valid_address(address):
        raise ValueError(f"Invalid address format: {address!r}")
    return address


def validate_bps(value: int, field: str = "value") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field} must be an integer number of basis points, got {value!r}")
    if not 0 <= value <= MAX_BPS:
        raise ValueError(f"{field} must be within [0, {MAX_BPS}], got {value}")
    return value


def bps_to_percent(value: int) -> str:
    return f"{value / 1000:g}%"


def encode_short_string(text: str) -> int:
    """Encode ASCII text as a Cairo short string (felt252)."""
    if len(text) > SHORT_STRING_MAX_LEN:
        raise ValueError(f"Short string exceeds {SHORT_STRING_MAX_LEN} characters: {text!r}")
    if not text.isascii():
        raise ValueError(f"Short string must be ASCII: {text!r}")
    return int.from_bytes(text.encode("ascii"), "big")


def decode_short_string(felt: int | str) -> str:
    if isinstance(felt, str):
        felt = int(felt, 16) if felt.startswith("0x") else int(felt)
    if felt == 0:
        return ""
    length = (felt.bit_length() + 7) // 8
    return felt.to_bytes(length, "big").decode("ascii")


def format_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def to_felt(value: int | str) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16) if value.lower().startswith("0x") else int(value)


def same_felt(a: int | str, b: int | str) -> bool:
    """Compare two felts regardless of hex casing or zero padding."""
    try:
        return to_felt(a) == to_felt(b)
    except ValueError:
        return False
