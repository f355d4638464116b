"""
Hex conversion helpers for values coming back from web3.

Log fields arrive as HexBytes, bytes or hex strings depending on the provider
and on whether the log was decoded; these helpers give them one shape.
"""

from typing import Union

from hexbytes import HexBytes
from web3 import Web3


def to_hex_string(value: Union[HexBytes, bytes, bytearray, str]) -> str:
    """Convert bytes or hex to a 0x-prefixed lowercase hex string.

    Raises:
        ValueError: If the value is neither bytes nor a hex string
    """
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        hex_str = value[2:] if value.startswith(("0x", "0X")) else value
        # Validates the digits
        bytes.fromhex(hex_str)
        return "0x" + hex_str.lower()
    raise ValueError(f"Expected bytes or hex string, got {type(value).__name__}")


def to_bytes(value: Union[HexBytes, bytes, bytearray, str]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return Web3.to_bytes(hexstr=value)


def to_bytes32(value: Union[HexBytes, bytes, str]) -> bytes:
    raw = to_bytes(value)
    if len(raw) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(raw)}")
    return raw
