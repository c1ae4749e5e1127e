"""
Wire formats for oracle payloads.

Cleartext: big-endian IEEE-754 float64 values, packed back to back.
Bytes on the HTTP surface travel as base64 strings.
"""
import base64
import struct
from typing import List, Sequence

FLOAT_SIZE = struct.calcsize(">d")


def encode_cleartext(values: Sequence[float]) -> bytes:
    """Pack plaintext values into the oracle cleartext format."""
    return struct.pack(f">{len(values)}d", *[float(v) for v in values])


def decode_cleartext(data: bytes, expected_length: int) -> List[float]:
    """
    Unpack an oracle cleartext.

    Args:
        data: Packed float64 sequence
        expected_length: Number of values the ciphertext batch held

    Returns:
        Decoded values

    Raises:
        ValueError: If the payload does not hold exactly expected_length values
    """
    if len(data) != expected_length * FLOAT_SIZE:
        raise ValueError(
            f"Expected {expected_length} values ({expected_length * FLOAT_SIZE} bytes), "
            f"got {len(data)} bytes"
        )
    return list(struct.unpack(f">{expected_length}d", data))


def encode_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def decode_b64(value: str) -> bytes:
    return base64.b64decode(value, validate=True)
