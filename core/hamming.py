# core/hamming.py

import math
from dataclasses import dataclass
from typing import Optional

import imagehash
import numpy as np

# Returned when two hashes cannot be compared (different lengths)
INCOMPARABLE = math.inf

_BINARY_CHARS = frozenset('01')
_HEX_CHARS = frozenset('0123456789abcdefABCDEF')


@dataclass
class HashVote:
    """Outcome of comparing one perceptual hash pair"""
    distance: float
    matched: bool
    similarity: float

    @property
    def comparable(self) -> bool:
        return self.distance != INCOMPARABLE

    def to_dict(self) -> dict:
        return {
            'distance': None if not self.comparable else int(self.distance),
            'matched': self.matched,
            'similarity': round(self.similarity, 2),
        }


def is_binary_hash(value) -> bool:
    """True for a non-empty string made only of '0' and '1'"""
    return isinstance(value, str) and len(value) > 0 and set(value) <= _BINARY_CHARS


def _to_image_hash(bits: str) -> imagehash.ImageHash:
    return imagehash.ImageHash(np.frombuffer(bits.encode('ascii'), dtype=np.uint8) == ord('1'))


def hamming_distance(hash1: str, hash2: str) -> float:
    """
    Count differing bit positions between two binary hash strings.

    Never raises: hashes of different lengths (or non-strings) yield
    INCOMPARABLE, which is larger than any threshold.
    """
    if not isinstance(hash1, str) or not isinstance(hash2, str):
        return INCOMPARABLE
    if len(hash1) != len(hash2):
        return INCOMPARABLE
    if hash1 == hash2:
        return 0
    if not (is_binary_hash(hash1) and is_binary_hash(hash2)):
        # Non-binary characters still compare positionally
        return sum(1 for a, b in zip(hash1, hash2) if a != b)

    return int(_to_image_hash(hash1) - _to_image_hash(hash2))


def similarity_percentage(hash1: str, hash2: str) -> float:
    """(len - distance) / len * 100, or 0.0 when the pair is incomparable"""
    distance = hamming_distance(hash1, hash2)
    if distance == INCOMPARABLE or not hash1:
        return 0.0
    bit_length = len(hash1)
    return (bit_length - distance) / bit_length * 100.0


def compare(hash1: str, hash2: str, threshold: int) -> HashVote:
    """Compare two hashes against an inclusive distance threshold"""
    distance = hamming_distance(hash1, hash2)
    if distance == INCOMPARABLE:
        return HashVote(distance=INCOMPARABLE, matched=False, similarity=0.0)

    bit_length = len(hash1)
    similarity = (bit_length - distance) / bit_length * 100.0 if bit_length else 0.0
    return HashVote(distance=distance, matched=distance <= threshold, similarity=similarity)


# Storage codec

def bits_to_hex(bits: str) -> str:
    """Pack a binary hash string into hex for compact storage"""
    if not is_binary_hash(bits):
        raise ValueError("Hash must be a non-empty binary string")
    return str(_to_image_hash(bits))


def hex_to_bits(hex_str: str) -> str:
    """
    Unpack a hex-stored hash into its binary string.

    Only square bit lengths (64, 256, 1024, ...) are supported, which
    covers every grid used for perceptual hashing here.
    """
    if not hex_str or not set(hex_str) <= _HEX_CHARS:
        raise ValueError(f"Invalid hex hash: {hex_str!r}")

    side = math.isqrt(len(hex_str) * 4)
    if side * side != len(hex_str) * 4:
        raise ValueError(f"Hex hash length {len(hex_str)} does not map to a square grid")

    image_hash = imagehash.hex_to_hash(hex_str)
    return ''.join('1' if bit else '0' for bit in image_hash.hash.flatten())


def coerce_hash(value, bit_length: int) -> Optional[str]:
    """
    Accept a stored hash in binary or hex form and return the binary form.

    Returns None for missing or malformed values.
    """
    if not isinstance(value, str) or not value:
        return None

    value = value.strip()
    if is_binary_hash(value) and len(value) == bit_length:
        return value

    if len(value) * 4 == bit_length:
        try:
            return hex_to_bits(value)
        except ValueError:
            return None

    return None
