# tests/conftest.py

import io

import numpy as np
import pytest
from PIL import Image


def encode_image(array: np.ndarray, fmt: str = "PNG") -> bytes:
    """Encode an HxWx3 (or HxWx4) uint8 array into image bytes"""
    buffer = io.BytesIO()
    Image.fromarray(array.astype(np.uint8)).save(buffer, format=fmt)
    return buffer.getvalue()


def horizontal_gradient(width: int = 256, height: int = 64) -> np.ndarray:
    """Dark on the left, bright on the right"""
    row = np.linspace(0, 255, width).astype(np.uint8)
    gray = np.tile(row, (height, 1))
    return np.stack([gray] * 3, axis=-1)


def vertical_gradient(width: int = 64, height: int = 256) -> np.ndarray:
    """Dark at the top, bright at the bottom"""
    column = np.linspace(0, 255, height).astype(np.uint8)
    gray = np.tile(column[:, None], (1, width))
    return np.stack([gray] * 3, axis=-1)


def flip_bits(bits: str, count: int) -> str:
    """Flip the first count bits of a binary string"""
    flipped = ''.join('1' if b == '0' else '0' for b in bits[:count])
    return flipped + bits[count:]


@pytest.fixture
def gradient_png() -> bytes:
    return encode_image(horizontal_gradient())


@pytest.fixture
def vertical_png() -> bytes:
    return encode_image(vertical_gradient())


@pytest.fixture
def image_dir(tmp_path):
    """Directory with one indexed gradient image"""
    directory = tmp_path / "archive"
    directory.mkdir()
    (directory / "gradient.png").write_bytes(encode_image(horizontal_gradient()))
    return directory
