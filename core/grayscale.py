# core/grayscale.py

import io
import numpy as np
from PIL import Image, UnidentifiedImageError

from core.errors import DecodeError

# ITU-R BT.601 weights. Stored corpora depend on these exact values.
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


def decode_image(data: bytes) -> Image.Image:
    """
    Decode raw image bytes into a fully loaded PIL image

    Raises:
        DecodeError: if the bytes are not a decodable image
    """
    if not data:
        raise DecodeError("Empty image buffer")

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError,
            Image.DecompressionBombError) as e:
        raise DecodeError(f"Failed to decode image: {e}") from e

    return img


def _to_8bit(image: Image.Image) -> Image.Image:
    """
    Scale 16-bit and 32-bit single-channel rasters down to an 8-bit L image

    Pillow's own conversion clips these modes at 255 instead of scaling.
    I;16 variants are full-range 16-bit. Plain I and F rasters are treated as
    16-bit when any value exceeds 255, and as 8-bit otherwise.
    """
    if not (image.mode == 'F' or image.mode.startswith('I')):
        return image

    values = np.asarray(image).astype(np.float64)
    if image.mode.startswith('I;16') or values.max(initial=0) > 255:
        values = values / 257

    gray = np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)
    return Image.fromarray(gray)


def _to_rgb_grid(image: Image.Image, width: int, height: int) -> np.ndarray:
    """Resample to the grid and return an RGB array with transparent cells zeroed"""
    image = _to_8bit(image)
    has_alpha = image.mode in ('RGBA', 'LA') or \
        (image.mode == 'P' and 'transparency' in image.info)

    if has_alpha:
        # RGBA resizes are premultiplied inside Pillow
        rgba = image.convert('RGBA').resize((width, height), Image.Resampling.BILINEAR)
        pixels = np.asarray(rgba, dtype=np.float64)
        rgb = pixels[..., :3]
        rgb[pixels[..., 3] == 0] = 0.0
        return rgb

    if image.mode != 'RGB':
        image = image.convert('RGB')

    resized = image.resize((width, height), Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.float64)


def sample_luma(image: Image.Image, target_width: int, target_height: int) -> np.ndarray:
    """
    Resample an image onto a fixed grid and convert it to luma

    Returns:
        uint8 array of shape (target_height, target_width)
    """
    if target_width <= 0 or target_height <= 0:
        raise ValueError(f"Invalid grid size: {target_width}x{target_height}")

    rgb = _to_rgb_grid(image, target_width, target_height)

    # Half-up rounding; np.round would round halves to even
    gray = np.floor(rgb @ LUMA_WEIGHTS + 0.5)
    return np.clip(gray, 0, 255).astype(np.uint8)


def sample_luma_from_bytes(data: bytes, target_width: int, target_height: int) -> np.ndarray:
    """Decode image bytes and sample them onto a luma grid"""
    return sample_luma(decode_image(data), target_width, target_height)
