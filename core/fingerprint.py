# core/fingerprint.py

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_EXCEPTION
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from config import ExtractionConfig
from core.errors import ConfigurationError, DecodeError
from core.grayscale import decode_image, sample_luma
from core.hamming import coerce_hash

logger = logging.getLogger(__name__)

# (grid width, grid height) and resulting bit length per perceptual hash
PHASH_GRID = (32, 32)
AHASH_GRID = (8, 8)
DHASH_GRID = (9, 8)

PHASH_BITS = 1024
AHASH_BITS = 64
DHASH_BITS = 64

SUPPORTED_DIGESTS = {
    'md5': hashlib.md5,
    'sha1': hashlib.sha1,
    'sha256': hashlib.sha256,
    'sha512': hashlib.sha512
}


@dataclass
class Fingerprint:
    """
    Content digest, perceptual hashes and context URLs of one image.

    Perceptual hashes are binary strings ('0'/'1'); any of them may be
    None on records loaded from storage.
    """
    exact_digest: str
    phash: Optional[str] = None
    ahash: Optional[str] = None
    dhash: Optional[str] = None
    width: int = 0
    height: int = 0
    byte_size: int = 0
    source_url: str = ""
    page_url: str = ""

    @property
    def perceptual_hashes(self) -> dict:
        return {'pHash': self.phash, 'aHash': self.ahash, 'dHash': self.dhash}

    def to_dict(self) -> dict:
        return {
            'exactDigest': self.exact_digest,
            'pHash': self.phash,
            'aHash': self.ahash,
            'dHash': self.dhash,
            'width': self.width,
            'height': self.height,
            'byteSize': self.byte_size,
            'sourceUrl': self.source_url,
            'pageUrl': self.page_url
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Fingerprint':
        """
        Build a fingerprint from a stored record.

        Accepts both the current camelCase keys and the legacy store
        spellings (sha256, sourceImageUrl, source_page_url, ...). Hashes
        may be stored as binary strings or hex; malformed ones become None.
        """
        def first(*keys, default=None):
            for key in keys:
                value = data.get(key)
                if value is not None:
                    return value
            return default

        return cls(
            exact_digest=str(first('exactDigest', 'exact_digest', 'sha256', default='')),
            phash=coerce_hash(first('pHash', 'phash'), PHASH_BITS),
            ahash=coerce_hash(first('aHash', 'ahash'), AHASH_BITS),
            dhash=coerce_hash(first('dHash', 'dhash'), DHASH_BITS),
            width=_as_int(first('width')),
            height=_as_int(first('height')),
            byte_size=_as_int(first('byteSize', 'byte_size', 'size', 'file_size')),
            source_url=str(first('sourceUrl', 'source_url', 'sourceImageUrl',
                                 'source_image_url', default='')),
            page_url=str(first('pageUrl', 'page_url', 'sourcePageUrl',
                               'source_page_url', default=''))
        )


def _as_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def average_bits(luma: np.ndarray) -> str:
    """1 where a cell is brighter than the grid mean (pHash/aHash rule)"""
    mean = luma.mean()
    return ''.join('1' if v > mean else '0' for v in luma.flatten())


def difference_bits(luma: np.ndarray) -> str:
    """1 where a cell is darker than its right-hand neighbour (dHash rule)"""
    rows = luma.astype(np.int16)
    gradient = rows[:, :-1] < rows[:, 1:]
    return ''.join('1' if v else '0' for v in gradient.flatten())


def compute_phash(image: Image.Image) -> str:
    return average_bits(sample_luma(image, *PHASH_GRID))


def compute_ahash(image: Image.Image) -> str:
    return average_bits(sample_luma(image, *AHASH_GRID))


def compute_dhash(image: Image.Image) -> str:
    return difference_bits(sample_luma(image, *DHASH_GRID))


class FingerprintExtractor:
    """
    Derive a Fingerprint from raw image bytes.

    The digest, the three perceptual hashes and the native dimensions are
    independent tasks run on a thread pool; the first failure fails the
    whole extraction.
    """

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or ExtractionConfig()

        algo = self.config.digest_algorithm.lower()
        if algo not in SUPPORTED_DIGESTS:
            raise ConfigurationError(
                f"Unsupported digest algorithm: {self.config.digest_algorithm}"
            )
        self._digest_func = SUPPORTED_DIGESTS[algo]

        # Set PIL image size limit to prevent memory issues
        Image.MAX_IMAGE_PIXELS = self.config.max_image_pixels

    def compute_digest(self, data: bytes) -> str:
        hasher = self._digest_func()
        hasher.update(data)
        return hasher.hexdigest()

    @staticmethod
    def _dimensions(image: Image.Image) -> Tuple[int, int]:
        return image.size

    def extract(self, data: bytes, source_url: str = "", page_url: str = "") -> Fingerprint:
        """
        Extract the fingerprint of an image

        Args:
            data: raw encoded image bytes
            source_url: URL the image was fetched from (may be empty)
            page_url: URL of the page the image appeared on (may be empty)

        Raises:
            DecodeError: if the bytes cannot be decoded as an image
        """
        if not isinstance(data, (bytes, bytearray, memoryview)) or len(data) == 0:
            raise DecodeError("Image data must be a non-empty byte buffer")
        data = bytes(data)

        with ThreadPoolExecutor(max_workers=self.config.n_workers,
                                thread_name_prefix='fingerprint') as executor:
            digest_future = executor.submit(self.compute_digest, data)
            image = decode_image(data)

            futures = {
                'digest': digest_future,
                'phash': executor.submit(compute_phash, image),
                'ahash': executor.submit(compute_ahash, image),
                'dhash': executor.submit(compute_dhash, image),
                'dimensions': executor.submit(self._dimensions, image),
            }

            done, pending = wait(futures.values(), return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()

            failed = [f for f in done if f.exception() is not None]
            if failed:
                raise failed[0].exception()

            results = {name: future.result() for name, future in futures.items()}

        width, height = results['dimensions']
        fingerprint = Fingerprint(
            exact_digest=results['digest'],
            phash=results['phash'],
            ahash=results['ahash'],
            dhash=results['dhash'],
            width=width,
            height=height,
            byte_size=len(data),
            source_url=source_url or "",
            page_url=page_url or ""
        )

        logger.debug(
            f"Fingerprint {fingerprint.exact_digest[:16]}... "
            f"{width}x{height}, {len(data)} bytes"
        )
        return fingerprint

    def extract_file(self, path, source_url: str = "", page_url: str = "") -> Fingerprint:
        """Extract the fingerprint of a local image file"""
        data = Path(path).read_bytes()
        return self.extract(data, source_url, page_url)


def extract_fingerprint(data: bytes, source_url: str = "", page_url: str = "") -> Fingerprint:
    """Extract a fingerprint with the default configuration"""
    return FingerprintExtractor().extract(data, source_url, page_url)
