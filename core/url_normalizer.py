# core/url_normalizer.py

import logging
from typing import Optional
from urllib.parse import urlsplit, parse_qsl, urlencode

from config import UrlNormalizationConfig

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {'http': 80, 'https': 443, 'ws': 80, 'wss': 443, 'ftp': 21}


class URLNormalizer:
    """
    Canonicalize source/page URLs for context comparison.

    CDN hosts append volatile per-request query parameters (signatures,
    cache busters, sizes) to otherwise stable image URLs. Those are dropped
    so the same on-page image compares equal across visits.
    """

    def __init__(self, config: Optional[UrlNormalizationConfig] = None):
        self.config = config or UrlNormalizationConfig()

    def normalize(self, url: str) -> str:
        """Return the canonical form of url; unparseable input is returned unchanged"""
        if not url:
            return url

        try:
            parts = urlsplit(url)
            hostname = parts.hostname
            port = parts.port
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug(f"URL normalization failed for {url!r}: {e}")
            return url

        if not parts.scheme or not hostname:
            return url

        if self.is_social_cdn(hostname):
            return self._normalize_social_cdn(parts, hostname, port)

        if self.is_cdn(hostname):
            return self._origin(parts.scheme, hostname, port) + (parts.path or '/')

        return url

    def _normalize_social_cdn(self, parts, hostname: str, port: Optional[int]) -> str:
        base = self._origin(parts.scheme, hostname, port) + (parts.path or '/')
        if not self.config.keep_social_essential_params:
            return base

        essential = set(self.config.essential_params)
        kept = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
                if k in essential]
        if not kept:
            return base
        return f"{base}?{urlencode(kept)}"

    @staticmethod
    def _origin(scheme: str, hostname: str, port: Optional[int]) -> str:
        scheme = scheme.lower()
        if ':' in hostname:
            hostname = f"[{hostname}]"
        if port is None or _DEFAULT_PORTS.get(scheme) == port:
            return f"{scheme}://{hostname}"
        return f"{scheme}://{hostname}:{port}"

    def is_social_cdn(self, hostname: str) -> bool:
        hostname = (hostname or '').lower()
        return any(pattern in hostname for pattern in self.config.social_cdn_patterns)

    def is_cdn(self, hostname: str) -> bool:
        """Check if hostname belongs to a known CDN"""
        hostname = (hostname or '').lower()
        return any(pattern in hostname for pattern in self.config.cdn_patterns)

    def are_equal(self, url1: str, url2: str) -> bool:
        return self.normalize(url1) == self.normalize(url2)


_default_normalizer = URLNormalizer()


def normalize_url(url: str) -> str:
    return _default_normalizer.normalize(url)


def urls_equal(url1: str, url2: str) -> bool:
    return _default_normalizer.are_equal(url1, url2)
