from dataclasses import dataclass, field, asdict
from typing import List
import yaml
from pathlib import Path

from core.errors import ConfigurationError

# Number of perceptual hashes (out of pHash, aHash, dHash) that must agree
# before a visual match is declared. Earlier releases required 2 of 3.
DEFAULT_MATCH_QUORUM = 1
PERCEPTUAL_HASH_COUNT = 3


@dataclass
class ExtractionConfig:
    """Configuration for fingerprint extraction"""
    digest_algorithm: str = "sha256"  # Options: md5, sha1, sha256, sha512
    n_workers: int = 4
    max_image_pixels: int = 100_000_000  # 100MP limit


@dataclass
class MatchingConfig:
    """Configuration for duplicate matching"""
    phash_threshold: int = 100  # of 1024 bits, ~10%
    ahash_threshold: int = 15   # of 64 bits, ~23%
    dhash_threshold: int = 20   # of 64 bits, ~31%
    match_quorum: int = DEFAULT_MATCH_QUORUM
    stop_at_first_match: bool = False
    # Candidates without a source URL (local files) skip the context phase
    # unless this is set, in which case empty URLs compare equal
    match_empty_source_url: bool = False
    progress_interval: int = 100  # corpus entries between progress messages

    def validate(self):
        """Raise ConfigurationError for out-of-range settings"""
        for name in ('phash_threshold', 'ahash_threshold', 'dhash_threshold'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")

        if not isinstance(self.match_quorum, int) or \
                not 1 <= self.match_quorum <= PERCEPTUAL_HASH_COUNT:
            raise ConfigurationError(
                f"match_quorum must be between 1 and {PERCEPTUAL_HASH_COUNT}, "
                f"got {self.match_quorum!r}"
            )

        if not isinstance(self.progress_interval, int) or self.progress_interval < 1:
            raise ConfigurationError(
                f"progress_interval must be a positive integer, got {self.progress_interval!r}"
            )

    @property
    def thresholds(self) -> dict:
        return {
            'pHash': self.phash_threshold,
            'aHash': self.ahash_threshold,
            'dHash': self.dhash_threshold,
        }


@dataclass
class UrlNormalizationConfig:
    """Configuration for source/page URL normalization"""
    # Social CDNs embed one numeric resource id plus per-request session params
    keep_social_essential_params: bool = False
    social_cdn_patterns: List[str] = field(default_factory=lambda: [
        'fbcdn.net',
        'cdninstagram.com',
    ])
    essential_params: List[str] = field(default_factory=lambda: ['fbid', 'set', 'id'])
    cdn_patterns: List[str] = field(default_factory=lambda: [
        'fbcdn.net',
        'imgur.com',
        'i.imgur.com',
        'cloudfront.net',
        'akamaihd.net',
        'gstatic.com',
        'googleusercontent.com',
        'wp.com',
        'amazonaws.com',
        'cloudinary.com',
        'imgix.net',
    ])


@dataclass
class SystemConfig:
    """System-wide configuration"""
    log_level: str = "INFO"
    log_dir: str = "logs"
    corpus_path: str = "data/corpus.json"

    # Fingerprint extraction
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)

    # Duplicate matching
    matching: MatchingConfig = field(default_factory=MatchingConfig)

    # URL normalization
    url_normalization: UrlNormalizationConfig = field(
        default_factory=UrlNormalizationConfig
    )

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        with open(path, 'w') as f:
            yaml.dump(asdict(self), f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """Load configuration from YAML file"""
        if not Path(path).exists():
            return cls()  # Return default config

        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        config = cls()

        # Load system settings
        config.log_level = config_dict.get('log_level', config.log_level)
        config.log_dir = config_dict.get('log_dir', config.log_dir)
        config.corpus_path = config_dict.get('corpus_path', config.corpus_path)

        # Load extraction settings
        if 'extraction' in config_dict:
            ex = config_dict['extraction'] or {}
            config.extraction = ExtractionConfig(
                digest_algorithm=ex.get('digest_algorithm', config.extraction.digest_algorithm),
                n_workers=ex.get('n_workers', config.extraction.n_workers),
                max_image_pixels=ex.get('max_image_pixels', config.extraction.max_image_pixels)
            )

        # Load matching settings
        if 'matching' in config_dict:
            m = config_dict['matching'] or {}
            config.matching = MatchingConfig(
                phash_threshold=m.get('phash_threshold', config.matching.phash_threshold),
                ahash_threshold=m.get('ahash_threshold', config.matching.ahash_threshold),
                dhash_threshold=m.get('dhash_threshold', config.matching.dhash_threshold),
                match_quorum=m.get('match_quorum', config.matching.match_quorum),
                stop_at_first_match=m.get('stop_at_first_match', config.matching.stop_at_first_match),
                match_empty_source_url=m.get('match_empty_source_url',
                                             config.matching.match_empty_source_url),
                progress_interval=m.get('progress_interval', config.matching.progress_interval)
            )
            config.matching.validate()

        # Load URL normalization settings
        if 'url_normalization' in config_dict:
            un = config_dict['url_normalization'] or {}
            defaults = config.url_normalization
            config.url_normalization = UrlNormalizationConfig(
                keep_social_essential_params=un.get(
                    'keep_social_essential_params', defaults.keep_social_essential_params),
                social_cdn_patterns=un.get('social_cdn_patterns', defaults.social_cdn_patterns),
                essential_params=un.get('essential_params', defaults.essential_params),
                cdn_patterns=un.get('cdn_patterns', defaults.cdn_patterns)
            )

        return config
