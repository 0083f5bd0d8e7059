# core/errors.py


class DuplicateDetectionError(Exception):
    """Base class for all duplicate detection failures"""


class DecodeError(DuplicateDetectionError):
    """Image bytes could not be decoded into a raster"""


class InvalidFingerprintError(DuplicateDetectionError):
    """Candidate fingerprint is missing required fields"""


class InvalidCorpusRecordError(DuplicateDetectionError):
    """Stored corpus record cannot be turned into a corpus entry"""


class ConfigurationError(DuplicateDetectionError, ValueError):
    """Threshold or quorum settings are out of range"""
