# core/duplicate_matcher.py

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from config import MatchingConfig, PERCEPTUAL_HASH_COUNT
from core.corpus import entries_from_records
from core.errors import InvalidFingerprintError
from core.fingerprint import Fingerprint
from core.hamming import HashVote, compare, is_binary_hash
from core.url_normalizer import URLNormalizer

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]

CONTEXT_REASON = "same source URL + page URL"
EXACT_REASON = "identical file"


class MatchType(Enum):
    CONTEXT = "context"
    EXACT = "exact"
    VISUAL = "visual"


@dataclass
class MatchRecord:
    """One reason the candidate duplicates one corpus entry"""
    match_type: MatchType
    matched_id: Any
    reason: str
    similarity: Optional[float] = None
    hash_votes: Optional[Dict[str, HashVote]] = None
    vote_count: Optional[int] = None

    @property
    def matched_hashes(self) -> List[str]:
        if not self.hash_votes:
            return []
        return [name for name, vote in self.hash_votes.items() if vote.matched]

    def to_dict(self) -> dict:
        data = {
            'matchType': self.match_type.value,
            'matchedId': self.matched_id,
            'reason': self.reason,
        }
        if self.similarity is not None:
            data['similarity'] = round(self.similarity, 1)
        if self.hash_votes is not None:
            data['hashVotes'] = {name: vote.to_dict() for name, vote in self.hash_votes.items()}
            data['voteCount'] = self.vote_count
        return data


@dataclass
class MatchReport:
    """
    Result of checking one candidate against a corpus.

    all_matches is authoritative and ordered by discovery (context, then
    exact, then visual). The first_* properties serve callers that only
    handle a single match.
    """
    all_matches: List[MatchRecord] = field(default_factory=list)
    corpus_size: int = 0
    elapsed_seconds: float = 0.0

    @property
    def is_duplicate(self) -> bool:
        return len(self.all_matches) > 0

    def by_type(self, match_type: MatchType) -> List[MatchRecord]:
        return [m for m in self.all_matches if m.match_type == match_type]

    def _first(self, match_type: MatchType) -> Optional[MatchRecord]:
        return next((m for m in self.all_matches if m.match_type == match_type), None)

    @property
    def first_context_match(self) -> Optional[MatchRecord]:
        return self._first(MatchType.CONTEXT)

    @property
    def first_exact_match(self) -> Optional[MatchRecord]:
        return self._first(MatchType.EXACT)

    @property
    def first_visual_match(self) -> Optional[MatchRecord]:
        return self._first(MatchType.VISUAL)

    def counts(self) -> Dict[MatchType, int]:
        return {t: len(self.by_type(t)) for t in MatchType}

    def to_dict(self) -> dict:
        def first(record):
            return record.to_dict() if record else None

        return {
            'isDuplicate': self.is_duplicate,
            'allMatches': [m.to_dict() for m in self.all_matches],
            'firstContextMatch': first(self.first_context_match),
            'firstExactMatch': first(self.first_exact_match),
            'firstVisualMatch': first(self.first_visual_match),
            'corpusSize': self.corpus_size,
        }


class _ShortCircuit(Exception):
    """Raised internally to end the scan after the first match"""


class DuplicateMatcher:
    """
    Three-phase duplicate check of a candidate against an archived corpus

    Phase 1: context (same normalized source URL + page URL)
    Phase 2: exact (identical content digest)
    Phase 3: visual (perceptual hash votes reaching the quorum)

    Every phase scans the whole corpus so all qualifying matches are
    reported, unless stop_at_first_match is configured.
    """

    def __init__(self,
                 config: Optional[MatchingConfig] = None,
                 normalizer: Optional[URLNormalizer] = None):
        self.config = config or MatchingConfig()
        self.config.validate()
        self.normalizer = normalizer or URLNormalizer()

    def check(self,
              candidate: Fingerprint,
              corpus: Sequence,
              on_progress: Optional[ProgressSink] = None) -> MatchReport:
        """
        Check a candidate fingerprint for duplicates

        Args:
            candidate: fingerprint of the item about to be archived
            corpus: CorpusEntry objects or (id, Fingerprint) pairs; read only
            on_progress: optional sink for human-readable status messages

        Raises:
            InvalidFingerprintError: if the candidate is malformed
        """
        self._validate_candidate(candidate)

        start = time.time()
        entries = tuple(entries_from_records(corpus))
        report = MatchReport(corpus_size=len(entries))

        logger.info(
            f"Checking {candidate.exact_digest[:16]}... against {len(entries)} corpus entries"
        )

        try:
            self._phase_context(candidate, entries, report, on_progress)
            self._phase_exact(candidate, entries, report, on_progress)
            self._phase_visual(candidate, entries, report, on_progress)
        except _ShortCircuit:
            logger.debug("Stopped at first match")

        report.elapsed_seconds = time.time() - start

        if report.is_duplicate:
            counts = report.counts()
            logger.info(
                f"Duplicate: {len(report.all_matches)} matches "
                f"(context={counts[MatchType.CONTEXT]}, exact={counts[MatchType.EXACT]}, "
                f"visual={counts[MatchType.VISUAL]})"
            )
            self._notify(on_progress, f"Duplicate found ({len(report.all_matches)} matches)")
        else:
            logger.info("No duplicates detected")
            self._notify(on_progress, "No duplicates found")

        return report

    def _validate_candidate(self, candidate: Fingerprint):
        if not isinstance(candidate, Fingerprint):
            raise InvalidFingerprintError(
                f"Candidate must be a Fingerprint, got {type(candidate).__name__}"
            )

        if not isinstance(candidate.exact_digest, str) or not candidate.exact_digest:
            raise InvalidFingerprintError("Candidate fingerprint has no exact digest")

        for name, value in candidate.perceptual_hashes.items():
            if value and not is_binary_hash(value):
                raise InvalidFingerprintError(f"Candidate {name} is not a binary hash string")

    def _record(self, report: MatchReport, record: MatchRecord):
        report.all_matches.append(record)
        if self.config.stop_at_first_match:
            raise _ShortCircuit()

    def _tick(self, on_progress, phase: int, index: int, total: int):
        if on_progress and (index + 1) % self.config.progress_interval == 0:
            self._notify(on_progress, f"Phase {phase}: checked {index + 1}/{total}")

    @staticmethod
    def _notify(on_progress, message: str):
        if on_progress is None:
            return
        try:
            on_progress(message)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def _phase_context(self, candidate, entries, report, on_progress):
        """Phase 1: same normalized source URL + page URL"""
        self._notify(on_progress, "Phase 1: Checking context...")

        if not candidate.source_url and not self.config.match_empty_source_url:
            logger.debug("Phase 1 skipped: candidate has no source URL")
            return

        source = self.normalizer.normalize(candidate.source_url)
        page = self.normalizer.normalize(candidate.page_url)
        found = 0

        for index, entry in enumerate(entries):
            fp = entry.fingerprint
            if self.normalizer.normalize(fp.source_url) == source and \
                    self.normalizer.normalize(fp.page_url) == page:
                found += 1
                logger.debug(f"Context match with {entry.id}")
                self._record(report, MatchRecord(
                    match_type=MatchType.CONTEXT,
                    matched_id=entry.id,
                    reason=CONTEXT_REASON
                ))
            self._tick(on_progress, 1, index, len(entries))

        logger.info(f"Phase 1 (context): {found} matches")

    def _phase_exact(self, candidate, entries, report, on_progress):
        """Phase 2: identical content digest"""
        self._notify(on_progress, "Phase 2: Checking exact file match...")
        found = 0

        for index, entry in enumerate(entries):
            if entry.fingerprint.exact_digest == candidate.exact_digest:
                found += 1
                logger.debug(f"Exact match with {entry.id}")
                self._record(report, MatchRecord(
                    match_type=MatchType.EXACT,
                    matched_id=entry.id,
                    reason=EXACT_REASON,
                    similarity=100.0
                ))
            self._tick(on_progress, 2, index, len(entries))

        logger.info(f"Phase 2 (exact): {found} matches")

    def _phase_visual(self, candidate, entries, report, on_progress):
        """Phase 3: perceptual hash votes"""
        self._notify(on_progress, "Phase 3: Analyzing visual similarity...")
        logger.debug(
            f"Thresholds: pHash={self.config.phash_threshold}/1024, "
            f"aHash={self.config.ahash_threshold}/64, "
            f"dHash={self.config.dhash_threshold}/64, quorum={self.config.match_quorum}"
        )
        found = 0

        for index, entry in enumerate(entries):
            votes = self.compare_hashes(candidate, entry.fingerprint)
            vote_count = sum(1 for vote in votes.values() if vote.matched)

            if vote_count >= self.config.match_quorum:
                found += 1
                compared = [v.similarity for v in votes.values() if v.comparable]
                similarity = sum(compared) / len(compared) if compared else 0.0
                matched = [name for name, vote in votes.items() if vote.matched]

                logger.debug(f"Visual match with {entry.id} ({similarity:.1f}% similar)")
                self._record(report, MatchRecord(
                    match_type=MatchType.VISUAL,
                    matched_id=entry.id,
                    reason=(f"visually similar ({vote_count}/{PERCEPTUAL_HASH_COUNT} "
                            f"hashes: {', '.join(matched)})"),
                    similarity=similarity,
                    hash_votes=votes,
                    vote_count=vote_count
                ))
            self._tick(on_progress, 3, index, len(entries))

        logger.info(f"Phase 3 (visual): {found} matches")

    def compare_hashes(self, candidate: Fingerprint, stored: Fingerprint) -> Dict[str, HashVote]:
        """Vote per perceptual hash present on both sides"""
        votes = {}
        thresholds = self.config.thresholds
        stored_hashes = stored.perceptual_hashes

        for name, value in candidate.perceptual_hashes.items():
            other = stored_hashes.get(name)
            if not value or not other:
                continue
            votes[name] = compare(value, other, thresholds[name])

        return votes


def check_duplicates(candidate: Fingerprint,
                     corpus: Sequence,
                     config: Optional[MatchingConfig] = None,
                     on_progress: Optional[ProgressSink] = None) -> MatchReport:
    """Run a duplicate check with a one-off matcher"""
    return DuplicateMatcher(config).check(candidate, corpus, on_progress)
